from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
import logging
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from buzzquiz.store import SessionStore
    flask_app.extensions['session_store'] = SessionStore(db)

    from buzzquiz.errors import BuzzQuizError

    @flask_app.errorhandler(BuzzQuizError)
    def handle_buzzquiz_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    from buzzquiz.main import main
    flask_app.register_blueprint(main)

    from buzzquiz.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    from buzzquiz.api.questions import questions
    flask_app.register_blueprint(questions, url_prefix='/api/questions')

    from buzzquiz.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('sessions-sweep')
    @click.option('--max-age', type=int, default=None, help='Age in seconds; defaults to ABANDONED_SESSION_SEC.')
    def sessions_sweep_command(max_age):
        """Removes waiting rooms nobody joined in time."""
        from buzzquiz.services.lifecycle import sweep_abandoned
        with flask_app.app_context():
            age = max_age if max_age is not None else int(flask_app.config.get('ABANDONED_SESSION_SEC', 1800))
            removed = sweep_abandoned(flask_app.extensions['session_store'], age)
            print(f'Removed {len(removed)} abandoned rooms.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sessions_sweep_command)

    return flask_app
