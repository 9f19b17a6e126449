import os
import sys
import pytest

# Ensure the backend root (containing the `buzzquiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from buzzquiz import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'
    ROOM_CODE_MAX_ATTEMPTS = 50
    OPEN_MATCH_PAGE_SIZE = 10
    DEFAULT_NEXT_QUESTION_DELAY_SEC = 0
    # Run the advance timer inline so a judged question moves on immediately
    ENABLE_SCHEDULER_IN_TESTS = True
    HOST_GRACE_PERIOD_SEC = 0
    ABANDONED_SESSION_SEC = 1800
    JUDGE_MAX_RETRIES = 3
    JUDGE_RETRY_BACKOFF_SEC = 0


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import buzzquiz.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def store(flask_app):
    return flask_app.extensions['session_store']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
