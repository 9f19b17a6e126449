from flask import Blueprint, jsonify, request, current_app
from buzzquiz.errors import InvalidRequest, NotFound
from buzzquiz.store import get_store
from buzzquiz.services.host_agent import ensure_host_agent, ensure_pool, get_host_agent
from buzzquiz.services.lifecycle import delete_session
from buzzquiz.services.matchmaking import create_session, find_or_create_open_session, join_session
from buzzquiz.services.presence import derive_presence
from buzzquiz.services.session_machine import SessionMachine, game_path
from buzzquiz.socketio_events import watch_session


sessions = Blueprint('sessions', __name__)


def _player_from(data):
    return {'id': data.get('player_id'), 'name': data.get('name')}


def _actor(data):
    player_id = data.get('player_id')
    if not player_id:
        raise InvalidRequest('player_id is required')
    return str(player_id)


def _subjects(data):
    subjects = data.get('subjects')
    if subjects is None:
        return None
    if isinstance(subjects, str):
        subjects = [s for s in subjects.split(',') if s.strip()]
    if not isinstance(subjects, list):
        raise InvalidRequest('subjects must be a list')
    return [str(s).strip() for s in subjects]


def _attach(game_id):
    app = current_app._get_current_object()
    watch_session(get_store(), game_id)
    ensure_host_agent(app, get_store(), game_id)


def _session_payload(game_id, player_id=None):
    session = get_store().read_once(game_path(game_id))
    if session is None:
        raise NotFound(f'Session {game_id} not found')
    payload = {'game_id': str(game_id), 'session': session}
    if player_id:
        payload['view'] = derive_presence(session, str(player_id)).to_dict()
    return payload


@sessions.route('', methods=['POST'])
def create_host_session():
    """
    Creates a private (or open) room with the caller as host.
    """
    data = request.get_json(silent=True) or {}
    game_id = create_session(
        get_store(),
        data.get('rules'),
        _player_from(data),
        is_open_match=bool(data.get('is_open_match', False)),
        subjects=_subjects(data),
    )
    _attach(game_id)
    return jsonify(_session_payload(game_id, data.get('player_id'))), 201


@sessions.route('/open', methods=['POST'])
def find_or_create_open():
    """
    Joins a waiting open room or opens a new one with the caller as host.
    """
    data = request.get_json(silent=True) or {}
    game_id, created = find_or_create_open_session(
        get_store(), data.get('rules'), _player_from(data), subjects=_subjects(data)
    )
    _attach(game_id)
    payload = _session_payload(game_id, data.get('player_id'))
    payload['created'] = created
    return jsonify(payload), 201 if created else 200


@sessions.route('/<string:game_id>/join', methods=['POST'])
def join(game_id):
    data = request.get_json(silent=True) or {}
    join_session(get_store(), game_id, _player_from(data))
    _attach(game_id)
    return jsonify(_session_payload(game_id, data.get('player_id')))


@sessions.route('/<string:game_id>', methods=['GET'])
def get_session_state(game_id):
    payload = _session_payload(game_id, request.args.get('player_id'))
    if get_host_agent(game_id) is None:
        # Re-attach after a restart
        _attach(game_id)
    return jsonify(payload)


@sessions.route('/<string:game_id>/start', methods=['POST'])
def start(game_id):
    data = request.get_json(silent=True) or {}
    actor = _actor(data)
    machine = SessionMachine(get_store(), game_id)
    session, _ = machine.snapshot()
    machine.require_host(session, actor, 'start the game')
    started = False
    if len(session.get('players') or {}) == 2:
        ensure_pool(get_store(), game_id, session)
        started = machine.start(actor)
    payload = _session_payload(game_id, actor)
    payload['started'] = started
    return jsonify(payload)


@sessions.route('/<string:game_id>/buzz', methods=['POST'])
def buzz(game_id):
    data = request.get_json(silent=True) or {}
    result = SessionMachine(get_store(), game_id).buzz(_actor(data))
    return jsonify(result.to_dict())


@sessions.route('/<string:game_id>/answer', methods=['POST'])
def submit_answer(game_id):
    data = request.get_json(silent=True) or {}
    actor = _actor(data)
    answer = data.get('answer')
    if answer is None:
        raise InvalidRequest('answer is required')
    accepted = SessionMachine(get_store(), game_id).submit_answer(actor, str(answer))
    payload = _session_payload(game_id, actor)
    payload['accepted'] = accepted
    return jsonify(payload)


@sessions.route('/<string:game_id>/judge', methods=['POST'])
def judge(game_id):
    """
    Re-runs judgment by hand, e.g. after the automatic attempt flagged hostError.
    """
    data = request.get_json(silent=True) or {}
    actor = _actor(data)
    judgment = SessionMachine(get_store(), game_id).judge(actor)
    payload = _session_payload(game_id, actor)
    payload['judged'] = judgment is not None
    return jsonify(payload)


@sessions.route('/<string:game_id>/advance', methods=['POST'])
def advance(game_id):
    """
    Host skips ahead: next question, or finish when the pool is exhausted.
    """
    data = request.get_json(silent=True) or {}
    actor = _actor(data)
    outcome = SessionMachine(get_store(), game_id).advance(actor, force=True)
    payload = _session_payload(game_id, actor)
    payload['outcome'] = outcome
    return jsonify(payload)


@sessions.route('/<string:game_id>', methods=['DELETE'])
def delete(game_id):
    data = request.get_json(silent=True) or {}
    delete_session(get_store(), game_id, _actor(data))
    return jsonify({'message': f'Session {game_id} deleted'})
