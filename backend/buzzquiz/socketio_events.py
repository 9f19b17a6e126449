from flask_socketio import join_room, leave_room, emit
from buzzquiz import socketio
from flask import current_app, request
from buzzquiz.store import get_store
from buzzquiz.services.lifecycle import handle_host_absence
from buzzquiz.services.presence import derive_presence
from buzzquiz.services.session_machine import SessionMachine, game_path
from buzzquiz.errors import BuzzQuizError
from typing import Callable, Dict, Any
import threading
import time

NAMESPACE = '/ws'


def _room(game_id: str) -> str:
    return f"game:{game_id}"


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    # If this socket was the host of a room and no other host socket
    # remains, give it a grace period before failing over
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or not ctx.get('is_host'):
        return
    game_id = ctx['game_id']
    _host_count[game_id] = max(0, _host_count.get(game_id, 0) - 1)
    if _host_count.get(game_id, 0) > 0:
        return
    app = current_app._get_current_object()
    grace = float(app.config.get('HOST_GRACE_PERIOD_SEC', 5))
    # In tests, react immediately for determinism
    if app.config.get('TESTING'):
        handle_host_absence(app, get_store(), game_id, ctx['player_id'])
        return
    _schedule_host_absence(app, game_id, ctx['player_id'], grace)


def handle_observe_session(data):
    game_id = str((data or {}).get('game_id') or '')
    player_id = str((data or {}).get('player_id') or '')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    store = get_store()
    session = store.read_once(game_path(game_id))
    if session is None:
        emit('error', {'message': f'Session {game_id} not found'})
        return
    join_room(_room(game_id))
    watch_session(store, game_id)
    is_host = derive_presence(session, player_id).is_host if player_id else False
    ctx = {'game_id': game_id, 'player_id': player_id, 'is_host': is_host}
    previous = _sid_to_ctx.get(_get_sid())
    if previous != ctx:
        if previous and previous.get('is_host'):
            _host_count[previous['game_id']] = max(0, _host_count.get(previous['game_id'], 0) - 1)
        _sid_to_ctx[_get_sid()] = ctx
        if is_host:
            _host_count[game_id] = _host_count.get(game_id, 0) + 1
    if is_host:
        _cancel_host_absence(game_id)
    emit('state_update', {'game_id': game_id, 'session': session})


def handle_leave_session(data):
    game_id = str((data or {}).get('game_id') or '')
    if not game_id:
        emit('error', {'message': 'game_id is required'})
        return
    leave_room(_room(game_id))
    ctx = _sid_to_ctx.get(_get_sid())
    if ctx and ctx.get('game_id') == game_id:
        _sid_to_ctx.pop(_get_sid(), None)
        if ctx.get('is_host'):
            _host_count[game_id] = max(0, _host_count.get(game_id, 0) - 1)
    emit('left', {'room': _room(game_id)})


def handle_buzz(data):
    game_id = str((data or {}).get('game_id') or '')
    player_id = str((data or {}).get('player_id') or '')
    if not game_id or not player_id:
        emit('error', {'message': 'game_id and player_id are required'})
        return
    try:
        result = SessionMachine(get_store(), game_id).buzz(player_id)
    except BuzzQuizError as exc:
        emit('error', exc.to_dict())
        return
    emit('buzz_result', result.to_dict())


def handle_ping(data):
    emit('pong', data or {})

# ---- Session broadcast and host presence helpers ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_host_count: Dict[str, int] = {}
_absence_deadline: Dict[str, float] = {}
_watchers_lock = threading.Lock()

def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def watch_session(store, game_id: str) -> None:
    """Forward every snapshot of the session to its Socket.IO room."""
    game_id = str(game_id)
    app = current_app._get_current_object()
    watchers = _watchers(app)
    with _watchers_lock:
        if game_id in watchers:
            return

        def _broadcast(session):
            if session is None:
                socketio.emit('session_ended', {'game_id': game_id}, to=_room(game_id), namespace=NAMESPACE)
                _unwatch(app, game_id)
                return
            socketio.emit('state_update', {'game_id': game_id, 'session': session},
                          to=_room(game_id), namespace=NAMESPACE)

        watchers[game_id] = store.subscribe(game_path(game_id), _broadcast)

def _watchers(app) -> Dict[str, Callable[[], None]]:
    return app.extensions.setdefault('session_watchers', {})

def _unwatch(app, game_id: str) -> None:
    with _watchers_lock:
        unsubscribe = _watchers(app).pop(game_id, None)
    if unsubscribe:
        unsubscribe()
    _host_count.pop(game_id, None)
    _absence_deadline.pop(game_id, None)

def _schedule_host_absence(app, game_id: str, host_id: str, delay_sec: float) -> None:
    _absence_deadline[game_id] = time.time() + delay_sec

    def _runner(gid: str, hid: str, deadline: float):
        sleep_for = max(0.0, deadline - time.time())
        if sleep_for:
            time.sleep(sleep_for)
        if _host_count.get(gid, 0) == 0 and _absence_deadline.get(gid) == deadline:
            _absence_deadline.pop(gid, None)
            with app.app_context():
                handle_host_absence(app, app.extensions['session_store'], gid, hid)

    socketio.start_background_task(_runner, game_id, host_id, _absence_deadline[game_id])

def _cancel_host_absence(game_id: str) -> None:
    _absence_deadline.pop(game_id, None)


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('observe_session', handle_observe_session, namespace=namespace)
        socketio.on_event('leave_session', handle_leave_session, namespace=namespace)
        socketio.on_event('buzz', handle_buzz, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
