import math
import random
import time
from typing import Optional, Tuple

from flask import current_app

from buzzquiz.constants import DEFAULT_RULES, GRADES, MAX_PLAYERS, PENALTIES, SUBJECTS, WAITING
from buzzquiz.errors import (
    AlreadyStarted, InvalidRequest, InvalidRules, NotFound, RoomAllocationError,
    SessionFull, VersionConflict,
)
from buzzquiz.services.session_machine import GUARD_ATTEMPTS, game_path


def _whole_number(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected a whole number, got {value!r}")
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"expected a whole number, got {value!r}")
    return int(number)


def normalize_rules(rules: Optional[dict]) -> dict:
    """Fill missing rule settings from the defaults and validate them."""
    merged = dict(DEFAULT_RULES)
    merged['nextQuestionDelaySeconds'] = current_app.config.get(
        'DEFAULT_NEXT_QUESTION_DELAY_SEC', DEFAULT_RULES['nextQuestionDelaySeconds']
    )
    merged.update({k: v for k, v in (rules or {}).items() if k in DEFAULT_RULES and v is not None})
    try:
        merged['winPoints'] = _whole_number(merged['winPoints'])
        merged['totalQuestions'] = _whole_number(merged['totalQuestions'])
        merged['nextQuestionDelaySeconds'] = float(merged['nextQuestionDelaySeconds'])
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidRules(f'Invalid rule settings: {exc}') from exc
    if merged['winPoints'] < 1:
        raise InvalidRules('winPoints must be a positive integer')
    if merged['totalQuestions'] < 1:
        raise InvalidRules('totalQuestions must be a positive integer')
    delay = merged['nextQuestionDelaySeconds']
    if not math.isfinite(delay) or delay < 0:
        raise InvalidRules('nextQuestionDelaySeconds must be a finite, non-negative number')
    if merged['wrongAnswerPenalty'] not in PENALTIES:
        raise InvalidRules(f"wrongAnswerPenalty must be one of {', '.join(PENALTIES)}")
    return merged


def build_player(player: dict, is_host: bool) -> dict:
    player_id = str((player or {}).get('id') or '').strip()
    name = str((player or {}).get('name') or '').strip()
    if not player_id or not name:
        raise InvalidRequest('Player id and name are required')
    if '/' in player_id:
        raise InvalidRequest('Player id must not contain "/"')
    return {'id': player_id, 'name': name, 'score': 0, 'isHost': is_host}


def allocate_session_id(store, rng=None) -> str:
    """Pick a free 4-digit room code in [1000, 9999]."""
    rng = rng or random
    max_attempts = int(current_app.config.get('ROOM_CODE_MAX_ATTEMPTS', 50))
    for attempt in range(1, max_attempts + 1):
        candidate = str(rng.randint(1000, 9999))
        if store.read_once(game_path(candidate)) is None:
            return candidate
        current_app.logger.info(f"[room-code] collision code={candidate} attempt={attempt}")
    raise RoomAllocationError(f'No free room code after {max_attempts} attempts')


def create_session(store, rules, host_player, is_open_match=False, subjects=None, rng=None) -> str:
    """Create a waiting session with ``host_player`` as its only player and host."""
    rules = normalize_rules(rules)
    host = build_player(host_player, is_host=True)
    game_id = allocate_session_id(store, rng)
    store.write_full(game_path(game_id), {
        'gameId': game_id,
        'status': WAITING,
        'isOpenMatch': bool(is_open_match),
        'rules': rules,
        'range': {
            'subjects': list(subjects) if subjects else list(SUBJECTS),
            'grades': list(GRADES),
        },
        'players': {host['id']: host},
        'currentQuestionIndex': -1,
        'currentQuestion': None,
        'winner': None,
        'isDraw': False,
        'createdAt': int(time.time() * 1000),
    })
    current_app.logger.info(f"[create] game={game_id} host={host['id']} open={bool(is_open_match)} rules={rules}")
    return game_id


def join_session(store, game_id, player) -> dict:
    """Add ``player`` as guest. Joining a session you are already in is a no-op."""
    guest = build_player(player, is_host=False)
    path = game_path(game_id)
    for _ in range(GUARD_ATTEMPTS):
        session, version = store.read_versioned(path)
        if session is None:
            raise NotFound(f'Session {game_id} does not exist')
        players = session.get('players') or {}
        if guest['id'] in players:
            return session
        if session.get('status') != WAITING:
            raise AlreadyStarted(f'Session {game_id} has already started')
        if len(players) >= MAX_PLAYERS:
            raise SessionFull(f'Session {game_id} already has {MAX_PLAYERS} players')
        try:
            store.write_partial(path, {f"players/{guest['id']}": guest}, expected_version=version)
        except VersionConflict:
            continue
        current_app.logger.info(f"[join] game={game_id} player={guest['id']}")
        return store.read_once(path)
    raise SessionFull(f'Session {game_id} changed while joining; try again')


def find_or_create_open_session(store, rules, player, subjects=None, rng=None) -> Tuple[str, bool]:
    """Join the oldest open 1-player room or open a new one.

    Returns ``(game_id, created)``. Two callers that both find nothing will
    each create a room; that race is accepted (it yields two open rooms,
    never a collision).
    """
    page_size = int(current_app.config.get('OPEN_MATCH_PAGE_SIZE', 10))
    for game_id, session in store.query_by_equality('games', 'status', WAITING, limit=page_size):
        if not session.get('isOpenMatch') or len(session.get('players') or {}) != 1:
            continue
        try:
            join_session(store, game_id, player)
        except (NotFound, AlreadyStarted, SessionFull) as exc:
            current_app.logger.info(f"[open-match] skip game={game_id}: {exc.message}")
            continue
        return game_id, False
    game_id = create_session(store, rules, player, is_open_match=True, subjects=subjects, rng=rng)
    return game_id, True
