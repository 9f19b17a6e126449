import time
from typing import List, Optional

from flask import current_app

from buzzquiz.constants import WAITING
from buzzquiz.errors import NotFound, PermissionDenied, VersionConflict
from buzzquiz.services.host_agent import detach_host_agent, ensure_host_agent
from buzzquiz.services.presence import host_id_of
from buzzquiz.services.scheduler import clear_scheduled
from buzzquiz.services.session_machine import game_path, pool_path


def _remove(store, game_id: str) -> None:
    detach_host_agent(game_id)
    clear_scheduled(game_id)
    store.remove(pool_path(game_id))
    store.remove(game_path(game_id))


def delete_session(store, game_id, actor_id: str) -> None:
    """Remove the whole session. Only its host may do this."""
    game_id = str(game_id)
    session = store.read_once(game_path(game_id))
    if session is None:
        raise NotFound(f'Session {game_id} not found')
    if host_id_of(session) != actor_id:
        current_app.logger.warning(f"[denied] game={game_id} player={actor_id} action=delete")
        raise PermissionDenied('Only the host may delete this session')
    _remove(store, game_id)
    current_app.logger.info(f"[delete] game={game_id} by={actor_id}")


def transfer_host(store, game_id, from_id: str) -> Optional[str]:
    """Hand the host role from ``from_id`` to the other player, if there is one."""
    path = game_path(game_id)
    for _ in range(3):
        session, version = store.read_versioned(path)
        if session is None or host_id_of(session) != from_id:
            return None
        others = sorted(pid for pid in (session.get('players') or {}) if pid != from_id)
        if not others:
            return None
        try:
            store.write_partial(path, {
                f'players/{from_id}/isHost': False,
                f'players/{others[0]}/isHost': True,
            }, expected_version=version)
        except VersionConflict:
            continue
        current_app.logger.info(f"[failover] game={game_id} host {from_id} -> {others[0]}")
        return others[0]
    return None


def handle_host_absence(app, store, game_id, host_id: str) -> Optional[str]:
    """React to a host that stayed away past the grace period.

    A host alone in a waiting room abandons it, so the room is removed.
    Otherwise the remaining player becomes host and gets a host agent, so
    judging and advancing continue. Returns what was done.
    """
    game_id = str(game_id)
    session = store.read_once(game_path(game_id))
    if session is None or host_id_of(session) != host_id:
        return None
    players = session.get('players') or {}
    if len(players) <= 1:
        if session.get('status') == WAITING:
            _remove(store, game_id)
            app.logger.info(f"[abandoned] game={game_id} host={host_id} left an empty room")
            return 'removed'
        return None
    new_host = transfer_host(store, game_id, host_id)
    if new_host is None:
        return None
    ensure_host_agent(app, store, game_id)
    return 'transferred'


def sweep_abandoned(store, max_age_sec: int, now: Optional[float] = None, limit: int = 200) -> List[str]:
    """Remove waiting rooms created more than ``max_age_sec`` ago."""
    now = time.time() if now is None else now
    cutoff_ms = (now - max_age_sec) * 1000
    removed = []
    for game_id, session in store.query_by_equality('games', 'status', WAITING, limit=limit):
        if int(session.get('createdAt') or 0) < cutoff_ms:
            _remove(store, game_id)
            removed.append(game_id)
    if removed:
        current_app.logger.info(f"[sweep] removed {len(removed)} abandoned rooms: {', '.join(removed)}")
    return removed
