import time
from typing import Set, Tuple

from buzzquiz import socketio
from buzzquiz.errors import BuzzQuizError, VersionConflict
from buzzquiz.services.presence import host_id_of
from buzzquiz.services.session_machine import SessionMachine, game_path


_scheduled_advance_keys: Set[Tuple[str, int]] = set()


def schedule_advance(app, store, game_id: str, question_index: int, delay: float) -> bool:
    """Schedule the post-judgment advance for one question.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (game_id, question_index)
    - Runs inline under TESTING, in a background task otherwise
    Returns whether a timer was scheduled.
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return False

    key = (str(game_id), int(question_index))
    if key in _scheduled_advance_keys:
        app.logger.info(f"[timer-skip] game={game_id} question={question_index} already scheduled")
        return False
    _scheduled_advance_keys.add(key)
    app.logger.info(f"[timer-set] game={game_id} question={question_index} delay={delay}s")

    def _worker(gid: str, expected_index: int, wait: float):
        if wait > 0:
            time.sleep(wait)
        with app.app_context():
            _scheduled_advance_keys.discard((gid, expected_index))
            _fire(app, store, gid, expected_index)

    if app.config.get('TESTING'):
        # Callers run inside the app context already; stay on its db session
        _scheduled_advance_keys.discard(key)
        _fire(app, store, key[0], key[1])
    else:
        socketio.start_background_task(_worker, key[0], key[1], float(delay))
    return True


def _fire(app, store, game_id: str, expected_index: int) -> None:
    session = store.read_once(game_path(game_id))
    if not session:
        app.logger.info(f"[timer-abort] game={game_id} session gone")
        return
    # The host may have changed while the timer was pending
    host_id = host_id_of(session)
    app.logger.info(
        f"[timer-fire] game={game_id} expected_question={expected_index} "
        f"actual_question={session.get('currentQuestionIndex')} host={host_id}"
    )
    if host_id is None:
        return
    machine = SessionMachine(store, game_id)
    for _ in range(2):
        try:
            outcome = machine.advance(host_id, expected_index=expected_index)
        except VersionConflict:
            continue
        except BuzzQuizError as exc:
            app.logger.error(f"[timer-error] game={game_id} question={expected_index}: {exc.message}")
            return
        if outcome is None:
            app.logger.info(f"[timer-abort] game={game_id} question={expected_index} nothing to advance")
        return
    app.logger.warning(f"[timer-abort] game={game_id} question={expected_index} kept conflicting")


def clear_scheduled(game_id: str) -> None:
    for key in [k for k in _scheduled_advance_keys if k[0] == str(game_id)]:
        _scheduled_advance_keys.discard(key)
