"""Host-side reactions to session snapshots.

A ``HostAgent`` watches one session on behalf of its host player and runs
the automatic chain the host is responsible for:

    both players present, no pool  -> resolve the question pool
    pool resolved, still waiting   -> start the match
    answer submitted (judging)     -> judge it
    question resolved              -> schedule the delayed advance

Each step is guarded by the snapshot itself, so a repeated snapshot never
re-fetches the pool or re-initialises the match.
"""
import threading
import time
from typing import Dict, Optional

from flask import current_app

from buzzquiz.constants import PLAYING, WAITING
from buzzquiz.errors import BuzzQuizError, StoreUnavailable, VersionConflict
from buzzquiz.services.presence import derive_presence, host_id_of
from buzzquiz.services.questions import resolve_question_pool
from buzzquiz.services.rounds import ANSWERED_CORRECT, ANSWERED_WRONG, JUDGING
from buzzquiz.services.scheduler import clear_scheduled, schedule_advance
from buzzquiz.services.session_machine import SessionMachine, game_path, load_pool, save_pool


def ensure_pool(store, game_id, session: dict):
    """Return the match's question pool, resolving and storing it on first use."""
    pool = load_pool(store, game_id)
    if pool:
        return pool
    rules = session.get('rules') or {}
    subjects = (session.get('range') or {}).get('subjects') or []
    pool = resolve_question_pool(store, subjects, int(rules.get('totalQuestions', 10)))
    if not save_pool(store, game_id, pool):
        current_app.logger.info(f"[pool] game={game_id} already resolved elsewhere; using the stored pool")
    # Always hand out the stored pool so every caller agrees on the order
    return load_pool(store, game_id)


class HostAgent:
    def __init__(self, app, store, game_id: str, host_id: str):
        self.app = app
        self.store = store
        self.game_id = str(game_id)
        self.host_id = host_id
        self.machine = SessionMachine(store, self.game_id)
        self._unsubscribe = None
        self._resolving = False
        self._judging = False

    def attach(self):
        self._unsubscribe = self.store.subscribe(game_path(self.game_id), self.on_snapshot)
        self.app.logger.info(f"[host-agent] attach game={self.game_id} host={self.host_id}")
        self.on_snapshot(self.store.read_once(game_path(self.game_id)))

    def detach(self):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
            self.app.logger.info(f"[host-agent] detach game={self.game_id} host={self.host_id}")

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def on_snapshot(self, session: Optional[dict]) -> None:
        if not self.attached:
            return
        if session is None:
            self.detach()
            _forget(self.app, self.game_id, self)
            clear_scheduled(self.game_id)
            return
        presence = derive_presence(session, self.host_id)
        if not presence.is_host:
            return
        status = session.get('status')
        if status == WAITING and presence.both_present:
            self._prepare_and_start(session)
        elif status == PLAYING:
            question = session.get('currentQuestion') or {}
            if question.get('status') == JUDGING:
                # After a flagged failure only a manual judge clears the way
                if not session.get('hostError'):
                    self.judge_with_retry()
            elif question.get('status') in (ANSWERED_CORRECT, ANSWERED_WRONG):
                delay = float((session.get('rules') or {}).get('nextQuestionDelaySeconds') or 0)
                schedule_advance(self.app, self.store, self.game_id,
                                 int(session.get('currentQuestionIndex', 0)), delay)

    def _prepare_and_start(self, session: dict) -> None:
        if self._resolving:
            return
        self._resolving = True
        try:
            ensure_pool(self.store, self.game_id, session)
            self.machine.start(self.host_id)
        except BuzzQuizError as exc:
            self.app.logger.error(f"[host-agent] start failed game={self.game_id}: {exc.message}")
        finally:
            self._resolving = False

    def judge_with_retry(self) -> bool:
        """Judge the pending answer, retrying store failures with backoff.

        When every attempt fails the session is flagged with ``hostError``
        so clients can see the match is stuck instead of waiting forever.
        """
        if self._judging:
            return False
        self._judging = True
        max_retries = max(1, int(self.app.config.get('JUDGE_MAX_RETRIES', 3)))
        backoff = float(self.app.config.get('JUDGE_RETRY_BACKOFF_SEC', 0.5))
        last_error = None
        try:
            for attempt in range(1, max_retries + 1):
                try:
                    self.machine.judge(self.host_id)
                    return True
                except VersionConflict as exc:
                    last_error = exc
                    self.app.logger.info(f"[judge-retry] game={self.game_id} attempt={attempt} session moved")
                except StoreUnavailable as exc:
                    last_error = exc
                    self.app.logger.warning(f"[judge-retry] game={self.game_id} attempt={attempt}: {exc.message}")
                    if attempt < max_retries and backoff > 0:
                        time.sleep(backoff * (2 ** (attempt - 1)))
            self.app.logger.error(f"[judge-failed] game={self.game_id} after {max_retries} attempts: {last_error}")
            try:
                self.store.write_partial(game_path(self.game_id), {'hostError': 'judgment failed'})
            except BuzzQuizError as exc:
                self.app.logger.error(f"[judge-failed] game={self.game_id} could not flag session: {exc.message}")
            return False
        finally:
            self._judging = False


_agents_lock = threading.Lock()


def _agents(app) -> Dict[str, HostAgent]:
    return app.extensions.setdefault('host_agents', {})


def _forget(app, game_id: str, agent: HostAgent) -> None:
    with _agents_lock:
        if _agents(app).get(game_id) is agent:
            _agents(app).pop(game_id, None)


def ensure_host_agent(app, store, game_id) -> Optional[HostAgent]:
    """Make sure the session's current host has an attached agent."""
    game_id = str(game_id)
    session = store.read_once(game_path(game_id))
    host_id = host_id_of(session)
    if host_id is None:
        detach_host_agent(game_id, app)
        return None
    with _agents_lock:
        agent = _agents(app).get(game_id)
        if agent is not None and agent.host_id == host_id and agent.attached:
            return agent
        if agent is not None:
            agent.detach()
        agent = HostAgent(app, store, game_id, host_id)
        _agents(app)[game_id] = agent
    agent.attach()
    return agent


def get_host_agent(game_id, app=None) -> Optional[HostAgent]:
    with _agents_lock:
        return _agents(app or current_app._get_current_object()).get(str(game_id))


def detach_host_agent(game_id, app=None) -> None:
    with _agents_lock:
        agent = _agents(app or current_app._get_current_object()).pop(str(game_id), None)
    if agent is not None:
        agent.detach()
