"""Session state machine bound to the store.

Every operation reads the latest snapshot, checks its guard against it and
writes the transition back as a versioned partial update. A write that lost
a race (``VersionConflict``) is re-evaluated against the newer snapshot, so
two concurrent buzzes can never both win.

Host-only operations raise ``PermissionDenied`` for other players; calls
that are merely stale (wrong state, someone else answering, question
already advanced) are no-ops.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from flask import current_app

from buzzquiz.constants import FINISHED, MAX_PLAYERS, PLAYING, WAITING
from buzzquiz.errors import NotFound, PermissionDenied, VersionConflict
from buzzquiz.services.rounds import (
    ANSWERING, JUDGING, Judging, Judgment, Resolved,
    install_round, judge_round, round_from_document, to_document,
    try_buzz, try_submit, winner_by_exhaustion, winner_by_target,
)

# Re-evaluations of a guard after losing a write race
GUARD_ATTEMPTS = 3


def game_path(game_id) -> str:
    return f'games/{game_id}'


def pool_path(game_id) -> str:
    return f'pools/{game_id}'


def load_pool(store, game_id) -> Optional[List[dict]]:
    return store.read_once(pool_path(game_id))


def save_pool(store, game_id, pool: List[dict]) -> bool:
    """Store the match's pool once. Returns False if one was already stored."""
    return store.create(pool_path(game_id), list(pool))


def session_scores(session: dict) -> Dict[str, int]:
    return {pid: int((p or {}).get('score') or 0) for pid, p in (session.get('players') or {}).items()}


@dataclass
class BuzzResult:
    accepted: bool
    answerer_id: Optional[str] = None

    def to_dict(self):
        return {'accepted': self.accepted, 'answerer_id': self.answerer_id}


class SessionMachine:
    def __init__(self, store, game_id, rng: Optional[random.Random] = None):
        self.store = store
        self.game_id = str(game_id)
        self.path = game_path(self.game_id)
        self.rng = rng

    def snapshot(self):
        session, version = self.store.read_versioned(self.path)
        if session is None:
            raise NotFound(f'Session {self.game_id} not found')
        return session, version

    def require_host(self, session: dict, actor_id: str, action: str) -> None:
        player = (session.get('players') or {}).get(actor_id) or {}
        if player.get('isHost') is not True:
            current_app.logger.warning(f"[denied] game={self.game_id} player={actor_id} action={action}")
            raise PermissionDenied(f'Only the host may {action}')

    # ---- waiting -> playing ----

    def start(self, actor_id: str, pool: Optional[List[dict]] = None) -> bool:
        """Install the first question once both players are present. Host only."""
        session, version = self.snapshot()
        self.require_host(session, actor_id, 'start the game')
        players = session.get('players') or {}
        if session.get('status') != WAITING or len(players) != MAX_PLAYERS:
            return False
        if pool is None:
            pool = load_pool(self.store, self.game_id)
        if not pool:
            current_app.logger.info(f"[start-wait] game={self.game_id} question pool not resolved yet")
            return False

        first = install_round(pool[0], self.rng)
        updates = {f'players/{pid}/score': 0 for pid in players}
        updates.update({
            'status': PLAYING,
            'currentQuestionIndex': 0,
            'currentQuestion': to_document(first),
            'winner': None,
            'isDraw': False,
        })
        try:
            self.store.write_partial(self.path, updates, expected_version=version)
        except VersionConflict:
            current_app.logger.info(f"[start-retry] game={self.game_id} session changed before start")
            return False
        current_app.logger.info(f"[start] game={self.game_id} questions={len(pool)} first={first.question.id}")
        return True

    # ---- buzz / answer (either player) ----

    def buzz(self, player_id: str) -> BuzzResult:
        for _ in range(GUARD_ATTEMPTS):
            session, version = self.snapshot()
            rnd = round_from_document(session.get('currentQuestion'))
            if session.get('status') != PLAYING or rnd is None or player_id not in (session.get('players') or {}):
                return BuzzResult(False, None)
            answering = try_buzz(rnd, player_id)
            if answering is None:
                return BuzzResult(False, getattr(rnd, 'answerer_id', None))
            try:
                self.store.write_partial(self.path, {
                    'currentQuestion/buzzedPlayerId': player_id,
                    'currentQuestion/answererId': player_id,
                    'currentQuestion/status': ANSWERING,
                }, expected_version=version)
            except VersionConflict:
                continue
            current_app.logger.info(f"[buzz] game={self.game_id} player={player_id} question={rnd.question.id}")
            return BuzzResult(True, player_id)
        current_app.logger.info(f"[buzz-lost] game={self.game_id} player={player_id}")
        return BuzzResult(False, None)

    def submit_answer(self, player_id: str, text: str) -> bool:
        for _ in range(GUARD_ATTEMPTS):
            session, version = self.snapshot()
            if session.get('status') != PLAYING:
                return False
            judging = try_submit(round_from_document(session.get('currentQuestion')), player_id, text)
            if judging is None:
                return False
            try:
                self.store.write_partial(self.path, {
                    'currentQuestion/submitterId': player_id,
                    'currentQuestion/submittedAnswer': judging.submitted_answer,
                    'currentQuestion/status': JUDGING,
                }, expected_version=version)
            except VersionConflict:
                continue
            current_app.logger.info(f"[answer] game={self.game_id} player={player_id}")
            return True
        return False

    # ---- host side ----

    def judge(self, actor_id: str) -> Optional[Judgment]:
        """Judge the submitted answer. Raises VersionConflict if the session moved meanwhile."""
        session, version = self.snapshot()
        self.require_host(session, actor_id, 'judge answers')
        if session.get('status') != PLAYING:
            return None
        rnd = round_from_document(session.get('currentQuestion'))
        if not isinstance(rnd, Judging):
            return None
        players = session.get('players') or {}
        judgment = judge_round(rnd, session['rules']['wrongAnswerPenalty'], session_scores(session), len(players))

        updates = {'currentQuestion': to_document(judgment.round)}
        for pid, score in judgment.scores.items():
            updates[f'players/{pid}/score'] = score
        if session.get('hostError'):
            updates['hostError'] = None
        self.store.write_partial(self.path, updates, expected_version=version)
        current_app.logger.info(
            f"[judge] game={self.game_id} player={rnd.answerer_id} correct={judgment.correct} "
            f"status={judgment.round.status} scores={judgment.scores}"
        )
        return judgment

    def advance(self, actor_id: str, expected_index: Optional[int] = None,
                pool: Optional[List[dict]] = None, force: bool = False) -> Optional[str]:
        """Move past the current question.

        Returns ``'finished'``, ``'advanced'`` or ``None`` for a no-op. Unless
        ``force`` is set the current question must be resolved; a stale
        ``expected_index`` is ignored so a timer firing twice cannot skip a
        question.
        """
        session, version = self.snapshot()
        self.require_host(session, actor_id, 'advance the game')
        if session.get('status') != PLAYING:
            return None
        index = int(session.get('currentQuestionIndex', -1))
        if expected_index is not None and index != expected_index:
            return None
        rnd = round_from_document(session.get('currentQuestion'))
        if not force and not isinstance(rnd, Resolved):
            return None

        # A flagged judgment failure belongs to the question being left
        extra = {'hostError': None} if session.get('hostError') else {}
        scores = session_scores(session)
        winner = winner_by_target(scores, int(session['rules']['winPoints']))
        if winner is not None:
            self._finish(version, winner, False, reason='win_points', extra=extra)
            return FINISHED

        if pool is None:
            pool = load_pool(self.store, self.game_id) or []
        next_index = index + 1
        if next_index >= len(pool):
            winner, is_draw = winner_by_exhaustion(scores)
            self._finish(version, winner, is_draw, reason='exhausted', extra=extra)
            return FINISHED

        nxt = install_round(pool[next_index], self.rng)
        updates = {'currentQuestionIndex': next_index, 'currentQuestion': to_document(nxt)}
        updates.update(extra)
        self.store.write_partial(self.path, updates, expected_version=version)
        current_app.logger.info(f"[advance] game={self.game_id} question {index} -> {next_index} id={nxt.question.id}")
        return 'advanced'

    def _finish(self, version: int, winner: Optional[str], is_draw: bool, reason: str,
                extra: Optional[dict] = None) -> None:
        updates = {'status': FINISHED, 'winner': winner, 'isDraw': is_draw, 'currentQuestion': None}
        updates.update(extra or {})
        self.store.write_partial(self.path, updates, expected_version=version)
        current_app.logger.info(f"[finish] game={self.game_id} winner={winner} draw={is_draw} reason={reason}")
