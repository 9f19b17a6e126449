"""Question round states and the pure rules that move between them.

A round is one of four states, each carrying only the fields valid for it:

    Reading   -- nobody holds the buzz
    Answering -- ``answerer_id`` holds the right to answer
    Judging   -- ``answerer_id`` submitted ``submitted_answer``
    Resolved  -- judged; waiting for the host to advance

Nothing here touches the store. ``to_document``/``round_from_document``
convert to and from the flat ``currentQuestion`` document clients read.
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from buzzquiz.constants import PENALTY_LOCKOUT, PENALTY_MINUS_ONE
from buzzquiz.services.questions import shuffle_options

READING = 'reading'
ANSWERING = 'answering'
JUDGING = 'judging'
ANSWERED_CORRECT = 'answered_correct'
ANSWERED_WRONG = 'answered_wrong'


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    answer: str
    options: Optional[Tuple[str, ...]] = None

    @property
    def is_selectable(self) -> bool:
        return bool(self.options)


@dataclass(frozen=True)
class Reading:
    question: Question
    locked_out: Tuple[str, ...] = ()
    status = READING


@dataclass(frozen=True)
class Answering:
    question: Question
    answerer_id: str
    locked_out: Tuple[str, ...] = ()
    status = ANSWERING


@dataclass(frozen=True)
class Judging:
    question: Question
    answerer_id: str
    submitted_answer: str
    locked_out: Tuple[str, ...] = ()
    status = JUDGING


@dataclass(frozen=True)
class Resolved:
    question: Question
    correct: bool
    locked_out: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        return ANSWERED_CORRECT if self.correct else ANSWERED_WRONG


Round = Union[Reading, Answering, Judging, Resolved]


@dataclass
class Judgment:
    round: Round
    scores: Dict[str, int] = field(default_factory=dict)
    correct: bool = False
    schedule_advance: bool = False


# ---- document conversion ----

def to_document(rnd: Round) -> dict:
    q = rnd.question
    answerer = getattr(rnd, 'answerer_id', None)
    submitted = getattr(rnd, 'submitted_answer', None)
    return {
        'id': q.id,
        'text': q.text,
        'answer': q.answer,
        'isSelectable': q.is_selectable,
        'options': list(q.options) if q.options else None,
        'buzzedPlayerId': answerer,
        'answererId': answerer,
        'submitterId': answerer if isinstance(rnd, Judging) else None,
        'submittedAnswer': submitted,
        'status': rnd.status,
        'lockedOutPlayers': list(rnd.locked_out),
    }


def round_from_document(doc: Optional[dict]) -> Optional[Round]:
    if not doc:
        return None
    options = doc.get('options')
    question = Question(
        id=str(doc.get('id')),
        text=doc.get('text') or '',
        answer=doc.get('answer') or '',
        options=tuple(options) if options else None,
    )
    locked = tuple(doc.get('lockedOutPlayers') or ())
    status = doc.get('status')
    if status == ANSWERING and doc.get('answererId'):
        return Answering(question, doc['answererId'], locked)
    if status == JUDGING and doc.get('submitterId'):
        return Judging(question, doc['submitterId'], doc.get('submittedAnswer') or '', locked)
    if status in (ANSWERED_CORRECT, ANSWERED_WRONG):
        return Resolved(question, status == ANSWERED_CORRECT, locked)
    return Reading(question, locked)


# ---- transitions ----

def install_round(record: dict, rng: Optional[random.Random] = None) -> Reading:
    """Fresh round for a pool record; options reshuffled for this presentation."""
    options = shuffle_options(record.get('options'), rng)
    return Reading(Question(
        id=str(record.get('id')),
        text=record.get('text') or '',
        answer=record.get('answer') or '',
        options=tuple(options) if options else None,
    ))


def try_buzz(rnd: Round, player_id: str) -> Optional[Answering]:
    if not isinstance(rnd, Reading) or player_id in rnd.locked_out:
        return None
    return Answering(rnd.question, player_id, rnd.locked_out)


def try_submit(rnd: Round, player_id: str, text: str) -> Optional[Judging]:
    if not isinstance(rnd, Answering) or rnd.answerer_id != player_id:
        return None
    return Judging(rnd.question, player_id, '' if text is None else str(text), rnd.locked_out)


def is_correct(submitted: str, answer: str) -> bool:
    # Exact, case-sensitive; surrounding whitespace ignored
    return (submitted or '').strip() == (answer or '').strip()


def apply_penalty(kind: str, rnd: Judging, scores: Dict[str, int], player_count: int) -> Judgment:
    """Wrong answer outcome for ``rnd.answerer_id`` under penalty ``kind``."""
    answerer = rnd.answerer_id
    if kind == PENALTY_MINUS_ONE:
        return Judgment(
            round=Resolved(rnd.question, False, rnd.locked_out),
            scores={answerer: max(0, int(scores.get(answerer, 0)) - 1)},
            schedule_advance=True,
        )
    if kind == PENALTY_LOCKOUT:
        locked = rnd.locked_out if answerer in rnd.locked_out else rnd.locked_out + (answerer,)
        if len(locked) >= player_count:
            return Judgment(round=Resolved(rnd.question, False, locked), schedule_advance=True)
        return Judgment(round=Reading(rnd.question, locked))
    raise ValueError(f'unknown penalty {kind!r}')


def judge_round(rnd: Judging, penalty: str, scores: Dict[str, int], player_count: int) -> Judgment:
    if is_correct(rnd.submitted_answer, rnd.question.answer):
        answerer = rnd.answerer_id
        return Judgment(
            round=Resolved(rnd.question, True, rnd.locked_out),
            scores={answerer: int(scores.get(answerer, 0)) + 1},
            correct=True,
            schedule_advance=True,
        )
    return apply_penalty(penalty, rnd, scores, player_count)


# ---- match outcome ----

def winner_by_target(scores: Dict[str, int], win_points: int) -> Optional[str]:
    """Highest scorer among players at or above ``win_points``; ties go to the lowest id."""
    qualifiers = [(pid, s) for pid, s in scores.items() if s >= win_points]
    if not qualifiers:
        return None
    return min(qualifiers, key=lambda item: (-item[1], item[0]))[0]


def winner_by_exhaustion(scores: Dict[str, int]) -> Tuple[Optional[str], bool]:
    """Winner once the pool runs out, plus whether it was a draw.

    A tie on top is still given a winner (lowest player id) so a finished
    session always names one; ``is_draw`` tells clients to show a draw.
    """
    if not scores:
        return None, False
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    is_draw = len(ranked) > 1 and ranked[0][1] == ranked[1][1]
    return ranked[0][0], is_draw

