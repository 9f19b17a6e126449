from dataclasses import asdict, dataclass
from typing import Optional

from buzzquiz.constants import MAX_PLAYERS, PLAYING, WAITING
from buzzquiz.services.rounds import READING


@dataclass
class Presence:
    """What one player's client needs to know about a session snapshot."""
    my_player_id: str
    is_host: bool = False
    opponent_id: Optional[str] = None
    opponent_name: Optional[str] = None
    both_present: bool = False
    is_my_turn: bool = False
    can_buzz: bool = False
    is_locked_out: bool = False
    lost_buzz: bool = False

    def to_dict(self):
        return asdict(self)


def host_id_of(session: Optional[dict]) -> Optional[str]:
    for pid, player in sorted(((session or {}).get('players') or {}).items()):
        if (player or {}).get('isHost'):
            return pid
    return None


def derive_presence(session: Optional[dict], my_player_id: str) -> Presence:
    presence = Presence(my_player_id=my_player_id)
    if not session:
        return presence
    players = session.get('players') or {}
    me = players.get(my_player_id) or {}
    presence.is_host = me.get('isHost') is True
    for pid in sorted(players):
        if pid != my_player_id:
            presence.opponent_id = pid
            presence.opponent_name = (players[pid] or {}).get('name')
            break
    presence.both_present = len(players) == MAX_PLAYERS and session.get('status') in (WAITING, PLAYING)

    question = session.get('currentQuestion') if session.get('status') == PLAYING else None
    if question and my_player_id in players:
        answerer = question.get('answererId')
        locked = my_player_id in (question.get('lockedOutPlayers') or [])
        presence.is_locked_out = locked
        presence.is_my_turn = answerer == my_player_id
        presence.can_buzz = question.get('status') == READING and not answerer and not locked
        presence.lost_buzz = bool(answerer) and answerer != my_player_id
    return presence
