"""Fixed round order for a game session."""

from enum import Enum
from typing import Optional


class Round(str, Enum):
    QUESTIONS = 'questions'
    SYNERGY = 'synergy'
    CHAT = 'chat'
    HUMOR = 'humor'
    RESULTS = 'results'

    @property
    def position(self) -> int:
        return SEQUENCE.index(self)

    @classmethod
    def parse(cls, label) -> Optional['Round']:
        """Return the round for `label`, or None when it is not a known round."""
        if isinstance(label, Round):
            return label
        try:
            return cls(label)
        except ValueError:
            return None


SEQUENCE = tuple(Round)
FIRST_ROUND = SEQUENCE[0]
LAST_ROUND = SEQUENCE[-1]


def next_round(label) -> Optional[Round]:
    """Round that follows `label`.

    A missing or unrecognised label means the session has not started yet, so
    the first round comes next. Returns None once the last round is passed.
    """
    current = Round.parse(label)
    if current is None:
        return FIRST_ROUND
    following = current.position + 1
    if following >= len(SEQUENCE):
        return None
    return SEQUENCE[following]


def round_index(label) -> Optional[int]:
    current = Round.parse(label)
    return current.position if current is not None else None


def round_at(index: int) -> Optional[Round]:
    if 0 <= index < len(SEQUENCE):
        return SEQUENCE[index]
    return None
