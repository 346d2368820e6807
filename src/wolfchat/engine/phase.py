"""Phase enum for the game state machine."""

from enum import Enum


class Phase(Enum):
    """Game phases in order of progression."""

    PREPARE = "prepare"
    NIGHT = "night"
    DAY = "day"
    VOTE = "vote"
    ENDED = "ended"
