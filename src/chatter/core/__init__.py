"""Conversation core: retry engine, sessions, elicitation and compaction."""

from .compactor import ContextCompactor
from .elicitation import ElicitationMachine, TurnDecision
from .retry import RetryOutcome, RetryValidateCorrect
from .session import SessionStore

__all__ = [
    "ContextCompactor",
    "ElicitationMachine",
    "RetryOutcome",
    "RetryValidateCorrect",
    "SessionStore",
    "TurnDecision",
]
