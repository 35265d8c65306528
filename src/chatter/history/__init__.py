"""Interaction history for chatter."""

from .log import Direction, InteractionEvent, InteractionLog
from .store import FileInteractionStore

__all__ = [
    "Direction",
    "FileInteractionStore",
    "InteractionEvent",
    "InteractionLog",
]
