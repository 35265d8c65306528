"""chatter - a conversational assistant core with validated, budgeted dialogues."""

from .core.assistant import ChatAssistant, Reply
from .history import InteractionLog

__version__ = "0.1.0"

__all__ = ["ChatAssistant", "InteractionLog", "Reply"]
