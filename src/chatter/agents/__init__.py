"""Producer agents and model output parsing."""

from .output import RawReply, ReplyStatus, StructuredAgentOutput, StructuredReply, parse_or_reformat
from .producer import CHECKER, PRIMARY, ChatClient, ProducerAgent, RepublicChatClient

__all__ = [
    "CHECKER",
    "PRIMARY",
    "ChatClient",
    "ProducerAgent",
    "RawReply",
    "ReplyStatus",
    "RepublicChatClient",
    "StructuredAgentOutput",
    "StructuredReply",
    "parse_or_reformat",
]
