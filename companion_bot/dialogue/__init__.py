from .context import ContextAssembler, GenerationRequest
from .orchestrator import ChatReply, ConversationOrchestrator
from .protocol import ParsedReply, parse

__all__ = [
    "ChatReply",
    "ContextAssembler",
    "ConversationOrchestrator",
    "GenerationRequest",
    "ParsedReply",
    "parse",
]
