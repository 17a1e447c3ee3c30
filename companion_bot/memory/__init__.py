from .compactor import MemoryWriter
from .profile_sync import ProfileSynchronizer
from .recency_buffer import RecencyBuffer, Turn
from .semantic_store import ChromaSemanticStore, SemanticDocument

__all__ = [
    "ChromaSemanticStore",
    "MemoryWriter",
    "ProfileSynchronizer",
    "RecencyBuffer",
    "SemanticDocument",
    "Turn",
]
