from .base import MemoryBackend
from .factory import build_memory_store
from .in_memory import InMemoryMemoryStore
from .store import MemoryStore
from .summarizer import SummaryRefresher

__all__ = [
    "MemoryBackend",
    "InMemoryMemoryStore",
    "MemoryStore",
    "SummaryRefresher",
    "build_memory_store",
]
