from .audit import MemoryAuditMixin
from .facts import MemoryFactsMixin
from .schema import MemorySchemaMixin
from .summaries import MemorySummariesMixin
from .turns import MemoryTurnsMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryFactsMixin",
    "MemoryTurnsMixin",
    "MemorySummariesMixin",
    "MemoryAuditMixin",
]
