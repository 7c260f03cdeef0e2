# storage/__init__.py
from .kv_store import JsonFileStore
from .memory_store import (
    MemoryRecord,
    MemoryStore,
    Suggestion,
    SOURCE_LEARNED,
    SOURCE_SIMILAR,
)
