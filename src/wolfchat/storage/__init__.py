"""Record storage ports and the bundled in-memory backend."""

from wolfchat.storage.base import Criteria, RecordStore, Stores
from wolfchat.storage.memory import InMemoryStore

__all__ = ["Criteria", "InMemoryStore", "RecordStore", "Stores"]
