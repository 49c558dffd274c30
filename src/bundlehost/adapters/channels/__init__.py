from .memory import MemoryChannel
from .stdio import StdioChannel

__all__ = ["MemoryChannel", "StdioChannel"]
