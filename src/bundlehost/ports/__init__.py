from .contracts import EventBus, Channel

__all__ = ["EventBus", "Channel"]
