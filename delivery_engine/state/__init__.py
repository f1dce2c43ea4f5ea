"""State management modules."""

from delivery_engine.state.events import EventBroadcaster, Topic
from delivery_engine.state.manager import MirrorKey, MirrorStore

__all__ = ["MirrorStore", "MirrorKey", "EventBroadcaster", "Topic"]
