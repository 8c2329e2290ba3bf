"""AMI event monitoring."""
from .cache import ChannelInfo, EventCache, Registration, default_cache
from .monitor import WILDCARD, EventMonitor, MonitorState
from .supervisor import MonitorSupervisor

__all__ = [
    "ChannelInfo",
    "EventCache",
    "Registration",
    "default_cache",
    "WILDCARD",
    "EventMonitor",
    "MonitorState",
    "MonitorSupervisor",
]
