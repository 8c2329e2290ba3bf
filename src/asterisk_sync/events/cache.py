"""Process-wide cache of state learned from AMI events."""
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional

MAX_RECENT_EVENTS = 100

# ContactStatus values that mean the contact is registered
REGISTERED_STATUSES = ("Created", "Reachable")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Registration:
    """Last known contact status of an extension."""
    extension: str
    status: str
    uri: str
    timestamp: str

    @property
    def registered(self) -> bool:
        return self.status in REGISTERED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["registered"] = self.registered
        return data


@dataclass
class ChannelInfo:
    """An active channel."""
    channel: str
    caller: str = ""
    extension: str = ""
    state: str = "Down"
    timestamp: str = ""


class EventCache:
    """Thread-safe registration, channel and recent-event store."""

    def __init__(self, max_recent: int = MAX_RECENT_EVENTS):
        self._lock = threading.Lock()
        self._registrations: dict[str, Registration] = {}
        self._channels: dict[str, ChannelInfo] = {}
        self._recent: deque = deque(maxlen=max_recent)
        self._notifications: deque = deque(maxlen=max_recent)

    # --- Registrations ---

    def update_registration(self, extension: str, status: str, uri: str = "") -> Registration:
        registration = Registration(extension=extension, status=status, uri=uri, timestamp=_now())
        with self._lock:
            self._registrations[extension] = registration
        return registration

    def registration(self, extension: str) -> Optional[Registration]:
        with self._lock:
            return self._registrations.get(extension)

    def registrations(self) -> dict[str, Registration]:
        with self._lock:
            return dict(self._registrations)

    def is_registered(self, extension: str) -> Optional[bool]:
        """True or False if a status was seen, None otherwise."""
        registration = self.registration(extension)
        return None if registration is None else registration.registered

    # --- Channels ---

    def open_channel(self, channel: str, caller: str = "", extension: str = "") -> ChannelInfo:
        info = ChannelInfo(channel=channel, caller=caller, extension=extension, timestamp=_now())
        with self._lock:
            self._channels[channel] = info
        return info

    def update_channel_state(self, channel: str, state: str) -> ChannelInfo:
        with self._lock:
            info = self._channels.get(channel)
            if info is None:
                info = ChannelInfo(channel=channel)
                self._channels[channel] = info
            info.state = state
            info.timestamp = _now()
            return info

    def close_channel(self, channel: str) -> Optional[ChannelInfo]:
        with self._lock:
            return self._channels.pop(channel, None)

    def channels(self) -> dict[str, ChannelInfo]:
        with self._lock:
            return dict(self._channels)

    # --- Event history ---

    def record_event(self, event: dict[str, str]) -> None:
        entry = {"type": event.get("Event", ""), "data": dict(event), "timestamp": _now()}
        with self._lock:
            self._recent.append(entry)

    def recent_events(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Oldest first; ``limit`` keeps only the newest entries."""
        with self._lock:
            events = list(self._recent)
        return events[-limit:] if limit else events

    def record_notification(self, kind: str, data: dict[str, Any]) -> dict[str, Any]:
        entry = {"type": kind, "data": data, "timestamp": _now()}
        with self._lock:
            self._notifications.append(entry)
        return entry

    def notifications(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._notifications)

    def clear(self) -> None:
        with self._lock:
            self._registrations.clear()
            self._channels.clear()
            self._recent.clear()
            self._notifications.clear()


# Shared by every monitor in the process unless one is given its own
default_cache = EventCache()
