"""Long-running consumer of the AMI event stream.

The monitor owns one events-enabled session at a time. It is either
``DISCONNECTED`` or ``MONITORING``; ``start`` blocks in the read loop
until ``stop`` is called from any thread or the server drops the
connection. It never reconnects by itself, see ``MonitorSupervisor``.
"""
import logging
import re
import threading
from enum import Enum
from typing import Any, Callable, Optional

from ..ami.client import AmiSession
from .cache import EventCache, default_cache

logger = logging.getLogger(__name__)

WILDCARD = "*"

RINGING_STATES = ("Ringing", "Ring")

_PEER_RE = re.compile(r"(?:PJSIP|SIP)/(\d+)")

EventCallback = Callable[[dict[str, str]], Any]
NotificationCallback = Callable[[str, dict[str, Any]], Any]


class MonitorState(str, Enum):
    DISCONNECTED = "disconnected"
    MONITORING = "monitoring"


class EventMonitor:
    """
    Dispatches AMI events to callbacks and keeps the event cache current.

    Usage:
        monitor = EventMonitor(lambda: settings.ami.connect(events=True))
        monitor.on("ContactStatus", handle_contact)
        monitor.on("*", log_everything)
        thread = monitor.run_in_thread()
        ...
        monitor.stop()
    """

    def __init__(
        self,
        connect: Callable[[], AmiSession],
        cache: Optional[EventCache] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            connect: Returns a session logged in with events enabled
            cache: Where state is recorded; defaults to the process-wide cache
            stop_event: Cancellation flag, shared with a supervisor if given
        """
        self._connect = connect
        self.cache = cache if cache is not None else default_cache
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self._callbacks: dict[str, list[EventCallback]] = {}
        self._notification_callbacks: list[NotificationCallback] = []
        self._state = MonitorState.DISCONNECTED
        self._lock = threading.Lock()
        self._handlers = {
            "ContactStatus": self._handle_contact_status,
            "PeerStatus": self._handle_peer_status,
            "Newchannel": self._handle_new_channel,
            "Newstate": self._handle_new_state,
            "Hangup": self._handle_hangup,
        }

    @property
    def state(self) -> MonitorState:
        return self._state

    def on(self, event_type: str, callback: EventCallback) -> None:
        """Register a callback for one event type, or ``"*"`` for all."""
        with self._lock:
            self._callbacks.setdefault(event_type, []).append(callback)

    def on_notification(self, callback: NotificationCallback) -> None:
        """Register for derived notifications such as ``extension.ringing``."""
        with self._lock:
            self._notification_callbacks.append(callback)

    def start(self) -> bool:
        """Connect and process events until stopped or disconnected.

        Returns True if stopped on request, False if the server closed
        the connection.

        Raises:
            AmiConnectError: the session could not be established
        """
        if self.stop_event.is_set():
            return True
        if self._state is MonitorState.MONITORING:
            raise RuntimeError("Event monitor is already running")

        session = self._connect()
        self._state = MonitorState.MONITORING
        logger.info(f"AMI event monitor started on {session.host or 'AMI'}")
        stopped = False
        try:
            stopped = session.stream_events(self.dispatch, self.stop_event)
        finally:
            if stopped:
                session.logoff()
            session.close()
            self._state = MonitorState.DISCONNECTED
            logger.info(f"AMI event monitor {'stopped' if stopped else 'disconnected'}")
        return stopped

    def stop(self) -> None:
        """Ask the read loop to exit; safe from any thread."""
        self.stop_event.set()

    def run_in_thread(self, name: str = "ami-event-monitor") -> threading.Thread:
        thread = threading.Thread(target=self.start, name=name, daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, event: dict[str, str]) -> None:
        """Cache one decoded event and run its callbacks.

        Type-specific callbacks run before wildcard ones, each group in
        registration order. A failing callback is logged and skipped.
        """
        event_type = event.get("Event")
        if not event_type:
            return

        self.cache.record_event(event)

        handler = self._handlers.get(event_type)
        if handler is not None:
            logger.debug(f"AMI event {event_type}: {event}")
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Handling {event_type} failed: {e}")

        with self._lock:
            callbacks = list(self._callbacks.get(event_type, ())) + list(self._callbacks.get(WILDCARD, ()))

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.exception(f"Callback {getattr(callback, '__name__', callback)!r} for {event_type} failed: {e}")

    def _notify(self, kind: str, data: dict[str, Any]) -> None:
        self.cache.record_notification(kind, data)
        with self._lock:
            callbacks = list(self._notification_callbacks)
        for callback in callbacks:
            try:
                callback(kind, data)
            except Exception as e:
                logger.exception(f"Notification callback for {kind} failed: {e}")

    # ------------------------------------------------------------------
    # Built-in handlers
    # ------------------------------------------------------------------

    def _handle_contact_status(self, event: dict[str, str]) -> None:
        aor = event.get("AOR", "")
        if not aor.isdigit():
            return
        status = event.get("ContactStatus", "")
        uri = event.get("URI", "")
        registration = self.cache.update_registration(aor, status, uri)
        self._notify("extension.registration", {
            "extension": aor,
            "status": status,
            "uri": uri,
            "registered": registration.registered,
        })
        logger.info(f"Extension {aor} registration status: {status}")

    def _handle_peer_status(self, event: dict[str, str]) -> None:
        match = _PEER_RE.search(event.get("Peer", ""))
        if match:
            logger.info(f"Peer {match.group(1)} status: {event.get('PeerStatus', '')}")

    def _handle_new_channel(self, event: dict[str, str]) -> None:
        channel = event.get("Channel", "")
        caller = event.get("CallerIDNum", "")
        exten = event.get("Exten", "")
        self.cache.open_channel(channel, caller, exten)
        logger.info(f"New channel: {channel}, caller: {caller}, exten: {exten}")

    def _handle_new_state(self, event: dict[str, str]) -> None:
        channel = event.get("Channel", "")
        state = event.get("ChannelStateDesc", "")
        self.cache.update_channel_state(channel, state)
        if state in RINGING_STATES:
            caller = event.get("CallerIDNum", "")
            exten = event.get("Exten", "")
            self._notify("extension.ringing", {
                "channel": channel,
                "caller": caller,
                "destination": exten,
                "state": state,
            })
            logger.info(f"Extension {exten} ringing from {caller}")

    def _handle_hangup(self, event: dict[str, str]) -> None:
        channel = event.get("Channel", "")
        cause_text = event.get("Cause-txt", "")
        self.cache.close_channel(channel)
        self._notify("extension.hangup", {
            "channel": channel,
            "cause": event.get("Cause", ""),
            "cause_text": cause_text,
        })
        logger.info(f"Hangup: {channel}, cause: {cause_text}")
