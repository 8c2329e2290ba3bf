"""Reconnecting wrapper around EventMonitor."""
import logging
import threading

from tenacity import stop_when_event_set

from ..ami.errors import AmiError
from ..utils.connection import retrying
from .monitor import EventMonitor

logger = logging.getLogger(__name__)


class MonitorSupervisor:
    """
    Restarts an EventMonitor with capped exponential backoff.

    Connection attempts are counted per outage: once a session reaches
    monitoring, the next drop starts again from the first attempt.
    Authentication failures are not retried.
    """

    def __init__(
        self,
        monitor: EventMonitor,
        max_attempts: int = 10,
        min_wait: float = 1,
        max_wait: float = 60,
    ):
        self.monitor = monitor
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.sessions = 0

    @property
    def stop_event(self) -> threading.Event:
        return self.monitor.stop_event

    def _start_once(self) -> bool:
        stopped = self.monitor.start()
        self.sessions += 1
        return stopped

    def run(self) -> bool:
        """Run until stopped.

        Returns True when stopped on request.

        Raises:
            AmiConnectError: attempts exhausted, or credentials rejected
        """
        while not self.stop_event.is_set():
            retryer = retrying(
                max_attempts=self.max_attempts,
                min_wait=self.min_wait,
                max_wait=self.max_wait,
                stop=stop_when_event_set(self.stop_event),
                sleep=self.stop_event.wait,
            )
            try:
                stopped = retryer(self._start_once)
            except (AmiError, OSError):
                if self.stop_event.is_set():
                    return True
                raise

            if stopped:
                return True
            logger.warning(f"AMI event stream dropped, reconnecting (session {self.sessions})")
            self.stop_event.wait(self.min_wait)
        return True

    def stop(self) -> None:
        self.monitor.stop()

    def run_in_thread(self, name: str = "ami-event-supervisor") -> threading.Thread:
        thread = threading.Thread(target=self.run, name=name, daemon=True)
        thread.start()
        return thread
