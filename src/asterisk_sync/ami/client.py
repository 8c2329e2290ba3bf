"""Blocking AMI session.

One ``AmiSession`` owns one TCP socket. Transactional use is strictly
request/response: one write, then one read of the matching frame. The
same session can instead be logged in with events enabled and drained
with ``stream_events`` from a dedicated thread.

Sessions never reconnect. A dropped connection surfaces as
``AmiConnectionClosed`` and callers decide whether to open a new one.
"""
import itertools
import logging
import socket
import threading
from typing import Callable, Optional

from ..utils.logging_config import timed
from .errors import AmiConnectError, AmiConnectionClosed, AmiError, AmiFrameError, ConnectFailure
from .protocol import (
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    MAX_READ_ITERATIONS,
    AmiResponse,
    Fields,
    field_pairs,
    encode_action,
    parse_lines,
)

logger = logging.getLogger(__name__)

# Unsolicited frames tolerated while waiting for an action's response
MAX_SKIPPED_FRAMES = 100

_action_ids = itertools.count(1)


class AmiSession:
    """An authenticated connection to the Asterisk Manager Interface."""

    def __init__(self, sock: socket.socket, timeout: float = DEFAULT_TIMEOUT, host: str = ""):
        self._sock = sock
        self._sock.settimeout(timeout)
        self.timeout = timeout
        self.host = host
        self.greeting = ""
        self._buffer = b""
        self._pending: list[str] = []
        self._closed = False
        self._send_lock = threading.Lock()

    @classmethod
    @timed("ami_connect")
    def connect(
        cls,
        host: str,
        port: int = DEFAULT_PORT,
        username: str = "",
        secret: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        events: bool = False,
    ) -> "AmiSession":
        """Open a socket, read the greeting and log in.

        Args:
            host: Manager interface host
            port: Manager interface port
            username: AMI user from manager.conf
            secret: AMI secret
            timeout: Seconds applied to connect and to every read and write
            events: Ask the server to deliver unsolicited events

        Raises:
            AmiConnectError: refused, timed out or rejected credentials
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except socket.timeout as e:
            raise AmiConnectError(ConnectFailure.TIMEOUT, f"Timed out connecting to AMI at {host}:{port}") from e
        except OSError as e:
            raise AmiConnectError(ConnectFailure.REFUSED, f"Cannot connect to AMI at {host}:{port}: {e}") from e

        session = cls(sock, timeout=timeout, host=host)
        try:
            session.login(username, secret, events=events)
        except BaseException:
            session.close()
            raise
        return session

    def login(self, username: str, secret: str, events: bool = False) -> AmiResponse:
        """Consume the greeting line and authenticate."""
        try:
            greeting = self._next_line()
        except AmiConnectionClosed as e:
            raise AmiConnectError(ConnectFailure.REFUSED, f"AMI at {self.host} closed before greeting") from e
        if greeting is None:
            raise AmiConnectError(ConnectFailure.TIMEOUT, f"No greeting from AMI at {self.host}")
        self.greeting = greeting
        logger.debug(f"AMI greeting from {self.host}: {greeting}")

        try:
            response = self.execute([
                ("Action", "Login"),
                ("Username", username),
                ("Secret", secret),
                ("Events", "on" if events else "off"),
            ])
        except AmiConnectionClosed as e:
            raise AmiConnectError(ConnectFailure.AUTH_FAILED, f"AMI login rejected for {username!r}") from e

        if response.empty:
            raise AmiConnectError(ConnectFailure.TIMEOUT, f"No login response from AMI at {self.host}")
        if not response.success:
            reason = response.message or response.raw
            raise AmiConnectError(ConnectFailure.AUTH_FAILED, f"AMI login failed for {username!r}: {reason}")

        logger.info(f"Logged in to AMI at {self.host} as {username} (events={'on' if events else 'off'})")
        return response

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Low-level I/O
    # ------------------------------------------------------------------

    def _send_raw(self, data: bytes) -> None:
        if self._closed:
            raise AmiConnectionClosed("AMI session is closed")
        try:
            with self._send_lock:
                self._sock.sendall(data)
        except socket.timeout as e:
            raise AmiError(f"Timed out writing to AMI at {self.host}") from e
        except OSError as e:
            raise AmiConnectionClosed(f"AMI connection lost while writing: {e}") from e

    def _next_line(self) -> Optional[str]:
        """Read one line, without its line ending.

        Returns None if the read timed out. Partial lines stay buffered
        across timeouts.

        Raises:
            AmiConnectionClosed: the peer closed the socket
        """
        while b"\n" not in self._buffer:
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout:
                return None
            except OSError as e:
                raise AmiConnectionClosed(f"AMI connection lost: {e}") from e
            if not chunk:
                if self._buffer:
                    line, self._buffer = self._buffer, b""
                    return line.rstrip(b"\r").decode("utf-8", errors="replace")
                raise AmiConnectionClosed("AMI connection closed by server")
            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line.rstrip(b"\r").decode("utf-8", errors="replace")

    def _flush(self) -> list[str]:
        lines, self._pending = self._pending, []
        return lines

    def _read_lines(self, flush_on_timeout: bool) -> Optional[tuple[list[str], bool]]:
        """Collect lines up to the next blank line.

        Returns (lines, terminated). Returns None only when
        ``flush_on_timeout`` is False and the read timed out; the lines
        read so far are kept for the next call.
        """
        iterations = 0
        while True:
            if iterations >= MAX_READ_ITERATIONS or len(self._pending) >= MAX_READ_ITERATIONS:
                logger.warning(
                    f"AMI frame from {self.host} exceeded {MAX_READ_ITERATIONS} lines "
                    f"without a terminator, truncating"
                )
                return self._flush(), False
            iterations += 1

            try:
                line = self._next_line()
            except AmiConnectionClosed:
                if self._pending:
                    return self._flush(), False
                raise

            if line is None:
                if flush_on_timeout:
                    return self._flush(), False
                return None

            if line == "":
                if self._pending:
                    return self._flush(), True
                continue

            self._pending.append(line)

    # ------------------------------------------------------------------
    # Transactional mode
    # ------------------------------------------------------------------

    def read_frame(self) -> str:
        """Read one frame and return its text.

        Stops at a blank line, end of stream, read timeout or the line
        cap, returning whatever was read.
        """
        lines, _ = self._read_lines(flush_on_timeout=True)
        return "\r\n".join(lines)

    def read_response(self, action_id: Optional[str] = None) -> AmiResponse:
        """Read the response to the last action, skipping unrelated events."""
        for _ in range(MAX_SKIPPED_FRAMES):
            lines, terminated = self._read_lines(flush_on_timeout=True)
            response = AmiResponse(lines=lines, terminated=terminated)
            if response.empty:
                return response

            fields = response.fields
            if "Response" not in fields and "Event" in fields:
                logger.debug(f"Skipping unsolicited event {fields['Event']} while awaiting response")
                continue
            if action_id and fields.get("ActionID", action_id) != action_id:
                logger.debug(f"Skipping response for ActionID {fields['ActionID']}")
                continue
            return response

        raise AmiFrameError(f"No response after {MAX_SKIPPED_FRAMES} unsolicited frames")

    def execute(self, fields: Fields) -> AmiResponse:
        """Send one action and read its response.

        An ``ActionID`` is added unless the caller supplied one.

        Raises:
            AmiConnectionClosed: the connection closed before any response bytes
        """
        pairs = field_pairs(fields)
        action_id = next((str(v) for k, v in pairs if k.lower() == "actionid"), None)
        if action_id is None:
            action_id = f"asterisk-sync-{next(_action_ids)}"
            pairs.append(("ActionID", action_id))

        action = next((str(v) for k, v in pairs if k.lower() == "action"), "?")
        logger.debug(f"AMI >> {action} ({action_id})")
        self._send_raw(encode_action(pairs))

        response = self.read_response(action_id)
        if not response.terminated:
            logger.warning(f"AMI response to {action} was not terminated: {response.raw[:200]!r}")
        return response

    def command(self, cli_command: str) -> str:
        """Run a CLI command through the ``Command`` action and return its output.

        Raises:
            AmiFrameError: the response was unterminated or empty
            AmiError: the server rejected the command
        """
        response = self.execute([("Action", "Command"), ("Command", cli_command)])
        if response.empty or not response.terminated:
            raise AmiFrameError(f"Incomplete response to command {cli_command!r}")
        if response.fields.get("Response") == "Error":
            raise AmiError(f"Command {cli_command!r} failed: {response.message}")
        return response.output

    def ping(self) -> bool:
        response = self.execute([("Action", "Ping")])
        return response.success

    def extension_state(self, exten: str, context: str = "from-internal") -> str:
        """Return ``registered`` or ``offline`` for an extension hint."""
        response = self.execute([
            ("Action", "ExtensionState"),
            ("Exten", exten),
            ("Context", context),
        ])
        status = response.fields.get("Status", "-1")
        # -1 unknown hint, 4 unavailable
        return "offline" if status in ("-1", "4") else "registered"

    # ------------------------------------------------------------------
    # Event mode
    # ------------------------------------------------------------------

    def poll_event(self) -> Optional[dict[str, str]]:
        """Return the next decoded frame, or None if the read timed out."""
        result = self._read_lines(flush_on_timeout=False)
        if result is None:
            return None
        lines, _ = result
        return dict(parse_lines(lines))

    def stream_events(
        self,
        on_event: Callable[[dict[str, str]], None],
        stop_event: threading.Event,
    ) -> bool:
        """Decode frames and hand each event to ``on_event`` until stopped.

        Returns True if ``stop_event`` was set, False if the server closed
        the connection. Frames without an ``Event`` key are ignored.
        """
        while not stop_event.is_set():
            try:
                frame = self.poll_event()
            except AmiConnectionClosed as e:
                logger.warning(f"AMI event stream from {self.host} ended: {e}")
                return False
            if frame is None:
                continue
            if "Event" not in frame:
                logger.debug(f"Ignoring non-event frame: {frame}")
                continue
            on_event(frame)
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def logoff(self) -> None:
        """Send a best-effort Logoff action."""
        if self._closed:
            return
        try:
            self._send_raw(encode_action([("Action", "Logoff")]))
        except AmiError as e:
            logger.debug(f"Logoff not delivered to {self.host}: {e}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Error closing AMI socket: {e}")

    def __enter__(self) -> "AmiSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.logoff()
        self.close()
