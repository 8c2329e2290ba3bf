"""Live endpoint state scraped from ``pjsip show`` CLI output.

The text parsers are deliberately narrow and sit behind the
``LiveStatusProvider`` interface so the engine never sees raw CLI text.
"""
import logging
import re
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence

from ..ami.client import AmiSession
from ..ami.errors import AmiError
from .errors import LiveStatusError, ReloadError

logger = logging.getLogger(__name__)

UNAVAILABLE = "Unavailable"

# " Endpoint:  101/101      Not in use    0 of inf"
_ENDPOINT_ROW_RE = re.compile(r"^\s*Endpoint:\s+(\S+)\s+(.+?)\s+(\d+)\s+of\s+(\S+)\s*$")
# "   Contact:  101/sip:101@10.0.0.5:5060;ob   3f2e1a0b9c Avail   12.345"
_CONTACT_RE = re.compile(r"^\s*Contact:\s+([^/\s]+)/(\S+)")
_DEVICE_STATE_RE = re.compile(r"DeviceState\s*:\s*(.+?)\s*$")
_TRANSPORT_RE = re.compile(r"^\s*transport\s*:\s*(\S+)")
_AUTH_RE = re.compile(r"^\s*auth\s*:\s*(\S+)")
_AVAIL_RE = re.compile(r"\bAvail\b")

_NOT_FOUND_MARKERS = ("Unable to find object", "No objects found")


@dataclass
class ContactInfo:
    """One registered contact of an endpoint."""
    aor: str
    uri: str
    available: bool


@dataclass
class EndpointState:
    """One endpoint as reported by the server."""
    name: str
    state: str = UNAVAILABLE
    channels: int = 0
    contacts: list[ContactInfo] = field(default_factory=list)
    transport: Optional[str] = None
    auth: Optional[str] = None

    @property
    def registered(self) -> bool:
        return self.state != UNAVAILABLE

    @property
    def available_contacts(self) -> int:
        return sum(1 for c in self.contacts if c.available)


def _is_header(line: str) -> bool:
    return "<" in line and ">" in line


def _parse_contact(line: str) -> Optional[ContactInfo]:
    if _is_header(line):
        return None
    match = _CONTACT_RE.match(line)
    if not match:
        return None
    return ContactInfo(aor=match.group(1), uri=match.group(2), available=bool(_AVAIL_RE.search(line)))


def parse_endpoints_list(output: str) -> list[EndpointState]:
    """Parse ``pjsip show endpoints``.

    Contact lines are attached to the endpoint row above them.
    """
    endpoints: list[EndpointState] = []
    current: Optional[EndpointState] = None

    for line in output.splitlines():
        if _is_header(line):
            continue
        row = _ENDPOINT_ROW_RE.match(line)
        if row:
            current = EndpointState(
                name=row.group(1).split("/", 1)[0],
                state=row.group(2).strip(),
                channels=int(row.group(3)),
            )
            endpoints.append(current)
            continue
        if current is not None:
            contact = _parse_contact(line)
            if contact:
                current.contacts.append(contact)

    return endpoints


def parse_endpoint_detail(output: str, identity: str) -> Optional[EndpointState]:
    """Parse ``pjsip show endpoint <id>``; None if the endpoint is unknown."""
    if not output.strip() or any(marker in output for marker in _NOT_FOUND_MARKERS):
        return None

    detail = EndpointState(name=identity)
    rows = parse_endpoints_list(output)
    if rows:
        detail.state = rows[0].state
        detail.channels = rows[0].channels

    for line in output.splitlines():
        match = _DEVICE_STATE_RE.search(line)
        if match:
            detail.state = match.group(1)
            continue
        match = _TRANSPORT_RE.match(line)
        if match and detail.transport is None:
            detail.transport = match.group(1)
            continue
        match = _AUTH_RE.match(line)
        if match and detail.auth is None:
            detail.auth = match.group(1)
            continue
        contact = _parse_contact(line)
        if contact:
            detail.contacts.append(contact)

    return detail


def registration_map(endpoints: Sequence[EndpointState]) -> dict[str, bool]:
    """Registered flag per numeric endpoint."""
    return {e.name: e.registered for e in endpoints if e.name.isdigit()}


class LiveStatusProvider(Protocol):
    """Source of live endpoint state."""

    def endpoints(self) -> list[EndpointState]:
        ...

    def endpoint(self, identity: str) -> Optional[EndpointState]:
        ...

    def registrations(self) -> dict[str, bool]:
        ...


class Reloader(Protocol):
    """Asks the server to re-read its configuration."""

    def reload(self) -> None:
        ...


class CliTextLiveStatus:
    """Shared parsing for providers that return CLI text."""

    def run(self, command: str) -> str:
        raise NotImplementedError("Subclass must implement run")

    def endpoints(self) -> list[EndpointState]:
        output = self.run("pjsip show endpoints")
        if "No objects found" in output:
            return []
        return parse_endpoints_list(output)

    def endpoint(self, identity: str) -> Optional[EndpointState]:
        return parse_endpoint_detail(self.run(f"pjsip show endpoint {identity}"), identity)

    def registrations(self) -> dict[str, bool]:
        return registration_map(self.endpoints())

    def registration_status(self, identity: str) -> dict:
        """Registered flag, state and contact count for one endpoint."""
        detail = self.endpoint(identity)
        if detail is None:
            return {"registered": False, "state": UNAVAILABLE, "contacts": 0}
        return {
            "registered": detail.available_contacts > 0 or detail.registered,
            "state": detail.state,
            "contacts": detail.available_contacts,
        }


class AmiLiveStatusProvider(CliTextLiveStatus):
    """Runs CLI commands through the AMI ``Command`` action."""

    def __init__(self, connect: Callable[[], AmiSession]):
        self._connect = connect

    def run(self, command: str) -> str:
        try:
            with self._connect() as session:
                return session.command(command)
        except AmiError as e:
            raise LiveStatusError(f"{command!r} via AMI failed: {e}") from e


class CliLiveStatusProvider(CliTextLiveStatus):
    """Runs CLI commands through ``asterisk -rx``."""

    def __init__(self, binary: str = "asterisk", timeout: float = 10.0):
        self.binary = binary
        self.timeout = timeout

    def run(self, command: str) -> str:
        try:
            result = subprocess.run(
                [self.binary, "-rx", command],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise LiveStatusError(f"{self.binary} -rx {command!r} failed: {e}") from e
        if result.returncode != 0:
            raise LiveStatusError(
                f"{self.binary} -rx {command!r} exited {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout


class AmiReloader:
    """Reloads modules with the AMI ``Reload`` action."""

    def __init__(self, connect: Callable[[], AmiSession], modules: Sequence[str] = ("res_pjsip.so",)):
        self._connect = connect
        self.modules = list(modules)

    def reload(self) -> None:
        try:
            with self._connect() as session:
                if not session.ping():
                    raise ReloadError("AMI did not answer Ping, not reloading")
                for module in self.modules:
                    response = session.execute([("Action", "Reload"), ("Module", module)])
                    if not response.success:
                        raise ReloadError(f"Reload of {module} rejected: {response.message or response.raw}")
                    logger.info(f"Reloaded {module}")
        except AmiError as e:
            raise ReloadError(f"Reload via AMI failed: {e}") from e


class CliReloader:
    """Reloads modules with ``asterisk -rx 'module reload ...'``."""

    def __init__(self, modules: Sequence[str] = ("res_pjsip.so",), binary: str = "asterisk", timeout: float = 30.0):
        self.modules = list(modules)
        self.binary = binary
        self.timeout = timeout

    def reload(self) -> None:
        for module in self.modules:
            try:
                result = subprocess.run(
                    [self.binary, "-rx", f"module reload {module}"],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                    check=False,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                raise ReloadError(f"Reload of {module} failed: {e}") from e
            if result.returncode != 0:
                raise ReloadError(f"Reload of {module} exited {result.returncode}: {result.stderr.strip()}")
            logger.info(f"Reloaded {module}")
