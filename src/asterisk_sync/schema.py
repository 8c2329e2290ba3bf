"""Managed endpoint records.

These are the rows the database collaborator stores for extensions and
trunks. The identity of an extension is its number, of a trunk its name.
"""
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional

DEFAULT_CODECS = ("ulaw", "alaw", "g722")
DEFAULT_QUALIFY_FREQUENCY = 60
DEFAULT_EXTENSION_CONTEXT = "from-internal"
DEFAULT_TRUNK_CONTEXT = "from-trunk"
DEFAULT_TRANSPORT = "transport-udp"
DEFAULT_MAX_CONTACTS = 1
DEFAULT_DIRECT_MEDIA = "no"


def _known_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Extension:
    """A phone extension."""
    extension_number: str
    name: str = ""
    secret: Optional[str] = None
    enabled: bool = True
    context: str = DEFAULT_EXTENSION_CONTEXT
    transport: str = DEFAULT_TRANSPORT
    codecs: list[str] = field(default_factory=lambda: list(DEFAULT_CODECS))
    max_contacts: int = DEFAULT_MAX_CONTACTS
    qualify_frequency: Optional[int] = DEFAULT_QUALIFY_FREQUENCY
    direct_media: str = DEFAULT_DIRECT_MEDIA
    caller_id: Optional[str] = None
    voicemail_enabled: bool = False
    email: Optional[str] = None

    def __post_init__(self):
        self.extension_number = str(self.extension_number)

    @property
    def identity(self) -> str:
        return self.extension_number

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Extension":
        return cls(**_known_fields(cls, data))


@dataclass
class Trunk:
    """A SIP trunk to a provider."""
    name: str
    host: str
    port: int = 5060
    username: Optional[str] = None
    secret: Optional[str] = None
    enabled: bool = True
    context: str = DEFAULT_TRUNK_CONTEXT
    transport: str = DEFAULT_TRANSPORT
    codecs: list[str] = field(default_factory=lambda: list(DEFAULT_CODECS))
    qualify_frequency: Optional[int] = DEFAULT_QUALIFY_FREQUENCY
    direct_media: str = DEFAULT_DIRECT_MEDIA
    from_domain: Optional[str] = None
    from_user: Optional[str] = None
    language: Optional[str] = None
    prefix: str = "9"
    strip_digits: int = 1
    max_channels: int = 10

    @property
    def identity(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trunk":
        return cls(**_known_fields(cls, data))
