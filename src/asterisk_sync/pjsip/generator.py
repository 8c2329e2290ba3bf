"""Build PJSIP sections from managed endpoint records.

Generators are pure: the same record always yields the same sections in
the same order, and nothing here reads files or talks to the server.
"""
from typing import Iterable, Optional

from ..schema import DEFAULT_CODECS, DEFAULT_DIRECT_MEDIA, DEFAULT_QUALIFY_FREQUENCY, Extension, Trunk
from .model import ConfigSection

TRANSPORT_NAMES = ("transport-udp", "transport-tcp")
TRANSPORT_BIND = "0.0.0.0:5060"


def _codecs(codecs: Optional[Iterable[str]]) -> list[str]:
    cleaned = [c.strip() for c in (codecs or []) if c and c.strip()]
    return cleaned or list(DEFAULT_CODECS)


def _qualify(value: Optional[int]) -> int:
    return DEFAULT_QUALIFY_FREQUENCY if value is None else int(value)


def generate_extension_sections(extension: Extension) -> list[ConfigSection]:
    """Endpoint, auth and aor sections for one extension."""
    number = extension.extension_number
    context = extension.context

    endpoint = ConfigSection.new(number, "endpoint")
    endpoint.add("context", context)
    endpoint.add("disallow", "all")
    for codec in _codecs(extension.codecs):
        endpoint.add("allow", codec)
    endpoint.add("transport", extension.transport)
    endpoint.add("auth", number)
    endpoint.add("aors", number)
    endpoint.add("direct_media", extension.direct_media or DEFAULT_DIRECT_MEDIA)
    if extension.caller_id:
        endpoint.add("callerid", extension.caller_id)
    if extension.voicemail_enabled:
        endpoint.add("mailboxes", f"{number}@default")
    # Presence and BLF
    endpoint.add("subscribe_context", context)
    endpoint.add("device_state_busy_at", 1)

    auth = ConfigSection.new(number, "auth")
    auth.add("auth_type", "userpass")
    auth.add("username", number)
    auth.add("password", extension.secret or "")

    aor = ConfigSection.new(number, "aor")
    aor.add("max_contacts", extension.max_contacts or 1)
    aor.add("remove_existing", "yes")
    aor.add("qualify_frequency", _qualify(extension.qualify_frequency))
    aor.add("support_outbound", "yes")

    return [endpoint, auth, aor]


def generate_trunk_sections(trunk: Trunk) -> list[ConfigSection]:
    """Endpoint, optional auth, aor and identify sections for one trunk.

    The auth section and the ``outbound_auth`` reference are only emitted
    when the trunk has a username.
    """
    name = trunk.name

    endpoint = ConfigSection.new(name, "endpoint")
    endpoint.add("context", trunk.context)
    endpoint.add("disallow", "all")
    for codec in _codecs(trunk.codecs):
        endpoint.add("allow", codec)
    endpoint.add("transport", trunk.transport)
    endpoint.add("aors", name)
    endpoint.add("direct_media", trunk.direct_media or DEFAULT_DIRECT_MEDIA)
    if trunk.from_domain:
        endpoint.add("from_domain", trunk.from_domain)
    if trunk.from_user:
        endpoint.add("from_user", trunk.from_user)
    if trunk.language:
        endpoint.add("language", trunk.language)
    if trunk.username:
        endpoint.add("outbound_auth", name)

    sections = [endpoint]

    if trunk.username:
        auth = ConfigSection.new(name, "auth")
        auth.add("auth_type", "userpass")
        auth.add("username", trunk.username)
        auth.add("password", trunk.secret or "")
        sections.append(auth)

    aor = ConfigSection.new(name, "aor")
    aor.add("contact", f"sip:{trunk.host}:{trunk.port}")
    aor.add("qualify_frequency", _qualify(trunk.qualify_frequency))
    sections.append(aor)

    identify = ConfigSection.new(name, "identify")
    identify.add("endpoint", name)
    identify.add("match", trunk.host)
    sections.append(identify)

    return sections


def generate_transport_sections() -> list[ConfigSection]:
    """UDP and TCP transports bound on port 5060."""
    sections = []
    for name in TRANSPORT_NAMES:
        comment = "; SIP transports" if name == TRANSPORT_NAMES[0] else None
        section = ConfigSection.new(name, "transport", comment=comment)
        section.add("protocol", name.split("-", 1)[1])
        section.add("bind", TRANSPORT_BIND)
        section.add("allow_reload", "yes")
        sections.append(section)
    return sections


def generate_sections(record) -> list[ConfigSection]:
    """Dispatch on the record type."""
    if isinstance(record, Extension):
        return generate_extension_sections(record)
    if isinstance(record, Trunk):
        return generate_trunk_sections(record)
    raise TypeError(f"No generator for {type(record).__name__}")
