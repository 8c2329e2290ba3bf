"""Recovers extension settings from pjsip.conf text.

The text is read with the same parser the writers use, so inline
comments, template headers and escaped markers are handled alike.
Only numeric sections are extensions. ``global`` and ``transport-*``
sections are skipped, as are ``identify`` blocks.
"""
import logging

from ..pjsip.model import ConfigSection, parse
from .schema import ScannedExtension

logger = logging.getLogger(__name__)

SKIPPED_SECTIONS = ("global",)
SKIPPED_PREFIXES = ("transport-",)


def _to_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        logger.debug(f"Ignoring non-numeric value {value!r}")
        return default


def _is_extension(section: ConfigSection) -> bool:
    name = section.name
    if name in SKIPPED_SECTIONS or name.startswith(SKIPPED_PREFIXES) or not name.isdigit():
        return False
    if section.type == "identify":
        return False
    return any(key != "type" for key, _ in section.items())


def scan_extensions(text: str) -> list[ScannedExtension]:
    """Return extensions in the order their first section appears."""
    extensions: dict[str, ScannedExtension] = {}

    for section in parse(text).sections:
        if not _is_extension(section):
            continue
        ext = extensions.setdefault(section.name, ScannedExtension(extension_number=section.name))

        section_type = section.type
        if section_type == "endpoint":
            ext.context = section.get("context", ext.context)
            ext.transport = section.get("transport", ext.transport)
            ext.codecs.extend(section.get_all("allow"))
            ext.caller_id = section.get("callerid", ext.caller_id)
            ext.direct_media = section.get("direct_media", ext.direct_media)
        elif section_type == "auth":
            ext.secret = section.get("password", ext.secret)
        elif section_type == "aor":
            max_contacts = section.get("max_contacts")
            if max_contacts is not None:
                ext.max_contacts = _to_int(max_contacts, ext.max_contacts)
            qualify = section.get("qualify_frequency")
            if qualify is not None:
                ext.qualify_frequency = _to_int(qualify, ext.qualify_frequency)

    return list(extensions.values())
