"""Field-level comparison between database and configuration."""
from typing import Any

from ..schema import DEFAULT_DIRECT_MEDIA, DEFAULT_EXTENSION_CONTEXT, DEFAULT_MAX_CONTACTS, DEFAULT_TRANSPORT

# (label, attribute, default applied when either side lacks the value)
TRACKED_FIELDS = (
    ("Context", "context", DEFAULT_EXTENSION_CONTEXT),
    ("Transport", "transport", DEFAULT_TRANSPORT),
    ("MaxContacts", "max_contacts", DEFAULT_MAX_CONTACTS),
    ("DirectMedia", "direct_media", DEFAULT_DIRECT_MEDIA),
)


def _normalized(record: Any, attribute: str, default: Any) -> str:
    value = getattr(record, attribute, None)
    if value is None or value == "":
        value = default
    return str(value).strip()


def diff_fields(db_record: Any, scanned: Any) -> list[str]:
    """Labels of tracked fields whose values differ, in a fixed order."""
    return [
        label
        for label, attribute, default in TRACKED_FIELDS
        if _normalized(db_record, attribute, default) != _normalized(scanned, attribute, default)
    ]
