"""PJSIP configuration model, generators and file storage."""
from .errors import ConfigParseError, ConfigWriteError, PjsipConfigError
from .generator import (
    generate_extension_sections,
    generate_sections,
    generate_transport_sections,
    generate_trunk_sections,
)
from .history import ConfigHistory
from .model import ConfigDocument, ConfigSection, Property, RawLine, parse, render
from .store import PjsipConfigFile

__all__ = [
    "ConfigParseError",
    "ConfigWriteError",
    "PjsipConfigError",
    "generate_extension_sections",
    "generate_sections",
    "generate_transport_sections",
    "generate_trunk_sections",
    "ConfigHistory",
    "ConfigDocument",
    "ConfigSection",
    "Property",
    "RawLine",
    "parse",
    "render",
    "PjsipConfigFile",
]
