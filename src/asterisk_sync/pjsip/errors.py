"""PJSIP configuration errors."""


class PjsipConfigError(Exception):
    """Base class for configuration file errors."""
    pass


class ConfigParseError(PjsipConfigError):
    """The configuration text could not be read as an INI document."""
    pass


class ConfigWriteError(PjsipConfigError):
    """The configuration file could not be written."""
    pass
