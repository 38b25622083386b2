"""Exception types raised by focusbank."""


class FocusbankError(Exception):
    """Base class for focusbank errors."""


class ConfigError(FocusbankError):
    """Settings or energy configuration could not be loaded."""


class SessionEndpointError(FocusbankError):
    """The external session endpoint rejected a request or was unreachable."""
