"""Exceptions shared by the bridge components."""


class BridgeError(Exception):
    """Base class for everything the bridge raises on purpose."""


class TransportError(BridgeError):
    """Network failure, timeout or non-2xx response from SuperConductor."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class MalformedResponseError(BridgeError):
    """SuperConductor answered, but not with the shape we expected."""


class SelectorError(BridgeError):
    """A command or query was invoked without a group selected."""


class IdentifierError(BridgeError, ValueError):
    """A rundown/group id can't be composed into (or split from) a selector."""


class ConfigError(BridgeError):
    """Connection settings are missing or invalid."""
