"""Domain-specific errors for btterm."""


class BttermError(Exception):
    """Base error for btterm."""


class ConfigLoadError(BttermError):
    """Raised when the config file exists but cannot be read."""


class ConfigValidationError(BttermError):
    """Raised when the config file does not conform to schema or semantics."""


class RadioError(BttermError):
    """Base error for local radio (adapter) operations."""


class RadioUnavailableError(RadioError):
    """Raised when the platform Bluetooth stack or its tooling is missing."""


class PermissionDeniedError(BttermError):
    """Raised when a privileged operation is attempted without grants."""


class SecurityDeniedError(PermissionDeniedError):
    """Raised when the platform revokes access in the middle of an operation."""


class TransportError(BttermError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on RFCOMM connect failures."""


class TransportTimeoutError(TransportError):
    """Raised when an RFCOMM operation times out."""
