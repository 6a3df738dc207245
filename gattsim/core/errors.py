"""Domain-specific errors for gattsim."""


class GattsimError(Exception):
    """Base error for gattsim."""


class ProfileValidationError(GattsimError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(GattsimError):
    """Raised when loading profile sources fails."""


class EncodingError(GattsimError, ValueError):
    """Raised when a value cannot be represented in a characteristic's wire format."""


class CatalogLookupError(GattsimError):
    """Raised when a service or characteristic is not part of the catalog."""


class TransportError(GattsimError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the host stack or a remote peer cannot be reached."""


class TransportSendError(TransportError):
    """Raised when pushing a value or reply to a peer fails."""


class TransportTimeoutError(TransportError):
    """Raised when waiting for a remote notification times out."""


class TransportPermissionError(TransportError):
    """Raised when the host stack refuses an operation for lack of permission."""
