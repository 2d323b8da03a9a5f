"""Custom exceptions for the dockcli client."""


class DockCliError(Exception):
    """Base exception for all client errors."""

    pass


class InvalidArgumentError(DockCliError):
    """Raised for bad flags or arguments, before any network call."""

    pass


class InvalidReferenceError(InvalidArgumentError):
    """Raised when an image or plugin reference cannot be parsed."""

    pass


class NoTrustDataError(DockCliError):
    """Raised when the trust server has no signed data for a reference."""

    pass


class TrustVerificationError(DockCliError):
    """Raised when trust metadata fails signature, threshold or expiry checks."""

    pass


class AuthEncodingError(DockCliError):
    """Raised when registry credentials cannot be looked up or encoded."""

    pass


class CIDFileError(DockCliError):
    """Raised when the container ID file cannot be created, written or removed."""

    pass


class TagRestoreError(DockCliError):
    """Raised when re-tagging a trusted pull locally fails."""

    pass


class RequestCancelledError(DockCliError):
    """Raised when the invocation was cancelled by an interrupt."""

    pass


class RemoteOperationError(DockCliError):
    """Raised when the engine reports a failure."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(RemoteOperationError):
    """Raised when the engine reports a missing image, plugin or object."""

    pass


class UnauthorizedError(RemoteOperationError):
    """Raised when the engine or registry rejects the supplied credentials."""

    pass


class EngineConnectionError(RemoteOperationError):
    """Raised when unable to connect to the engine."""

    pass


class ConfigFileError(DockCliError):
    """Raised when the client configuration file cannot be read or parsed."""

    pass


class CredentialHelperError(DockCliError):
    """Raised when a credential helper program fails."""

    pass
