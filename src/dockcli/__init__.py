"""dockcli - Async command-line client for the container engine API with content trust."""

__version__ = "0.1.0"

from .core.engine_client import EngineClient
from .exceptions import (
    AuthEncodingError,
    DockCliError,
    InvalidArgumentError,
    InvalidReferenceError,
    NoTrustDataError,
    NotFoundError,
    RemoteOperationError,
    RequestCancelledError,
)

__all__ = [
    "EngineClient",
    "DockCliError",
    "InvalidArgumentError",
    "InvalidReferenceError",
    "NoTrustDataError",
    "AuthEncodingError",
    "NotFoundError",
    "RemoteOperationError",
    "RequestCancelledError",
]
