"""
Configuration - Application settings and error taxonomy.
"""

from .errors import (
    BackendError,
    BackendRateLimitError,
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
    CacheError,
    ErrorCode,
    RequestAbortedError,
    StorageError,
    SwitchyardError,
)
from .settings import BackendConfig, Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "BackendConfig",
    "get_settings",
    # Errors
    "ErrorCode",
    "SwitchyardError",
    "BackendError",
    "BackendUnavailableError",
    "BackendTimeoutError",
    "BackendResponseError",
    "BackendRateLimitError",
    "RequestAbortedError",
    "CacheError",
    "StorageError",
]
