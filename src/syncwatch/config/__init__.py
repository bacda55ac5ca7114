"""Configuration package for syncwatch."""

from .settings import (
    AppSettings,
    LoggingSettings,
    SessionSettings,
    TransferSettings,
    ErrorTrackingSettings,
    StatusSettings,
    get_settings
)

from .schema import (
    HOST_KEY_FINGERPRINT_PLACEHOLDER,
    ConnectionEntry,
    SyncSettings,
    template_settings
)

from .loader import (
    ConfigurationError,
    InvalidPathError,
    SettingsNotFoundError,
    SettingsResolver,
    create_template,
    load_setup,
    normalize_fingerprint,
    resolve_local_path
)

__all__ = [
    # Process settings
    "AppSettings",
    "LoggingSettings",
    "SessionSettings",
    "TransferSettings",
    "ErrorTrackingSettings",
    "StatusSettings",
    "get_settings",

    # Connection settings
    "HOST_KEY_FINGERPRINT_PLACEHOLDER",
    "ConnectionEntry",
    "SyncSettings",
    "template_settings",

    "ConfigurationError",
    "InvalidPathError",
    "SettingsNotFoundError",
    "SettingsResolver",
    "create_template",
    "load_setup",
    "normalize_fingerprint",
    "resolve_local_path"
]
