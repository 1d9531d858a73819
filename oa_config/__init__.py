"""
oa_config -- server configuration.

Responsibility:
    Single entry point for runtime settings: ``load_settings()`` reads one
    YAML file, applies ``OA_*`` environment overrides and returns a frozen
    ``Settings``.

Architecture position:
    Configuration.  Sits beside ``oa_kernel``; the kernel never imports
    from here.  ``oa_api`` translates settings into kernel arguments.

Failure modes:
    - ``ConfigError`` (a ``KeyError``) for missing or invalid settings.
    - ``FileNotFoundError`` / ``yaml.YAMLError`` for unreadable files.
"""

from oa_config.loader import ConfigError, load_settings, parse_settings
from oa_config.schema import (
    ApprovalSettings,
    DatabaseSettings,
    JWTSettings,
    ServerMode,
    ServerSettings,
    Settings,
)

__all__ = [
    "ApprovalSettings",
    "ConfigError",
    "DatabaseSettings",
    "JWTSettings",
    "ServerMode",
    "ServerSettings",
    "Settings",
    "load_settings",
    "parse_settings",
]
