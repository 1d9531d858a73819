"""
Settings loader (``oa_config.loader``).

Responsibility
--------------
Reads one YAML file, applies ``OA_*`` environment overrides, and parses
the result into the frozen dataclasses of ``oa_config.schema``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required key, unknown ``server.mode``, bad number or bind
  address  -> ``ConfigError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from oa_config.schema import (
    ApprovalSettings,
    DatabaseSettings,
    JWTSettings,
    ServerMode,
    ServerSettings,
    Settings,
)

ENV_PREFIX = "OA_"

# Environment variable -> (section, key).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "OA_DATABASE_DSN": ("database", "dsn"),
    "OA_SERVER_BIND": ("server", "bind"),
    "OA_SERVER_MODE": ("server", "mode"),
    "OA_JWT_SECRET": ("jwt", "secret"),
    "OA_JWT_EXPIRE_SECONDS": ("jwt", "expire_seconds"),
    "OA_APPROVAL_CACHE_TTL_SECONDS": ("approval", "cache_ttl_seconds"),
    "OA_APPROVAL_REQUEST_TIMEOUT_SECONDS": ("approval", "request_timeout_seconds"),
    "OA_APPROVAL_ADMIN_ROLE": ("approval", "admin_role"),
}


class ConfigError(KeyError):
    """The configuration is missing a required key or holds a bad value."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def apply_env_overrides(
    data: dict[str, Any], environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of ``data`` with ``OA_*`` variables applied."""
    env = os.environ if environ is None else environ
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}
    for var, (section, key) in ENV_OVERRIDES.items():
        if var in env:
            merged.setdefault(section, {})
            merged[section][key] = env[var]
    return merged


def _require(section: Mapping[str, Any], name: str, key: str) -> Any:
    value = section.get(key)
    if value is None or value == "":
        raise ConfigError(f"missing required setting {name}.{key}")
    return value


def _number(value: Any, name: str, kind: type = float):
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_settings(data: Mapping[str, Any]) -> Settings:
    """Build ``Settings`` from an already-merged mapping."""
    db = data.get("database") or {}
    server = data.get("server") or {}
    jwt = data.get("jwt") or {}
    approval = data.get("approval") or {}

    mode_raw = str(server.get("mode", ServerMode.RELEASE.value)).lower()
    try:
        mode = ServerMode(mode_raw)
    except ValueError:
        raise ConfigError(
            f"server.mode must be 'debug' or 'release', got {mode_raw!r}"
        ) from None

    bind = str(server.get("bind", ServerSettings.bind))
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"server.bind must look like host:port, got {bind!r}")

    return Settings(
        database=DatabaseSettings(
            dsn=str(_require(db, "database", "dsn")),
            echo=_flag(db.get("echo", False)),
            pool_size=_number(db.get("pool_size", 20), "database.pool_size", int),
            lock_timeout_seconds=_number(
                db.get("lock_timeout_seconds", 15.0), "database.lock_timeout_seconds",
            ),
        ),
        jwt=JWTSettings(
            secret=str(_require(jwt, "jwt", "secret")),
            expire_seconds=_number(
                jwt.get("expire_seconds", 86400), "jwt.expire_seconds", int,
            ),
        ),
        server=ServerSettings(bind=bind, mode=mode),
        approval=ApprovalSettings(
            cache_ttl_seconds=_number(
                approval.get("cache_ttl_seconds", 0), "approval.cache_ttl_seconds",
            ),
            request_timeout_seconds=_number(
                approval.get("request_timeout_seconds", 10.0),
                "approval.request_timeout_seconds",
            ),
            admin_role=str(approval.get("admin_role") or ApprovalSettings.admin_role),
        ),
    )


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from ``path`` (or ``$OA_CONFIG``) plus the environment.

    With no file at all, settings come from environment variables alone.
    """
    env = os.environ if environ is None else environ
    source = path if path is not None else env.get("OA_CONFIG")
    data = load_yaml_file(Path(source)) if source else {}
    return parse_settings(apply_env_overrides(data, env))
