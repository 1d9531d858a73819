"""
Server settings schema.

Frozen dataclasses the loader fills from YAML plus ``OA_*`` environment
overrides.  Nothing here reads files or the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ServerMode(str, Enum):
    DEBUG = "debug"
    RELEASE = "release"


@dataclass(frozen=True)
class DatabaseSettings:
    dsn: str
    echo: bool = False
    pool_size: int = 20
    lock_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class ServerSettings:
    bind: str = "127.0.0.1:8000"
    mode: ServerMode = ServerMode.RELEASE

    @property
    def host(self) -> str:
        return self.bind.rpartition(":")[0] or "127.0.0.1"

    @property
    def port(self) -> int:
        return int(self.bind.rpartition(":")[2])

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.mode == ServerMode.DEBUG else "INFO"

    @property
    def human_readable_logs(self) -> bool:
        return self.mode == ServerMode.DEBUG


@dataclass(frozen=True)
class JWTSettings:
    secret: str
    expire_seconds: int = 86400
    algorithm: str = "HS256"


@dataclass(frozen=True)
class ApprovalSettings:
    cache_ttl_seconds: float = 0
    request_timeout_seconds: float = 10.0
    admin_role: str = "super_admin"


@dataclass(frozen=True)
class Settings:
    """Everything the server needs to start."""

    database: DatabaseSettings
    jwt: JWTSettings
    server: ServerSettings = field(default_factory=ServerSettings)
    approval: ApprovalSettings = field(default_factory=ApprovalSettings)
