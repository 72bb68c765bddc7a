"""Configuration primitives for the upload server."""

from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

from .errors import ConfigError

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

ENV_PREFIX = "FILEUPLOADER_"


def parse_size(value: str) -> int:
    value = value.strip().lower()
    try:
        if value.endswith("gb"):
            return int(float(value[:-2]) * 1024 * 1024 * 1024)
        if value.endswith("mb"):
            return int(float(value[:-2]) * 1024 * 1024)
        if value.endswith("kb"):
            return int(float(value[:-2]) * 1024)
        if value.endswith("b"):
            return int(float(value[:-1]))
        return int(float(value))
    except ValueError as exc:
        raise ConfigError(f"Invalid size {value!r}") from exc


def parse_trusted_ranges(values) -> Tuple[IPNetwork, ...]:
    networks = []
    for raw in values:
        raw = raw.strip()
        if not raw:
            continue
        try:
            networks.append(ipaddress.ip_network(raw, strict=False))
        except ValueError as exc:
            raise ConfigError(f"Invalid trusted proxy range {raw!r}") from exc
    return tuple(networks)


def parse_issuer_secrets(value: str) -> dict[str, str]:
    """Parses ``issuer=secret,other=secret2`` into a mapping."""
    secrets: dict[str, str] = {}
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        issuer, sep, secret = entry.partition("=")
        if not sep or not issuer.strip() or not secret:
            raise ConfigError(f"Invalid issuer secret entry {entry!r}, expected issuer=secret")
        secrets[issuer.strip()] = secret
    return secrets


def route_prefix_from_base_path(base_path: str) -> str:
    path = urlparse(base_path).path or "/"
    if not path.startswith("/"):
        path = "/" + path
    return path.rstrip("/")


def _parse_count(name: str, value: Optional[str], default: int) -> int:
    if not value:
        return default
    try:
        count = int(value)
    except ValueError as exc:
        raise ConfigError(f"Invalid {name} {value!r}") from exc
    if count < 1:
        raise ConfigError(f"{name} must be at least 1")
    return count


def _split_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class ServerConfig:
    base_path: str = "/files/"
    cors_origins: Tuple[str, ...] = ()
    trusted_reverse_proxy_ranges: Tuple[IPNetwork, ...] = ()

    @property
    def route_prefix(self) -> str:
        return route_prefix_from_base_path(self.base_path)


@dataclass(frozen=True)
class StorageConfig:
    maximum_upload_size: int = 50 * 1024 * 1024
    # completed uploads kept in memory for download before the oldest is evicted
    retained_completed_uploads: int = 100


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = ":memory:"


@dataclass(frozen=True)
class AuthConfig:
    jwt_secrets_by_issuer: Mapping[str, bytes] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        secrets = {
            issuer: secret.encode() if isinstance(secret, str) else bytes(secret)
            for issuer, secret in dict(self.jwt_secrets_by_issuer).items()
        }
        object.__setattr__(self, "jwt_secrets_by_issuer", MappingProxyType(secrets))


@dataclass(frozen=True)
class ObservabilityConfig:
    log_level: str = "INFO"
    # 0 means unbounded per-subscriber queues
    subscriber_queue_size: int = 0
    telemetry_buffer_size: int = 1000


@dataclass(frozen=True)
class UploadServerConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @staticmethod
    def default() -> "UploadServerConfig":
        return UploadServerConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> "UploadServerConfig":
        env = os.environ if environ is None else environ

        def get(name: str, default: Optional[str] = None) -> Optional[str]:
            return env.get(ENV_PREFIX + name, default)

        defaults = UploadServerConfig.default()
        max_size = get("MAX_UPLOAD_SIZE")
        return UploadServerConfig(
            server=ServerConfig(
                base_path=get("BASE_PATH", defaults.server.base_path),
                cors_origins=_split_list(get("CORS_ORIGINS")),
                trusted_reverse_proxy_ranges=parse_trusted_ranges(_split_list(get("TRUSTED_PROXY_RANGES"))),
            ),
            storage=StorageConfig(
                maximum_upload_size=parse_size(max_size) if max_size else defaults.storage.maximum_upload_size,
                retained_completed_uploads=_parse_count(
                    "RETAINED_UPLOADS", get("RETAINED_UPLOADS"), defaults.storage.retained_completed_uploads
                ),
            ),
            database=DatabaseConfig(path=get("DB_PATH", defaults.database.path)),
            auth=AuthConfig(jwt_secrets_by_issuer=parse_issuer_secrets(get("JWT_SECRETS", "") or "")),
            observability=ObservabilityConfig(
                log_level=(get("LOG_LEVEL") or defaults.observability.log_level).upper(),
                telemetry_buffer_size=_parse_count(
                    "TELEMETRY_BUFFER_SIZE", get("TELEMETRY_BUFFER_SIZE"), defaults.observability.telemetry_buffer_size
                ),
            ),
        )
