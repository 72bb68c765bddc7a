from __future__ import annotations

import ipaddress

import pytest

from fileuploader.config import (
    UploadServerConfig,
    parse_issuer_secrets,
    parse_size,
    route_prefix_from_base_path,
)
from fileuploader.errors import ConfigError


def test_from_env_reads_all_settings():
    config = UploadServerConfig.from_env(
        {
            "FILEUPLOADER_BASE_PATH": "https://uploads.example.org/files/",
            "FILEUPLOADER_CORS_ORIGINS": "https://a.example, https://b.example",
            "FILEUPLOADER_TRUSTED_PROXY_RANGES": "10.0.0.0/8, 192.168.1.7",
            "FILEUPLOADER_JWT_SECRETS": "kiwiirc.example=s3cret,other=a=b",
            "FILEUPLOADER_MAX_UPLOAD_SIZE": "10MB",
            "FILEUPLOADER_LOG_LEVEL": "debug",
            "FILEUPLOADER_RETAINED_UPLOADS": "7",
            "FILEUPLOADER_TELEMETRY_BUFFER_SIZE": "64",
        }
    )
    assert config.server.route_prefix == "/files"
    assert config.server.cors_origins == ("https://a.example", "https://b.example")
    assert config.server.trusted_reverse_proxy_ranges == (
        ipaddress.ip_network("10.0.0.0/8"),
        ipaddress.ip_network("192.168.1.7/32"),
    )
    assert dict(config.auth.jwt_secrets_by_issuer) == {"kiwiirc.example": b"s3cret", "other": b"a=b"}
    assert config.storage.maximum_upload_size == 10 * 1024 * 1024
    assert config.observability.log_level == "DEBUG"
    assert config.storage.retained_completed_uploads == 7
    assert config.observability.telemetry_buffer_size == 64


def test_config_is_immutable():
    config = UploadServerConfig.from_env({"FILEUPLOADER_JWT_SECRETS": "iss=secret"})
    with pytest.raises(AttributeError):
        config.server = None
    with pytest.raises(TypeError):
        config.auth.jwt_secrets_by_issuer["evil"] = b"x"


@pytest.mark.parametrize(
    "env",
    [
        {"FILEUPLOADER_TRUSTED_PROXY_RANGES": "10.0.0.0/33"},
        {"FILEUPLOADER_JWT_SECRETS": "missing-separator"},
        {"FILEUPLOADER_MAX_UPLOAD_SIZE": "lots"},
        {"FILEUPLOADER_RETAINED_UPLOADS": "0"},
        {"FILEUPLOADER_TELEMETRY_BUFFER_SIZE": "many"},
    ],
)
def test_invalid_settings_raise_config_error(env):
    with pytest.raises(ConfigError):
        UploadServerConfig.from_env(env)


def test_parse_helpers():
    assert parse_size("1GB") == 1024 * 1024 * 1024
    assert parse_size("512kb") == 512 * 1024
    assert parse_size("100") == 100
    assert parse_issuer_secrets("") == {}
    assert route_prefix_from_base_path("/files/") == "/files"
    assert route_prefix_from_base_path("/") == ""
