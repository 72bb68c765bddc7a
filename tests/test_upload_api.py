"""FastAPI integration tests covering upload creation, provenance and CORS."""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from fileuploader.api.server import create_app
from fileuploader.config import (
    AuthConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
    UploadServerConfig,
    parse_trusted_ranges,
)
from fileuploader.messaging import UploadEventType
from fileuploader.metadata import decode_metadata, encode_metadata

PROXY_IP = "10.0.0.1"
ALLOWED_ORIGIN = "https://kiwiirc.example"


def _with_peer(app, host: str, port: int = 40000):
    """Rewrites the ASGI client address so requests appear to come from ``host``."""

    async def wrapped(scope, receive, send):
        if scope["type"] == "http":
            scope = dict(scope, client=(host, port))
        await app(scope, receive, send)

    return wrapped


def _wait_for(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(0.01)
    raise AssertionError("condition not met before timeout")


@pytest.fixture
def app():
    config = UploadServerConfig(
        server=ServerConfig(
            cors_origins=(ALLOWED_ORIGIN,),
            trusted_reverse_proxy_ranges=parse_trusted_ranges(["10.0.0.0/8"]),
        ),
        auth=AuthConfig(jwt_secrets_by_issuer={"kiwiirc.example": "s3cret"}),
    )
    return create_app(config)


@pytest.fixture
def proxied_client(app):
    with TestClient(_with_peer(app, PROXY_IP)) as client:
        yield client


def _create(client: TestClient, metadata: dict, **headers):
    request_headers = {"Upload-Length": "4", "Upload-Metadata": encode_metadata(metadata)}
    request_headers.update(headers)
    return client.post("/files", headers=request_headers)


def test_end_to_end_provenance_behind_trusted_proxy(app, proxied_client, sign_token):
    runtime = app.state.runtime
    writes = []
    original_update = runtime.store.update_uploader_ip

    def counting_update(upload_id, ip):
        writes.append((upload_id, ip))
        original_update(upload_id, ip)

    runtime.store.update_uploader_ip = counting_update

    token = sign_token({"iss": "kiwiirc.example", "account": "alice"}, "s3cret")
    response = _create(proxied_client, {"filename": "a.txt", "extjwt": token}, **{"X-Forwarded-For": "9.9.9.9, 10.0.0.1"})
    assert response.status_code == 201
    upload_id = response.headers["Location"].rstrip("/").rsplit("/", 1)[-1]

    _wait_for(lambda: getattr(runtime.store.get_upload(upload_id), "uploader_ip", None))
    assert runtime.store.get_upload(upload_id).uploader_ip == "9.9.9.9"

    head = proxied_client.head(f"/files/{upload_id}")
    metadata = decode_metadata(head.headers["Upload-Metadata"])
    assert metadata["RemoteIP"] == "9.9.9.9"
    assert (metadata["issuer"], metadata["account"]) == ("kiwiirc.example", "alice")

    patch = proxied_client.patch(
        f"/files/{upload_id}",
        content=b"data",
        headers={"Upload-Offset": "0", "Content-Type": "application/offset+octet-stream"},
    )
    assert patch.status_code == 204
    assert patch.headers["Upload-Offset"] == "4"

    _wait_for(
        lambda: any(
            event.type is UploadEventType.COMPLETED and event.upload_id == upload_id
            for event in list(runtime.activity_service.events)
        )
    )
    assert runtime.store.get_upload(upload_id).uploader_ip == "9.9.9.9"
    assert writes == [(upload_id, "9.9.9.9")]

    download = proxied_client.get(f"/files/{upload_id}/a.txt")
    assert download.content == b"data"


def test_untrusted_client_cannot_spoof_forwarded_for(app):
    with TestClient(_with_peer(app, "1.2.3.4")) as client:
        response = _create(client, {"filename": "a.txt"}, **{"X-Forwarded-For": "9.9.9.9"})
        assert response.status_code == 201
        upload_id = response.headers["Location"].rsplit("/", 1)[-1]
        info = app.state.runtime.engine.get_info(upload_id)
        assert info.metadata["RemoteIP"] == "1.2.3.4"


def test_reserved_field_rejected_without_creating_upload(app, proxied_client):
    response = _create(proxied_client, {"RemoteIP": "1.1.1.1"})
    assert response.status_code == 400
    assert "RemoteIP" in response.json()["detail"]
    assert app.state.runtime.engine.uploads == {}


def test_invalid_forwarded_for_from_trusted_proxy(proxied_client):
    response = _create(proxied_client, {}, **{"X-Forwarded-For": "not-an-ip"})
    assert response.status_code == 406


def test_bad_signature_returns_unauthorized(proxied_client, sign_token):
    token = sign_token({"iss": "kiwiirc.example", "account": "alice"}, "wrong")
    response = _create(proxied_client, {"extjwt": token})
    assert response.status_code == 401
    assert "Configured secret may be incorrect" in response.json()["detail"]


def test_unknown_issuer_still_creates_upload(app, proxied_client, sign_token):
    token = sign_token({"iss": "unknown.example", "account": "bob"}, "whatever")
    response = _create(proxied_client, {"extjwt": token})
    assert response.status_code == 201
    upload_id = response.headers["Location"].rsplit("/", 1)[-1]
    metadata = app.state.runtime.engine.get_info(upload_id).metadata
    assert "account" not in metadata and "issuer" not in metadata


def test_upload_size_limits_and_headers(proxied_client):
    assert proxied_client.post("/files").status_code == 400
    too_big = proxied_client.post("/files", headers={"Upload-Length": str(1024 ** 4)})
    assert too_big.status_code == 413
    assert proxied_client.head("/files/missing").status_code == 404


def test_patch_with_wrong_offset_conflicts(proxied_client):
    upload_id = _create(proxied_client, {}).headers["Location"].rsplit("/", 1)[-1]
    response = proxied_client.patch(f"/files/{upload_id}", content=b"da", headers={"Upload-Offset": "2"})
    assert response.status_code == 409
    assert proxied_client.delete(f"/files/{upload_id}").status_code == 204
    assert proxied_client.head(f"/files/{upload_id}").status_code == 404


def test_cors_echoes_only_listed_origins(proxied_client):
    allowed = _create(proxied_client, {}, Origin=ALLOWED_ORIGIN)
    assert allowed.headers["Access-Control-Allow-Origin"] == ALLOWED_ORIGIN
    assert "Origin" in allowed.headers["Vary"]

    other = _create(proxied_client, {}, Origin="https://evil.example")
    assert other.status_code == 201
    assert "Access-Control-Allow-Origin" not in other.headers
    assert "Origin" in other.headers["Vary"]

    preflight = proxied_client.options(
        "/files",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
    )
    assert preflight.status_code == 204
    assert "Access-Control-Allow-Origin" not in preflight.headers


def test_repeated_uploads_keep_memory_bounded():
    config = UploadServerConfig(
        storage=StorageConfig(retained_completed_uploads=5),
        observability=ObservabilityConfig(telemetry_buffer_size=50),
    )
    app = create_app(config)
    runtime = app.state.runtime
    with TestClient(_with_peer(app, "1.2.3.4")) as client:
        for _ in range(200):
            assert client.post("/files", headers={"Upload-Length": "0"}).status_code == 201
        assert len(runtime.telemetry.metrics) <= 50
        assert len(runtime.telemetry.events) <= 50
        assert len(runtime.engine.uploads) == 5
    assert len(runtime.telemetry.metrics) == 0
