from __future__ import annotations

import base64
import hashlib
import hmac
import json

import pytest

_DIGESTS = {"HS256": hashlib.sha256, "HS384": hashlib.sha384, "HS512": hashlib.sha512}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _sign_token(claims: dict, secret: str | bytes, alg: str = "HS256") -> str:
    key = secret.encode() if isinstance(secret, str) else secret
    header = _b64url(json.dumps({"alg": alg, "typ": "JWT"}).encode())
    payload = _b64url(json.dumps(claims).encode())
    signing_input = f"{header}.{payload}".encode()
    digest = _DIGESTS.get(alg, hashlib.sha256)
    signature = _b64url(hmac.new(key, signing_input, digest).digest())
    return f"{header}.{payload}.{signature}"


@pytest.fixture
def sign_token():
    return _sign_token
