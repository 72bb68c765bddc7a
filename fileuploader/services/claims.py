"""Verification of HMAC-signed bearer claims (``EXTJWT``) carried in upload metadata.

Only the HS256/HS384/HS512 family is accepted; any other declared algorithm
is rejected before a key is looked up, which rules out algorithm confusion.

Fatal problems are raised as :class:`~fileuploader.errors.ClaimError`
subclasses. An issuer that is not configured is *not* fatal and comes back as
a :class:`ClaimVerification` with status ``DEGRADED`` so callers can carry on
without identity augmentation.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, StrictStr, ValidationError

from ..errors import (
    ClaimExpired,
    MalformedClaim,
    MissingIssuer,
    SignatureInvalid,
    UnexpectedSigningMethod,
    UnknownIssuer,
)

IssuerSecretRegistry = Mapping[str, bytes]

HMAC_ALGORITHMS = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}

NumericDate = Union[StrictInt, StrictFloat]

_B64URL_SEGMENT = re.compile(r"[A-Za-z0-9_-]*={0,2}")


class ClaimStatus(str, Enum):
    SKIPPED = "skipped"
    VERIFIED = "verified"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ClaimVerification:
    status: ClaimStatus
    issuer: Optional[str] = None
    account: Optional[str] = None
    warning: Optional[UnknownIssuer] = None

    @property
    def has_identity(self) -> bool:
        return self.status is ClaimStatus.VERIFIED and self.issuer is not None and self.account is not None


class BearerClaims(BaseModel):
    model_config = ConfigDict(extra="allow")

    iss: StrictStr
    account: Any = None
    exp: Optional[NumericDate] = None
    nbf: Optional[NumericDate] = None


def verify_claim(token: str, registry: IssuerSecretRegistry, now: Optional[float] = None) -> ClaimVerification:
    if not token:
        return ClaimVerification(status=ClaimStatus.SKIPPED)

    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
    except ValueError as exc:
        raise MalformedClaim("Malformed JWT") from exc

    header = _b64url_to_json(header_b64, "header")
    algorithm = header.get("alg")
    digest = HMAC_ALGORITHMS.get(algorithm) if isinstance(algorithm, str) else None
    if digest is None:
        raise UnexpectedSigningMethod(algorithm)

    payload = _b64url_to_json(payload_b64, "payload")
    if "iss" not in payload:
        raise MissingIssuer()
    issuer = payload["iss"]
    if not isinstance(issuer, str):
        raise MalformedClaim("Failed to coerce issuer to string")

    secret = registry.get(issuer)
    if secret is None:
        return ClaimVerification(status=ClaimStatus.DEGRADED, issuer=issuer, warning=UnknownIssuer(issuer))

    signing_input = f"{header_b64}.{payload_b64}".encode()
    expected = hmac.new(secret, signing_input, digest).digest()
    try:
        signature = _b64url_decode(signature_b64, "signature")
    except MalformedClaim as exc:
        raise SignatureInvalid(issuer) from exc
    if not hmac.compare_digest(expected, signature):
        raise SignatureInvalid(issuer)

    try:
        claims = BearerClaims.model_validate(payload)
    except ValidationError as exc:
        raise MalformedClaim(f"Invalid registered claims: {exc.error_count()} error(s)") from exc
    _check_time_claims(claims, time.time() if now is None else now)

    account = claims.account if isinstance(claims.account, str) else None
    return ClaimVerification(status=ClaimStatus.VERIFIED, issuer=claims.iss, account=account)


def _check_time_claims(claims: BearerClaims, now: float) -> None:
    if claims.exp is not None and now > claims.exp:
        raise ClaimExpired("Token is expired")
    if claims.nbf is not None and now < claims.nbf:
        raise ClaimExpired("Token is not valid yet")


def _b64url_to_json(segment: str, part: str) -> dict:
    data = _b64url_decode(segment, part)
    try:
        decoded = json.loads(data.decode())
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedClaim(f"Malformed JWT {part}") from exc
    if not isinstance(decoded, dict):
        raise MalformedClaim(f"Malformed JWT {part}")
    return decoded


def _b64url_decode(segment: str, part: str) -> bytes:
    # urlsafe_b64decode silently skips characters outside the alphabet
    if not _B64URL_SEGMENT.fullmatch(segment) or len(segment) % 4 == 1:
        raise MalformedClaim(f"Malformed JWT {part}")
    if "=" in segment and len(segment) % 4:
        raise MalformedClaim(f"Malformed JWT {part}")
    padding = "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(segment + padding)
    except (binascii.Error, ValueError) as exc:
        raise MalformedClaim(f"Malformed JWT {part}") from exc
