"""Authorizes upload creation requests and makes their metadata authoritative."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import ReservedFieldViolation, UploadError
from ..metadata import (
    ACCOUNT_KEY,
    ISSUER_KEY,
    REMOTE_IP_KEY,
    TOKEN_KEY,
    Metadata,
    decode_metadata,
    encode_metadata,
)
from .base import BaseService
from .claims import ClaimStatus, verify_claim
from .proxy_trust import resolve_remote_ip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizedUpload:
    metadata: Metadata
    header: str
    remote_ip: str
    issuer: Optional[str] = None
    account: Optional[str] = None


@dataclass
class UploadAuthorizer(BaseService):
    """Runs the trust checks for one upload creation request.

    Raises an :class:`~fileuploader.errors.UploadError` subclass when the
    request must be rejected; nothing is mutated in that case.
    """

    def authorize(
        self,
        metadata_header: Optional[str],
        peer_address: str,
        forwarded_for: Optional[str] = None,
    ) -> AuthorizedUpload:
        try:
            result = self._authorize(metadata_header, peer_address, forwarded_for)
        except UploadError as exc:
            self.emit_metric("uploads.rejected", 1, reason=exc.reason)
            raise
        self.emit_metric("uploads.authorized", 1, authenticated=str(result.account is not None).lower())
        return result

    def _authorize(self, metadata_header, peer_address, forwarded_for) -> AuthorizedUpload:
        metadata = decode_metadata(metadata_header)

        if REMOTE_IP_KEY in metadata:
            raise ReservedFieldViolation(REMOTE_IP_KEY)

        remote_ip = resolve_remote_ip(
            peer_address,
            forwarded_for,
            self.config.server.trusted_reverse_proxy_ranges,
        )

        for key in (ACCOUNT_KEY, ISSUER_KEY):
            if key in metadata:
                raise ReservedFieldViolation(key)

        verification = verify_claim(metadata.get(TOKEN_KEY, ""), self.config.auth.jwt_secrets_by_issuer)
        if verification.status is ClaimStatus.DEGRADED:
            logger.warning("Failed to process EXTJWT: %s", verification.warning)
            self.emit_metric("uploads.claims_degraded", 1, issuer=verification.issuer or "")

        metadata[REMOTE_IP_KEY] = remote_ip
        issuer = account = None
        if verification.has_identity:
            issuer, account = verification.issuer, verification.account
            metadata[ISSUER_KEY] = issuer
            metadata[ACCOUNT_KEY] = account
            logger.info("Upload metadata updated with verified identity (account=%s, issuer=%s)", account, issuer)

        return AuthorizedUpload(
            metadata=metadata,
            header=encode_metadata(metadata),
            remote_ip=remote_ip,
            issuer=issuer,
            account=account,
        )
