"""Error taxonomy for upload creation and provenance recording."""

from __future__ import annotations


class ConfigError(ValueError):
    """Raised at startup when the configuration cannot be used."""


class UploadError(Exception):
    """Base class for errors that map onto an HTTP response.

    ``expose`` controls whether the message is safe to return to the client;
    internal errors are logged in full and surfaced with a generic message.
    """

    status_code = 400
    expose = True
    reason = "upload_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        if self.expose:
            return self.message
        return "Internal Server Error"


class MalformedMetadata(UploadError):
    reason = "malformed_metadata"


class ReservedFieldViolation(UploadError):
    reason = "reserved_field"

    def __init__(self, field: str) -> None:
        super().__init__(f"Metadata field {field!r} cannot be set by client")
        self.field = field


class AddressParseError(UploadError):
    status_code = 500
    expose = False
    reason = "address_parse"


class InvalidForwardedAddress(UploadError):
    status_code = 406
    reason = "invalid_forwarded_for"

    def __init__(self, value: str) -> None:
        super().__init__("Failed to parse IP from X-Forwarded-For header")
        self.value = value


class ClaimError(UploadError):
    """A bearer claim that must cause the upload to be rejected."""

    reason = "claim"


class UnexpectedSigningMethod(ClaimError):
    reason = "unexpected_signing_method"

    def __init__(self, algorithm) -> None:
        super().__init__(f"Unexpected signing method: {algorithm}")
        self.algorithm = algorithm


class MissingIssuer(ClaimError):
    reason = "missing_issuer"

    def __init__(self) -> None:
        super().__init__("Issuer field 'iss' missing from JWT")


class MalformedClaim(ClaimError):
    reason = "malformed_claim"


class ClaimExpired(ClaimError):
    reason = "claim_expired"


class SignatureInvalid(ClaimError):
    status_code = 401
    reason = "signature_invalid"

    def __init__(self, issuer: str) -> None:
        super().__init__("signature is invalid")
        self.issuer = issuer

    @property
    def detail(self) -> str:
        return f"Failed to process EXTJWT: {self.message}. Configured secret may be incorrect."


class UnknownIssuer(UploadError):
    """Non-fatal: the token names an issuer that is not configured here."""

    reason = "unknown_issuer"

    def __init__(self, issuer: str) -> None:
        super().__init__(f"Issuer {issuer!r} not configured")
        self.issuer = issuer


class PersistenceFailure(UploadError):
    status_code = 500
    expose = False
    reason = "persistence"


class UploadNotFound(UploadError):
    status_code = 404
    reason = "not_found"

    def __init__(self, upload_id: str) -> None:
        super().__init__(f"Upload {upload_id} not found")
        self.upload_id = upload_id


class OffsetMismatch(UploadError):
    status_code = 409
    reason = "offset_mismatch"


class UploadTooLarge(UploadError):
    status_code = 413
    reason = "too_large"


class InvalidUploadLength(UploadError):
    reason = "invalid_length"
