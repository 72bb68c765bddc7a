"""Codec for the ``Upload-Metadata`` header.

The header is a comma separated list of ``key base64(value)`` entries. Values
are opaque bytes; they are carried as ``str`` using the ``surrogateescape``
handler so that any byte sequence survives a decode/encode cycle.
"""

from __future__ import annotations

import base64
import binascii
from typing import Dict, Optional

from .errors import MalformedMetadata

Metadata = Dict[str, str]

UPLOAD_METADATA_HEADER = "Upload-Metadata"

REMOTE_IP_KEY = "RemoteIP"
ISSUER_KEY = "issuer"
ACCOUNT_KEY = "account"
TOKEN_KEY = "extjwt"

RESERVED_KEYS = frozenset({REMOTE_IP_KEY, ISSUER_KEY, ACCOUNT_KEY})

_VALUE_ENCODING = "utf-8"
_VALUE_ERRORS = "surrogateescape"


def decode_metadata(header: Optional[str]) -> Metadata:
    metadata: Metadata = {}
    if header is None or not header.strip():
        return metadata

    for index, entry in enumerate(header.split(",")):
        parts = entry.split()
        if not parts:
            raise MalformedMetadata(f"Empty metadata entry at position {index}")
        if len(parts) > 2:
            raise MalformedMetadata(f"Metadata entry at position {index} has too many fields")
        key = parts[0]
        if key in metadata:
            raise MalformedMetadata(f"Duplicate metadata key {key!r}")
        raw = b""
        if len(parts) == 2:
            try:
                raw = base64.b64decode(parts[1], validate=True)
            except (binascii.Error, ValueError) as exc:
                raise MalformedMetadata(f"Invalid base64 value for metadata key {key!r}") from exc
        metadata[key] = raw.decode(_VALUE_ENCODING, _VALUE_ERRORS)
    return metadata


def encode_metadata(metadata: Metadata) -> str:
    entries = []
    for key, value in metadata.items():
        if not key or "," in key or any(ch.isspace() for ch in key):
            raise MalformedMetadata(f"Metadata key {key!r} cannot be encoded")
        if value == "":
            entries.append(key)
            continue
        encoded = base64.b64encode(value.encode(_VALUE_ENCODING, _VALUE_ERRORS)).decode("ascii")
        entries.append(f"{key} {encoded}")
    return ",".join(entries)


def value_from_bytes(raw: bytes) -> str:
    """Maps an arbitrary byte value onto the ``str`` form used in :data:`Metadata`."""
    return raw.decode(_VALUE_ENCODING, _VALUE_ERRORS)


def value_to_bytes(value: str) -> bytes:
    return value.encode(_VALUE_ENCODING, _VALUE_ERRORS)
