"""
fileforce/core/codec.py

Access tag wire codec.

Wire form is the RFC 8785 canonical JSON of:

    {
      "ownerPublicKey":    hex(65-byte uncompressed point),
      "destPublicKey":     hex(65-byte uncompressed point),
      "kdfParams":         {"hashAlgorithm", "salt" (hex), "info", "size"},
      "cipherEnvelope":    {"algorithm", "iv" (hex), "ciphertext" (base64)},
      "contentIdentifier": str,
      "signature":         {"r" (hex), "s" (hex), "recoveryId"}
    }

Canonical encoding makes encode() deterministic: equal tags produce
byte-identical blobs, and therefore equal store identifiers.
"""

import base64
import binascii
import json
from typing import Any, Dict

from fileforce.core.canonical import canonical_digest, canonicalize
from fileforce.core.exceptions import TagFormatError
from fileforce.core.models import (
    AccessTag,
    CipherAlgorithm,
    CipherEnvelope,
    KDFParams,
    Signature,
)


_REQUIRED_FIELDS = (
    "ownerPublicKey",
    "destPublicKey",
    "kdfParams",
    "cipherEnvelope",
    "contentIdentifier",
    "signature",
)


# ─────────────────────────────────────────────────────────────
# Signing payload
# ─────────────────────────────────────────────────────────────

def signing_payload(
    content_identifier: str,
    dest_public_key:    bytes,
    kdf_params:         KDFParams,
) -> Dict[str, Any]:
    """
    The exact fields covered by a tag signature.

    The cipher envelope and owner key are NOT signed: the owner key is
    recovered from the signature itself.
    """
    return {
        "contentIdentifier": content_identifier,
        "destPublicKey":     dest_public_key.hex(),
        "kdfParams":         kdf_params.to_dict(),
    }


def signing_bytes(
    content_identifier: str,
    dest_public_key:    bytes,
    kdf_params:         KDFParams,
) -> bytes:
    """Canonical JSON of the signing payload."""
    return canonicalize(
        signing_payload(content_identifier, dest_public_key, kdf_params)
    )


def signing_digest(
    content_identifier: str,
    dest_public_key:    bytes,
    kdf_params:         KDFParams,
) -> bytes:
    """SHA-256 over signing_bytes(). 32 bytes."""
    return canonical_digest(
        signing_payload(content_identifier, dest_public_key, kdf_params)
    )


def tag_digest(tag: AccessTag) -> bytes:
    return signing_digest(tag.content_identifier, tag.dest_public_key, tag.kdf_params)


# ─────────────────────────────────────────────────────────────
# Encode / Decode
# ─────────────────────────────────────────────────────────────

def to_wire(tag: AccessTag) -> Dict[str, Any]:
    envelope = tag.cipher_envelope
    return {
        "ownerPublicKey": tag.owner_public_key.hex(),
        "destPublicKey":  tag.dest_public_key.hex(),
        "kdfParams":      tag.kdf_params.to_dict(),
        "cipherEnvelope": {
            "algorithm":  CipherAlgorithm(envelope.algorithm).value,
            "iv":         envelope.iv.hex(),
            "ciphertext": base64.b64encode(envelope.ciphertext).decode("ascii"),
        },
        "contentIdentifier": tag.content_identifier,
        "signature":         tag.signature.to_dict(),
    }


def from_wire(data: Dict[str, Any]) -> AccessTag:
    if not isinstance(data, dict):
        raise TagFormatError("tag must be a JSON object")

    missing = [name for name in _REQUIRED_FIELDS if name not in data]
    if missing:
        raise TagFormatError("tag is missing fields", {"missing": missing})

    try:
        envelope = data["cipherEnvelope"]
        content_identifier = data["contentIdentifier"]
        if not isinstance(content_identifier, str) or not content_identifier:
            raise ValueError("contentIdentifier must be a non-empty string")

        return AccessTag(
            owner_public_key= bytes.fromhex(data["ownerPublicKey"]),
            dest_public_key=  bytes.fromhex(data["destPublicKey"]),
            kdf_params=       KDFParams.from_dict(data["kdfParams"]),
            cipher_envelope=  CipherEnvelope(
                algorithm=  CipherAlgorithm(envelope["algorithm"]),
                iv=         bytes.fromhex(envelope["iv"]),
                ciphertext= base64.b64decode(envelope.get("ciphertext", ""), validate=True),
            ),
            content_identifier= content_identifier,
            signature=          Signature.from_dict(data["signature"]),
        )
    except (KeyError, ValueError, TypeError, AttributeError, binascii.Error) as exc:
        raise TagFormatError(f"malformed tag: {exc}") from exc


def encode(tag: AccessTag) -> bytes:
    """Serialize a tag to its canonical byte form."""
    return canonicalize(to_wire(tag))


def decode(blob: bytes) -> AccessTag:
    """
    Parse a tag blob.

    Raises TagFormatError on invalid JSON, missing fields, or values of
    the wrong shape. Does NOT verify the signature.
    """
    try:
        data = json.loads(blob)
    except (UnicodeDecodeError, ValueError) as exc:
        raise TagFormatError(f"tag is not valid JSON: {exc}") from exc
    return from_wire(data)
