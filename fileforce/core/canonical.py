"""
fileforce/core/canonical.py

RFC 8785 (JCS) canonical JSON for access tags.

Both the signed payload and the stored tag blob go through here, so two
tags with equal fields always encode to identical bytes and identical
content identifiers.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib

import jcs


def canonicalize(obj: dict) -> bytes:
    """
    UTF-8 canonical JSON of obj, independent of key insertion order.

    Values must already be JSON primitives: keys and byte strings are
    hex/base64 encoded by the caller.
    """
    return jcs.canonicalize(obj)


def canonical_digest(obj: dict) -> bytes:
    """32-byte SHA-256 of canonicalize(obj), the message handed to ECDSA."""
    return hashlib.sha256(canonicalize(obj)).digest()
