"""
fileforce/core/models.py

FileForce Data Model

═══════════════════════════════════════════════════════════════════
PROTOCOL CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1 — What is signed
    digest = SHA-256(JCS({contentIdentifier, destPublicKey, kdfParams}))
    curve  = secp256k1, ECDSA over the raw digest (no second hash)
    output = {r, s, recoveryId}  recoveryId = parity of R.y

CONTRACT 2 — Who can decrypt
    key = HKDF(ECDH(owner.private, dest.public), kdfParams)
        = HKDF(ECDH(dest.private, owner.public), kdfParams)
    Only the holder of dest_public_key's private key re-derives key.

CONTRACT 3 — Immutability
    AccessTag is frozen. Delegation never mutates a tag, it mints a new
    one signed by the delegator.

CONTRACT 4 — Detached ciphertext
    A tag's cipher_envelope carries algorithm + iv only. The ciphertext
    lives in the content store under content_identifier.
═══════════════════════════════════════════════════════════════════
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


# ─────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────

DEFAULT_KDF_INFO = "file-force"
SALT_SIZE        = 32

# secp256k1 field element / scalar width
_COORDINATE_SIZE = 32


# ─────────────────────────────────────────────────────────────
# Algorithm Vocabulary
# ─────────────────────────────────────────────────────────────

class CipherAlgorithm(str, Enum):
    """
    Symmetric stream ciphers accepted in a CipherEnvelope.

    All are unauthenticated stream modes: ciphertext length equals
    plaintext length and tampering is not detected by the cipher.
    """

    AES_256_CTR = "aes-256-ctr"
    AES_192_CTR = "aes-192-ctr"
    AES_128_CTR = "aes-128-ctr"
    CHACHA20    = "chacha20"

    @property
    def key_size(self) -> int:
        return _KEY_SIZES[self]

    @property
    def iv_size(self) -> int:
        # AES block / ChaCha20 16-byte nonce+counter
        return 16


_KEY_SIZES = {
    CipherAlgorithm.AES_256_CTR: 32,
    CipherAlgorithm.AES_192_CTR: 24,
    CipherAlgorithm.AES_128_CTR: 16,
    CipherAlgorithm.CHACHA20:    32,
}


class HashAlgorithm(str, Enum):
    """HMAC hash used by HKDF key strengthening."""

    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"


# ─────────────────────────────────────────────────────────────
# CryptoOptions — cipher / KDF overrides
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CryptoOptions:
    """
    Cipher and key-strengthening options used when sealing new tags.

    Defaults:
        algorithm      = aes-256-ctr
        hash_algorithm = sha256
        info           = "file-force"
        size           = 32  (must equal the cipher key size)

    Strings are accepted and coerced to the enums. Raises ValueError
    on unknown algorithms or a size that does not fit the cipher.
    """

    algorithm:      CipherAlgorithm = CipherAlgorithm.AES_256_CTR
    hash_algorithm: HashAlgorithm   = HashAlgorithm.SHA256
    info:           str             = DEFAULT_KDF_INFO
    size:           int             = 32

    def __post_init__(self) -> None:
        object.__setattr__(self, "algorithm", CipherAlgorithm(self.algorithm))
        object.__setattr__(self, "hash_algorithm", HashAlgorithm(self.hash_algorithm))

        if not isinstance(self.info, str):
            raise ValueError(f"info must be str, got {type(self.info).__name__}")
        if not isinstance(self.size, int) or isinstance(self.size, bool):
            raise ValueError(f"size must be int, got {self.size!r}")
        if self.size != self.algorithm.key_size:
            raise ValueError(
                f"size {self.size} does not match {self.algorithm.value} "
                f"key size {self.algorithm.key_size}"
            )


DEFAULT_OPTIONS = CryptoOptions()


# ─────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KDFParams:
    """Public parameters needed to re-derive a tag's symmetric key."""

    hash_algorithm: HashAlgorithm
    salt:           bytes
    info:           str
    size:           int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hashAlgorithm": HashAlgorithm(self.hash_algorithm).value,
            "salt":          self.salt.hex(),
            "info":          self.info,
            "size":          self.size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KDFParams":
        size = data["size"]
        if not isinstance(size, int) or isinstance(size, bool):
            raise ValueError(f"kdfParams.size must be int, got {size!r}")
        if not isinstance(data["info"], str):
            raise ValueError("kdfParams.info must be str")
        return cls(
            hash_algorithm= HashAlgorithm(data["hashAlgorithm"]),
            salt=           bytes.fromhex(data["salt"]),
            info=           data["info"],
            size=           size,
        )


@dataclass(frozen=True)
class CipherEnvelope:
    """
    {algorithm, iv, ciphertext}.

    iv length is checked at encrypt/decrypt time, not here, so a
    structurally broken envelope surfaces as DecryptionError.
    """

    algorithm:  CipherAlgorithm
    iv:         bytes
    ciphertext: bytes = b""

    @property
    def is_detached(self) -> bool:
        return not self.ciphertext

    def detached(self) -> "CipherEnvelope":
        """Copy without ciphertext, the form carried inside a tag."""
        return replace(self, ciphertext=b"")

    def attach(self, ciphertext: bytes) -> "CipherEnvelope":
        return replace(self, ciphertext=ciphertext)


@dataclass(frozen=True)
class Signature:
    """secp256k1 ECDSA signature with public-key recovery id."""

    r:           int
    s:           int
    recovery_id: int

    def to_bytes(self) -> bytes:
        """64-byte r || s, big-endian."""
        return (
            self.r.to_bytes(_COORDINATE_SIZE, "big")
            + self.s.to_bytes(_COORDINATE_SIZE, "big")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "r":          f"{self.r:064x}",
            "s":          f"{self.s:064x}",
            "recoveryId": self.recovery_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        recovery_id = data["recoveryId"]
        if not isinstance(recovery_id, int) or isinstance(recovery_id, bool):
            raise ValueError(f"recoveryId must be int, got {recovery_id!r}")
        return cls(
            r=           int(data["r"], 16),
            s=           int(data["s"], 16),
            recovery_id= recovery_id,
        )


@dataclass(frozen=True)
class AccessTag:
    """
    Signed record granting one recipient the means to decrypt one
    stored ciphertext. See module docstring for the contracts.
    """

    owner_public_key:   bytes
    dest_public_key:    bytes
    kdf_params:         KDFParams
    cipher_envelope:    CipherEnvelope
    content_identifier: str
    signature:          Signature

    @property
    def owner_address(self) -> str:
        from fileforce.core.crypto import public_to_address
        return public_to_address(self.owner_public_key)

    @property
    def dest_address(self) -> str:
        from fileforce.core.crypto import public_to_address
        return public_to_address(self.dest_public_key)

    @property
    def is_self_encrypted(self) -> bool:
        return self.owner_public_key == self.dest_public_key


@dataclass(frozen=True)
class DelegationRecord:
    """Links an origin tag to the tag minted from it by delegation."""

    origin_tag_identifier:     str
    new_tag_identifier:        str
    origin_content_identifier: str
    new_content_identifier:    str

    def to_dict(self) -> Dict[str, str]:
        return {
            "originTagIdentifier":     self.origin_tag_identifier,
            "newTagIdentifier":        self.new_tag_identifier,
            "originContentIdentifier": self.origin_content_identifier,
            "newContentIdentifier":    self.new_content_identifier,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DelegationRecord":
        return cls(
            origin_tag_identifier=     data["originTagIdentifier"],
            new_tag_identifier=        data["newTagIdentifier"],
            origin_content_identifier= data["originContentIdentifier"],
            new_content_identifier=    data["newContentIdentifier"],
        )


# ─────────────────────────────────────────────────────────────
# VerificationResult
# ─────────────────────────────────────────────────────────────

@dataclass
class VerificationResult:
    """
    Result of DelegationEngine.verify_tag() / verify_provenance().

    Returned, not raised. bool(result) is True iff valid.
    """

    valid:          bool
    signer_address: Optional[str] = None
    reason:         str = ""
    details:        Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.valid

    def __repr__(self) -> str:
        status = "VALID" if self.valid else "INVALID"
        return f"VerificationResult({status}, signer={self.signer_address}, reason={self.reason!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid":         self.valid,
            "signerAddress": self.signer_address,
            "reason":        self.reason,
            "details":       self.details,
        }
