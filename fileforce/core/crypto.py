"""
fileforce/core/crypto.py

FileForce Cryptographic Layer

Key contracts:
    private key         : 32-byte big-endian secp256k1 scalar in [1, n-1]
    public key          : 65-byte uncompressed SEC1 point (0x04 || X || Y)
    address             : "0x" + last 20 bytes of keccak-256(X || Y)
    derive_shared_secret: ECDH x-coordinate, always 32 bytes
    strengthen_key      : HKDF (RFC 5869) extract-then-expand
    sign                : ECDSA over a 32-byte digest, returns {r, s, recoveryId}
    verify              : returns bool. Never raises.
    encrypt / decrypt   : unauthenticated stream ciphers (see CipherAlgorithm)

Library split:
    cryptography  ECDH, ECDSA sign/verify, HKDF, AES-CTR / ChaCha20
    ecdsa         public-key recovery (not offered by cryptography)
    pycryptodome  keccak-256 for address derivation
"""

import hashlib
import os
from typing import AsyncIterable, AsyncIterator, List, Optional, Tuple

from Crypto.Hash import keccak
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
)
from ecdsa import SECP256k1, VerifyingKey
from ecdsa.util import sigdecode_string

from fileforce.core.exceptions import DecryptionError, InvalidKey
from fileforce.core.models import (
    DEFAULT_OPTIONS,
    SALT_SIZE,
    CipherAlgorithm,
    CipherEnvelope,
    CryptoOptions,
    HashAlgorithm,
    KDFParams,
    Signature,
)


PRIVATE_KEY_SIZE = 32
PUBLIC_KEY_SIZE  = 65
DIGEST_SIZE      = 32

CURVE_ORDER = SECP256k1.order

_CURVE = ec.SECP256K1()

_HASHES = {
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
}

_RANDOM_KEY_INFO = b"file-force-random"


# ─────────────────────────────────────────────────────────────
# Key Material
# ─────────────────────────────────────────────────────────────

def _load_private(private_key: bytes) -> ec.EllipticCurvePrivateKey:
    if not isinstance(private_key, (bytes, bytearray)):
        raise InvalidKey(
            "private key must be bytes",
            {"type": type(private_key).__name__},
        )
    if len(private_key) != PRIVATE_KEY_SIZE:
        raise InvalidKey(
            f"private key must be {PRIVATE_KEY_SIZE} bytes",
            {"length": len(private_key)},
        )
    scalar = int.from_bytes(private_key, "big")
    if not 0 < scalar < CURVE_ORDER:
        raise InvalidKey("private key scalar is outside [1, n-1]")
    return ec.derive_private_key(scalar, _CURVE)


def _load_public(public_key: bytes) -> ec.EllipticCurvePublicKey:
    if not isinstance(public_key, (bytes, bytearray)) or not public_key:
        raise InvalidKey("public key must be non-empty bytes")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(_CURVE, bytes(public_key))
    except ValueError as exc:
        raise InvalidKey(
            "public key is not a valid secp256k1 point",
            {"length": len(public_key)},
        ) from exc


def _encode_public(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def derive_public_key(private_key: bytes) -> bytes:
    """
    Uncompressed public key (65 bytes) for a 32-byte private scalar.
    Raises InvalidKey if the scalar is malformed or out of range.
    """
    return _encode_public(_load_private(private_key).public_key())


def normalize_public_key(public_key: bytes) -> bytes:
    """
    Validate a compressed or uncompressed point and return its
    uncompressed 65-byte form. Raises InvalidKey.
    """
    return _encode_public(_load_public(public_key))


def public_to_address(public_key: bytes) -> str:
    """Ethereum-style address: 0x + hex(keccak256(X || Y)[-20:])."""
    point  = normalize_public_key(public_key)
    digest = keccak.new(digest_bits=256, data=point[1:]).digest()
    return "0x" + digest[-20:].hex()


def generate_private_key() -> bytes:
    """Fresh random 32-byte secp256k1 private scalar."""
    key = ec.generate_private_key(_CURVE)
    return key.private_numbers().private_value.to_bytes(PRIVATE_KEY_SIZE, "big")


# ─────────────────────────────────────────────────────────────
# ECDH + HKDF
# ─────────────────────────────────────────────────────────────

def derive_shared_secret(private_key: bytes, public_key: bytes) -> bytes:
    """
    ECDH shared secret between our private key and their public key.

    derive_shared_secret(a.priv, b.pub) == derive_shared_secret(b.priv, a.pub)

    Raises InvalidKey for a malformed scalar, an off-curve point or the
    point at infinity.
    """
    return _load_private(private_key).exchange(ec.ECDH(), _load_public(public_key))


def strengthen_key(
    secret:         bytes,
    salt:           bytes,
    info:           str,
    size:           int,
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256,
) -> bytes:
    """
    HKDF extract-then-expand over weak DH key material.

    Same inputs always yield the same output; a different salt yields an
    unrelated key for the same secret.
    """
    algorithm = _HASHES[HashAlgorithm(hash_algorithm)]()
    if not isinstance(size, int) or size <= 0:
        raise ValueError(f"size must be a positive int, got {size!r}")
    return HKDF(
        algorithm= algorithm,
        length=    size,
        salt=      salt,
        info=      info.encode("utf-8"),
    ).derive(secret)


def derive_secret_key(
    secret:  bytes,
    options: CryptoOptions = DEFAULT_OPTIONS,
    salt:    Optional[bytes] = None,
) -> Tuple[bytes, KDFParams]:
    """
    Strengthen a shared secret with a fresh random salt (unless given).

    Returns (symmetric_key, kdf_params). kdf_params is public and
    travels inside the access tag.
    """
    params = KDFParams(
        hash_algorithm= options.hash_algorithm,
        salt=           salt if salt is not None else os.urandom(SALT_SIZE),
        info=           options.info,
        size=           options.size,
    )
    return rederive_secret_key(secret, params), params


def rederive_secret_key(secret: bytes, params: KDFParams) -> bytes:
    """Recompute the symmetric key from published KDFParams."""
    return strengthen_key(
        secret,
        salt=           params.salt,
        info=           params.info,
        size=           params.size,
        hash_algorithm= params.hash_algorithm,
    )


def random_key(size: int = 32) -> bytes:
    """Random secret key: random bytes passed through HKDF-SHA256."""
    return strengthen_key(
        os.urandom(size),
        salt= os.urandom(size),
        info= _RANDOM_KEY_INFO.decode("ascii"),
        size= size,
    )


# ─────────────────────────────────────────────────────────────
# Symmetric Cipher
# ─────────────────────────────────────────────────────────────

def _build_cipher(algorithm: CipherAlgorithm, key: bytes, iv: bytes) -> Cipher:
    """
    Raises ValueError on any structural mismatch. Callers translate
    into InvalidKey (encrypt side) or DecryptionError (decrypt side).
    """
    algorithm = CipherAlgorithm(algorithm)
    if len(key) != algorithm.key_size:
        raise ValueError(
            f"{algorithm.value} needs a {algorithm.key_size}-byte key, got {len(key)}"
        )
    if len(iv) != algorithm.iv_size:
        raise ValueError(
            f"{algorithm.value} needs a {algorithm.iv_size}-byte iv, got {len(iv)}"
        )
    if algorithm is CipherAlgorithm.CHACHA20:
        return Cipher(algorithms.ChaCha20(key, iv), mode=None)
    return Cipher(algorithms.AES(key), modes.CTR(iv))


def encrypt(
    plaintext: bytes,
    key:       bytes,
    iv:        Optional[bytes] = None,
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_256_CTR,
) -> CipherEnvelope:
    """Encrypt bytes. A random iv is generated when none is given."""
    algorithm = CipherAlgorithm(algorithm)
    iv        = iv if iv is not None else os.urandom(algorithm.iv_size)
    try:
        encryptor = _build_cipher(algorithm, key, iv).encryptor()
    except ValueError as exc:
        raise InvalidKey(str(exc), {"algorithm": algorithm.value}) from exc
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()
    return CipherEnvelope(algorithm=algorithm, iv=iv, ciphertext=ciphertext)


def decrypt(envelope: CipherEnvelope, key: bytes) -> bytes:
    """
    Decrypt an attached envelope.

    Raises DecryptionError on unknown algorithm, iv length or key size
    mismatch. A wrong key of the right size is NOT detected: the cipher
    is unauthenticated and returns garbage.
    """
    try:
        decryptor = _build_cipher(envelope.algorithm, key, envelope.iv).decryptor()
    except ValueError as exc:
        raise DecryptionError(str(exc)) from exc
    return decryptor.update(envelope.ciphertext) + decryptor.finalize()


class CipherStream:
    """
    Async byte stream passed through a stream cipher, chunk by chunk.

    The negotiated algorithm and iv are available before the first chunk
    is produced, so a caller can hand the stream to ContentStore.put()
    and still build the tag envelope afterwards.

    Single use: iterate once.
    """

    def __init__(
        self,
        source:    AsyncIterable[bytes],
        key:       bytes,
        iv:        bytes,
        algorithm: CipherAlgorithm,
        encrypting: bool,
    ) -> None:
        self.algorithm = CipherAlgorithm(algorithm)
        self.iv        = iv
        self._source   = source
        self._consumed = False

        cipher = _build_cipher(self.algorithm, key, iv)
        self._context = cipher.encryptor() if encrypting else cipher.decryptor()

    @property
    def envelope(self) -> CipherEnvelope:
        """Detached envelope describing this stream."""
        return CipherEnvelope(algorithm=self.algorithm, iv=self.iv)

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise RuntimeError("CipherStream can only be iterated once")
        self._consumed = True
        return self._transform()

    async def _transform(self) -> AsyncIterator[bytes]:
        async for chunk in self._source:
            if chunk:
                out = self._context.update(chunk)
                if out:
                    yield out
        tail = self._context.finalize()
        if tail:
            yield tail


def encrypt_stream(
    source:    AsyncIterable[bytes],
    key:       bytes,
    iv:        Optional[bytes] = None,
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_256_CTR,
) -> CipherStream:
    algorithm = CipherAlgorithm(algorithm)
    iv        = iv if iv is not None else os.urandom(algorithm.iv_size)
    try:
        return CipherStream(source, key, iv, algorithm, encrypting=True)
    except ValueError as exc:
        raise InvalidKey(str(exc), {"algorithm": algorithm.value}) from exc


def decrypt_stream(
    source:    AsyncIterable[bytes],
    key:       bytes,
    iv:        bytes,
    algorithm: CipherAlgorithm = CipherAlgorithm.AES_256_CTR,
) -> CipherStream:
    try:
        return CipherStream(source, key, iv, algorithm, encrypting=False)
    except ValueError as exc:
        raise DecryptionError(str(exc)) from exc


# ─────────────────────────────────────────────────────────────
# ECDSA
# ─────────────────────────────────────────────────────────────

def _check_digest(digest: bytes) -> None:
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_SIZE:
        raise ValueError(f"digest must be {DIGEST_SIZE} bytes")


def _recovery_candidates(r: int, s: int, digest: bytes) -> List[bytes]:
    """
    Both public keys consistent with (r, s, digest).
    Index 0 corresponds to R with even y, index 1 to odd y.
    """
    raw = Signature(r=r, s=s, recovery_id=0).to_bytes()
    keys = VerifyingKey.from_public_key_recovery_with_digest(
        raw,
        digest,
        curve=     SECP256k1,
        hashfunc=  hashlib.sha256,
        sigdecode= sigdecode_string,
    )
    return [vk.to_string("uncompressed") for vk in keys]


def sign(digest: bytes, private_key: bytes) -> Signature:
    """
    ECDSA-sign a 32-byte digest. The recovery id is chosen so that
    recover_public_key(signature, digest) returns our public key.
    """
    _check_digest(digest)
    key    = _load_private(private_key)
    der    = key.sign(bytes(digest), ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s   = decode_dss_signature(der)
    public = _encode_public(key.public_key())

    for recovery_id, candidate in enumerate(_recovery_candidates(r, s, bytes(digest))):
        if candidate == public:
            return Signature(r=r, s=s, recovery_id=recovery_id)

    raise InvalidKey("signature does not recover to the signing key")


def verify(signature: Signature, digest: bytes, public_key: bytes) -> bool:
    """
    Verify an ECDSA signature over a 32-byte digest.

    Returns:
        True if valid. False for ANY failure. Never raises.
    """
    try:
        _check_digest(digest)
        key = _load_public(public_key)
        der = encode_dss_signature(signature.r, signature.s)
        key.verify(der, bytes(digest), ec.ECDSA(Prehashed(hashes.SHA256())))
        return True
    except Exception:
        return False


def recover_public_key(signature: Signature, digest: bytes) -> bytes:
    """
    Recover the signer's uncompressed public key.
    Raises InvalidKey when the signature admits no such key.
    """
    _check_digest(digest)
    if signature.recovery_id not in (0, 1):
        raise InvalidKey(
            "recoveryId must be 0 or 1",
            {"recoveryId": signature.recovery_id},
        )
    if not (0 < signature.r < CURVE_ORDER and 0 < signature.s < CURVE_ORDER):
        raise InvalidKey("signature r/s outside [1, n-1]")
    try:
        candidates = _recovery_candidates(signature.r, signature.s, bytes(digest))
    except Exception as exc:
        raise InvalidKey(f"signature is not recoverable: {exc}") from exc
    return candidates[signature.recovery_id]
