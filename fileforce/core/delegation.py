"""
fileforce/core/delegation.py

DelegationEngine — seal, open, verify and re-share access tags.

Tag lifecycle:

    Unsealed --create_tag--> Sealed --decrypt_tag--> Decrypted
                               |
                               +--delegate_tag--> Delegated (new tag minted)

Rules:
    - Only the holder of tag.dest_public_key's private key may decrypt
      or delegate a tag (UnauthorizedAccess otherwise).
    - A tag is never modified. Delegation produces a new tag signed by
      the delegator, with a fresh salt and fresh iv.
    - verify_tag() and verify_provenance() never raise.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Optional, Tuple

from fileforce.core import codec, crypto
from fileforce.core.exceptions import (
    DecryptionError,
    FileForceError,
    UnauthorizedAccess,
)
from fileforce.core.identity import Identity
from fileforce.core.models import (
    DEFAULT_OPTIONS,
    AccessTag,
    CryptoOptions,
    DelegationRecord,
    VerificationResult,
)
from fileforce.store.base import ByteSource, ContentStore, as_stream

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delegation:
    """Outcome of delegate_tag()."""

    tag:                AccessTag
    content_identifier: str
    record:             DelegationRecord


class DelegationEngine:
    """
    Cryptographic access control over a ContentStore.

    Args:
        store:   where ciphertexts and encoded tags are kept
        options: cipher / KDF choices for newly sealed tags
    """

    def __init__(self, store: ContentStore, options: CryptoOptions = DEFAULT_OPTIONS):
        self.store   = store
        self.options = options

    # ─────────────────────────────────────────────────────────
    # Seal
    # ─────────────────────────────────────────────────────────

    async def create_tag(
        self,
        plaintext:       ByteSource,
        owner:           Identity,
        dest_public_key: bytes,
    ) -> Tuple[AccessTag, str]:
        """
        Encrypt plaintext for dest_public_key and store the ciphertext.

        Returns (tag, content_identifier). dest_public_key equal to the
        owner's key means self-encryption.

        Raises InvalidKey for a malformed destination key.
        """
        dest_public_key = crypto.normalize_public_key(dest_public_key)

        secret = crypto.derive_shared_secret(owner.private_key, dest_public_key)
        key, kdf_params = crypto.derive_secret_key(secret, self.options)

        stream = crypto.encrypt_stream(
            as_stream(plaintext),
            key,
            algorithm= self.options.algorithm,
        )
        content_identifier = await self.store.put(stream)

        digest    = codec.signing_digest(content_identifier, dest_public_key, kdf_params)
        signature = crypto.sign(digest, owner.private_key)

        tag = AccessTag(
            owner_public_key=   owner.public_key,
            dest_public_key=    dest_public_key,
            kdf_params=         kdf_params,
            cipher_envelope=    stream.envelope,
            content_identifier= content_identifier,
            signature=          signature,
        )
        logger.info(
            "sealed %s for %s",
            content_identifier,
            "self" if tag.is_self_encrypted else tag.dest_address,
        )
        return tag, content_identifier

    # ─────────────────────────────────────────────────────────
    # Open
    # ─────────────────────────────────────────────────────────

    def _authorize(self, tag: AccessTag, reader: Identity) -> None:
        if reader.public_key != tag.dest_public_key:
            raise UnauthorizedAccess(
                "reader is not the destination of this tag",
                {
                    "identifier": tag.content_identifier,
                    "reader":     reader.address,
                    "dest":       tag.dest_address,
                },
            )

    def plaintext_stream(self, tag: AccessTag, reader: Identity) -> AsyncIterator[bytes]:
        """
        Authorize, re-derive the key and return a lazily decrypted stream
        of the tag's content.

        Raises UnauthorizedAccess immediately; store and cipher failures
        surface while iterating.
        """
        self._authorize(tag, reader)

        try:
            secret = crypto.derive_shared_secret(reader.private_key, tag.owner_public_key)
            key    = crypto.rederive_secret_key(secret, tag.kdf_params)
        except (FileForceError, ValueError) as exc:
            raise DecryptionError(
                f"cannot re-derive tag key: {exc}",
                {"identifier": tag.content_identifier},
            ) from exc

        envelope = tag.cipher_envelope
        stream = crypto.decrypt_stream(
            self.store.read(tag.content_identifier),
            key,
            envelope.iv,
            envelope.algorithm,
        )
        return stream.__aiter__()

    async def decrypt_tag(self, tag: AccessTag, reader: Identity) -> bytes:
        """
        Recover the plaintext behind tag.

        Raises:
            UnauthorizedAccess: reader is not the destination
            DecryptionError:    key re-derivation or cipher failure
            UnavailableContent: ciphertext not in the store
        """
        chunks = []
        async for chunk in self.plaintext_stream(tag, reader):
            chunks.append(chunk)
        return b"".join(chunks)

    async def decrypt_tag_to(self, tag: AccessTag, reader: Identity, sink: Any) -> int:
        """Streaming decrypt into sink (sync or async write). Returns bytes written."""
        written = 0
        async for chunk in self.plaintext_stream(tag, reader):
            result = sink.write(chunk)
            if inspect.isawaitable(result):
                await result
            written += len(chunk)
        return written

    # ─────────────────────────────────────────────────────────
    # Verify
    # ─────────────────────────────────────────────────────────

    def verify_tag(self, tag: AccessTag) -> VerificationResult:
        """
        Check that tag was signed by tag.owner_public_key.

        Never raises: every failure becomes VerificationResult(valid=False).
        """
        try:
            digest = codec.tag_digest(tag)
            signer = crypto.recover_public_key(tag.signature, digest)
        except Exception as exc:
            return VerificationResult(
                valid=   False,
                reason=  f"signature not recoverable: {exc}",
                details= {"identifier": tag.content_identifier},
            )

        signer_address = crypto.public_to_address(signer)

        try:
            owner = crypto.normalize_public_key(tag.owner_public_key)
        except Exception:
            owner = b""

        if signer != owner:
            return VerificationResult(
                valid=          False,
                signer_address= signer_address,
                reason=         "signer is not the tag owner",
                details=        {"identifier": tag.content_identifier},
            )

        if not crypto.verify(tag.signature, digest, owner):
            return VerificationResult(
                valid=          False,
                signer_address= signer_address,
                reason=         "signature does not verify",
                details=        {"identifier": tag.content_identifier},
            )

        return VerificationResult(valid=True, signer_address=signer_address)

    def verify_provenance(self, tags: Iterable[AccessTag]) -> VerificationResult:
        """
        Verify a delegation chain, origin first.

        Each hop must be validly signed, and each hop's owner must be the
        previous hop's destination. Never raises.
        """
        chain = list(tags)
        if not chain:
            return VerificationResult(valid=False, reason="empty chain")

        previous: Optional[AccessTag] = None
        for index, tag in enumerate(chain):
            result = self.verify_tag(tag)
            if not result:
                result.details["hop"] = index
                return result
            if previous is not None and tag.owner_public_key != previous.dest_public_key:
                return VerificationResult(
                    valid=          False,
                    signer_address= result.signer_address,
                    reason=         "hop owner is not the previous destination",
                    details=        {"hop": index, "identifier": tag.content_identifier},
                )
            previous = tag

        return VerificationResult(
            valid=          True,
            signer_address= chain[0].owner_address,
            details=        {"hops": len(chain)},
        )

    # ─────────────────────────────────────────────────────────
    # Delegate
    # ─────────────────────────────────────────────────────────

    async def delegate_tag(
        self,
        tag:                   AccessTag,
        reader:                Identity,
        new_dest_public_key:   bytes,
        origin_tag_identifier: Optional[str] = None,
    ) -> Delegation:
        """
        Re-share tag's content with new_dest_public_key.

        The plaintext is streamed from the origin ciphertext straight
        into a fresh encryption under reader's key. Both the origin tag
        and the new tag are stored; the record links their identifiers.

        Raises UnauthorizedAccess when reader is not tag's destination.
        """
        plaintext = self.plaintext_stream(tag, reader)
        new_tag, new_content_identifier = await self.create_tag(
            plaintext, reader, new_dest_public_key
        )

        if origin_tag_identifier is None:
            origin_tag_identifier = await self.store_tag(tag)
        new_tag_identifier = await self.store_tag(new_tag)

        record = DelegationRecord(
            origin_tag_identifier=     origin_tag_identifier,
            new_tag_identifier=        new_tag_identifier,
            origin_content_identifier= tag.content_identifier,
            new_content_identifier=    new_content_identifier,
        )
        logger.info("delegated %s -> %s", origin_tag_identifier, new_tag_identifier)
        return Delegation(
            tag=                new_tag,
            content_identifier= new_content_identifier,
            record=             record,
        )

    # ─────────────────────────────────────────────────────────
    # Tag storage
    # ─────────────────────────────────────────────────────────

    async def store_tag(self, tag: AccessTag) -> str:
        """Store the encoded tag as a blob. Returns its identifier."""
        return await self.store.put(codec.encode(tag))

    async def load_tag(self, identifier: str) -> AccessTag:
        """Raises UnavailableContent or TagFormatError."""
        return codec.decode(await self.store.read_bytes(identifier))
