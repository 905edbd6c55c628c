"""
fileforce/core/identity.py

A participant's keypair plus derived address.

The private key never appears in repr() and is never written anywhere
by this module. Persistent storage goes through fileforce.core.keystore.
"""

from dataclasses import dataclass, field

from fileforce.core.crypto import (
    derive_public_key,
    generate_private_key,
    normalize_public_key,
    public_to_address,
)
from fileforce.core.exceptions import InvalidKey


@dataclass(frozen=True)
class Identity:
    """
    secp256k1 identity.

    Invariants:
        public_key == derive_public_key(private_key)
        address    == public_to_address(public_key)
    """

    private_key: bytes = field(repr=False)
    public_key:  bytes
    address:     str

    def __post_init__(self) -> None:
        if derive_public_key(self.private_key) != normalize_public_key(self.public_key):
            raise InvalidKey("public key does not match private key")
        if public_to_address(self.public_key) != self.address:
            raise InvalidKey(
                "address does not match public key",
                {"address": self.address},
            )

    @classmethod
    def from_private_key(cls, private_key: bytes) -> "Identity":
        """Build an identity from a 32-byte scalar. Raises InvalidKey."""
        public_key = derive_public_key(private_key)
        return cls(
            private_key= bytes(private_key),
            public_key=  public_key,
            address=     public_to_address(public_key),
        )

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "Identity":
        text = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise InvalidKey("private key is not valid hex") from exc
        return cls.from_private_key(raw)

    @classmethod
    def generate(cls) -> "Identity":
        return cls.from_private_key(generate_private_key())

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    def __repr__(self) -> str:
        return f"Identity(address={self.address})"
