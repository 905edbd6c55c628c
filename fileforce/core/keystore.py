"""
fileforce/core/keystore.py

Passphrase-protected identity storage (Web3 Secret Storage, version 3).

Key file layout:

    {
      "version": 3,
      "id":      uuid4,
      "address": hex address without 0x,
      "crypto": {
        "cipher":       "aes-128-ctr",
        "cipherparams": {"iv": hex},
        "ciphertext":   hex,
        "kdf":          "scrypt" | "pbkdf2",
        "kdfparams":    {...},
        "mac":          hex(keccak256(derived[16:32] || ciphertext))
      }
    }

Files are named UTC--<timestamp>--<address> inside the keystore
directory, so key files produced by other Ethereum tooling load as-is.
"""

import hmac
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from Crypto.Hash import keccak
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from fileforce.core.exceptions import (
    AccountNotFound,
    InvalidKey,
    InvalidPassphrase,
    KeystoreError,
)
from fileforce.core.identity import Identity

logger = logging.getLogger(__name__)

KEYSTORE_VERSION = 3
DKLEN            = 32

DEFAULT_SCRYPT = {"n": 262144, "r": 8, "p": 1}
DEFAULT_PBKDF2 = {"c": 262144, "prf": "hmac-sha256"}


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def _normalize_address(account: str) -> str:
    account = account.lower()
    return account[2:] if account.startswith("0x") else account


def _derive_key(passphrase: str, kdf: str, params: Dict[str, Any]) -> bytes:
    secret = passphrase.encode("utf-8")
    salt   = bytes.fromhex(params["salt"])
    length = params.get("dklen", DKLEN)

    if kdf == "scrypt":
        return Scrypt(
            salt=   salt,
            length= length,
            n=      params["n"],
            r=      params["r"],
            p=      params["p"],
        ).derive(secret)

    if kdf == "pbkdf2":
        if params.get("prf", "hmac-sha256") != "hmac-sha256":
            raise KeystoreError("unsupported pbkdf2 prf", {"prf": params.get("prf")})
        return PBKDF2HMAC(
            algorithm=  hashes.SHA256(),
            length=     length,
            salt=       salt,
            iterations= params["c"],
        ).derive(secret)

    raise KeystoreError("unsupported key derivation function", {"kdf": kdf})


def _aes_128_ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    context = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return context.update(data) + context.finalize()


def encrypt_key_file(
    identity:   Identity,
    passphrase: str,
    kdf:        str = "scrypt",
    work:       Optional[int] = None,
) -> Dict[str, Any]:
    """
    Build a v3 key file dict for identity.

    work overrides the scrypt n / pbkdf2 iteration count.
    """
    salt = os.urandom(32)
    if kdf == "scrypt":
        params = dict(DEFAULT_SCRYPT)
        if work is not None:
            params["n"] = work
    elif kdf == "pbkdf2":
        params = dict(DEFAULT_PBKDF2)
        if work is not None:
            params["c"] = work
    else:
        raise KeystoreError("unsupported key derivation function", {"kdf": kdf})
    params.update({"dklen": DKLEN, "salt": salt.hex()})

    derived    = _derive_key(passphrase, kdf, params)
    iv         = os.urandom(16)
    ciphertext = _aes_128_ctr(derived[:16], iv, identity.private_key)

    return {
        "version": KEYSTORE_VERSION,
        "id":      str(uuid.uuid4()),
        "address": _normalize_address(identity.address),
        "crypto": {
            "cipher":       "aes-128-ctr",
            "cipherparams": {"iv": iv.hex()},
            "ciphertext":   ciphertext.hex(),
            "kdf":          kdf,
            "kdfparams":    params,
            "mac":          _keccak256(derived[16:32] + ciphertext).hex(),
        },
    }


def decrypt_key_file(key_file: Dict[str, Any], passphrase: str) -> Identity:
    """
    Recover the identity in a v3 key file.

    Raises InvalidPassphrase on MAC mismatch, KeystoreError on an
    unsupported or malformed file.
    """
    try:
        if key_file.get("version") != KEYSTORE_VERSION:
            raise KeystoreError("unsupported key file version", {"version": key_file.get("version")})

        crypto_section = key_file.get("crypto") or key_file["Crypto"]
        if crypto_section["cipher"] != "aes-128-ctr":
            raise KeystoreError("unsupported cipher", {"cipher": crypto_section["cipher"]})

        ciphertext = bytes.fromhex(crypto_section["ciphertext"])
        iv         = bytes.fromhex(crypto_section["cipherparams"]["iv"])
        derived    = _derive_key(passphrase, crypto_section["kdf"], crypto_section["kdfparams"])
        mac        = bytes.fromhex(crypto_section["mac"])
    except (KeyError, TypeError, ValueError) as exc:
        raise KeystoreError(f"malformed key file: {exc}") from exc

    if not hmac.compare_digest(_keccak256(derived[16:32] + ciphertext), mac):
        raise InvalidPassphrase(
            "passphrase does not unlock this key",
            {"address": key_file.get("address")},
        )

    try:
        identity = Identity.from_private_key(_aes_128_ctr(derived[:16], iv, ciphertext))
    except InvalidKey as exc:
        raise KeystoreError(f"key file holds an invalid private key: {exc}") from exc

    expected = key_file.get("address")
    if expected and _normalize_address(expected) != _normalize_address(identity.address):
        raise KeystoreError(
            "key file address does not match its private key",
            {"address": expected},
        )
    return identity


class Keystore:
    """
    Directory of v3 key files.

    Args:
        directory: keystore directory (created on first import)
    """

    def __init__(self, directory):
        self.directory = Path(directory).expanduser()

    def _key_files(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(p for p in self.directory.iterdir() if p.is_file())

    def _load(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.debug("skipping unreadable key file %s", path)
            return None
        return data if isinstance(data, dict) and "address" in data else None

    def accounts(self) -> List[str]:
        """Addresses ("0x..." lowercase) with a key file in this keystore."""
        found = []
        for path in self._key_files():
            data = self._load(path)
            if data is not None:
                found.append("0x" + _normalize_address(data["address"]))
        return found

    def find(self, account: str) -> Path:
        """Path of the key file for account. Raises AccountNotFound."""
        wanted = _normalize_address(account)
        for path in self._key_files():
            data = self._load(path)
            if data is not None and _normalize_address(data["address"]) == wanted:
                return path
        raise AccountNotFound(
            "no key file for account",
            {"account": account, "keystore": str(self.directory)},
        )

    def unlock(self, account: str, passphrase: str) -> Identity:
        """
        Load and decrypt the identity for account.

        Raises AccountNotFound, InvalidPassphrase.
        """
        path = self.find(account)
        identity = decrypt_key_file(self._load(path), passphrase)
        logger.info("unlocked %s", identity.address)
        return identity

    def import_identity(
        self,
        identity:   Identity,
        passphrase: str,
        kdf:        str = "scrypt",
        work:       Optional[int] = None,
    ) -> Path:
        """Write identity as a new key file. Returns its path."""
        key_file  = encrypt_key_file(identity, passphrase, kdf=kdf, work=work)
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%fZ")
        path      = self.directory / f"UTC--{timestamp}--{key_file['address']}"

        self.directory.mkdir(parents=True, exist_ok=True)
        with open(path, "x", encoding="utf-8") as f:
            json.dump(key_file, f)
        os.chmod(path, 0o600)

        logger.info("stored key file for %s", identity.address)
        return path

    def new_account(self, passphrase: str, kdf: str = "scrypt", work: Optional[int] = None) -> Identity:
        identity = Identity.generate()
        self.import_identity(identity, passphrase, kdf=kdf, work=work)
        return identity
