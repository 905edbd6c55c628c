"""
FileForce Exception Hierarchy

All exceptions inherit from FileForceError for easy catching.

Retry policy:
    InvalidKey, UnauthorizedAccess, DecryptionError, TagFormatError
        cryptographic / authorization failures. Never retried.
    UnavailableContent
        every known provider was tried. The caller may retry later.
    LedgerSubscriptionError
        a single delivery failed. Skipped unless fail-fast is configured.
"""


class FileForceError(Exception):
    """Base exception for all FileForce errors"""

    kind = "FileForceError"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def identifier(self):
        """Offending content/tag identifier, when one is known."""
        return self.details.get("identifier")

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class InvalidKey(FileForceError):
    """Raised when key material is malformed or out of range"""
    kind = "InvalidKey"


class UnauthorizedAccess(FileForceError):
    """Raised when the reader's key is not the tag's destination key"""
    kind = "UnauthorizedAccess"


class DecryptionError(FileForceError):
    """Raised on structural cipher failure (wrong key and corruption look alike)"""
    kind = "DecryptionError"


class UnavailableContent(FileForceError):
    """Raised when no provider could supply a content identifier"""
    kind = "UnavailableContent"


class ContentMismatch(FileForceError):
    """Raised when stored bytes do not hash to the expected identifier"""
    kind = "ContentMismatch"


class LedgerSubscriptionError(FileForceError):
    """Raised (or delivered) when a ledger event cannot be delivered"""
    kind = "LedgerSubscriptionError"


class TagFormatError(FileForceError):
    """Raised when an encoded access tag cannot be decoded"""
    kind = "TagFormatError"


class KeystoreError(FileForceError):
    """Raised when keystore operations fail"""
    kind = "KeystoreError"


class InvalidPassphrase(KeystoreError):
    """Raised when a key file MAC does not match the passphrase"""
    kind = "InvalidPassphrase"


class AccountNotFound(KeystoreError):
    """Raised when no key file exists for an account"""
    kind = "AccountNotFound"


class ConfigError(FileForceError):
    """Raised when settings are missing or invalid"""
    kind = "ConfigError"
