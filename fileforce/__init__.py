"""
fileforce/__init__.py

FileForce: encrypted file sharing over a content-addressed store and an
append-only event ledger.

A file is encrypted under a key only its owner and one recipient can
derive (ECDH on secp256k1 + HKDF), stored by content identifier, and
described by a signed access tag. Tags can be re-shared (delegated),
announced on the ledger, harvested by watchers, and pulled from
redundant providers.
"""

__version__ = "0.3.0"

from fileforce.core.models import (
    AccessTag,
    CipherAlgorithm,
    CipherEnvelope,
    CryptoOptions,
    DelegationRecord,
    HashAlgorithm,
    KDFParams,
    Signature,
    VerificationResult,
)
from fileforce.core.identity import Identity
from fileforce.core.keystore import Keystore
from fileforce.core.delegation import Delegation, DelegationEngine
from fileforce.core.exceptions import (
    ContentMismatch,
    DecryptionError,
    FileForceError,
    InvalidKey,
    LedgerSubscriptionError,
    TagFormatError,
    UnauthorizedAccess,
    UnavailableContent,
)
from fileforce.ledger import BlockRange, EventKind, Harvester, HarvestReport, JsonlEventLedger
from fileforce.store import FileStore, MirrorNetwork, PullStatus, RedundantRetrieval
from fileforce.config import Settings
from fileforce.service import FileForce

__all__ = [
    # Data model
    "AccessTag",
    "CipherAlgorithm",
    "CipherEnvelope",
    "CryptoOptions",
    "DelegationRecord",
    "HashAlgorithm",
    "KDFParams",
    "Signature",
    "VerificationResult",
    # Identities
    "Identity",
    "Keystore",
    # Engine
    "Delegation",
    "DelegationEngine",
    # Ledger
    "BlockRange",
    "EventKind",
    "Harvester",
    "HarvestReport",
    "JsonlEventLedger",
    # Store
    "FileStore",
    "MirrorNetwork",
    "PullStatus",
    "RedundantRetrieval",
    # Service
    "FileForce",
    "Settings",
    # Errors
    "FileForceError",
    "ContentMismatch",
    "DecryptionError",
    "InvalidKey",
    "LedgerSubscriptionError",
    "TagFormatError",
    "UnauthorizedAccess",
    "UnavailableContent",
]
