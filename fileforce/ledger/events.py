"""
fileforce/ledger/events.py

Event ledger vocabulary and interface.

Event kinds and their payloads (camelCase, as stored on the ledger):

    FileAppeared   {contentIdentifier, ownerAddress}
    TagRegistered  {contentIdentifier, fileIdentifier, ownerAddress, destAddress}
                   contentIdentifier is the stored tag blob
    TagDelegated   {originTagIdentifier, newTagIdentifier,
                    originContentIdentifier, newContentIdentifier}

Events are immutable and totally ordered by block height.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple


class EventKind(str, Enum):
    FILE_APPEARED  = "FileAppeared"
    TAG_REGISTERED = "TagRegistered"
    TAG_DELEGATED  = "TagDelegated"


# Payload fields carrying content identifiers worth harvesting, per kind.
IDENTIFIER_FIELDS: Dict[EventKind, Tuple[str, ...]] = {
    EventKind.FILE_APPEARED:  ("contentIdentifier",),
    EventKind.TAG_REGISTERED: ("contentIdentifier",),
    EventKind.TAG_DELEGATED:  ("originContentIdentifier", "newContentIdentifier"),
}

REQUIRED_FIELDS: Dict[EventKind, Tuple[str, ...]] = {
    EventKind.FILE_APPEARED:  ("contentIdentifier", "ownerAddress"),
    EventKind.TAG_REGISTERED: ("contentIdentifier", "fileIdentifier", "ownerAddress", "destAddress"),
    EventKind.TAG_DELEGATED:  (
        "originTagIdentifier",
        "newTagIdentifier",
        "originContentIdentifier",
        "newContentIdentifier",
    ),
}


@dataclass(frozen=True)
class LedgerEvent:
    kind:         EventKind
    block_height: int
    payload:      Dict[str, Any] = field(default_factory=dict)

    def identifiers(self) -> List[str]:
        """Content identifiers named by this event, in payload order."""
        return [
            self.payload[name]
            for name in IDENTIFIER_FIELDS[EventKind(self.kind)]
            if self.payload.get(name)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind":        EventKind(self.kind).value,
            "blockHeight": self.block_height,
            "payload":     dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEvent":
        height = data["blockHeight"]
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            raise ValueError(f"blockHeight must be a non-negative int, got {height!r}")
        payload = data["payload"]
        if not isinstance(payload, dict):
            raise ValueError("payload must be an object")
        return cls(kind=EventKind(data["kind"]), block_height=height, payload=payload)


def validate_payload(kind: EventKind, payload: Mapping[str, Any]) -> None:
    """Raises ValueError naming the missing fields."""
    missing = [name for name in REQUIRED_FIELDS[EventKind(kind)] if name not in payload]
    if missing:
        raise ValueError(f"{EventKind(kind).value} payload missing {', '.join(missing)}")


@dataclass(frozen=True)
class BlockRange:
    """
    Inclusive block range. to_block=None means listen indefinitely.
    """

    from_block: int = 0
    to_block:   Optional[int] = None

    def __post_init__(self) -> None:
        if self.from_block < 0:
            raise ValueError("from_block must be >= 0")
        if self.to_block is not None and self.to_block < self.from_block:
            raise ValueError("to_block must be >= from_block")

    @property
    def bounded(self) -> bool:
        return self.to_block is not None

    def contains(self, height: int) -> bool:
        if height < self.from_block:
            return False
        return self.to_block is None or height <= self.to_block


@dataclass(frozen=True)
class Delivery:
    """One subscription item: an event, or the error that replaced it."""

    event: Optional[LedgerEvent] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def matches(event: LedgerEvent, event_filter: Optional[Mapping[str, Any]]) -> bool:
    """Payload equality filter. None or {} matches everything."""
    if not event_filter:
        return True
    return all(event.payload.get(key) == value for key, value in event_filter.items())


class Subscription(ABC):
    """
    Lazy async iterator of Delivery items. Single use: iterating a
    subscription a second time raises LedgerSubscriptionError.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[Delivery]:
        ...

    @abstractmethod
    async def aclose(self) -> None:
        """Release the subscription. Idempotent."""

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class EventLedger(ABC):
    """Append-only, totally ordered event log."""

    @abstractmethod
    async def publish(self, kind: EventKind, payload: Mapping[str, Any]) -> LedgerEvent:
        """Append an event at the next block height."""

    @abstractmethod
    async def latest_block(self) -> int:
        """Height of the newest event, or 0 for an empty ledger."""

    @abstractmethod
    def subscribe(
        self,
        kind:         EventKind,
        event_filter: Optional[Mapping[str, Any]] = None,
        block_range:  BlockRange = BlockRange(),
    ) -> Subscription:
        ...
