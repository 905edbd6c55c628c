"""
fileforce/store/base.py

Content store and provider network interfaces.

A ContentStore addresses blobs by an identifier derived from their bytes.
A ProviderNetwork locates remote peers that hold a blob and streams it
from one of them. Both are consumed by DelegationEngine and
RedundantRetrieval; concrete adapters live beside this module.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Optional, Set, Union

from fileforce.core.exceptions import UnavailableContent

CHUNK_SIZE = 64 * 1024

ByteSource = Union[bytes, bytearray, AsyncIterable[bytes]]


async def iter_bytes(data: bytes, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Present an in-memory blob as an async byte stream."""
    view = memoryview(bytes(data))
    for offset in range(0, len(view), chunk_size):
        yield bytes(view[offset : offset + chunk_size])


def as_stream(source: ByteSource) -> AsyncIterable[bytes]:
    if isinstance(source, (bytes, bytearray)):
        return iter_bytes(source)
    return source


@dataclass(frozen=True, order=True)
class PeerRef:
    """A remote provider. Ordering is by peer_id, giving a stable try order."""

    peer_id: str
    address: str = ""

    def __str__(self) -> str:
        return self.peer_id


class ContentStore(ABC):
    """Content-addressed blob storage."""

    @abstractmethod
    async def put(
        self,
        stream: ByteSource,
        expected_identifier: Optional[str] = None,
    ) -> str:
        """
        Store a byte stream and return its content identifier.

        With expected_identifier set, the blob is discarded and
        ContentMismatch raised if the computed identifier differs.
        """

    @abstractmethod
    def read(self, identifier: str) -> AsyncIterator[bytes]:
        """Async byte stream of a stored blob. Raises UnavailableContent."""

    @abstractmethod
    async def has(self, identifier: str) -> bool:
        ...

    async def get(self, identifier: str, sink: Any) -> int:
        """
        Write a stored blob into sink, returning the byte count.
        sink.write may be sync or async.
        """
        written = 0
        async for chunk in self.read(identifier):
            result = sink.write(chunk)
            if inspect.isawaitable(result):
                await result
            written += len(chunk)
        return written

    async def read_bytes(self, identifier: str) -> bytes:
        chunks = []
        async for chunk in self.read(identifier):
            chunks.append(chunk)
        return b"".join(chunks)


class ProviderNetwork(ABC):
    """Peer discovery and transfer."""

    @abstractmethod
    async def providers(self, identifier: str) -> Set[PeerRef]:
        """Peers advertising identifier. Read-only."""

    @abstractmethod
    def fetch(self, peer: PeerRef, identifier: str) -> AsyncIterator[bytes]:
        """Stream a blob from one peer."""


def unavailable(identifier: str, reason: str = "content not found") -> UnavailableContent:
    return UnavailableContent(reason, {"identifier": identifier})
