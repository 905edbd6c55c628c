"""
fileforce/store/redundant.py

RedundantRetrieval — make a content identifier local.

Algorithm:
    1. already local  -> PullStatus(LOCAL), zero provider queries
    2. ask the network for providers (read-only)
    3. try candidates one at a time, in PeerRef order
    4. stream each candidate into store.put(expected_identifier=id)
       - success            -> PullStatus(FETCHED, provider)
       - any failure        -> recorded, next candidate
         (including ContentMismatch: bytes that do not hash to id)
    5. none left      -> UnavailableContent carrying every attempt

Concurrent pulls of the same identifier are serialized, so the second
caller observes the first caller's result as LOCAL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

import anyio

from fileforce.core.exceptions import UnavailableContent
from fileforce.store.base import ContentStore, PeerRef, ProviderNetwork

logger = logging.getLogger(__name__)


class PullState(str, Enum):
    LOCAL   = "local"
    FETCHED = "fetched"


@dataclass(frozen=True)
class PullAttempt:
    peer:  PeerRef
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"peer": self.peer.peer_id, "error": self.error}


@dataclass
class PullStatus:
    identifier: str
    state:      PullState
    provider:   Optional[PeerRef] = None
    attempts:   List[PullAttempt] = field(default_factory=list)

    @property
    def fetched(self) -> bool:
        return self.state is PullState.FETCHED


class RedundantRetrieval:
    """
    Fetch-and-persist over a ContentStore and ProviderNetwork.

    Per-provider attempts are strictly sequential. Nothing here has a
    timeout; bound a pull with anyio.fail_after() if needed.
    """

    def __init__(self, store: ContentStore, network: ProviderNetwork) -> None:
        self.store   = store
        self.network = network
        self._locks: Dict[str, anyio.Lock] = {}

    def _lock_for(self, identifier: str) -> anyio.Lock:
        lock = self._locks.get(identifier)
        if lock is None:
            lock = self._locks[identifier] = anyio.Lock()
        return lock

    async def providers(self, identifier: str) -> Set[PeerRef]:
        """Peers currently advertising identifier. Read-only."""
        return await self.network.providers(identifier)

    async def pull(self, identifier: str) -> PullStatus:
        """
        Ensure identifier is in the local store.

        Raises:
            UnavailableContent: every provider failed, or none exist.
                details["attempts"] lists each {peer, error}.
        """
        async with self._lock_for(identifier):
            try:
                if await self.store.has(identifier):
                    return PullStatus(identifier=identifier, state=PullState.LOCAL)
                return await self._pull_remote(identifier)
            finally:
                if not self._lock_for(identifier).statistics().tasks_waiting:
                    self._locks.pop(identifier, None)

    async def _pull_remote(self, identifier: str) -> PullStatus:
        try:
            candidates = sorted(await self.network.providers(identifier))
        except Exception as exc:
            raise UnavailableContent(
                f"provider lookup failed: {exc}",
                {"identifier": identifier, "attempts": []},
            ) from exc

        attempts: List[PullAttempt] = []
        for peer in candidates:
            try:
                await self.store.put(
                    self.network.fetch(peer, identifier),
                    expected_identifier=identifier,
                )
            except Exception as exc:
                logger.warning("pull %s from %s failed: %s", identifier, peer, exc)
                attempts.append(PullAttempt(peer=peer, error=f"{type(exc).__name__}: {exc}"))
                continue

            logger.info("pulled %s from %s", identifier, peer)
            return PullStatus(
                identifier= identifier,
                state=      PullState.FETCHED,
                provider=   peer,
                attempts=   attempts,
            )

        reason = "no providers" if not candidates else "all providers failed"
        raise UnavailableContent(
            reason,
            {
                "identifier": identifier,
                "attempts":   [attempt.to_dict() for attempt in attempts],
            },
        )

    def as_handler(self) -> Callable[[str], Awaitable[PullStatus]]:
        """Harvester handler that pulls each harvested identifier."""
        return self.pull
