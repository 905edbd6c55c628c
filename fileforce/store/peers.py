"""
fileforce/store/peers.py

MirrorNetwork: a ProviderNetwork over a fixed set of peer FileStores.

Each configured mirror is a local (or mounted) FileStore root that
stands in for a remote peer. providers() lists the mirrors currently
holding a blob; fetch() streams it from one of them.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, Mapping, Set, Union

from fileforce.store.base import PeerRef, ProviderNetwork, unavailable
from fileforce.store.filestore import FileStore

logger = logging.getLogger(__name__)


class MirrorNetwork(ProviderNetwork):

    def __init__(self, mirrors: Mapping[str, Union[FileStore, str]]) -> None:
        self._mirrors: Dict[PeerRef, FileStore] = {}
        for peer_id, mirror in mirrors.items():
            store = mirror if isinstance(mirror, FileStore) else FileStore(mirror)
            self._mirrors[PeerRef(peer_id=peer_id, address=store.root)] = store

    @property
    def peers(self) -> Set[PeerRef]:
        return set(self._mirrors)

    async def providers(self, identifier: str) -> Set[PeerRef]:
        found = {peer for peer, store in self._mirrors.items() if store.exists(identifier)}
        logger.debug("%d provider(s) for %s", len(found), identifier)
        return found

    async def fetch(self, peer: PeerRef, identifier: str) -> AsyncIterator[bytes]:
        store = self._mirrors.get(peer)
        if store is None:
            raise unavailable(identifier, f"unknown peer {peer.peer_id}")
        async for chunk in store.read(identifier):
            yield chunk
