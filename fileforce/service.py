"""
fileforce/service.py

FileForce — one object wiring engine, store, ledger and retrieval.

    add        seal a file for its owner (or a recipient), store the tag,
               announce FileAppeared + TagRegistered
    delegate   re-share a stored tag, announce TagRegistered + TagDelegated
    decrypt    stream a stored tag's plaintext into a sink
    verify     check a stored tag's signature
    watch      run a handler over ledger events
    harvest    pull every identifier announced by ledger events
    pull       make one identifier local
    providers  list peers holding an identifier

Tags and ciphertexts missing from the local store are pulled from the
provider network before use.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Set

from fileforce.config import Settings
from fileforce.core.delegation import Delegation, DelegationEngine
from fileforce.core.identity import Identity
from fileforce.core.models import DEFAULT_OPTIONS, AccessTag, CryptoOptions, VerificationResult
from fileforce.ledger.events import BlockRange, EventKind, EventLedger
from fileforce.ledger.harvester import Handler, Harvester, HarvestError, HarvestReport
from fileforce.ledger.ledger import JsonlEventLedger
from fileforce.store.base import ByteSource, ContentStore, PeerRef, ProviderNetwork
from fileforce.store.filestore import FileStore
from fileforce.store.peers import MirrorNetwork
from fileforce.store.redundant import PullStatus, RedundantRetrieval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddResult:
    tag:                AccessTag
    tag_identifier:     str
    content_identifier: str


class FileForce:

    def __init__(
        self,
        store:                   ContentStore,
        ledger:                  EventLedger,
        network:                 Optional[ProviderNetwork] = None,
        options:                 CryptoOptions = DEFAULT_OPTIONS,
        event_offset:            int = 100,
        fail_fast:               bool = False,
        max_concurrent_handlers: Optional[int] = None,
    ):
        self.store        = store
        self.ledger       = ledger
        self.engine       = DelegationEngine(store, options)
        self.retrieval    = RedundantRetrieval(store, network or MirrorNetwork({}))
        self.event_offset = event_offset

        self.fail_fast               = fail_fast
        self.max_concurrent_handlers = max_concurrent_handlers

    @classmethod
    def from_settings(cls, settings: Settings) -> "FileForce":
        return cls(
            store=                   FileStore(settings.store_root),
            ledger=                  JsonlEventLedger(settings.ledger_path, settings.poll_interval),
            network=                 MirrorNetwork({peer: str(root) for peer, root in settings.mirrors.items()}),
            options=                 settings.crypto,
            event_offset=            settings.event_offset,
            fail_fast=               settings.fail_fast,
            max_concurrent_handlers= settings.max_concurrent_handlers,
        )

    # ── Tags ─────────────────────────────────────────────────

    async def add(
        self,
        source:          ByteSource,
        owner:           Identity,
        dest_public_key: Optional[bytes] = None,
    ) -> AddResult:
        """Seal source for dest_public_key (default: the owner) and announce it."""
        dest_public_key = dest_public_key or owner.public_key

        tag, content_identifier = await self.engine.create_tag(source, owner, dest_public_key)
        tag_identifier = await self.engine.store_tag(tag)

        await self.ledger.publish(EventKind.FILE_APPEARED, {
            "contentIdentifier": content_identifier,
            "ownerAddress":      owner.address,
        })
        await self.ledger.publish(EventKind.TAG_REGISTERED, {
            "contentIdentifier": tag_identifier,
            "fileIdentifier":    content_identifier,
            "ownerAddress":      owner.address,
            "destAddress":       tag.dest_address,
        })
        return AddResult(
            tag=                tag,
            tag_identifier=     tag_identifier,
            content_identifier= content_identifier,
        )

    async def tag_by_identifier(self, tag_identifier: str) -> AccessTag:
        """Load a tag, pulling it from providers if needed."""
        await self.retrieval.pull(tag_identifier)
        return await self.engine.load_tag(tag_identifier)

    async def decrypt(self, tag_identifier: str, reader: Identity, sink: Any) -> int:
        tag = await self.tag_by_identifier(tag_identifier)
        await self.retrieval.pull(tag.content_identifier)
        return await self.engine.decrypt_tag_to(tag, reader, sink)

    async def verify(self, tag_identifier: str) -> VerificationResult:
        tag = await self.tag_by_identifier(tag_identifier)
        return self.engine.verify_tag(tag)

    async def delegate(
        self,
        tag_identifier:      str,
        reader:              Identity,
        new_dest_public_key: bytes,
    ) -> Delegation:
        tag = await self.tag_by_identifier(tag_identifier)
        await self.retrieval.pull(tag.content_identifier)

        delegation = await self.engine.delegate_tag(
            tag, reader, new_dest_public_key, origin_tag_identifier=tag_identifier
        )
        record = delegation.record

        await self.ledger.publish(EventKind.TAG_REGISTERED, {
            "contentIdentifier": record.new_tag_identifier,
            "fileIdentifier":    record.new_content_identifier,
            "ownerAddress":      reader.address,
            "destAddress":       delegation.tag.dest_address,
        })
        await self.ledger.publish(EventKind.TAG_DELEGATED, record.to_dict())
        return delegation

    # ── Events ───────────────────────────────────────────────

    async def start_block(self, from_block: Optional[int] = None) -> int:
        """from_block, or the latest block minus event_offset (never below 0)."""
        if from_block is not None:
            return from_block
        return max(0, await self.ledger.latest_block() - self.event_offset)

    def harvester(self) -> Harvester:
        return Harvester(
            self.ledger,
            fail_fast=               self.fail_fast,
            max_concurrent_handlers= self.max_concurrent_handlers,
        )

    async def watch(
        self,
        kind:         EventKind,
        handler:      Handler,
        from_block:   Optional[int] = None,
        to_block:     Optional[int] = None,
        event_filter: Optional[Mapping[str, Any]] = None,
        on_error:     Optional[Callable[[HarvestError], Any]] = None,
        harvester:    Optional[Harvester] = None,
    ) -> HarvestReport:
        """Run handler over every identifier announced by kind events."""
        block_range = BlockRange(await self.start_block(from_block), to_block)
        logger.info("watching %s from block %d", EventKind(kind).value, block_range.from_block)
        return await (harvester or self.harvester()).run(
            kind,
            handler,
            event_filter= event_filter,
            block_range=  block_range,
            on_error=     on_error,
        )

    async def harvest(
        self,
        kind:         EventKind,
        from_block:   Optional[int] = None,
        to_block:     Optional[int] = None,
        event_filter: Optional[Mapping[str, Any]] = None,
        on_error:     Optional[Callable[[HarvestError], Any]] = None,
        harvester:    Optional[Harvester] = None,
    ) -> HarvestReport:
        """Pull every identifier announced by kind events."""
        return await self.watch(
            kind,
            self.retrieval.as_handler(),
            from_block=   from_block,
            to_block=     to_block,
            event_filter= event_filter,
            on_error=     on_error,
            harvester=    harvester,
        )

    # ── Retrieval ────────────────────────────────────────────

    async def pull(self, identifier: str) -> PullStatus:
        return await self.retrieval.pull(identifier)

    async def providers(self, identifier: str) -> Set[PeerRef]:
        return await self.retrieval.providers(identifier)
