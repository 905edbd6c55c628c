"""
tests/test_retrieval.py

Content store and RedundantRetrieval laws.

  FILESTORE
    put() returns the blake3 identifier and is idempotent
    put(expected_identifier=x) with other bytes stores nothing
    Concurrent or cancelled puts leave the scratch directory empty
    read() of a missing blob raises UnavailableContent

  PULL
    A local blob is LOCAL with zero provider queries
    A peer serving bytes that do not hash to the identifier is skipped
    Every failure is recorded; none left raises UnavailableContent
    Concurrent pulls of one identifier fetch it once
"""

import io
import pathlib
import stat

import anyio
import pytest

from fileforce.core.exceptions import ContentMismatch, UnavailableContent
from fileforce.store.base import PeerRef, ProviderNetwork, iter_bytes
from fileforce.store.filestore import FileStore, compute_identifier, shard
from fileforce.store.peers import MirrorNetwork
from fileforce.store.redundant import PullState, RedundantRetrieval

pytestmark = pytest.mark.anyio

BLOB = b"the quick brown fox" * 100
BLOB_ID = compute_identifier(BLOB)


class FakeNetwork(ProviderNetwork):
    """In-memory peers; counts every providers() call."""

    def __init__(self, peers=None, fail_lookup=False):
        self.peers            = dict(peers or {})
        self.fail_lookup      = fail_lookup
        self.provider_queries = 0
        self.fetches          = []

    async def providers(self, identifier):
        self.provider_queries += 1
        if self.fail_lookup:
            raise ConnectionError("tracker down")
        return {PeerRef(peer_id) for peer_id in self.peers}

    async def fetch(self, peer, identifier):
        self.fetches.append(peer.peer_id)
        data = self.peers[peer.peer_id]
        if isinstance(data, Exception):
            raise data
        await anyio.sleep(0)
        async for chunk in iter_bytes(data, chunk_size=100):
            yield chunk


# ─────────────────────────────────────────────────────────────
# FILESTORE
# ─────────────────────────────────────────────────────────────

class TestFileStore:

    def test_shard(self):
        assert shard("abcdef", 1, 2) == ["ab", "cdef"]
        assert shard("abcdef", 2, 2) == ["ab", "cd", "ef"]
        with pytest.raises(ValueError):
            shard("ab", 1, 2)

    async def test_put_and_read(self, store):
        identifier = await store.put(BLOB)
        assert identifier == BLOB_ID
        assert identifier in store
        assert await store.has(identifier)
        assert await store.read_bytes(identifier) == BLOB
        assert store.path_for(identifier).parent.name == identifier[:2]

    async def test_put_is_idempotent(self, store):
        assert await store.put(BLOB) == await store.put(iter_bytes(BLOB, chunk_size=3))
        assert list((store.path_for(BLOB_ID).parent).iterdir()) == [store.path_for(BLOB_ID)]

    async def test_expected_identifier_mismatch(self, store):
        with pytest.raises(ContentMismatch) as exc_info:
            await store.put(b"other bytes", expected_identifier=BLOB_ID)
        assert exc_info.value.identifier == BLOB_ID
        assert not store.exists(BLOB_ID)
        assert not store.exists(compute_identifier(b"other bytes"))

    async def test_scratch_is_cleaned(self, store):
        await store.put(BLOB)
        with pytest.raises(ContentMismatch):
            await store.put(b"x", expected_identifier=BLOB_ID[::-1])
        assert list((pathlib.Path(store.root) / ".scratch").iterdir()) == []

    async def test_concurrent_puts(self, store):
        results = []

        async def put():
            results.append(await store.put(iter_bytes(BLOB, chunk_size=64)))

        async with anyio.create_task_group() as tg:
            for _ in range(4):
                tg.start_soon(put)

        assert results == [BLOB_ID] * 4
        assert stat.S_IMODE(store.path_for(BLOB_ID).stat().st_mode) == store.fmode
        assert list((pathlib.Path(store.root) / ".scratch").iterdir()) == []

    async def test_cancelled_put_leaves_no_scratch(self, store):
        async def stalled():
            yield b"partial"
            await anyio.sleep_forever()

        with anyio.move_on_after(0.1):
            await store.put(stalled())

        assert list((pathlib.Path(store.root) / ".scratch").iterdir()) == []

    async def test_read_missing(self, store):
        with pytest.raises(UnavailableContent):
            await store.read_bytes(BLOB_ID)

    async def test_get_into_sink(self, store):
        await store.put(BLOB)
        sink = io.BytesIO()
        assert await store.get(BLOB_ID, sink) == len(BLOB)
        assert sink.getvalue() == BLOB

    async def test_delete(self, store):
        await store.put(BLOB)
        await store.delete(BLOB_ID)
        assert BLOB_ID not in store
        await store.delete(BLOB_ID)

    def test_malformed_identifier(self, store):
        assert not store.exists("../../etc/passwd")
        with pytest.raises(ValueError):
            store.path_for("ABC")


# ─────────────────────────────────────────────────────────────
# PULL
# ─────────────────────────────────────────────────────────────

class TestPull:

    async def test_local_needs_no_provider_query(self, store):
        await store.put(BLOB)
        network = FakeNetwork({"a": BLOB})
        status = await RedundantRetrieval(store, network).pull(BLOB_ID)

        assert status.state is PullState.LOCAL
        assert not status.fetched
        assert network.provider_queries == 0

    async def test_fetch_then_local(self, store):
        network = FakeNetwork({"a": BLOB})
        retrieval = RedundantRetrieval(store, network)

        first = await retrieval.pull(BLOB_ID)
        assert first.state is PullState.FETCHED
        assert first.provider == PeerRef("a")
        assert await store.read_bytes(BLOB_ID) == BLOB

        second = await retrieval.pull(BLOB_ID)
        assert second.state is PullState.LOCAL
        assert network.provider_queries == 1

    async def test_lying_peer_is_skipped(self, store):
        network = FakeNetwork({"a-liar": b"not the blob", "b-honest": BLOB})
        status = await RedundantRetrieval(store, network).pull(BLOB_ID)

        assert status.provider == PeerRef("b-honest")
        assert network.fetches == ["a-liar", "b-honest"]
        assert [attempt.peer.peer_id for attempt in status.attempts] == ["a-liar"]
        assert "ContentMismatch" in status.attempts[0].error
        assert not store.exists(compute_identifier(b"not the blob"))

    async def test_failing_peer_is_skipped(self, store):
        network = FakeNetwork({"a": ConnectionResetError("gone"), "b": BLOB})
        status = await RedundantRetrieval(store, network).pull(BLOB_ID)
        assert status.provider == PeerRef("b")

    async def test_all_fail(self, store):
        network = FakeNetwork({"a": b"junk", "b": OSError("disk")})
        with pytest.raises(UnavailableContent) as exc_info:
            await RedundantRetrieval(store, network).pull(BLOB_ID)

        details = exc_info.value.details
        assert details["identifier"] == BLOB_ID
        assert [attempt["peer"] for attempt in details["attempts"]] == ["a", "b"]

    async def test_no_providers(self, store):
        with pytest.raises(UnavailableContent) as exc_info:
            await RedundantRetrieval(store, FakeNetwork()).pull(BLOB_ID)
        assert exc_info.value.message == "no providers"
        assert exc_info.value.details["attempts"] == []

    async def test_provider_lookup_failure(self, store):
        with pytest.raises(UnavailableContent):
            await RedundantRetrieval(store, FakeNetwork(fail_lookup=True)).pull(BLOB_ID)

    async def test_concurrent_pulls_fetch_once(self, store):
        network = FakeNetwork({"a": BLOB})
        retrieval = RedundantRetrieval(store, network)
        states = []

        async def pull():
            states.append((await retrieval.pull(BLOB_ID)).state)

        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(pull)

        assert sorted(states) == sorted([PullState.FETCHED] + [PullState.LOCAL] * 4)
        assert network.fetches == ["a"]
        assert retrieval._locks == {}

    async def test_mirror_network(self, tmp_path, store):
        empty  = FileStore(tmp_path / "mirror-a")
        holder = FileStore(tmp_path / "mirror-b")
        await holder.put(BLOB)

        network = MirrorNetwork({"a": empty, "b": str(tmp_path / "mirror-b")})
        assert {peer.peer_id for peer in network.peers} == {"a", "b"}
        assert {peer.peer_id for peer in await network.providers(BLOB_ID)} == {"b"}

        status = await RedundantRetrieval(store, network).pull(BLOB_ID)
        assert status.provider.peer_id == "b"
        assert await store.read_bytes(BLOB_ID) == BLOB

    async def test_mirror_unknown_peer(self, tmp_path):
        network = MirrorNetwork({"a": FileStore(tmp_path / "mirror-a")})
        with pytest.raises(UnavailableContent):
            async for _ in network.fetch(PeerRef("zz"), BLOB_ID):
                pass
