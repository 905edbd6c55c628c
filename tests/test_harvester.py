"""
tests/test_harvester.py

Harvester laws.

    Every identifier named by a matching event reaches the handler once
    A TagDelegated event dispatches both content identifiers
    Handler failures are collected, not raised (default)
    fail_fast raises the first error and stops delivery
    stop() ends an unbounded run; in-flight handlers finish
    Concurrent runs on one Harvester keep separate stop and fail_fast state
    A corrupt ledger line is reported as an error, later events still flow
"""

import anyio
import pytest

from fileforce.core.exceptions import LedgerSubscriptionError, UnavailableContent
from fileforce.ledger.events import BlockRange, EventKind
from fileforce.ledger.harvester import Harvester

pytestmark = pytest.mark.anyio


def cid(n: int) -> str:
    return f"{n:064x}"


async def publish_files(ledger, count: int) -> None:
    for n in range(1, count + 1):
        await ledger.publish(EventKind.FILE_APPEARED, {
            "contentIdentifier": cid(n),
            "ownerAddress":      "0x" + "aa" * 20,
        })


class Recorder:

    def __init__(self, fail_on=()):
        self.seen    = []
        self.fail_on = set(fail_on)

    async def __call__(self, identifier):
        await anyio.sleep(0)
        if identifier in self.fail_on:
            raise UnavailableContent("no providers", {"identifier": identifier})
        self.seen.append(identifier)


class TestDispatch:

    async def test_every_identifier_once(self, ledger):
        await publish_files(ledger, 4)
        handler = Recorder()

        report = await Harvester(ledger).run(
            EventKind.FILE_APPEARED, handler, block_range=BlockRange(0, 4)
        )

        assert sorted(handler.seen) == [cid(n) for n in range(1, 5)]
        assert report.ok
        assert (report.events, report.dispatched, report.completed) == (4, 4, 4)
        assert report.last_block == 4
        assert not report.stopped

    async def test_delegation_event_yields_both_identifiers(self, ledger):
        await ledger.publish(EventKind.TAG_DELEGATED, {
            "originTagIdentifier":     cid(10),
            "newTagIdentifier":        cid(11),
            "originContentIdentifier": cid(1),
            "newContentIdentifier":    cid(2),
        })
        handler = Recorder()

        report = await Harvester(ledger).run(
            EventKind.TAG_DELEGATED, handler, block_range=BlockRange(0, 1)
        )

        assert sorted(handler.seen) == [cid(1), cid(2)]
        assert report.dispatched == 2

    async def test_custom_extractor(self, ledger):
        await ledger.publish(EventKind.TAG_DELEGATED, {
            "originTagIdentifier":     cid(10),
            "newTagIdentifier":        cid(11),
            "originContentIdentifier": cid(1),
            "newContentIdentifier":    cid(2),
        })
        handler = Recorder()
        harvester = Harvester(ledger, extractor=lambda event: [event.payload["newTagIdentifier"]])

        await harvester.run(EventKind.TAG_DELEGATED, handler, block_range=BlockRange(0, 1))
        assert handler.seen == [cid(11)]

    async def test_concurrency_limit(self, ledger):
        await publish_files(ledger, 6)
        running = 0
        peak    = 0

        async def handler(identifier):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await anyio.sleep(0.01)
            running -= 1

        report = await Harvester(ledger, max_concurrent_handlers=2).run(
            EventKind.FILE_APPEARED, handler, block_range=BlockRange(0, 6)
        )
        assert report.completed == 6
        assert peak <= 2

    def test_invalid_concurrency_limit(self, ledger):
        with pytest.raises(ValueError):
            Harvester(ledger, max_concurrent_handlers=0)


class TestErrors:

    async def test_errors_collected(self, ledger):
        await publish_files(ledger, 3)
        handler = Recorder(fail_on={cid(2)})
        reported = []

        report = await Harvester(ledger).run(
            EventKind.FILE_APPEARED, handler,
            block_range= BlockRange(0, 3),
            on_error=    reported.append,
        )

        assert sorted(handler.seen) == [cid(1), cid(3)]
        assert not report.ok
        assert report.completed == 2
        assert [error.identifier for error in report.errors] == [cid(2)]
        assert report.errors[0].kind == "UnavailableContent"
        assert report.errors[0].block_height == 2
        assert reported == report.errors

    async def test_failing_on_error_callback_is_contained(self, ledger):
        await publish_files(ledger, 1)

        def explode(error):
            raise RuntimeError("callback broke")

        report = await Harvester(ledger).run(
            EventKind.FILE_APPEARED, Recorder(fail_on={cid(1)}),
            block_range= BlockRange(0, 1),
            on_error=    explode,
        )
        assert len(report.errors) == 1

    async def test_fail_fast_raises(self, ledger):
        await publish_files(ledger, 3)

        with pytest.raises(UnavailableContent):
            await Harvester(ledger, fail_fast=True).run(
                EventKind.FILE_APPEARED,
                Recorder(fail_on={cid(1)}),
                block_range=BlockRange(0, 3),
            )

    async def test_corrupt_line_reported(self, ledger):
        await publish_files(ledger, 1)
        with open(ledger.ledger_file, "a") as f:
            f.write("not json at all\n")
        ledger.append(EventKind.FILE_APPEARED, {
            "contentIdentifier": cid(2),
            "ownerAddress":      "0x" + "aa" * 20,
        })
        handler = Recorder()

        report = await Harvester(ledger).run(
            EventKind.FILE_APPEARED, handler, block_range=BlockRange(0, 2)
        )

        assert sorted(handler.seen) == [cid(1), cid(2)]
        assert [error.kind for error in report.errors] == ["LedgerSubscriptionError"]

    async def test_corrupt_line_fail_fast(self, ledger):
        with open(ledger.ledger_file, "a") as f:
            f.write("not json at all\n")
        await publish_files(ledger, 1)

        with pytest.raises(LedgerSubscriptionError):
            await Harvester(ledger, fail_fast=True).run(
                EventKind.FILE_APPEARED, Recorder(), block_range=BlockRange(0, 1)
            )


class TestStop:

    async def test_stop_ends_unbounded_run(self, ledger):
        await publish_files(ledger, 2)
        harvester = Harvester(ledger)
        finished = []

        async def handler(identifier):
            await anyio.sleep(0.05)
            finished.append(identifier)
            if len(finished) == 2:
                harvester.stop()

        with anyio.fail_after(5):
            report = await harvester.run(EventKind.FILE_APPEARED, handler)

        assert report.stopped
        assert sorted(finished) == [cid(1), cid(2)]
        assert report.completed == 2

    async def test_stop_ends_every_concurrent_run(self, ledger):
        await publish_files(ledger, 2)
        harvester = Harvester(ledger)
        reports = {}
        seen = Recorder()

        async def follow(name):
            reports[name] = await harvester.run(EventKind.FILE_APPEARED, seen)

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(follow, "first")
                tg.start_soon(follow, "second")
                while len(seen.seen) < 4:
                    await anyio.sleep(0.01)
                assert harvester.running == 2
                harvester.stop()

        assert reports["first"].stopped and reports["second"].stopped
        assert reports["first"].completed == reports["second"].completed == 2
        assert harvester.running == 0

    async def test_fail_fast_is_per_run(self, ledger):
        await publish_files(ledger, 3)
        harvester = Harvester(ledger, fail_fast=True)
        results = {}

        async def failing():
            with pytest.raises(UnavailableContent):
                await harvester.run(
                    EventKind.FILE_APPEARED, Recorder(fail_on={cid(1)}),
                    block_range=BlockRange(0, 3),
                )
            results["failing"] = True

        async def healthy():
            results["healthy"] = await harvester.run(
                EventKind.FILE_APPEARED, Recorder(), block_range=BlockRange(0, 3),
            )

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(failing)
                tg.start_soon(healthy)

        assert results["failing"]
        assert results["healthy"].ok
        assert results["healthy"].completed == 3
