"""
fileforce/ledger/ledger.py

JsonlEventLedger — append-only event ledger backed by a JSONL file.

One event per line, one event per block:

    {"blockHeight": 1, "kind": "FileAppeared", "payload": {...}}
    {"blockHeight": 2, "kind": "TagRegistered", "payload": {...}}

Heights start at 1 and increase by exactly one per publish. The file is
the only state; any number of processes may subscribe to it, one
process publishes.

Subscription semantics:
    bounded range   (to_block set)  : deliver what the file holds up to
                                      to_block, then stop
    unbounded range (to_block None) : deliver, then poll for new lines
                                      every poll_interval seconds
    corrupt line / height regression: delivered as a
                                      LedgerSubscriptionError item
"""

import json
import logging
import threading
import warnings
from pathlib import Path
from typing import Any, AsyncIterator, List, Mapping, Optional, Tuple

import anyio
import anyio.to_thread

from fileforce.core.exceptions import LedgerSubscriptionError
from fileforce.ledger.events import (
    BlockRange,
    Delivery,
    EventKind,
    EventLedger,
    LedgerEvent,
    Subscription,
    matches,
    validate_payload,
)

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "events.jsonl"


class JsonlEventLedger(EventLedger):
    """
    Args:
        ledger_path:   directory holding events.jsonl (created if missing)
        poll_interval: seconds between polls of an unbounded subscription
    """

    def __init__(self, ledger_path: str = ".fileforce/ledger", poll_interval: float = 1.0):
        self.ledger_path   = Path(ledger_path)
        self.poll_interval = poll_interval

        self.ledger_path.mkdir(parents=True, exist_ok=True)
        self._ledger_file: Path = self.ledger_path / LEDGER_FILENAME
        self._lock:        threading.Lock = threading.Lock()
        self._height:      int = 0
        self._needs_newline: bool = False

        self._restore_state()

    @property
    def ledger_file(self) -> Path:
        return self._ledger_file

    # ── Publish ──────────────────────────────────────────────

    def append(self, kind: EventKind, payload: Mapping[str, Any]) -> LedgerEvent:
        """
        Append one event at the next block height.

        Raises ValueError for a payload missing required fields and
        RuntimeError on write failure (height does not advance).
        """
        kind = EventKind(kind)
        validate_payload(kind, payload)

        with self._lock:
            event = LedgerEvent(
                kind=         kind,
                block_height= self._height + 1,
                payload=      dict(payload),
            )
            try:
                line = json.dumps(event.to_dict(), sort_keys=True) + "\n"
                if self._needs_newline:
                    line = "\n" + line
                with open(self._ledger_file, "a", encoding="utf-8") as f:
                    f.write(line)
            except Exception as exc:
                raise RuntimeError(f"JsonlEventLedger: ledger write failed: {exc}") from exc
            self._height = event.block_height
            self._needs_newline = False

        logger.debug("published %s at block %d", kind.value, event.block_height)
        return event

    async def publish(self, kind: EventKind, payload: Mapping[str, Any]) -> LedgerEvent:
        return self.append(kind, payload)

    async def latest_block(self) -> int:
        return self._height

    # ── Subscribe ────────────────────────────────────────────

    def subscribe(
        self,
        kind:         EventKind,
        event_filter: Optional[Mapping[str, Any]] = None,
        block_range:  BlockRange = BlockRange(),
    ) -> "JsonlSubscription":
        return JsonlSubscription(
            ledger_file=   self._ledger_file,
            kind=          EventKind(kind),
            event_filter=  dict(event_filter or {}),
            block_range=   block_range,
            poll_interval= self.poll_interval,
        )

    # ── State ────────────────────────────────────────────────

    def _restore_state(self) -> None:
        """
        Restore the block height from the last line of an existing file
        that parses as an event. A corrupt last line issues a
        RuntimeWarning; a file that does not end in a newline gets one
        before the next append.
        """
        if not self._ledger_file.exists():
            return

        try:
            data = self._ledger_file.read_bytes()
        except OSError:
            return

        if data and not data.endswith(b"\n"):
            self._needs_newline = True

        last_error = None
        for raw in data.splitlines():
            if not raw.strip():
                continue
            try:
                self._height = LedgerEvent.from_dict(json.loads(raw)).block_height
                last_error = None
            except Exception as exc:
                last_error = exc

        if last_error is not None:
            warnings.warn(
                f"JsonlEventLedger: could not restore state from {self._ledger_file}: {last_error}. "
                f"Last line may be corrupted; continuing from block {self._height}.",
                RuntimeWarning,
                stacklevel=3,
            )


class JsonlSubscription(Subscription):
    """Single-use reader over an events.jsonl file."""

    def __init__(
        self,
        ledger_file:   Path,
        kind:          EventKind,
        event_filter:  Mapping[str, Any],
        block_range:   BlockRange,
        poll_interval: float,
    ) -> None:
        self.kind          = kind
        self.event_filter  = event_filter
        self.block_range   = block_range
        self.poll_interval = poll_interval

        self._ledger_file = ledger_file
        self._offset      = 0
        self._line_number = 0
        self._last_height = 0
        self._started     = False
        self._closed      = False
        self._iterator: Optional[AsyncIterator[Delivery]] = None

    def __aiter__(self) -> AsyncIterator[Delivery]:
        if self._started:
            raise LedgerSubscriptionError(
                "subscription already consumed",
                {"kind": self.kind.value},
            )
        self._started  = True
        self._iterator = self._deliveries()
        return self._iterator

    async def aclose(self) -> None:
        self._closed = True
        if self._iterator is not None:
            await self._iterator.aclose()

    def _read_complete_lines(self) -> List[Tuple[int, str]]:
        """
        New newline-terminated lines since the last read. A trailing
        partial line is left for the next poll. The file is closed
        before returning.
        """
        if not self._ledger_file.exists():
            return []

        with open(self._ledger_file, "rb") as f:
            f.seek(self._offset)
            data = f.read()

        end = data.rfind(b"\n")
        if end < 0:
            return []
        self._offset += end + 1

        lines = []
        for raw in data[: end + 1].splitlines():
            self._line_number += 1
            lines.append((self._line_number, raw.decode("utf-8", errors="replace")))
        return lines

    def _parse(self, line_number: int, line: str) -> Optional[Delivery]:
        if not line.strip():
            return None
        try:
            event = LedgerEvent.from_dict(json.loads(line))
        except Exception as exc:
            return Delivery(error=LedgerSubscriptionError(
                f"corrupt ledger line: {exc}",
                {"line": line_number},
            ))

        if event.block_height <= self._last_height:
            return Delivery(error=LedgerSubscriptionError(
                "block height out of order",
                {"line": line_number, "blockHeight": event.block_height},
            ))
        self._last_height = event.block_height
        return Delivery(event=event)

    async def _deliveries(self) -> AsyncIterator[Delivery]:
        to_block = self.block_range.to_block

        while not self._closed:
            lines = await anyio.to_thread.run_sync(self._read_complete_lines)

            for line_number, line in lines:
                if self._closed:
                    return
                delivery = self._parse(line_number, line)
                if delivery is None:
                    continue
                if not delivery.ok:
                    yield delivery
                    continue

                event = delivery.event
                if to_block is not None and event.block_height > to_block:
                    return
                if event.kind is not self.kind:
                    continue
                if not self.block_range.contains(event.block_height):
                    continue
                if not matches(event, self.event_filter):
                    continue
                yield delivery

            if to_block is not None:
                if self._last_height >= to_block or not lines:
                    return
                continue

            await anyio.sleep(self.poll_interval)
