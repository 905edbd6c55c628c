"""
fileforce/ledger/harvester.py

Harvester — one event-consumption loop for watch, harvest and pull.

Loop:
    for each Delivery from ledger.subscribe(kind, filter, range):
        error      -> recorded in the report (fail_fast: stop and raise)
        event      -> extract content identifiers
                      dispatch handler(identifier) once per identifier,
                      each as its own task

Dispatch never blocks delivery: handlers run in a task group, optionally
bounded by a CapacityLimiter. Running handlers are shielded, so stop()
and fail-fast end the delivery loop but let in-flight handlers finish.
The subscription is always released on exit.
"""

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
)

import anyio
import anyio.lowlevel

from fileforce.core.exceptions import FileForceError
from fileforce.ledger.events import BlockRange, EventKind, EventLedger, LedgerEvent

logger = logging.getLogger(__name__)

Handler   = Callable[[str], Awaitable[Any]]
Extractor = Callable[[LedgerEvent], Iterable[str]]


@dataclass
class HarvestError:
    """One failed delivery or handler invocation."""

    kind:         str
    message:      str
    block_height: Optional[int] = None
    identifier:   Optional[str] = None
    error:        Optional[BaseException] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind":        self.kind,
            "message":     self.message,
            "blockHeight": self.block_height,
            "identifier":  self.identifier,
        }


@dataclass
class HarvestReport:
    events:     int = 0
    dispatched: int = 0
    completed:  int = 0
    errors:     List[HarvestError] = field(default_factory=list)
    last_block: Optional[int] = None
    stopped:    bool = False

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events":     self.events,
            "dispatched": self.dispatched,
            "completed":  self.completed,
            "errors":     [error.to_dict() for error in self.errors],
            "lastBlock":  self.last_block,
            "stopped":    self.stopped,
        }


def _error_kind(exc: BaseException) -> str:
    return getattr(exc, "kind", type(exc).__name__)


@dataclass(eq=False)
class _Run:
    """State of one run() loop."""

    report:         HarvestReport
    on_error:       Optional[Callable[[HarvestError], Any]]
    limiter:        Optional[anyio.CapacityLimiter]
    scope:          anyio.CancelScope = field(default_factory=anyio.CancelScope)
    fatal:          Optional[BaseException] = None
    stop_requested: bool = False

    def stop(self) -> None:
        self.stop_requested = True
        self.scope.cancel()


class Harvester:
    """
    Args:
        ledger:                  event source
        fail_fast:               first error ends the loop and is raised
        max_concurrent_handlers: CapacityLimiter size per run; None = unbounded
        extractor:               event -> identifiers
                                 (default: LedgerEvent.identifiers)

    One Harvester may drive several run() loops at once; stop() ends
    all of them.
    """

    def __init__(
        self,
        ledger:                  EventLedger,
        *,
        fail_fast:               bool = False,
        max_concurrent_handlers: Optional[int] = None,
        extractor:               Optional[Extractor] = None,
    ):
        if max_concurrent_handlers is not None and max_concurrent_handlers < 1:
            raise ValueError("max_concurrent_handlers must be >= 1")

        self.ledger                  = ledger
        self.fail_fast               = fail_fast
        self.max_concurrent_handlers = max_concurrent_handlers
        self.extractor: Extractor    = extractor or LedgerEvent.identifiers

        self._runs: Set[_Run] = set()

    @property
    def running(self) -> int:
        return len(self._runs)

    def stop(self) -> None:
        """End every active delivery loop. Handlers already dispatched still complete."""
        for active in list(self._runs):
            active.stop()

    async def run(
        self,
        kind:         EventKind,
        handler:      Handler,
        *,
        event_filter: Optional[Mapping[str, Any]] = None,
        block_range:  BlockRange = BlockRange(),
        on_error:     Optional[Callable[[HarvestError], Any]] = None,
    ) -> HarvestReport:
        """
        Consume events until the range is exhausted, stop() is called
        or (fail_fast) an error occurs.

        Returns:
            HarvestReport with counts and every recorded error.

        Raises:
            The first error's exception, when fail_fast is set.
        """
        state = _Run(
            report=   HarvestReport(),
            on_error= on_error,
            limiter=  (
                anyio.CapacityLimiter(self.max_concurrent_handlers)
                if self.max_concurrent_handlers else None
            ),
        )
        report = state.report

        subscription = self.ledger.subscribe(EventKind(kind), event_filter, block_range)
        self._runs.add(state)
        try:
            async with anyio.create_task_group() as tg:
                with state.scope:
                    async for delivery in subscription:
                        if state.stop_requested or state.fatal is not None:
                            break

                        if not delivery.ok:
                            self._fail(state, HarvestError(
                                kind=    _error_kind(delivery.error),
                                message= str(delivery.error),
                                error=   delivery.error,
                            ))
                            continue

                        event = delivery.event
                        report.events    += 1
                        report.last_block = event.block_height

                        try:
                            identifiers = list(self.extractor(event))
                        except Exception as exc:
                            self._fail(state, HarvestError(
                                kind=         _error_kind(exc),
                                message=      f"cannot extract identifiers: {exc}",
                                block_height= event.block_height,
                                error=        exc,
                            ))
                            continue

                        for identifier in identifiers:
                            report.dispatched += 1
                            tg.start_soon(self._dispatch, state, handler, event, identifier)

                        await anyio.lowlevel.checkpoint()
        finally:
            self._runs.discard(state)
            with anyio.CancelScope(shield=True):
                await subscription.aclose()

        report.stopped = state.stop_requested
        logger.info(
            "harvest of %s finished: %d event(s), %d/%d handler(s) ok, %d error(s)",
            EventKind(kind).value, report.events, report.completed,
            report.dispatched, len(report.errors),
        )

        if state.fatal is not None:
            raise state.fatal
        return report

    async def _dispatch(
        self,
        state:      _Run,
        handler:    Handler,
        event:      LedgerEvent,
        identifier: str,
    ) -> None:
        with anyio.CancelScope(shield=True):
            try:
                if state.limiter is not None:
                    async with state.limiter:
                        await handler(identifier)
                else:
                    await handler(identifier)
            except Exception as exc:
                self._fail(state, HarvestError(
                    kind=         _error_kind(exc),
                    message=      str(exc),
                    block_height= event.block_height,
                    identifier=   identifier,
                    error=        exc,
                ))
                return
            state.report.completed += 1

    def _fail(self, state: _Run, error: HarvestError) -> None:
        state.report.errors.append(error)
        logger.warning(
            "harvest error at block %s (%s): %s",
            error.block_height, error.identifier or "-", error.message,
        )

        if state.on_error is not None:
            try:
                state.on_error(error)
            except Exception:
                logger.exception("on_error callback failed")

        if self.fail_fast and state.fatal is None:
            state.fatal = error.error or FileForceError(error.message)
            state.scope.cancel()
