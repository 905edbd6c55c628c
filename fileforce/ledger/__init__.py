"""
FileForce Ledger - event log, subscriptions and the harvest loop.
"""

from fileforce.ledger.events import (
    BlockRange,
    Delivery,
    EventKind,
    EventLedger,
    LedgerEvent,
    Subscription,
)
from fileforce.ledger.harvester import Harvester, HarvestError, HarvestReport
from fileforce.ledger.ledger import JsonlEventLedger

__all__ = [
    "BlockRange",
    "Delivery",
    "EventKind",
    "EventLedger",
    "LedgerEvent",
    "Subscription",
    "Harvester",
    "HarvestError",
    "HarvestReport",
    "JsonlEventLedger",
]
