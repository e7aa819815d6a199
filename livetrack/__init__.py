# livetrack/__init__.py
from .broadcast import Subscription, SubscriptionClosed, SubscriptionManager, SubscriptionState
from .history import HistoryStore
from .ingest import IngestError, IngestService, InvalidIdentity, MalformedInput
from .models import LocationSample

__all__ = [
    "HistoryStore",
    "IngestError",
    "IngestService",
    "InvalidIdentity",
    "LocationSample",
    "MalformedInput",
    "Subscription",
    "SubscriptionClosed",
    "SubscriptionManager",
    "SubscriptionState",
]
