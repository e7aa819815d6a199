# livetrack/ingest.py
import json
import logging
import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Any, Mapping, Optional, Union

from .broadcast import SubscriptionManager
from .history import HistoryStore
from .models import LocationSample

logger = logging.getLogger(__name__)

IDENTITY_KEYS = ("identity", "phone", "id", "device_id")
LAT_KEYS = ("lat", "latitude")
LON_KEYS = ("lon", "lng", "longitude")
WHEN_KEYS = ("when", "timestamp", "time")


class IngestError(Exception):
    """A report was rejected. ``reason`` is safe to show the reporter."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MalformedInput(IngestError):
    pass


class InvalidIdentity(IngestError):
    pass


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def http_date_to_iso(value: Optional[str]) -> Optional[str]:
    """RFC 1123 ``Date`` header to ISO-8601, None if absent or unparseable."""
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _first(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for k in keys:
        v = payload.get(k)
        if v is not None and v != "":
            return v
    return None


def _coord(payload: Mapping[str, Any], keys: tuple[str, ...], bound: float) -> float:
    name = keys[0]
    raw = _first(payload, keys)
    if raw is None:
        raise MalformedInput(f"missing {name}")
    if isinstance(raw, bool):
        raise MalformedInput(f"{name} is not a number")
    try:
        value = float(raw)
    except (TypeError, ValueError, OverflowError):
        raise MalformedInput(f"{name} is not a number")
    if not math.isfinite(value):
        raise MalformedInput(f"{name} is not a number")
    if not -bound <= value <= bound:
        raise MalformedInput(f"{name} out of range [-{bound:g}, {bound:g}]")
    return value


def _when(payload: Mapping[str, Any], default: Optional[str]) -> str:
    raw = _first(payload, WHEN_KEYS)
    if raw is None:
        return default or now_iso()
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        try:
            dt = datetime.fromtimestamp(raw, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedInput("when is not a valid timestamp")
        return dt.isoformat().replace("+00:00", "Z")
    raise MalformedInput("when must be a string")


def _opt_str(payload: Mapping[str, Any], key: str) -> Optional[str]:
    v = payload.get(key)
    if v is None or v == "":
        return None
    return str(v)


def parse_payload(raw: Union[bytes, str, Mapping[str, Any]]) -> dict:
    """Decode a report body. Anything that is not a JSON object is malformed."""
    if isinstance(raw, (bytes, bytearray, str)):
        try:
            raw = json.loads(raw)
        except (UnicodeDecodeError, ValueError, RecursionError):
            raise MalformedInput("body is not valid JSON")
    if not isinstance(raw, Mapping):
        raise MalformedInput("body must be a JSON object")
    return dict(raw)


def build_sample(payload: Mapping[str, Any], default_when: Optional[str] = None) -> LocationSample:
    identity = _first(payload, IDENTITY_KEYS)
    if not isinstance(identity, str) or not identity.strip():
        raise InvalidIdentity("identity is required")
    return LocationSample(
        identity=identity.strip(),
        token=_opt_str(payload, "token"),
        lat=_coord(payload, LAT_KEYS, 90),
        lon=_coord(payload, LON_KEYS, 180),
        ip=_opt_str(payload, "ip"),
        when=_when(payload, default_when),
    )


class IngestService:
    """Validates a report, records it, then broadcasts it."""

    def __init__(self, store: HistoryStore, subscribers: SubscriptionManager):
        self.store = store
        self.subscribers = subscribers
        # history order and broadcast order must agree
        self._commit_lock = Lock()

    def accept(
        self,
        raw: Union[bytes, str, Mapping[str, Any]],
        default_when: Optional[str] = None,
    ) -> LocationSample:
        try:
            sample = build_sample(parse_payload(raw), default_when)
        except IngestError as e:
            logger.info("report rejected: %s", e.reason)
            raise
        with self._commit_lock:
            self.store.append(sample.identity, sample)
            delivered = self.subscribers.publish(sample)
        logger.debug("report accepted identity=%s delivered=%d", sample.identity, delivered)
        return sample
