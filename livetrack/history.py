# livetrack/history.py
from collections import deque
from threading import RLock
from typing import Optional

from .models import LocationSample

DEFAULT_LIMIT = 200


class HistoryStore:
    """Per-identity location log, oldest samples evicted past ``limit``.

    Every read and write goes through one lock, so a reader never sees a
    half-applied append and concurrent writers to the same identity are
    serialized.
    """

    def __init__(self, limit: int = DEFAULT_LIMIT):
        if limit <= 0:
            raise ValueError("history limit must be positive")
        self.limit = limit
        self._tracks: dict[str, deque[LocationSample]] = {}
        self._lock = RLock()

    def append(self, identity: str, sample: LocationSample) -> None:
        with self._lock:
            track = self._tracks.get(identity)
            if track is None:
                track = self._tracks[identity] = deque(maxlen=self.limit)
            track.append(sample)

    def get(self, identity: str, limit: Optional[int] = None) -> list[LocationSample]:
        """Snapshot in arrival order; unknown identity gives []."""
        with self._lock:
            track = self._tracks.get(identity)
            if not track:
                return []
            items = list(track)
        if limit is not None and limit > 0:
            return items[-limit:]
        return items

    def latest(self, identity: str) -> Optional[LocationSample]:
        with self._lock:
            track = self._tracks.get(identity)
            return track[-1] if track else None

    def identities(self) -> list[str]:
        with self._lock:
            return list(self._tracks)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(t) for t in self._tracks.values())
