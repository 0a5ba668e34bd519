"""
Size- and time-bounded cache of finished DetectionResults.

Entries are keyed by a fingerprint of the file (name, size, mtime) and of
the settings that change the outcome, so editing the file or the
configuration never returns a stale verdict. Expiry is checked lazily on
get/put; when full, the oldest insertion is evicted.
"""

import logging
import os
import threading
import time
from collections import OrderedDict

logger = logging.getLogger(__name__)


def fingerprint(path, config):
    """Cache key for analysing path under config. Raises OSError if missing."""
    stat = os.stat(path)
    return "_".join(str(part) for part in (
        os.path.basename(path),
        stat.st_size,
        stat.st_mtime_ns,
        config.crop_size,
        config.decision_threshold,
        config.frame_skip_stride,
        config.max_frames_examined,
    ))


class ResultCache:

    def __init__(self, max_entries=1000, ttl_seconds=1800.0, clock=time.monotonic):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries = OrderedDict()  # key -> (result, inserted_at)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(max_entries=config.cache_max_entries, ttl_seconds=config.cache_ttl_seconds)

    def _expired(self, inserted_at, now):
        return now - inserted_at >= self.ttl_seconds

    def get(self, key):
        """Return the cached DetectionResult for key, or None on a miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            result, inserted_at = entry
            if self._expired(inserted_at, now):
                del self._entries[key]
                return None
            return result

    def put(self, key, result):
        if self.max_entries <= 0:
            return
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted)
            self._entries[key] = (result, now)

    def _purge_expired(self, now):
        # Insertion order is also expiry order
        while self._entries:
            key, (_, inserted_at) = next(iter(self._entries.items()))
            if not self._expired(inserted_at, now):
                break
            del self._entries[key]

    def clear(self):
        with self._lock:
            self._entries.clear()
        logger.info("Result cache cleared")

    def __len__(self):
        with self._lock:
            return len(self._entries)
