import logging
import time
from collections import OrderedDict

logger = logging.getLogger(__name__)


class DedupStore:
    """Signatures the monitor has already alerted on

    Entries are forgotten ttl_seconds after they were added. ttl_seconds=None
    keeps them for the life of the process. Nothing is written to disk, so a
    restart alerts again on everything still inside the lookback window.

    Only the polling thread touches the store; it is not locked.
    """

    def __init__(self, ttl_seconds=None, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        # signature -> insertion time, oldest first
        self._seen = OrderedDict()

    def __contains__(self, signature):
        return signature in self._seen

    def __len__(self):
        return len(self._seen)

    def contains(self, signature):
        return signature in self._seen

    def add(self, signature):
        if signature not in self._seen:
            self._seen[signature] = self.clock()

    def evict_expired(self):
        """Drop signatures older than the TTL. Returns how many were dropped."""
        if self.ttl_seconds is None:
            return 0
        cutoff = self.clock() - self.ttl_seconds
        evicted = 0
        while self._seen:
            signature, added_at = next(iter(self._seen.items()))
            if added_at > cutoff:
                break
            del self._seen[signature]
            evicted += 1
        if evicted:
            logger.info("Evicted %s expired signatures (%s remain)", evicted, len(self._seen))
        return evicted
