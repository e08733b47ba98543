import time

from cachetools import FIFOCache, TTLCache


class SessionCache(object):
    """Resolved sessions per event id.

    LRU on overflow, one TTL for the whole store. An expired entry reads as
    a miss and is dropped on the way.
    """

    def __init__(self, maxsize=200, ttl=600, timer=time.monotonic):
        self.maxsize = maxsize
        self.ttl = ttl
        self._entries = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def __len__(self):
        self._entries.expire()
        return len(self._entries)

    def __contains__(self, event_id):
        return self.get(event_id) is not None

    def get(self, event_id):
        self._entries.expire()
        return self._entries.get(event_id)

    def put(self, meta):
        if not meta.stream_url:
            raise ValueError(f"refusing to cache event {meta.event_id} without a stream url")
        self._entries[meta.event_id] = meta
        return meta

    def evict(self, event_id):
        return self._entries.pop(event_id, None)


class ExpiringFIFO(object):
    """Bounded map with a TTL per entry; overflow evicts in insertion order."""

    def __init__(self, maxsize, timer=time.monotonic):
        self.maxsize = maxsize
        self.timer = timer
        self._entries = FIFOCache(maxsize=maxsize)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return self.get(key) is not None

    def keys(self):
        return list(self._entries.keys())

    def get(self, key):
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self.timer():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key, value, ttl):
        self._entries[key] = (self.timer() + ttl, value)
        return value

    def delete(self, key):
        item = self._entries.pop(key, None)
        return item[1] if item else None
