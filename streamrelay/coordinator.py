import logging

from streamrelay.singleflight import SingleFlight

logger = logging.getLogger(__name__)


class PrepareCoordinator(object):
    """Cached session or exactly one resolver run per event id."""

    def __init__(self, resolver, cache, timeout=30):
        self.resolver = resolver
        self.cache = cache
        self._flights = SingleFlight(timeout)

    def lookup(self, event_id):
        meta = self.cache.get(event_id)
        if meta is not None and meta.stream_url:
            return meta
        return None

    def is_preparing(self, event_id):
        return event_id in self._flights

    def ensure(self, event_id):
        meta = self.lookup(event_id)
        if meta is not None:
            return meta
        return self._flights.do(event_id, self._prepare, event_id)

    def _prepare(self, event_id):
        try:
            meta = self.resolver.resolve(event_id)
        except Exception as e:
            if self.cache.evict(event_id) is not None:
                logger.info("Evicted stale session for event %s", event_id)
            logger.warning("Resolution failed for event %s: %s", event_id, e)
            raise
        return self.cache.put(meta)
