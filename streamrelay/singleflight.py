from gevent import Timeout
from gevent.event import AsyncResult

from streamrelay.errors import UpstreamFetchError, UpstreamTimeoutError


class SingleFlight(object):
    """At most one call in flight per key; later callers wait on its result.

    The first caller runs ``fn`` in its own greenlet. Everybody else attaches
    to the same ``AsyncResult``. The key is dropped before the result is
    published, so once a call settles the next one starts fresh.
    """

    def __init__(self, timeout=None):
        self.timeout = timeout
        self._pending = {}

    def __len__(self):
        return len(self._pending)

    def __contains__(self, key):
        return key in self._pending

    def do(self, key, fn, *args, **kwargs):
        flight = self._pending.get(key)
        if flight is not None:
            return self._wait(key, flight)

        flight = AsyncResult()
        self._pending[key] = flight
        try:
            with Timeout(self.timeout, UpstreamTimeoutError(_describe(key), self.timeout)):
                value = fn(*args, **kwargs)
        except BaseException as e:
            self._forget(key, flight)
            if isinstance(e, Exception):
                flight.set_exception(e)
            else:
                # leader greenlet killed; waiters must not see GreenletExit
                flight.set_exception(UpstreamFetchError(_describe(key), reason="aborted"))
            raise
        self._forget(key, flight)
        flight.set(value)
        return value

    def _wait(self, key, flight):
        try:
            return flight.get(timeout=self.timeout)
        except Timeout:
            raise UpstreamTimeoutError(_describe(key), self.timeout)

    def _forget(self, key, flight):
        if self._pending.get(key) is flight:
            del self._pending[key]


def _describe(key):
    if isinstance(key, tuple):
        return key[-1]
    return key
