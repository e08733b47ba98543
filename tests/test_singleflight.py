import gevent
import pytest

from streamrelay.errors import UpstreamTimeoutError
from streamrelay.singleflight import SingleFlight


def test_concurrent_callers_share_one_call():
    flights = SingleFlight(timeout=5)
    calls = []

    def work():
        calls.append(1)
        gevent.sleep(0.01)
        return object()

    jobs = [gevent.spawn(flights.do, "k", work) for _ in range(5)]
    gevent.joinall(jobs, raise_error=True)
    assert len(calls) == 1
    assert len({id(job.value) for job in jobs}) == 1
    assert "k" not in flights


def test_failure_reaches_every_waiter_and_key_is_released():
    flights = SingleFlight(timeout=5)

    def boom():
        gevent.sleep(0.01)
        raise KeyError("nope")

    def call():
        try:
            flights.do("k", boom)
        except KeyError as e:
            return e

    jobs = [gevent.spawn(call) for _ in range(3)]
    gevent.joinall(jobs)
    assert all(isinstance(job.value, KeyError) for job in jobs)
    assert len(flights) == 0
    assert flights.do("k", lambda: "retried") == "retried"


def test_distinct_keys_run_independently():
    flights = SingleFlight()
    calls = []

    def work(key):
        calls.append(key)
        gevent.sleep(0.01)
        return key

    jobs = [gevent.spawn(flights.do, key, work, key) for key in ("a", "b")]
    gevent.joinall(jobs, raise_error=True)
    assert sorted(calls) == ["a", "b"]


def test_leader_is_bounded_by_timeout():
    flights = SingleFlight(timeout=0.05)
    with pytest.raises(UpstreamTimeoutError):
        flights.do("slow", gevent.sleep, 1)
    assert "slow" not in flights
