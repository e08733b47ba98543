import gevent
import pytest

from streamrelay.content import ContentCache, ContentEntry, Transfer
from streamrelay.errors import ResourceExhausted, StreamTransportError

from tests.conftest import FakeClock, FakeStream, FakeUpstream

SEG = "https://cdn.example.com/live/seg-1.ts"


def make_cache(**kwargs):
    upstream = FakeUpstream()
    cache = ContentCache(upstream, maxsize=10, timer=FakeClock(), timeout=2, **kwargs)
    return upstream, cache


def test_concurrent_readers_share_one_upstream_stream():
    upstream, cache = make_cache()
    upstream.add_stream(SEG, [b"ab", b"cd", b"ef"], {"Content-Type": "video/mp2t"})

    def fetch():
        return b"".join(cache.stream(SEG).chunks())

    jobs = [gevent.spawn(fetch) for _ in range(4)]
    gevent.joinall(jobs, raise_error=True)
    assert [job.value for job in jobs] == [b"abcdef"] * 4
    assert upstream.count(SEG) == 1
    assert cache.in_flight == 0

    entry = cache.get(SEG)
    assert isinstance(entry, ContentEntry)
    assert entry.payload == b"abcdef"
    assert b"".join(cache.body(cache.stream(SEG))) == b"abcdef"
    assert upstream.count(SEG) == 1


def test_last_reader_leaving_cancels_upstream():
    upstream, cache = make_cache()
    upstream.add_stream(SEG, [], {"Content-Type": "video/mp2t"}, endless=True)
    transfer = cache.stream(SEG)
    body = transfer.chunks()
    assert next(body)
    body.close()
    gevent.sleep(0.01)

    stream = upstream.opened[0]
    assert stream.cancelled
    assert stream.closed
    assert transfer.settled
    assert cache.get(SEG) is None
    assert cache.in_flight == 0


def test_upstream_read_error_reaches_reader_and_is_not_cached():
    upstream, cache = make_cache()
    upstream.add_stream(SEG, [b"a", b"b", b"c"], fail_after=1)
    with pytest.raises(StreamTransportError):
        list(cache.stream(SEG).chunks())
    assert cache.get(SEG) is None
    assert upstream.opened[0].closed


def test_playlist_detected_by_content_type_gets_playlist_ttl():
    upstream, cache = make_cache(playlist_ttl=2.5, segment_ttl=12)
    url = "https://cdn.example.com/live/variant"
    upstream.add_stream(url, [b"#EXTM3U\n", b"a.ts\n"], {"Content-Type": "application/vnd.apple.mpegurl"})
    assert cache.stream(url).read_text() == "#EXTM3U\na.ts\n"
    assert cache.get(url).expires_at == cache.timer() + 2.5


def test_new_upstream_work_rejected_when_saturated():
    upstream, cache = make_cache(max_in_flight=1)
    upstream.add_page("https://cdn.example.com/a.m3u8", "#EXTM3U\n")
    upstream.delay = 0.02
    first = gevent.spawn(cache.fetch_text, "https://cdn.example.com/a.m3u8")
    gevent.sleep(0)
    assert cache.saturated
    with pytest.raises(ResourceExhausted):
        cache.fetch_text("https://cdn.example.com/b.m3u8")
    first.get()
    assert not cache.saturated


def test_stalled_upstream_fails_reader():
    stream = FakeStream(SEG, [])

    def never():
        gevent.sleep(10)
        yield b""

    stream.iter_chunks = lambda chunk_size: never()
    transfer = Transfer(SEG, stream, lambda t: None, read_timeout=0.02).start().attach()
    with pytest.raises(StreamTransportError):
        list(transfer.chunks())
    assert stream.cancelled


def test_attached_client_survives_first_reader_leaving():
    upstream, cache = make_cache()
    upstream.add_stream(SEG, [b"ab", b"cd", b"ef", b"gh"], {"Content-Type": "video/mp2t"})
    first = cache.stream(SEG)
    body = first.chunks()
    assert next(body) == b"ab"

    second = cache.stream(SEG)
    assert second is first
    body.close()
    assert not upstream.opened[0].cancelled

    assert b"".join(second.chunks()) == b"abcdefgh"
    assert cache.get(SEG).payload == b"abcdefgh"
    assert upstream.count(SEG) == 1


def test_new_request_after_cancel_opens_fresh_transfer():
    upstream, cache = make_cache()
    upstream.add_stream(SEG, [], endless=True)
    first = cache.stream(SEG)
    body = first.chunks()
    next(body)
    body.close()
    assert first.cancelled

    second = cache.stream(SEG)
    assert second is not first
    assert not second.cancelled
    assert upstream.count(SEG) == 2
    second.cancel()


def test_cached_entry_is_served_in_configured_chunks():
    upstream, cache = make_cache(chunk_size=4)
    cache.put(SEG, b"abcdefghij")
    assert list(cache.body(cache.stream(SEG))) == [b"abcd", b"efgh", b"ij"]
    assert upstream.calls == []
