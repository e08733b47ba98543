class RelayError(Exception):
    """Base error; ``status`` is the HTTP status the gateway answers with."""

    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidInput(RelayError):
    status = 400


class UpstreamFetchError(RelayError):
    status = 502

    def __init__(self, url, upstream_status=None, reason=None):
        if upstream_status is not None:
            message = f"Upstream {upstream_status}"
        else:
            message = f"Upstream unreachable: {reason or 'unknown error'}"
        super().__init__(message)
        self.url = url
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamFetchError):
    status = 504

    def __init__(self, url, seconds=None):
        super().__init__(url, reason=f"timed out after {seconds}s" if seconds else "timed out")
        self.seconds = seconds


class ResolutionError(RelayError):
    status = 500


class StreamNotFoundError(ResolutionError):
    def __init__(self, event_id):
        super().__init__(f"no stream url for event {event_id}")
        self.event_id = event_id


class ResourceExhausted(RelayError):
    status = 503

    def __init__(self, message="busy"):
        super().__init__(message)


class StreamTransportError(RelayError):
    status = 502
