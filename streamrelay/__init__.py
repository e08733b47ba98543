from streamrelay.errors import (
    RelayError,
    InvalidInput,
    UpstreamFetchError,
    UpstreamTimeoutError,
    ResolutionError,
    StreamNotFoundError,
    ResourceExhausted,
    StreamTransportError,
)

__version__ = "1.0.0"
