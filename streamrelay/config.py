import logging
import os

logger = logging.getLogger(__name__)

# ======================================================
# DEFAULTS
# ======================================================

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/143 Safari/537.36"
)

DEFAULTS = {
    "PORT": 5000,
    "STREAM_TTL_SEC": 600,
    "USER_AGENT": DEFAULT_USER_AGENT,
    "UPSTREAM_ORIGIN": "https://app.livetvapi.com",
    "LANDING_TEMPLATE": "{origin}/event-play-2/{event_id}",
    "STREAM_INPUT_SELECTOR": "input#stream-link",
    "SESSION_CACHE_MAX": 200,
    "CONTENT_CACHE_MAX": 1500,
    "PLAYLIST_TTL_SEC": 2.5,
    "SEGMENT_TTL_SEC": 12,
    "MAX_IN_FLIGHT": 500,
    "UPSTREAM_CONNECT_TIMEOUT": 5,
    "UPSTREAM_READ_TIMEOUT": 15,
    "FETCH_TIMEOUT_SEC": 30,
    "CHUNK_SIZE": 64 * 1024,
    "WORKER_POOL_SIZE": 1000,
    "LOG_LEVEL": "INFO",
}

# config key -> environment variable
ENV_VARS = {
    "PORT": "PORT",
    "STREAM_TTL_SEC": "STREAM_TTL_SEC",
    "USER_AGENT": "UA",
    "UPSTREAM_ORIGIN": "UPSTREAM_ORIGIN",
    "SESSION_CACHE_MAX": "SESSION_CACHE_MAX",
    "CONTENT_CACHE_MAX": "CONTENT_CACHE_MAX",
    "MAX_IN_FLIGHT": "MAX_IN_FLIGHT",
    "UPSTREAM_CONNECT_TIMEOUT": "UPSTREAM_CONNECT_TIMEOUT",
    "UPSTREAM_READ_TIMEOUT": "UPSTREAM_READ_TIMEOUT",
    "FETCH_TIMEOUT_SEC": "FETCH_TIMEOUT_SEC",
    "WORKER_POOL_SIZE": "WORKER_POOL_SIZE",
    "LOG_LEVEL": "LOG_LEVEL",
}


def _coerce(key, raw):
    default = DEFAULTS[key]
    if isinstance(default, str):
        return raw
    try:
        return type(default)(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %r", ENV_VARS[key], raw, default)
        return default


def load_config(environ=None):
    """Defaults overlaid with whatever the environment provides."""
    environ = os.environ if environ is None else environ
    config = dict(DEFAULTS)
    for key, var in ENV_VARS.items():
        raw = environ.get(var, "").strip()
        if raw:
            config[key] = _coerce(key, raw)
    return config
