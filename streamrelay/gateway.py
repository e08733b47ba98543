import logging
import re
import time

from flask import (
    Blueprint,
    Flask,
    Response,
    current_app,
    jsonify,
    render_template_string,
    request,
    stream_with_context,
)
from werkzeug.exceptions import HTTPException

from streamrelay.caches import SessionCache
from streamrelay.config import load_config
from streamrelay.content import ContentCache
from streamrelay.coordinator import PrepareCoordinator
from streamrelay.errors import InvalidInput, RelayError, ResourceExhausted
from streamrelay.playlist import PLAYLIST_MIMETYPE, is_playlist, looks_like_playlist, rewrite
from streamrelay.resolver import SessionResolver, is_http_url
from streamrelay.upstream import UpstreamClient

logger = logging.getLogger(__name__)

EVENT_ID_RE = re.compile(r"[0-9]{1,20}")

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

PLAYER_TEMPLATE = """
<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>Event {{ event_id }}</title>
</head>
<body style="margin:0;background:black">
<video id="v" controls autoplay muted playsinline style="width:100%;height:100vh"></video>
<script src="https://cdn.jsdelivr.net/npm/hls.js@1"></script>
<script>
(async () => {
  const video = document.getElementById('v');
  const src = '/live/{{ event_id }}/playlist.m3u8';
  await fetch('/prepare/{{ event_id }}');
  if (window.Hls && Hls.isSupported()) {
    const hls = new Hls();
    hls.loadSource(src);
    hls.attachMedia(video);
  } else {
    video.src = src;
  }
})();
</script>
</body>
</html>
"""


# ======================================================
# WIRING
# ======================================================

class Relay(object):
    """Caches, coordinator and upstream client shared by all requests."""

    def __init__(self, config, client=None, resolver=None, timer=time.monotonic):
        self.config = config
        self.client = client or UpstreamClient(
            user_agent=config["USER_AGENT"],
            origin=config["UPSTREAM_ORIGIN"],
            connect_timeout=config["UPSTREAM_CONNECT_TIMEOUT"],
            read_timeout=config["UPSTREAM_READ_TIMEOUT"],
        )
        self.resolver = resolver or SessionResolver(
            self.client,
            origin=config["UPSTREAM_ORIGIN"],
            landing_template=config["LANDING_TEMPLATE"],
            input_selector=config["STREAM_INPUT_SELECTOR"],
        )
        self.sessions = SessionCache(
            maxsize=config["SESSION_CACHE_MAX"],
            ttl=config["STREAM_TTL_SEC"],
            timer=timer,
        )
        self.coordinator = PrepareCoordinator(
            self.resolver, self.sessions, timeout=config["FETCH_TIMEOUT_SEC"])
        self.content = ContentCache(
            self.client,
            maxsize=config["CONTENT_CACHE_MAX"],
            playlist_ttl=config["PLAYLIST_TTL_SEC"],
            segment_ttl=config["SEGMENT_TTL_SEC"],
            max_in_flight=config["MAX_IN_FLIGHT"],
            timeout=config["FETCH_TIMEOUT_SEC"],
            chunk_size=config["CHUNK_SIZE"],
            timer=timer,
        )
        self.started = time.time()


def get_relay():
    return current_app.extensions["streamrelay"]


def check_event_id(event_id):
    if not EVENT_ID_RE.fullmatch(event_id or ""):
        raise InvalidInput("invalid event id")
    return event_id


def check_upstream_url(url):
    if not url or not is_http_url(url):
        raise InvalidInput("url must be an absolute http(s) url")
    return url


def playlist_response(text):
    return Response(text, mimetype=PLAYLIST_MIMETYPE, headers=NO_STORE_HEADERS)


bp = Blueprint("relay", __name__)


# ======================================================
# ROUTES
# ======================================================

@bp.route("/prepare/<event_id>")
def prepare(event_id):
    event_id = check_event_id(event_id)
    relay = get_relay()
    cached = relay.coordinator.lookup(event_id) is not None
    if not cached:
        try:
            relay.coordinator.ensure(event_id)
        except RelayError as e:
            return jsonify({"eventId": event_id, "error": e.message}), 500
    return jsonify({"eventId": event_id, "cached": cached, "ttl": relay.sessions.ttl})


@bp.route("/api/live/<event_id>")
def live_meta(event_id):
    event_id = check_event_id(event_id)
    meta = get_relay().coordinator.ensure(event_id)
    return jsonify({
        "eventId": event_id,
        "streamUrl": meta.stream_url,
        "createdAt": meta.created_at,
    })


@bp.route("/live/<event_id>/playlist.m3u8")
def playlist(event_id):
    event_id = check_event_id(event_id)
    relay = get_relay()
    meta = relay.coordinator.ensure(event_id)
    entry = relay.content.fetch_text(meta.stream_url, meta.cookies)
    return playlist_response(rewrite(entry.read_text(), entry.base_url, event_id))


@bp.route("/live/<event_id>/seg")
def segment(event_id):
    event_id = check_event_id(event_id)
    url = check_upstream_url(request.args.get("url", "").strip())
    relay = get_relay()

    if relay.content.saturated:
        logger.warning("Busy: %d upstream fetches in flight", relay.content.in_flight)
        raise ResourceExhausted()

    meta = relay.coordinator.ensure(event_id)

    if looks_like_playlist(url):
        entry = relay.content.fetch_text(url, meta.cookies)
        return playlist_response(rewrite(entry.read_text(), entry.base_url, event_id))

    source = relay.content.stream(url, meta.cookies)
    if is_playlist(url, source.content_type):
        return playlist_response(rewrite(source.read_text(), source.base_url, event_id))

    return Response(
        stream_with_context(relay.content.body(source)),
        content_type=source.content_type or "video/mp2t",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@bp.route("/debug/<event_id>")
def debug(event_id):
    event_id = check_event_id(event_id)
    relay = get_relay()
    return jsonify({
        "eventId": event_id,
        "cached": relay.coordinator.lookup(event_id) is not None,
        "preparing": relay.coordinator.is_preparing(event_id),
    })


@bp.route("/player/<event_id>")
def player(event_id):
    event_id = check_event_id(event_id)
    return render_template_string(PLAYER_TEMPLATE, event_id=event_id)


@bp.route("/health")
def health():
    relay = get_relay()
    return jsonify({
        "status": "ok",
        "uptime": round(time.time() - relay.started, 3),
        "cacheSize": len(relay.sessions),
        "cacheMax": relay.sessions.maxsize,
    })


@bp.after_app_request
def allow_any_origin(response):
    response.headers.setdefault("Access-Control-Allow-Origin", "*")
    return response


@bp.app_errorhandler(RelayError)
def handle_relay_error(e):
    if e.status >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.path, e.status, e.message)
    return jsonify({"error": e.message}), e.status


@bp.app_errorhandler(Exception)
def handle_unexpected(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception("Unhandled error on %s", request.path)
    return jsonify({"error": "internal error"}), 500


def create_app(config=None, client=None, resolver=None, timer=time.monotonic):
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)
    app.extensions["streamrelay"] = Relay(app.config, client=client, resolver=resolver, timer=timer)
    app.register_blueprint(bp)
    return app
