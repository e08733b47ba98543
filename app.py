from gevent import monkey
monkey.patch_all()

import logging
import sys

from gevent import pool
from gevent.pywsgi import WSGIServer

from streamrelay.config import load_config
from streamrelay.gateway import create_app

config = load_config()

logging.basicConfig(
    level=getattr(logging, str(config["LOG_LEVEL"]).upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("streamrelay")

app = create_app(config)


# ======================================================
# RUN
# ======================================================

def main():
    worker_pool = pool.Pool(config["WORKER_POOL_SIZE"])
    server = WSGIServer(
        ("0.0.0.0", config["PORT"]),
        app,
        spawn=worker_pool,
        log=logging.getLogger("streamrelay.access"),
        error_log=logging.getLogger("streamrelay.server"),
    )
    logger.info("HLS relay listening on http://0.0.0.0:%s", config["PORT"])
    server.serve_forever()


if __name__ == "__main__":
    main()
