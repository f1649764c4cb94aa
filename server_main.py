"""Entry point for the flaky log ingestion server."""

import logging
import signal
import sys
import threading

from flaky_ingest.app import create_app
from flaky_ingest.config import load_config
from flaky_ingest.server import IngestServer

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except (TypeError, ValueError) as exc:
        print(f"flaky-ingest: invalid configuration: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger.debug("Config: %s", config)

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app = create_app(config)
    server = IngestServer(app, config.host, config.port, timeout=config.server_timeout)

    logger.info("starting the server at port %d", config.port)
    try:
        server.start()
    except OSError as exc:
        logger.critical("error while serving http: %s", exc)
        return 1

    try:
        shutdown_event.wait()
    finally:
        server.stop()

    logger.info("exiting the application normally")
    return 0


if __name__ == "__main__":
    sys.exit(main())
