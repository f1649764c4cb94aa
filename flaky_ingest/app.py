"""Flask app exposing the log ingestion endpoint behind the fault injector."""

import logging
import random
import time

from flask import Flask, jsonify, request

from flaky_ingest.config import Config
from flaky_ingest.decoder import (
    GzipHeaderError,
    PayloadDecoder,
    PayloadError,
    PayloadTooLarge,
    RecordDecodeError,
)
from flaky_ingest.inflight import InFlightCounter
from flaky_ingest.injector import FaultInjector, RandomSource
from flaky_ingest.sink import OutputSink

logger = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    sink: OutputSink | None = None,
    rng: RandomSource | None = None,
    sleep=time.sleep,
) -> Flask:
    """Flask application factory.

    The random source is created and seeded once here and shared by every
    request thread. Tests pass their own rng, sleep and sink.
    """
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    if config is None:
        config = Config()
    if sink is None:
        sink = OutputSink()
    if rng is None:
        rng = random.Random(config.seed)

    counter = InFlightCounter()
    decoder = PayloadDecoder(
        sink,
        parse_json=not config.disable_json_parsing,
        show_timestamp=config.show_timestamp,
    )

    # Store components on app for access in tests
    app.config["components"] = {
        "config": config,
        "sink": sink,
        "counter": counter,
        "decoder": decoder,
    }

    # --- Routes ---

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "in_flight": counter.value,
            "lines_emitted": sink.lines_written,
        })

    @app.route("/", methods=["POST"])
    @app.route("/api/v2/logs", methods=["POST"])
    def ingest_logs():
        remote = request.remote_addr
        try:
            decoder.process(request.stream)
        except GzipHeaderError as exc:
            logger.warning("[%s] failed to create gzip reader: %s", remote, exc)
            return "", exc.status
        except RecordDecodeError as exc:
            logger.error(
                "[%s] failed to decode JSON request body: %s. Body: %s",
                remote, exc, exc.body.decode("utf-8", errors="replace"),
            )
            return "", exc.status
        except PayloadTooLarge as exc:
            logger.error("[%s] %s", remote, exc)
            return "", exc.status
        except PayloadError as exc:
            logger.warning("[%s] %s", remote, exc)
            return "", exc.status
        return "", 202

    app.wsgi_app = FaultInjector(app.wsgi_app, config, counter=counter, rng=rng, sleep=sleep)
    return app
