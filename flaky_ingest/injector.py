"""WSGI middleware that randomly fails, hangs or delays incoming requests."""

import enum
import logging
import random
import time
from typing import Callable, Iterable, Protocol

from werkzeug.wrappers import Request, Response

from flaky_ingest.config import Config
from flaky_ingest.inflight import InFlightCounter

logger = logging.getLogger(__name__)


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


class RandomSource(Protocol):
    def random(self) -> float:
        """Return a uniform draw in [0.0, 1.0)."""
        ...


class Fault(enum.Enum):
    AUTH_FAILURE = "auth_failure"
    SLOW_RECEIVE = "slow_receive"
    BAD_RESPONSE = "bad_response"
    NONE = "none"


class FaultInjector:
    """Wraps a WSGI app and decides, per request, which failure to simulate.

    Each channel is checked with a fresh draw in priority order (auth failure,
    slow receive, bad response); the first hit wins. Requests that pass all
    three are forwarded and may be delayed by up to ``random_network_lag`` ms.
    Every wrapped request holds an in-flight slot until the middleware returns.
    """

    def __init__(
        self,
        app,
        config: Config,
        counter: InFlightCounter | None = None,
        rng: RandomSource | None = None,
        sleep: Callable[[float], None] = time.sleep,
        exempt_paths: Iterable[str] = ("/health",),
    ):
        self._app = app
        self._config = config
        self.counter = counter if counter is not None else InFlightCounter()
        self._rng = rng if rng is not None else random.Random(config.seed)
        self._sleep = sleep
        self._exempt_paths = frozenset(_normalize_path(p) for p in exempt_paths)

    def decide(self) -> Fault:
        if self._rng.random() < self._config.fail_auth_chance:
            return Fault.AUTH_FAILURE
        if self._rng.random() < self._config.slow_receive_chance:
            return Fault.SLOW_RECEIVE
        if self._rng.random() < self._config.bad_response_chance:
            return Fault.BAD_RESPONSE
        return Fault.NONE

    def network_lag(self) -> float:
        """Seconds of artificial lag, uniform over [0, random_network_lag ms)."""
        if self._config.random_network_lag <= 0:
            return 0.0
        return self._rng.random() * self._config.random_network_lag / 1000.0

    def __call__(self, environ, start_response):
        if _normalize_path(environ.get("PATH_INFO", "")) in self._exempt_paths:
            return self._app(environ, start_response)

        request = Request(environ)
        with self.counter.slot() as number:
            logger.info(
                "incoming request(%d): addr=%s, protocol=%s, headers=%s",
                number,
                request.remote_addr,
                environ.get("SERVER_PROTOCOL"),
                dict(request.headers),
            )

            fault = self.decide()
            if fault is Fault.AUTH_FAILURE:
                logger.info("triggered a fail auth chance, returning status 403")
                return Response(status=403)(environ, start_response)
            if fault is Fault.SLOW_RECEIVE:
                logger.info(
                    "triggered a slow receive chance, sleeping for %.0f seconds",
                    self._config.slow_receive_seconds,
                )
                self._sleep(self._config.slow_receive_seconds)
                # Nothing was written; the server's implicit empty 200 follows
                return Response(status=200)(environ, start_response)
            if fault is Fault.BAD_RESPONSE:
                logger.info("triggered a bad response chance, returning status 500")
                return Response(status=500)(environ, start_response)

            lag = self.network_lag()
            response = self._app(environ, start_response)
            if lag > 0:
                logger.debug("delaying response by %.3f seconds", lag)
                self._sleep(lag)
            return response
