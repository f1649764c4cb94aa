import gzip
import io
import json

import pytest

from flaky_ingest.app import create_app
from flaky_ingest.config import Config
from flaky_ingest.sink import OutputSink


class ScriptedRandom:
    """Random source returning pre-scripted draws, then a fallback value."""

    def __init__(self, draws=(), fallback=0.99):
        self._draws = list(draws)
        self._fallback = fallback
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self._draws:
            return self._draws.pop(0)
        return self._fallback


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


def gzip_json(obj) -> bytes:
    return gzip.compress(json.dumps(obj).encode())


@pytest.fixture
def sink_stream():
    return io.BytesIO()


@pytest.fixture
def sink(sink_stream):
    return OutputSink(sink_stream)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_client(sink, sleep):
    """Build a Flask test client for a Config built from keyword overrides."""

    def _make(rng=None, **overrides):
        config = Config(**overrides)
        app = create_app(config, sink=sink, rng=rng or ScriptedRandom(), sleep=sleep)
        app.config["TESTING"] = True
        return app.test_client()

    return _make


@pytest.fixture
def client(make_client):
    """Client with every fault channel disabled."""
    return make_client()


@pytest.fixture
def sample_records():
    return [
        {"msg": "a", "level": "INFO"},
        {"msg": "b", "level": "ERROR", "attrs": {"retry": 3}},
    ]
