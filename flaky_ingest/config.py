"""Configuration module: frozen dataclass loaded from YAML, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import asdict, dataclass, fields

import yaml

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_seed(value: str) -> int | None:
    value = value.strip()
    return int(value) if value else None


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 8083
    fail_auth_chance: float = 0.0
    slow_receive_chance: float = 0.0
    bad_response_chance: float = 0.0
    random_network_lag: int = 0
    disable_json_parsing: bool = False
    show_timestamp: bool = False
    slow_receive_seconds: float = 30.0
    server_timeout: float = 60.0
    seed: int | None = None
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ("fail_auth_chance", "slow_receive_chance", "bad_response_chance"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0.0 and 1.0, got {value}")
        if self.random_network_lag < 0:
            raise ValueError(
                f"random_network_lag must be non-negative, got {self.random_network_lag}"
            )
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be between 0 and 65535, got {self.port}")
        if self.slow_receive_seconds < 0:
            raise ValueError(
                f"slow_receive_seconds must be non-negative, got {self.slow_receive_seconds}"
            )
        if self.server_timeout <= 0:
            raise ValueError(f"server_timeout must be positive, got {self.server_timeout}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"unknown log_level {self.log_level!r}")


# Field name -> (env var, parser for string values)
_FIELD_SOURCES = {
    "host": ("SERVER_HOST", str),
    "port": ("SERVER_PORT", int),
    "fail_auth_chance": ("RANDOM_NO_AUTH", float),
    "slow_receive_chance": ("RANDOM_SLOW_RECEIVE", float),
    "bad_response_chance": ("RANDOM_BAD_RESPONSE", float),
    "random_network_lag": ("RANDOM_NETWORK_LAG", int),
    "disable_json_parsing": ("DISABLE_JSON_PARSING", _parse_bool),
    "show_timestamp": ("SHOW_TIMESTAMP", _parse_bool),
    "slow_receive_seconds": ("SLOW_RECEIVE_SECONDS", float),
    "server_timeout": ("SERVER_TIMEOUT", float),
    "seed": ("RANDOM_SEED", _parse_seed),
    "log_level": ("LOG_LEVEL", str),
}


def load_yaml_overrides(path: str | None) -> dict:
    """Read a flat YAML mapping of Config field names.

    A missing or unreadable file yields no overrides, like the lab services
    that fall back to their defaults.
    """
    if not path:
        return {}
    try:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        logger.warning("Invalid YAML in %s, using defaults: %s", path, exc)
        return {}

    if document is None:
        return {}
    if not isinstance(document, dict):
        logger.warning("Config file %s is not a mapping, ignoring it", path)
        return {}

    known = {f.name for f in fields(Config)}
    overrides = {}
    for key, value in document.items():
        if key not in known:
            logger.warning("Ignoring unknown config key %r in %s", key, path)
            continue
        if isinstance(value, str):
            value = _FIELD_SOURCES[key][1](value)
        overrides[key] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser; every option defaults to None so lower layers win."""
    parser = argparse.ArgumentParser(
        prog="flaky-ingest",
        description="Mock log ingestion endpoint with probabilistic fault injection",
    )
    parser.add_argument("--config", type=str, default=None,
                        help="YAML config file (default: $CONFIG_PATH)")
    parser.add_argument("--host", type=str, default=None,
                        help="interface to listen on")
    parser.add_argument("--port", type=int, default=None,
                        help="local port to launch the server at")
    parser.add_argument("--random-no-auth", "--random_no_auth",
                        dest="fail_auth_chance", type=float, default=None,
                        help="chance to fail authentication, from 0.0 to 1.0")
    parser.add_argument("--random-slow-receive", "--random_slow_receive",
                        dest="slow_receive_chance", type=float, default=None,
                        help="chance to receive data slowly, from 0.0 to 1.0")
    parser.add_argument("--random-bad-response", "--random_bad_response",
                        dest="bad_response_chance", type=float, default=None,
                        help="chance to return status 500, from 0.0 to 1.0")
    parser.add_argument("--random-network-lag", "--random_network_lag",
                        dest="random_network_lag", type=int, default=None,
                        help="maximum random network lag on responding, msec")
    parser.add_argument("--disable-json-parsing", "--disable_json_parsing",
                        dest="disable_json_parsing", action="store_true", default=None,
                        help="print payloads as-is instead of decoding JSON records")
    parser.add_argument("--show-timestamp", "--show_timestamp",
                        dest="show_timestamp", action="store_true", default=None,
                        help="print a timestamp before each payload or record")
    parser.add_argument("--slow-receive-seconds", type=float, default=None,
                        help="how long a slow receive hangs the request")
    parser.add_argument("--server-timeout", type=float, default=None,
                        help="socket read/write timeout in seconds")
    parser.add_argument("--seed", type=int, default=None,
                        help="seed for the fault injection random source")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS, default=None)
    return parser


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args (highest priority).

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = build_parser().parse_args(argv)

    values = asdict(Config())
    values.update(load_yaml_overrides(args.config or os.environ.get("CONFIG_PATH")))

    for name, (env_var, parse) in _FIELD_SOURCES.items():
        raw = os.environ.get(env_var)
        if raw is not None:
            values[name] = parse(raw)

    for name in _FIELD_SOURCES:
        cli_value = getattr(args, name)
        if cli_value is not None:
            values[name] = cli_value

    values["log_level"] = str(values["log_level"]).upper()
    return Config(**values)
