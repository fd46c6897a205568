"""
Ingestion Configuration

All configurable parameters for the ingestion engine and the Steem client.
Values can be supplied directly or read from the environment (.env supported).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


FETCH_POLICY_SKIP = "skip"
FETCH_POLICY_RETRY = "retry"
FETCH_POLICIES = (FETCH_POLICY_SKIP, FETCH_POLICY_RETRY)

ENV_PREFIX = "LEDGER_INGEST_"


@dataclass
class EngineConfig:
    """Configuration for IngestionEngine."""

    # ========== Cursor ==========
    # Next block height to process (load from external storage on restart)
    initial_cursor: int = 1

    # ========== Catch-up ==========
    # Delay between historical block fetches (ms)
    catch_up_poll_interval_ms: int = 1000

    # What to do when a historical block cannot be fetched
    # "skip"  = log, report and move on
    # "retry" = retry up to max_fetch_retries, then skip
    fetch_failure_policy: str = FETCH_POLICY_SKIP
    max_fetch_retries: int = 3
    fetch_retry_delay: float = 1.0

    # Timeout for a single block fetch (seconds, None = wait forever)
    fetch_timeout: Optional[float] = 30.0

    # Backoff for failed head queries (seconds)
    head_retry_initial_delay: float = 1.0
    head_retry_max_delay: float = 30.0

    # ========== Dispatch ==========
    # Prepended to every registered identifier, e.g. "myapp_"
    operation_namespace_prefix: str = ""

    # ========== Shutdown ==========
    # While streaming, how long stop() waits for the feed to close before
    # cancelling the wait (seconds, None = wait forever). A block being
    # dispatched is always allowed to finish.
    shutdown_grace: Optional[float] = 1.0

    def __post_init__(self):
        self.validate()

    @property
    def catch_up_poll_interval(self) -> float:
        return self.catch_up_poll_interval_ms / 1000.0

    def validate(self) -> None:
        """Raise ConfigurationError if any setting has the wrong type or is out of range."""
        for name in ("initial_cursor", "catch_up_poll_interval_ms", "max_fetch_retries"):
            _require_int(name, getattr(self, name))
        for name in ("fetch_retry_delay", "head_retry_initial_delay", "head_retry_max_delay"):
            _require_number(name, getattr(self, name))
        for name in ("fetch_timeout", "shutdown_grace"):
            if getattr(self, name) is not None:
                _require_number(name, getattr(self, name))
        if not isinstance(self.operation_namespace_prefix, str):
            raise ConfigurationError("operation_namespace_prefix must be a string")

        if self.initial_cursor < 1:
            raise ConfigurationError(f"initial_cursor must be >= 1, got {self.initial_cursor}")
        if self.catch_up_poll_interval_ms < 0:
            raise ConfigurationError("catch_up_poll_interval_ms must be >= 0")
        if self.fetch_failure_policy not in FETCH_POLICIES:
            raise ConfigurationError(
                f"fetch_failure_policy must be one of {FETCH_POLICIES}, got {self.fetch_failure_policy!r}"
            )
        if self.max_fetch_retries < 0:
            raise ConfigurationError("max_fetch_retries must be >= 0")
        if self.fetch_retry_delay < 0:
            raise ConfigurationError("fetch_retry_delay must be >= 0")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise ConfigurationError("fetch_timeout must be positive or None")
        if self.head_retry_initial_delay < 0 or self.head_retry_max_delay < self.head_retry_initial_delay:
            raise ConfigurationError("head retry delays must satisfy 0 <= initial <= max")
        if self.shutdown_grace is not None and self.shutdown_grace < 0:
            raise ConfigurationError("shutdown_grace must be >= 0 or None")

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineConfig":
        """
        Build config from LEDGER_INGEST_* environment variables.

        Example .env:
            LEDGER_INGEST_INITIAL_CURSOR=41000000
            LEDGER_INGEST_PREFIX=myapp_

        Variables: INITIAL_CURSOR, POLL_INTERVAL_MS, FETCH_FAILURE_POLICY,
        MAX_FETCH_RETRIES, FETCH_RETRY_DELAY, FETCH_TIMEOUT, HEAD_RETRY_INITIAL_DELAY,
        HEAD_RETRY_MAX_DELAY, PREFIX, SHUTDOWN_GRACE. For FETCH_TIMEOUT and
        SHUTDOWN_GRACE, "none" (or empty) means no limit.
        """
        load_dotenv(dotenv_path)

        return cls(
            initial_cursor=_env_int("INITIAL_CURSOR", 1),
            catch_up_poll_interval_ms=_env_int("POLL_INTERVAL_MS", 1000),
            fetch_failure_policy=_env("FETCH_FAILURE_POLICY", FETCH_POLICY_SKIP).strip().lower(),
            max_fetch_retries=_env_int("MAX_FETCH_RETRIES", 3),
            fetch_retry_delay=_env_float("FETCH_RETRY_DELAY", 1.0),
            fetch_timeout=_env_optional_float("FETCH_TIMEOUT", 30.0),
            head_retry_initial_delay=_env_float("HEAD_RETRY_INITIAL_DELAY", 1.0),
            head_retry_max_delay=_env_float("HEAD_RETRY_MAX_DELAY", 30.0),
            operation_namespace_prefix=_env("PREFIX", ""),
            shutdown_grace=_env_optional_float("SHUTDOWN_GRACE", 1.0),
        )


DEFAULT_NODE_URL = "https://api.steemit.com"


@dataclass
class ClientConfig:
    """Configuration for SteemClient."""
    node_url: str = DEFAULT_NODE_URL
    request_timeout: float = 10.0

    # Steem produces a block every 3 seconds
    block_interval: float = 3.0

    # Consecutive stream poll failures before the feed gives up
    stream_error_limit: int = 10

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ClientConfig":
        load_dotenv(dotenv_path)
        return cls(
            node_url=_env("NODE_URL", DEFAULT_NODE_URL),
            request_timeout=_env_float("REQUEST_TIMEOUT", 10.0),
            block_interval=_env_float("BLOCK_INTERVAL", 3.0),
            stream_error_limit=_env_int("STREAM_ERROR_LIMIT", 10),
        )


def _env(name: str, default: str) -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _env_float(name: str, default: float) -> float:
    value = _env(name, str(default))
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number") from e


def _env_optional_float(name: str, default: float) -> Optional[float]:
    if _env(name, str(default)).strip().lower() in ("", "none"):
        return None
    return _env_float(name, default)


def _env_int(name: str, default: int) -> int:
    value = _env(name, str(default))
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer") from e


def _require_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _require_number(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
