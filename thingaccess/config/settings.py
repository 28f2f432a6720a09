"""Settings loader for the thing-access runtime.

The driver process is launched by the edge function runtime, which hands the
module identity over in ``FUNCTION_ID``. Everything else is optional and read
from ``THING_ACCESS_*`` environment variables with sane defaults.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..common import parse_bool, parse_code_set, parse_float, parse_int
from ..const import (
    DEFAULT_AUTO_FINALIZE,
    DEFAULT_BUS_ADDRESS,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_METRICS_ENABLED,
    DEFAULT_METRICS_HOST,
    DEFAULT_METRICS_PORT,
    DEFAULT_RECONNECT_CODES,
    DEFAULT_RETRY_MAX_BACKOFF,
    DEFAULT_RETRY_MIN_BACKOFF,
    ENV_AUTO_FINALIZE,
    ENV_BUS_ADDRESS,
    ENV_DEBUG,
    ENV_FUNCTION_ID,
    ENV_METRICS_ENABLED,
    ENV_METRICS_HOST,
    ENV_METRICS_PORT,
    ENV_RECONNECT_CODES,
    ENV_RETRY_MAX_BACKOFF,
    ENV_RETRY_MIN_BACKOFF,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for a driver process."""

    module_name: str
    bus_address: str = DEFAULT_BUS_ADDRESS
    debug_logging: bool = DEFAULT_DEBUG_LOGGING
    auto_finalize: bool = DEFAULT_AUTO_FINALIZE
    reconnect_codes: frozenset[int] = field(default=DEFAULT_RECONNECT_CODES)
    metrics_enabled: bool = DEFAULT_METRICS_ENABLED
    metrics_host: str = DEFAULT_METRICS_HOST
    metrics_port: int = DEFAULT_METRICS_PORT
    retry_min_backoff: float = DEFAULT_RETRY_MIN_BACKOFF
    retry_max_backoff: float = DEFAULT_RETRY_MAX_BACKOFF

    def __post_init__(self) -> None:
        self.module_name = (self.module_name or "").strip()
        if not self.module_name:
            raise ValueError(f"Can't get {ENV_FUNCTION_ID} from runtime.")
        if "/" in self.module_name or " " in self.module_name:
            raise ValueError("module_name must be a single bus name segment")
        self.bus_address = (self.bus_address or "").strip()
        if not self.bus_address:
            raise ValueError("bus_address must be a non-empty bus address")
        self.reconnect_codes = frozenset(self.reconnect_codes)
        if not 0 <= self.metrics_port <= 65535:
            raise ValueError("metrics_port must be within 0..65535")
        self._validate_backoff()

    def _validate_backoff(self) -> None:
        self.retry_min_backoff = self._require_positive_float("retry_min_backoff", float(self.retry_min_backoff))
        self.retry_max_backoff = self._require_positive_float("retry_max_backoff", float(self.retry_max_backoff))
        if self.retry_max_backoff < self.retry_min_backoff:
            logger.warning(
                "retry_max_backoff (%.2fs) below retry_min_backoff (%.2fs); clamping.",
                self.retry_max_backoff,
                self.retry_min_backoff,
            )
            self.retry_max_backoff = self.retry_min_backoff

    @staticmethod
    def _require_positive_float(name: str, value: float) -> float:
        if value <= 0.0:
            raise ValueError(f"{name} must be a positive number")
        return value


def load_runtime_config(environ: Mapping[str, str] | None = None) -> RuntimeConfig:
    """Load configuration from the process environment."""

    env = os.environ if environ is None else environ

    return RuntimeConfig(
        module_name=env.get(ENV_FUNCTION_ID, ""),
        bus_address=env.get(ENV_BUS_ADDRESS, DEFAULT_BUS_ADDRESS),
        debug_logging=parse_bool(env.get(ENV_DEBUG, DEFAULT_DEBUG_LOGGING)),
        auto_finalize=parse_bool(env.get(ENV_AUTO_FINALIZE, DEFAULT_AUTO_FINALIZE)),
        reconnect_codes=parse_code_set(env.get(ENV_RECONNECT_CODES), DEFAULT_RECONNECT_CODES),
        metrics_enabled=parse_bool(env.get(ENV_METRICS_ENABLED, DEFAULT_METRICS_ENABLED)),
        metrics_host=(env.get(ENV_METRICS_HOST) or DEFAULT_METRICS_HOST).strip(),
        metrics_port=parse_int(env.get(ENV_METRICS_PORT), DEFAULT_METRICS_PORT),
        retry_min_backoff=parse_float(env.get(ENV_RETRY_MIN_BACKOFF), DEFAULT_RETRY_MIN_BACKOFF),
        retry_max_backoff=parse_float(env.get(ENV_RETRY_MAX_BACKOFF), DEFAULT_RETRY_MAX_BACKOFF),
    )


__all__ = ["RuntimeConfig", "load_runtime_config"]
