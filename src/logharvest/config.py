# logharvest/config.py
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, Mapping

from .domain.errors import ConfigurationError
from .domain.models import BlockRange

ProgressCallback = Callable[[int, int, BlockRange], None]


@dataclass(slots=True, frozen=True)
class FetcherConfig:
    concurrency: int = 4
    chunk_size: int = 10_000
    max_retries: int = 3
    initial_retry_delay_ms: int = 1_000
    max_retry_delay_ms: int = 60_000
    show_progress: bool = False
    continue_on_error: bool = True
    max_logs_per_chunk: int = 10_000
    progress_callback: ProgressCallback | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("progress_callback")
        return d


DEFAULT_CONFIG = FetcherConfig()

ENV_VARS: dict[str, str] = {
    "concurrency":            "LOGHARVEST_CONCURRENCY",
    "chunk_size":             "LOGHARVEST_CHUNK_SIZE",
    "max_retries":            "LOGHARVEST_MAX_RETRIES",
    "initial_retry_delay_ms": "LOGHARVEST_INITIAL_RETRY_DELAY",
    "max_retry_delay_ms":     "LOGHARVEST_MAX_RETRY_DELAY",
    "show_progress":          "LOGHARVEST_SHOW_PROGRESS",
    "continue_on_error":      "LOGHARVEST_CONTINUE_ON_ERROR",
    "max_logs_per_chunk":     "LOGHARVEST_MAX_LOGS_PER_CHUNK",
}

# minimum accepted from the environment; smaller values are ignored
_ENV_INT_MIN: dict[str, int] = {
    "concurrency": 1,
    "chunk_size": 100,
    "max_retries": 0,
    "initial_retry_delay_ms": 100,
    "max_retry_delay_ms": 100,
    "max_logs_per_chunk": 1,
}

# (min, max, message)
_BOUNDS: dict[str, tuple[int, int, str]] = {
    "concurrency":            (1, 50, "concurrency must be between 1 and 50"),
    "chunk_size":             (100, 100_000, "chunk_size must be between 100 and 100,000"),
    "max_retries":            (0, 10, "max_retries must be between 0 and 10"),
    "initial_retry_delay_ms": (100, 30_000, "initial_retry_delay_ms must be between 100ms and 30 seconds"),
    "max_retry_delay_ms":     (100, 600_000, "max_retry_delay_ms must be between 100ms and 10 minutes"),
    "max_logs_per_chunk":     (1, 1_000_000, "max_logs_per_chunk must be between 1 and 1,000,000"),
}


def _parse_int(value: str | None, minimum: int) -> int | None:
    if not value: return None
    try:
        n = int(value.strip(), 10)
    except ValueError:
        return None
    return n if n >= minimum else None

def _parse_bool(value: str | None) -> bool | None:
    if not value: return None
    return value.strip().lower() == "true" or value.strip() == "1"


def load_config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    for name, var in ENV_VARS.items():
        raw = env.get(var)
        if name in _ENV_INT_MIN:
            v: Any = _parse_int(raw, _ENV_INT_MIN[name])
        else:
            v = _parse_bool(raw)
        if v is not None:
            out[name] = v
    return out


def validate_config(config: FetcherConfig) -> list[str]:
    errors: list[str] = []
    for name, (lo, hi, msg) in _BOUNDS.items():
        v = getattr(config, name)
        if not isinstance(v, int) or isinstance(v, bool) or not lo <= v <= hi:
            errors.append(msg)
    if config.max_retry_delay_ms < config.initial_retry_delay_ms:
        errors.append("max_retry_delay_ms must not be smaller than initial_retry_delay_ms")
    return errors


def create_config(
    base: FetcherConfig | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> FetcherConfig:
    """Layer defaults (or ``base``), then environment, then explicit overrides; validate the result."""
    known = {f.name for f in fields(FetcherConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigurationError("Unknown configuration keys", [f"unknown key: {k}" for k in unknown])

    cfg = replace(base or DEFAULT_CONFIG, **load_config_from_env(environ))
    cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
    errors = validate_config(cfg)
    if errors:
        raise ConfigurationError("Configuration validation failed", errors)
    return cfg
