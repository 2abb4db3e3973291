# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

ENV_PREFIX = "CIRUN_"

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024  # per stream
DEFAULT_KILL_GRACE = 5.0
DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_HISTORY_SIZE = 100


def _default_concurrency() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """
    Knobs shared by the executor, runner and scheduler.

    Every field can be overridden with a CIRUN_<FIELD> environment variable
    (see `from_env`), and the CLI overrides those again.
    """
    max_concurrency: int = field(default_factory=_default_concurrency)
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    kill_grace: float = DEFAULT_KILL_GRACE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    step_timeout: Optional[float] = None
    fail_fast: bool = False
    supersede: bool = True
    history_size: int = DEFAULT_HISTORY_SIZE

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")
        if self.max_output_bytes < 0:
            raise ValueError(f"max_output_bytes must be >= 0, got {self.max_output_bytes}")
        if self.kill_grace < 0 or self.poll_interval <= 0:
            raise ValueError("kill_grace must be >= 0 and poll_interval > 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        env = os.environ if environ is None else environ
        kwargs = {}

        if f"{ENV_PREFIX}MAX_CONCURRENCY" in env:
            kwargs["max_concurrency"] = int(env[f"{ENV_PREFIX}MAX_CONCURRENCY"])
        if f"{ENV_PREFIX}MAX_OUTPUT_BYTES" in env:
            kwargs["max_output_bytes"] = int(env[f"{ENV_PREFIX}MAX_OUTPUT_BYTES"])
        if f"{ENV_PREFIX}KILL_GRACE" in env:
            kwargs["kill_grace"] = float(env[f"{ENV_PREFIX}KILL_GRACE"])
        if f"{ENV_PREFIX}POLL_INTERVAL" in env:
            kwargs["poll_interval"] = float(env[f"{ENV_PREFIX}POLL_INTERVAL"])
        if env.get(f"{ENV_PREFIX}STEP_TIMEOUT"):
            kwargs["step_timeout"] = float(env[f"{ENV_PREFIX}STEP_TIMEOUT"])
        if f"{ENV_PREFIX}FAIL_FAST" in env:
            kwargs["fail_fast"] = _as_bool(env[f"{ENV_PREFIX}FAIL_FAST"])
        if f"{ENV_PREFIX}SUPERSEDE" in env:
            kwargs["supersede"] = _as_bool(env[f"{ENV_PREFIX}SUPERSEDE"])
        if f"{ENV_PREFIX}HISTORY_SIZE" in env:
            kwargs["history_size"] = int(env[f"{ENV_PREFIX}HISTORY_SIZE"])

        return cls(**kwargs)

    def override(self, **changes) -> EngineConfig:
        """Return a copy with every non-None value in `changes` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
