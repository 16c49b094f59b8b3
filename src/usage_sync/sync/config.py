"""Runner configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import os

DEFAULT_BATCH_INTERVAL = timedelta(days=7)
DEFAULT_POLL_INTERVAL = timedelta(seconds=10)
DEFAULT_PROGRESS_BUFFER_SIZE = 100


@dataclass(frozen=True)
class RunnerConfig:
    """Timing and buffering settings shared by all runners.

    Attributes:
        batch_interval: Fixed size of each fetched window.
        poll_interval: Delay between loop iterations. Zero disables the delay.
        progress_buffer_size: Number of progress updates kept for slow observers.
    """

    batch_interval: timedelta = DEFAULT_BATCH_INTERVAL
    poll_interval: timedelta = DEFAULT_POLL_INTERVAL
    progress_buffer_size: int = DEFAULT_PROGRESS_BUFFER_SIZE

    def __post_init__(self) -> None:
        if self.batch_interval <= timedelta(0):
            raise ValueError("batch_interval must be positive")
        if self.poll_interval < timedelta(0):
            raise ValueError("poll_interval must not be negative")
        if self.progress_buffer_size <= 0:
            raise ValueError("progress_buffer_size must be positive")

    @classmethod
    def from_env(cls) -> RunnerConfig:
        """Build a config from `USAGE_SYNC_*` environment variables, falling back to defaults."""
        batch_hours = _env_float("USAGE_SYNC_BATCH_INTERVAL_HOURS")
        poll_seconds = _env_float("USAGE_SYNC_POLL_INTERVAL_SECONDS")
        buffer_size = os.environ.get("USAGE_SYNC_PROGRESS_BUFFER_SIZE")
        return cls(
            batch_interval=timedelta(hours=batch_hours) if batch_hours is not None else DEFAULT_BATCH_INTERVAL,
            poll_interval=timedelta(seconds=poll_seconds) if poll_seconds is not None else DEFAULT_POLL_INTERVAL,
            progress_buffer_size=int(buffer_size) if buffer_size else DEFAULT_PROGRESS_BUFFER_SIZE,
        )


def _env_float(name: str) -> float | None:
    raw_value = os.environ.get(name)
    if not raw_value:
        return None
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw_value!r} is not a number.") from exc
