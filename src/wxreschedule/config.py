"""Weather minimums and runtime settings loading."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel

from wxreschedule.models import TrainingLevel, WeatherMinimum

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"

DEFAULT_QUEUE_NAME = "wxreschedule:conflicts"
DEFAULT_LOOKAHEAD_HOURS = 48


def load_minimums(config_dir: Path | None = None) -> dict[TrainingLevel, WeatherMinimum]:
    """Load the per-level minimums table from minimums.yaml.

    Args:
        config_dir: Override for config directory (testing).

    Raises:
        KeyError: if a training level has no entry.
    """
    config_dir = config_dir or CONFIG_DIR
    minimums_file = config_dir / "minimums.yaml"

    with open(minimums_file) as f:
        data = yaml.safe_load(f)

    raw = data.get("minimums", {})
    table: dict[TrainingLevel, WeatherMinimum] = {}
    for level in TrainingLevel:
        if level.value not in raw:
            raise KeyError(f"No weather minimums configured for {level.value}")
        table[level] = WeatherMinimum.model_validate(raw[level.value])
    return table


@lru_cache(maxsize=1)
def default_minimums() -> dict[TrainingLevel, WeatherMinimum]:
    """Process-wide minimums table, read once from CONFIG_DIR."""
    return load_minimums()


class PipelineSettings(BaseModel):
    """Runtime knobs shared by the monitor, worker and API."""

    openweather_api_key: str | None = None
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = DEFAULT_QUEUE_NAME
    lookahead_hours: int = DEFAULT_LOOKAHEAD_HOURS
    suggester_config: str = "default"

    @classmethod
    def from_env(cls) -> PipelineSettings:
        """Load from environment variables, falling back to defaults."""
        return cls(
            openweather_api_key=os.environ.get("OPENWEATHERMAP_API_KEY") or None,
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
            queue_name=os.environ.get("WXRESCHEDULE_QUEUE", DEFAULT_QUEUE_NAME),
            lookahead_hours=int(
                os.environ.get("WXRESCHEDULE_LOOKAHEAD_HOURS", str(DEFAULT_LOOKAHEAD_HOURS))
            ),
            suggester_config=os.environ.get("WXRESCHEDULE_SUGGESTER_CONFIG", "default"),
        )
