"""Tests for minimums and settings loading."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from wxreschedule.config import (
    DEFAULT_QUEUE_NAME,
    PipelineSettings,
    default_minimums,
    load_minimums,
)
from wxreschedule.models import TrainingLevel


def test_default_minimums_cover_every_level():
    table = load_minimums()

    assert set(table) == set(TrainingLevel)
    student = table[TrainingLevel.STUDENT_PILOT]
    assert student.visibility_miles == 5
    assert student.ceiling_ft == 3000
    assert student.wind_kt == 10
    assert student.wind_gust_kt == 15
    assert "Fog" in student.prohibited_phenomena
    assert table[TrainingLevel.INSTRUMENT_RATED].ceiling_ft == 200


def test_minimums_get_stricter_with_less_experience():
    table = load_minimums()
    student = table[TrainingLevel.STUDENT_PILOT]
    private = table[TrainingLevel.PRIVATE_PILOT]
    instrument = table[TrainingLevel.INSTRUMENT_RATED]

    assert student.visibility_miles > private.visibility_miles > instrument.visibility_miles
    assert student.ceiling_ft > private.ceiling_ft > instrument.ceiling_ft
    assert student.wind_kt < private.wind_kt < instrument.wind_kt


def test_default_minimums_is_cached():
    assert default_minimums() is default_minimums()


def test_custom_config_dir(tmp_path):
    (tmp_path / "minimums.yaml").write_text(
        "minimums:\n"
        "  STUDENT_PILOT: {visibility_miles: 6, ceiling_ft: 4000, wind_kt: 8, wind_gust_kt: 12}\n"
        "  PRIVATE_PILOT: {visibility_miles: 3, ceiling_ft: 1000, wind_kt: 15, wind_gust_kt: 20}\n"
        "  INSTRUMENT_RATED: {visibility_miles: 1, ceiling_ft: 300, wind_kt: 20, wind_gust_kt: 30}\n"
    )

    table = load_minimums(tmp_path)

    assert table[TrainingLevel.STUDENT_PILOT].visibility_miles == 6
    assert table[TrainingLevel.STUDENT_PILOT].prohibited_phenomena == []


def test_missing_level_raises(tmp_path):
    (tmp_path / "minimums.yaml").write_text(
        "minimums:\n"
        "  STUDENT_PILOT: {visibility_miles: 6, ceiling_ft: 4000, wind_kt: 8, wind_gust_kt: 12}\n"
    )
    with pytest.raises(KeyError, match="PRIVATE_PILOT"):
        load_minimums(tmp_path)


def test_settings_defaults():
    with patch.dict(os.environ, {}, clear=True):
        settings = PipelineSettings.from_env()

    assert settings.openweather_api_key is None
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.queue_name == DEFAULT_QUEUE_NAME
    assert settings.lookahead_hours == 48
    assert settings.suggester_config == "default"


def test_settings_from_env():
    env = {
        "OPENWEATHERMAP_API_KEY": "k",
        "REDIS_URL": "redis://cache:6379/2",
        "WXRESCHEDULE_QUEUE": "custom:q",
        "WXRESCHEDULE_LOOKAHEAD_HOURS": "24",
        "WXRESCHEDULE_SUGGESTER_CONFIG": "anthropic",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = PipelineSettings.from_env()

    assert settings.openweather_api_key == "k"
    assert settings.redis_url == "redis://cache:6379/2"
    assert settings.queue_name == "custom:q"
    assert settings.lookahead_hours == 24
    assert settings.suggester_config == "anthropic"
