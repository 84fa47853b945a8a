"""Tests for suggester configuration."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from wxreschedule.reschedule.llm_config import (
    SuggesterConfig,
    create_llm,
    load_suggester_config,
)


def test_default_config_loads():
    """Default config file exists and loads correctly."""
    config = load_suggester_config("default")

    assert config.name == "default"
    assert config.version == "1.0"
    assert config.llm.provider == "openai"
    assert config.llm.model == "gpt-4o"
    assert config.llm.temperature == 0.7
    assert config.max_suggestions == 3
    assert config.search_window_days == 14
    assert config.min_confidence == 0.6


def test_anthropic_config_loads():
    config = load_suggester_config("anthropic")

    assert config.name == "anthropic"
    assert config.llm.provider == "anthropic"


def test_config_defaults():
    """SuggesterConfig has sensible defaults without loading a file."""
    config = SuggesterConfig()

    assert config.llm.provider == "openai"
    assert config.llm.max_tokens == 1000
    assert config.prompts.suggester == "prompts/suggester_v1.md"


def test_load_prompt():
    prompt = SuggesterConfig().load_prompt("suggester")

    assert "REQUIREMENTS" in prompt
    assert '"dateTime"' in prompt


def test_load_missing_config():
    with pytest.raises(FileNotFoundError):
        load_suggester_config("nonexistent_config_xyz")


def test_env_var_selects_config():
    with patch.dict(os.environ, {"WXRESCHEDULE_SUGGESTER_CONFIG": "anthropic"}):
        assert load_suggester_config().name == "anthropic"


def test_explicit_name_overrides_env():
    with patch.dict(os.environ, {"WXRESCHEDULE_SUGGESTER_CONFIG": "anthropic"}):
        assert load_suggester_config("default").name == "default"


def test_invalid_values_rejected():
    with pytest.raises(ValueError):
        SuggesterConfig(min_confidence=1.5)
    with pytest.raises(ValueError):
        SuggesterConfig(max_suggestions=0)


@patch("wxreschedule.reschedule.llm_config.init_chat_model")
def test_create_llm_passes_settings(mock_init):
    config = load_suggester_config("default")
    create_llm(config)

    mock_init.assert_called_once_with(
        model="gpt-4o",
        model_provider="openai",
        temperature=0.7,
        max_tokens=1000,
        timeout=60.0,
    )
