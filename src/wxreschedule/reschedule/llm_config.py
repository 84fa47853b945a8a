"""Suggester configuration schema, loading, and LLM factory."""

from __future__ import annotations

import json
import os
from pathlib import Path

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from pydantic import BaseModel, Field

_CONFIGS_DIR = Path(__file__).resolve().parent.parent.parent.parent / "configs" / "rescheduler"


class LLMConfig(BaseModel):
    """LLM provider and model configuration."""

    provider: str = "openai"
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: float = 60.0


class PromptsConfig(BaseModel):
    """Paths to prompt templates (relative to configs/rescheduler/)."""

    suggester: str = "prompts/suggester_v1.md"


class SuggesterConfig(BaseModel):
    """Top-level rescheduler configuration."""

    version: str = "1.0"
    name: str = "default"
    llm: LLMConfig = LLMConfig()
    prompts: PromptsConfig = PromptsConfig()
    max_suggestions: int = Field(default=3, ge=1)
    search_window_days: int = Field(default=14, ge=1)
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)

    def load_prompt(self, key: str) -> str:
        """Load prompt markdown from configs/rescheduler/{path}."""
        rel_path = getattr(self.prompts, key)
        prompt_path = _CONFIGS_DIR / rel_path
        return prompt_path.read_text()


def load_suggester_config(name: str | None = None) -> SuggesterConfig:
    """Load a suggester config by name.

    Resolution order:
    1. Explicit name parameter
    2. WXRESCHEDULE_SUGGESTER_CONFIG environment variable
    3. "default"
    """
    config_name = name or os.environ.get("WXRESCHEDULE_SUGGESTER_CONFIG", "default")
    config_path = _CONFIGS_DIR / f"{config_name}.json"

    if not config_path.exists():
        raise FileNotFoundError(f"Suggester config not found: {config_path}")

    raw = json.loads(config_path.read_text())
    return SuggesterConfig.model_validate(raw)


def create_llm(config: SuggesterConfig) -> BaseChatModel:
    """Create a LangChain chat model from suggester config."""
    return init_chat_model(
        model=config.llm.model,
        model_provider=config.llm.provider,
        temperature=config.llm.temperature,
        max_tokens=config.llm.max_tokens,
        timeout=config.llm.timeout,
    )
