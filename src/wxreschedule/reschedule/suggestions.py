"""Reschedule suggestions using LangGraph, with a deterministic fallback.

The LLM answers in free text; the first JSON object in that text is
validated against a strict schema. Any failure (provider error, no JSON,
schema mismatch) routes the graph to the heuristic node, so a held booking
always gets candidates.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Literal

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing_extensions import TypedDict

from wxreschedule.models import RescheduleSuggestion
from wxreschedule.reschedule.llm_config import SuggesterConfig, create_llm
from wxreschedule.reschedule.prompt_builder import SuggestionContext, build_suggestion_context

logger = logging.getLogger(__name__)

# The prompt asks for 0.75 or higher on recommended slots; the fallback stays below that
# and above the worker's default min_confidence of 0.6
HEURISTIC_CONFIDENCE_CEILING = 0.75

# (days later, confidence, reasoning)
HEURISTIC_OFFSETS: list[tuple[int, float, str]] = [
    (2, 0.70, "Same time 2 days later, allowing the weather pattern to pass"),
    (3, 0.68, "Same time 3 days later, increased likelihood of better weather"),
    (7, 0.65, "Same time next week, likely under a different weather pattern"),
]

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


# --- Response schema ---


class _LLMSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_time: datetime = Field(alias="dateTime")
    reasoning: str = Field(min_length=10, max_length=500)
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("date_time")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class _LLMResponse(BaseModel):
    suggestions: list[_LLMSuggestion] = Field(min_length=1)


# --- Parsing ---


def extract_json(text: str) -> dict:
    """Return the first JSON object in ``text``.

    A fenced ```json block wins; otherwise each ``{`` is tried in turn.

    Raises:
        ValueError: if no JSON object can be decoded.
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        try:
            obj = json.loads(fenced.group(1))
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            obj, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("No JSON object found in LLM response")


def parse_suggestions(text: str, max_suggestions: int) -> list[RescheduleSuggestion]:
    """Validate an LLM reply into suggestions.

    Raises:
        ValueError: on missing JSON, schema violations or too many suggestions.
    """
    data = extract_json(text)
    try:
        parsed = _LLMResponse.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid suggestion payload: {exc}") from exc
    if len(parsed.suggestions) > max_suggestions:
        raise ValueError(
            f"Expected at most {max_suggestions} suggestions, got {len(parsed.suggestions)}"
        )
    return [
        RescheduleSuggestion(
            date_time=s.date_time, reasoning=s.reasoning, confidence=s.confidence, source="llm"
        )
        for s in parsed.suggestions
    ]


def heuristic_suggestions(
    original_start: datetime, max_suggestions: int = 3
) -> list[RescheduleSuggestion]:
    """Same time of day at fixed day offsets."""
    return [
        RescheduleSuggestion(
            date_time=original_start + timedelta(days=days),
            reasoning=reasoning,
            confidence=confidence,
            source="heuristic",
        )
        for days, confidence, reasoning in HEURISTIC_OFFSETS[:max_suggestions]
    ]


def _message_text(content) -> str:
    """Flatten a chat message content (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# --- LangGraph state ---


class SuggestionState(TypedDict, total=False):
    context: SuggestionContext
    config: SuggesterConfig
    prompt: str
    raw_text: str
    suggestions: list[RescheduleSuggestion]
    source: Literal["llm", "heuristic"]
    error: str | None


# --- Graph nodes ---


def assemble_node(state: SuggestionState) -> dict:
    """Render the booking context into the user prompt."""
    config = state["config"]
    prompt = build_suggestion_context(
        state["context"], config.max_suggestions, config.search_window_days
    )
    return {"prompt": prompt}


def suggester_node(state: SuggestionState) -> dict:
    """Ask the LLM for suggestions and validate its reply."""
    config: SuggesterConfig = state["config"]
    try:
        llm = create_llm(config)
        system_prompt = config.load_prompt("suggester")
        reply = llm.invoke([
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": state["prompt"]},
        ])
        text = _message_text(reply.content)
    except Exception as e:
        logger.error("LLM suggestion request failed", exc_info=True)
        return {"error": str(e)}

    try:
        suggestions = parse_suggestions(text, config.max_suggestions)
    except ValueError as e:
        logger.warning("Unusable LLM reply: %s", e)
        logger.debug("Raw LLM reply: %s", text)
        return {"raw_text": text, "error": str(e)}

    logger.info("LLM returned %d suggestion(s)", len(suggestions))
    return {"raw_text": text, "suggestions": suggestions, "source": "llm", "error": None}


def fallback_node(state: SuggestionState) -> dict:
    """Deterministic suggestions when the LLM path produced nothing usable."""
    ctx = state["context"]
    suggestions = heuristic_suggestions(
        ctx.booking.scheduled_start, state["config"].max_suggestions
    )
    logger.info(
        "Booking %s: using %d heuristic suggestion(s)", ctx.booking.id, len(suggestions)
    )
    return {"suggestions": suggestions, "source": "heuristic"}


def _route_after_suggester(state: SuggestionState) -> str:
    if state.get("error") or not state.get("suggestions"):
        return "fallback"
    return "done"


# --- Graph builder ---


def build_suggestion_graph() -> CompiledStateGraph:
    """Build the LangGraph suggestion pipeline."""
    graph = StateGraph(SuggestionState)
    graph.add_node("assemble", assemble_node)
    graph.add_node("suggester", suggester_node)
    graph.add_node("fallback", fallback_node)

    graph.add_edge(START, "assemble")
    graph.add_edge("assemble", "suggester")
    graph.add_conditional_edges(
        "suggester", _route_after_suggester, {"fallback": "fallback", "done": END}
    )
    graph.add_edge("fallback", END)

    return graph.compile()


def generate_suggestions(context: SuggestionContext, config: SuggesterConfig) -> SuggestionState:
    """Run the suggestion graph and return the final state."""
    graph = build_suggestion_graph()
    return graph.invoke({"context": context, "config": config})
