"""Risk evaluation: compare waypoint observations with training-level minimums.

Every breached dimension is reported, not just the first, so the reasons
shown to students and instructors are complete. The route verdict is
proportional: a few bad waypoints make a route MARGINAL, half or more
make it UNSAFE.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from wxreschedule.config import default_minimums
from wxreschedule.models import (
    RouteEvaluation,
    TrainingLevel,
    Violation,
    ViolationKind,
    Waypoint,
    WaypointEvaluation,
    WeatherMinimum,
    WeatherObservation,
    WeatherStatus,
)

# A route is UNSAFE once this share of its waypoints is unsafe.
UNSAFE_FRACTION = 0.5


def _fmt(value: float) -> str:
    return f"{round(value, 1):g}"


def _minimum_for(
    level: TrainingLevel, minimums: dict[TrainingLevel, WeatherMinimum] | None
) -> WeatherMinimum:
    table = minimums if minimums is not None else default_minimums()
    if level not in table:
        raise KeyError(f"No weather minimums for training level {level}")
    return table[level]


def find_violations(observation: WeatherObservation, minimum: WeatherMinimum) -> list[Violation]:
    """All minimums breached by one observation, in a fixed dimension order."""
    violations: list[Violation] = []

    if observation.visibility_miles < minimum.visibility_miles:
        violations.append(Violation(
            kind=ViolationKind.VISIBILITY,
            reason=(
                f"Visibility {_fmt(observation.visibility_miles)} SM is below "
                f"minimum {_fmt(minimum.visibility_miles)} SM"
            ),
            actual=observation.visibility_miles,
            required=minimum.visibility_miles,
        ))

    if observation.ceiling_ft < minimum.ceiling_ft:
        violations.append(Violation(
            kind=ViolationKind.CEILING,
            reason=(
                f"Ceiling {_fmt(observation.ceiling_ft)} ft is below "
                f"minimum {_fmt(minimum.ceiling_ft)} ft"
            ),
            actual=observation.ceiling_ft,
            required=minimum.ceiling_ft,
        ))

    if observation.wind_kt > minimum.wind_kt:
        violations.append(Violation(
            kind=ViolationKind.WIND_SPEED,
            reason=(
                f"Wind speed {_fmt(observation.wind_kt)} kts exceeds "
                f"maximum {_fmt(minimum.wind_kt)} kts"
            ),
            actual=observation.wind_kt,
            required=minimum.wind_kt,
        ))

    # Gust is only checked when reported
    if observation.wind_gust_kt is not None and observation.wind_gust_kt > minimum.wind_gust_kt:
        violations.append(Violation(
            kind=ViolationKind.WIND_GUST,
            reason=(
                f"Wind gust {_fmt(observation.wind_gust_kt)} kts exceeds "
                f"maximum {_fmt(minimum.wind_gust_kt)} kts"
            ),
            actual=observation.wind_gust_kt,
            required=minimum.wind_gust_kt,
        ))

    prohibited = [p.lower() for p in minimum.prohibited_phenomena]
    for phenomenon in observation.phenomena:
        name = phenomenon.lower()
        if any(p in name for p in prohibited):
            violations.append(Violation(
                kind=ViolationKind.PROHIBITED_CONDITION,
                reason=f"Prohibited weather condition present: {phenomenon}",
                actual=phenomenon,
                required="None",
            ))

    return violations


def evaluate_waypoint(
    waypoint: Waypoint,
    observation: WeatherObservation,
    level: TrainingLevel,
    minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
) -> WaypointEvaluation:
    """Evaluate one waypoint's observation against the level's minimums."""
    violations = find_violations(observation, _minimum_for(level, minimums))
    return WaypointEvaluation(
        waypoint=waypoint,
        observation=observation,
        safe=not violations,
        violations=violations,
    )


def route_status(unsafe_count: int, total_count: int) -> WeatherStatus:
    """Aggregate verdict from the number of unsafe waypoints."""
    if unsafe_count == 0:
        return WeatherStatus.SAFE
    if unsafe_count < total_count * UNSAFE_FRACTION:
        return WeatherStatus.MARGINAL
    return WeatherStatus.UNSAFE


def summarize_violations(evaluations: list[WaypointEvaluation]) -> list[str]:
    """One line per violation kind, in first-seen order, counting waypoints affected."""
    counts: dict[ViolationKind, int] = {}
    for ev in evaluations:
        seen_here: set[ViolationKind] = set()
        for v in ev.violations:
            if v.kind in seen_here:
                continue
            seen_here.add(v.kind)
            counts[v.kind] = counts.get(v.kind, 0) + 1

    return [
        f"{kind.value}: {count} waypoint{'s' if count > 1 else ''}"
        for kind, count in counts.items()
    ]


def evaluate_route(
    pairs: Iterable[tuple[Waypoint, WeatherObservation]],
    level: TrainingLevel,
    minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
    booking_id: str | None = None,
) -> RouteEvaluation:
    """Evaluate every (waypoint, observation) pair and aggregate a verdict.

    Raises:
        ValueError: if no waypoints are given.
        KeyError: if the level has no configured minimums.
    """
    evaluations = [evaluate_waypoint(wp, obs, level, minimums) for wp, obs in pairs]
    if not evaluations:
        raise ValueError("Cannot evaluate a route with no waypoints")

    unsafe = sum(1 for ev in evaluations if not ev.safe)
    return RouteEvaluation(
        booking_id=booking_id,
        timestamp=datetime.now(timezone.utc),
        waypoints=evaluations,
        overall_status=route_status(unsafe, len(evaluations)),
        violation_summary=summarize_violations(evaluations),
    )


def get_violation_reasons(route: RouteEvaluation) -> list[str]:
    """Human-readable reasons prefixed with the 1-based waypoint index.

    Ordered by waypoint, exact duplicates removed.
    """
    reasons: list[str] = []
    seen: set[str] = set()
    for idx, ev in enumerate(route.waypoints, start=1):
        for v in ev.violations:
            line = f"Waypoint {idx}: {v.reason}"
            if line not in seen:
                seen.add(line)
                reasons.append(line)
    return reasons


def meets_minimums(
    observation: WeatherObservation,
    level: TrainingLevel,
    minimums: dict[TrainingLevel, WeatherMinimum] | None = None,
) -> bool:
    """True when a single observation breaches nothing for the level."""
    return not find_violations(observation, _minimum_for(level, minimums))
