"""Command-line entry point for the monitor, worker and manual checks."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone

from dotenv import load_dotenv

from wxreschedule.analysis.evaluation import get_violation_reasons, meets_minimums
from wxreschedule.config import PipelineSettings
from wxreschedule.db.engine import SessionLocal, get_engine, init_db
from wxreschedule.fetch.openweather import WeatherClient, WeatherClientError, create_weather_client
from wxreschedule.messaging.pubsub import NotificationPublisher
from wxreschedule.messaging.queue import WorkQueue, create_redis_client
from wxreschedule.models import TrainingLevel
from wxreschedule.monitor import WeatherMonitor, assess_route
from wxreschedule.reschedule.llm_config import load_suggester_config
from wxreschedule.reschedule.worker import RescheduleWorker

logger = logging.getLogger(__name__)


def _weather_client(settings: PipelineSettings, required: bool = True) -> WeatherClient | None:
    try:
        return create_weather_client(settings.openweather_api_key)
    except ValueError as exc:
        if required:
            print(f"Error: {exc}")
            sys.exit(1)
        logger.warning("%s Candidate weather re-checks disabled.", exc)
        return None


def _parse_when(value: str) -> datetime:
    """ISO 8601 datetime; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def run_monitor(settings: PipelineSettings) -> int:
    get_engine()
    client = _weather_client(settings)
    queue = WorkQueue(create_redis_client(settings.redis_url), settings.queue_name)
    monitor = WeatherMonitor(
        SessionLocal, client, queue, lookahead=timedelta(hours=settings.lookahead_hours)
    )
    summary = monitor.run()
    print(
        f"Checked {summary.total_bookings} booking(s): {summary.conflicts} conflict(s), "
        f"{summary.safe} safe, {summary.skipped} skipped, {summary.failed} failed"
    )
    return 1 if summary.failed else 0


def run_worker(settings: PipelineSettings, args: argparse.Namespace) -> int:
    get_engine()
    redis_client = create_redis_client(settings.redis_url)
    worker = RescheduleWorker(
        SessionLocal,
        WorkQueue(redis_client, settings.queue_name),
        load_suggester_config(args.config or settings.suggester_config),
        publisher=NotificationPublisher(redis_client),
        weather_client=_weather_client(settings, required=False),
    )
    max_messages = 1 if args.once else args.max
    stats = worker.run(max_messages=max_messages, stop_when_empty=not args.follow)
    print(
        f"Processed {stats.processed}, skipped {stats.skipped}, "
        f"failed {stats.failed}, dead-lettered {stats.dead_lettered}"
    )
    return 1 if stats.failed or stats.dead_lettered else 0


def run_check(settings: PipelineSettings, args: argparse.Namespace) -> int:
    client = _weather_client(settings)
    try:
        route = assess_route(
            args.departure,
            args.arrival,
            _parse_when(args.start),
            args.duration,
            TrainingLevel(args.level),
            client,
        )
    except ValueError as exc:
        print(f"Error: {exc}")
        return 2
    except WeatherClientError as exc:
        print(f"Weather provider error: {exc}")
        return 1

    print(f"{route.overall_status.value} ({len(route.waypoints)} waypoints)")
    for line in route.violation_summary:
        print(f"  {line}")
    for reason in get_violation_reasons(route):
        print(f"    {reason}")
    cleared = [
        lvl.value for lvl in TrainingLevel
        if all(meets_minimums(ev.observation, lvl) for ev in route.waypoints)
    ]
    print(f"Within minimums for: {', '.join(cleared) or 'none'}")
    return 0


def run_requeue(settings: PipelineSettings) -> int:
    queue = WorkQueue(create_redis_client(settings.redis_url), settings.queue_name)
    released = queue.requeue_expired()
    print(
        f"Released {released} expired lease(s); pending {queue.depth()}, "
        f"dead-letter {queue.dead_letter_depth()}"
    )
    return 0


def run_dead_letters(settings: PipelineSettings) -> int:
    queue = WorkQueue(create_redis_client(settings.redis_url), settings.queue_name)
    bodies = queue.dead_letters()
    print(f"{len(bodies)} dead-lettered message(s) on {settings.queue_name}")
    for body in bodies:
        print(f"  {body}")
    return 0


def main() -> None:
    """CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="wxreschedule",
        description="Weather risk evaluation and lesson rescheduling",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables (dev)")
    subparsers.add_parser("monitor", help="Check upcoming bookings and hold unsafe ones")

    worker_parser = subparsers.add_parser("worker", help="Process queued weather conflicts")
    worker_parser.add_argument("--once", action="store_true", help="Process at most one message")
    worker_parser.add_argument("--max", type=int, default=None, help="Stop after N messages")
    worker_parser.add_argument(
        "--follow", action="store_true", help="Keep polling when the queue is empty"
    )
    worker_parser.add_argument(
        "--config", default=None,
        help="Suggester config name (default: env WXRESCHEDULE_SUGGESTER_CONFIG or 'default')",
    )

    check_parser = subparsers.add_parser("check", help="Evaluate a route without a booking")
    check_parser.add_argument("departure", help='Departure as "lat,lon"')
    check_parser.add_argument("arrival", help='Arrival as "lat,lon"')
    check_parser.add_argument("--start", required=True, help="Start time, ISO 8601 (UTC if naive)")
    check_parser.add_argument("--duration", type=int, required=True, help="Duration in minutes")
    check_parser.add_argument(
        "--level", required=True, choices=[lvl.value for lvl in TrainingLevel],
        help="Student training level",
    )

    subparsers.add_parser("requeue", help="Return expired queue leases for redelivery")
    subparsers.add_parser("dead-letters", help="List dead-lettered conflict messages")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    settings = PipelineSettings.from_env()

    if args.command == "init-db":
        init_db()
        rc = 0
    elif args.command == "monitor":
        rc = run_monitor(settings)
    elif args.command == "worker":
        rc = run_worker(settings, args)
    elif args.command == "check":
        rc = run_check(settings, args)
    elif args.command == "requeue":
        rc = run_requeue(settings)
    else:
        rc = run_dead_letters(settings)

    sys.exit(rc)
