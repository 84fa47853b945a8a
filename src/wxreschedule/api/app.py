"""FastAPI app factory."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import redis
from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from wxreschedule.api.weather import router as weather_router
from wxreschedule.config import PipelineSettings
from wxreschedule.db.deps import get_db, get_optional_weather_client, get_queue
from wxreschedule.db.engine import get_engine, init_db
from wxreschedule.fetch.openweather import WeatherClient
from wxreschedule.messaging.queue import WorkQueue, create_redis_client
from wxreschedule.storage.bookings import count_stale_holds

logger = logging.getLogger(__name__)

# A WEATHER_HOLD older than this means the worker never finished the booking
STALE_HOLD_MINUTES = 60


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    env = os.environ.get("ENVIRONMENT", "development")
    engine = get_engine()

    if env == "development":
        init_db(engine)
        logger.info("Dev mode: tables created via init_db")

    settings = PipelineSettings.from_env()
    if settings.openweather_api_key:
        app.state.weather_client = WeatherClient(settings.openweather_api_key)
    else:
        logger.warning("OPENWEATHERMAP_API_KEY not set, manual checks disabled")
    app.state.queue = WorkQueue(create_redis_client(settings.redis_url), settings.queue_name)

    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    load_dotenv()

    app = FastAPI(
        title="wxreschedule API",
        description="Flight lesson weather checks and pipeline health",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.weather_client = None
    app.state.queue = None

    app.include_router(weather_router, prefix="/api")

    @app.get("/health")
    def health(
        db: Session = Depends(get_db),
        queue: WorkQueue | None = Depends(get_queue),
        weather_client: WeatherClient | None = Depends(get_optional_weather_client),
    ):
        """Pipeline health plus weather cache counters."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=STALE_HOLD_MINUTES)
        stale = count_stale_holds(db, cutoff)

        queue_depth = dead_letter_depth = None
        queue_ok = False
        if queue is not None:
            try:
                queue_depth = queue.depth()
                dead_letter_depth = queue.dead_letter_depth()
                queue_ok = True
            except redis.RedisError:
                logger.warning("Queue unreachable during health check", exc_info=True)

        healthy = queue_ok and stale == 0 and dead_letter_depth == 0
        return {
            "status": "ok" if healthy else "degraded",
            "queue_depth": queue_depth,
            "dead_letter_depth": dead_letter_depth,
            "stale_holds": stale,
            "weather_cache": weather_client.cache_stats() if weather_client is not None else None,
        }

    return app


app = create_app()
