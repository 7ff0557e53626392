import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from kairos.application.analytics.service import LearningAnalyticsService
from kairos.consts import VERSION
from kairos.domain.errors import (
    AnalyticsError,
    AnalyticsTimeout,
    NotFoundError,
    RangeTooLargeError,
    StoreUnavailable,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("kairos.server")

ERROR_STATUS = {
    NotFoundError: 404,
    RangeTooLargeError: 413,
    StoreUnavailable: 503,
    AnalyticsTimeout: 504,
}


@lru_cache(maxsize=1)
def get_service() -> LearningAnalyticsService:
    """Service built from the resolved config, once per process."""
    from kairos.application.config import resolve_config
    from kairos.application.factory import build_analytics_service

    config = resolve_config()
    logging.getLogger("kairos").setLevel(config.log_level.upper())
    return build_analytics_service(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Kairos Server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("Kairos Server shutting down...")


app = FastAPI(
    title="Kairos Server",
    description="Learning analytics over spaced-repetition review logs.",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": {"code": exc.code, "message": str(exc)}},
    )


def ok(data: Any) -> dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data)}


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


start_time = time.time()


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


# --- User analytics ---------------------------------------------------------
# Bounded parameters arrive as raw strings; the service clamps them and falls
# back to defaults for anything unparseable.


@app.get("/analytics/users/{user_id}/profile")
async def user_profile(
    user_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_user_learning_profile(user_id, now=now))


@app.get("/analytics/users/{user_id}/velocity")
async def user_velocity(
    user_id: str,
    weeks: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_user_velocity_history(user_id, weeks, now=now))


@app.get("/analytics/users/{user_id}/daily-summary")
async def user_daily_summary(
    user_id: str,
    days: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_daily_summary(user_id, days, now=now))


@app.get("/analytics/users/{user_id}/struggling-cards")
async def user_struggling_cards(
    user_id: str,
    threshold: str | None = None,
    limit: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_struggling_cards(user_id, threshold, limit, now=now))


@app.get("/analytics/users/{user_id}/struggling-cards/by-deck")
async def user_struggling_by_deck(
    user_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_struggling_cards_by_deck(user_id, now=now))


@app.get("/analytics/users/{user_id}/patterns/interference")
async def user_interference(
    user_id: str,
    deck_id: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.detect_interference_patterns(user_id, deck_id, now=now))


@app.get("/analytics/users/{user_id}/patterns/prerequisites")
async def user_prerequisite_gaps(
    user_id: str,
    deck_id: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.detect_prerequisite_gaps(user_id, deck_id, now=now))


@app.get("/analytics/users/{user_id}/patterns/fatigue")
async def user_fatigue(
    user_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.analyze_fatigue_decay(user_id, now=now))


@app.get("/analytics/users/{user_id}/patterns/time-of-day")
async def user_time_of_day(
    user_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.analyze_time_of_day_effects(user_id, now=now))


# --- Cards, decks, sessions -------------------------------------------------


@app.get("/analytics/cards/{card_id}/difficulty")
async def card_difficulty(
    card_id: str,
    user_id: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_card_difficulty_metrics(card_id, user_id, now=now))


@app.get("/analytics/decks/{deck_id}/hardest")
async def deck_hardest_cards(
    deck_id: str,
    limit: str | None = None,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_deck_hardest_cards(deck_id, limit, now=now))


@app.get("/analytics/sessions/{session_id}/health")
async def session_health(
    session_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_session_health_indicators(session_id, now=now))


@app.get("/analytics/sessions/{session_id}/health/live")
async def live_session_health(
    session_id: str,
    now: datetime | None = None,
    service: LearningAnalyticsService = Depends(get_service),
):
    return ok(await service.get_live_session_health(session_id, now=now))
