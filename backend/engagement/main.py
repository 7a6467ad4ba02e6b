"""FastAPI application exposing the engagement metrics read-only."""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .audit import get_audit_info
from .auth import verify_jwt
from .config import get_int_setting
from .database import SessionLocal
from .dates import MAU_DAYS, DateRange, InvalidDateRange, utc_today
from .funnels import get_conversion_influence, get_feature_adoption, get_grimoire_health
from .overview import get_engagement_overview
from .retention import get_retention_cohorts
from .snapshots import DEFAULT_LIMIT, InvalidPeriodType, get_snapshot_trend
from .windows import APP_EVENTS, get_activity

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Engagement Metrics API",
    description="Read-only engagement, retention and conversion metrics over the product event log.",
    version="0.1.0",
)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class RateLimitError(Exception):
    """Raised when a caller exceeds the configured rate limit."""


class FixedWindowRateLimiter:
    """Simple in-memory fixed window rate limiter keyed by identifier."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            count, window_start = self._counters.get(key, (0, now))
            if now - window_start >= self._window_seconds:
                count = 0
                window_start = now
            if count >= self._max_requests:
                raise RateLimitError(f"Rate limit exceeded for key {key}")
            self._counters[key] = (count + 1, window_start)


def _get_rate_limiter() -> FixedWindowRateLimiter:
    requests_per_window = get_int_setting("ENGAGEMENT_RATE_LIMIT", 60)
    window_seconds = get_int_setting("ENGAGEMENT_RATE_WINDOW", 60)
    return FixedWindowRateLimiter(requests_per_window, window_seconds)


_metrics_rate_limiter = _get_rate_limiter()


def _enforce_rate_limit(request: Request) -> None:
    client_identifier = "anonymous"
    if request.client:
        client_identifier = request.client.host or client_identifier

    try:
        _metrics_rate_limiter.check(client_identifier)
    except RateLimitError:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")


def _parse_range(start: Optional[date], end: Optional[date]) -> DateRange:
    try:
        if start is None:
            return DateRange.trailing(MAU_DAYS, end)
        return DateRange.of(start, end or utc_today())
    except InvalidDateRange as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@contextmanager
def _event_store() -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Metric query against the event store failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event store unavailable") from exc


@app.get("/metrics/engagement", response_model=schemas.EngagementOverview)
def engagement_overview(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.EngagementOverview:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_engagement_overview(db, date_range)


@app.get("/metrics/activity", response_model=schemas.ActivityMetrics)
def activity(
    request: Request,
    event_type: str = Query(APP_EVENTS[0], min_length=1),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.ActivityMetrics:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_activity(db, event_type, date_range.end)


@app.get("/metrics/retention", response_model=schemas.RetentionReport)
def retention(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.RetentionReport:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_retention_cohorts(db, APP_EVENTS, date_range)


@app.get("/metrics/grimoire", response_model=schemas.GrimoireHealth)
def grimoire(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.GrimoireHealth:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_grimoire_health(db, date_range)


@app.get("/metrics/conversion-influence", response_model=schemas.ConversionInfluence)
def conversion_influence(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.ConversionInfluence:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_conversion_influence(db, date_range)


@app.get("/metrics/features", response_model=schemas.FeatureAdoption)
def features(
    request: Request,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.FeatureAdoption:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_feature_adoption(db, date_range)


@app.get("/metrics/audit", response_model=schemas.AuditInfo)
def audit(
    request: Request,
    event_type: str = Query(APP_EVENTS[0], min_length=1),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.AuditInfo:
    _enforce_rate_limit(request)
    date_range = _parse_range(start, end)
    with _event_store():
        return get_audit_info(db, event_type, date_range.start, date_range.end)


@app.get("/metrics/snapshots", response_model=schemas.SnapshotTrend)
def snapshots(
    request: Request,
    period_type: str = Query("weekly"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=104),
    _: dict = Depends(verify_jwt),
    db: Session = Depends(get_db),
) -> schemas.SnapshotTrend:
    _enforce_rate_limit(request)
    try:
        with _event_store():
            return get_snapshot_trend(db, period_type, limit)
    except InvalidPeriodType as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def reset_application_state() -> None:
    """Reset mutable globals for test isolation."""

    global _metrics_rate_limiter
    _metrics_rate_limiter = _get_rate_limiter()
