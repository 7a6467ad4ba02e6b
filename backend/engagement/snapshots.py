"""Read-only access to persisted weekly and monthly metric snapshots."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select

from .models import SNAPSHOT_FIELDS, MetricSnapshot
from .schemas import SnapshotPoint, SnapshotTrend

logger = logging.getLogger(__name__)

PERIOD_TYPES = ("weekly", "monthly")
DEFAULT_LIMIT = 12


class InvalidPeriodType(ValueError):
    """Raised for a snapshot period type other than weekly or monthly."""


def list_snapshots(session, period_type: str, limit: int = DEFAULT_LIMIT) -> List[MetricSnapshot]:
    """The latest ``limit`` snapshots of ``period_type``, oldest first."""
    stmt = (
        select(MetricSnapshot)
        .where(MetricSnapshot.period_type == period_type)
        .order_by(MetricSnapshot.period_key.desc())
        .limit(limit)
    )
    rows = list(session.scalars(stmt))
    rows.reverse()
    return rows


def _change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return round(current - previous, 2)


def snapshot_changes(current: MetricSnapshot, previous: Optional[MetricSnapshot]) -> Dict[str, Optional[float]]:
    if previous is None:
        return {}
    return {field: _change(getattr(current, field), getattr(previous, field)) for field in SNAPSHOT_FIELDS}


def get_snapshot_trend(session, period_type: str = "weekly", limit: int = DEFAULT_LIMIT) -> SnapshotTrend:
    if period_type not in PERIOD_TYPES:
        raise InvalidPeriodType(f"Unknown period type {period_type!r}; expected one of {', '.join(PERIOD_TYPES)}")
    rows = list_snapshots(session, period_type, limit)
    points = []
    previous = None
    for row in rows:
        point = SnapshotPoint.model_validate(row)
        point.changes = snapshot_changes(row, previous)
        points.append(point)
        previous = row
    logger.debug("Loaded %d %s snapshots", len(points), period_type)
    return SnapshotTrend(period_type=period_type, points=points)
