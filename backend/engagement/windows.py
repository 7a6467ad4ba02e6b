"""Windowed active-user counts (DAU / WAU / MAU) over the canonical event view."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, distinct, func, select

from .dates import DAU_DAYS, MAU_DAYS, WAU_DAYS, DateRange, utc_today, window_start
from .schemas import ActivityMetrics, DauTrendPoint
from .sql import day_add
from .view import EventTypes, activity_days, as_event_types, canonical_events

logger = logging.getLogger(__name__)

APP_EVENTS = ("app_opened",)
RETURNING_LOOKBACK_DAYS = 30


def pct(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return round(numerator / denominator * 100, 2)


def get_active_counts(
    session,
    event_types: EventTypes,
    anchor: date,
    *,
    signed_in_only: bool = False,
) -> Tuple[int, int, int]:
    """DAU, WAU and MAU ending on ``anchor``, from a single scan of the MAU window."""
    wau_start = window_start(anchor, WAU_DAYS)
    mau_start = window_start(anchor, MAU_DAYS)
    view = canonical_events(event_types, mau_start, anchor, signed_in_only=signed_in_only, name="window_events")
    identity = view.c.canonical_identity
    stmt = select(
        func.count(distinct(case((view.c.day >= window_start(anchor, DAU_DAYS), identity)))),
        func.count(distinct(case((view.c.day >= wau_start, identity)))),
        func.count(distinct(identity)),
    )
    dau, wau, mau = session.execute(stmt).one()
    return int(dau or 0), int(wau or 0), int(mau or 0)


def get_window_overlap(
    session,
    event_types: EventTypes,
    anchor: date,
    length_days: int,
    *,
    signed_in_only: bool = False,
) -> int:
    """Identities active in the window ending on ``anchor`` and in the window right before it."""
    current_start = window_start(anchor, length_days)
    previous_start = window_start(current_start - timedelta(days=1), length_days)
    view = canonical_events(
        event_types, previous_start, anchor, signed_in_only=signed_in_only, name="overlap_events"
    )
    in_current = func.max(case((view.c.day >= current_start, 1), else_=0))
    in_previous = func.max(case((view.c.day < current_start, 1), else_=0))
    returning = (
        select(view.c.canonical_identity)
        .group_by(view.c.canonical_identity)
        .having(and_(in_current == 1, in_previous == 1))
        .subquery("overlap_identities")
    )
    return session.execute(select(func.count()).select_from(returning)).scalar_one()


def get_activity(
    session,
    event_types: EventTypes = APP_EVENTS,
    anchor: Optional[date] = None,
    *,
    signed_in_only: bool = False,
) -> ActivityMetrics:
    anchor = anchor or utc_today()
    logger.debug("Computing activity for %s anchored on %s", as_event_types(event_types), anchor)
    dau, wau, mau = get_active_counts(session, event_types, anchor, signed_in_only=signed_in_only)
    return ActivityMetrics(
        event_types=list(as_event_types(event_types)),
        anchor_day=anchor,
        dau=dau,
        wau=wau,
        mau=mau,
        stickiness_dau_mau=pct(dau, mau),
        stickiness_wau_mau=pct(wau, mau),
        stickiness_dau_wau=pct(dau, wau),
        returning_wau=get_window_overlap(session, event_types, anchor, WAU_DAYS, signed_in_only=signed_in_only),
        returning_mau=get_window_overlap(session, event_types, anchor, MAU_DAYS, signed_in_only=signed_in_only),
    )


def get_dau_trend(session, event_types: EventTypes, date_range: DateRange) -> List[DauTrendPoint]:
    """DAU and returning DAU for each day from the day before ``date_range.start`` to its end.

    An identity counts as returning on a day when it was also active on any
    of the 30 days before that day.
    """
    first_day = date_range.start - timedelta(days=1)
    view = canonical_events(
        event_types,
        first_day - timedelta(days=RETURNING_LOOKBACK_DAYS),
        date_range.end,
        name="trend_events",
    )
    days = activity_days(view, "trend_days")
    prior = activity_days(view, "trend_prior_days")
    stmt = (
        select(
            days.c.day,
            func.count(distinct(days.c.canonical_identity)).label("dau"),
            func.count(distinct(prior.c.canonical_identity)).label("returning_dau"),
        )
        .select_from(
            days.outerjoin(
                prior,
                and_(
                    prior.c.canonical_identity == days.c.canonical_identity,
                    prior.c.day < days.c.day,
                    prior.c.day >= day_add(days.c.day, -RETURNING_LOOKBACK_DAYS),
                ),
            )
        )
        .where(days.c.day >= first_day)
        .group_by(days.c.day)
    )
    counts = {row.day: (row.dau, row.returning_dau) for row in session.execute(stmt)}
    return [
        DauTrendPoint(date=day, dau=counts.get(day, (0, 0))[0], returning_dau=counts.get(day, (0, 0))[1])
        for day in DateRange(first_day, date_range.end).days()
    ]
