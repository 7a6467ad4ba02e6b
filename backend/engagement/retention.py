"""New and returning users, active-day histograms and first-day cohort retention."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_, case, distinct, func, select

from .dates import DateRange
from .schemas import ActiveDays, CohortRetention, NewReturningUsers, RetentionReport
from .sql import day_add
from .view import EventTypes, activity_days, canonical_events, first_days, latest_day
from .windows import pct

logger = logging.getLogger(__name__)

RETENTION_OFFSETS = (1, 7, 30)

ACTIVE_DAY_BUCKETS = (
    ("1", 1, 1),
    ("2-3", 2, 3),
    ("4-7", 4, 7),
    ("8-14", 8, 14),
    ("15+", 15, None),
)


def _active_days_per_identity(event_types: EventTypes, date_range: DateRange, name: str):
    view = canonical_events(event_types, date_range.start, date_range.end, name=f"{name}_events")
    return (
        select(
            view.c.canonical_identity,
            func.count(distinct(view.c.day)).label("active_days"),
        )
        .group_by(view.c.canonical_identity)
        .subquery(name)
    )


def get_new_and_returning(session, event_types: EventTypes, date_range: DateRange) -> NewReturningUsers:
    """Three independent figures for the range.

    * new users: first-ever active day falls inside the range;
    * lifetime returning: active in the range, first seen before it;
    * range returning: two or more distinct active days inside the range.

    One identity can be both new and range returning.
    """
    per_identity = _active_days_per_identity(event_types, date_range, "range_activity")
    first = first_days(event_types, "lifetime_first_days")

    stmt = select(
        func.coalesce(
            func.sum(case((and_(first.c.first_day >= date_range.start, first.c.first_day <= date_range.end), 1), else_=0)),
            0,
        ).label("new_users"),
        func.coalesce(func.sum(case((first.c.first_day < date_range.start, 1), else_=0)), 0).label("lifetime"),
        func.coalesce(func.sum(case((per_identity.c.active_days >= 2, 1), else_=0)), 0).label("range_returning"),
    ).select_from(
        per_identity.join(first, first.c.canonical_identity == per_identity.c.canonical_identity)
    )
    row = session.execute(stmt).one()
    return NewReturningUsers(
        new_users=int(row.new_users),
        returning_users_lifetime=int(row.lifetime),
        returning_users_range=int(row.range_returning),
    )


def get_active_days(session, event_types: EventTypes, date_range: DateRange) -> ActiveDays:
    per_identity = _active_days_per_identity(event_types, date_range, "active_days")
    columns = [func.avg(per_identity.c.active_days).label("average")]
    for index, (_, low, high) in enumerate(ACTIVE_DAY_BUCKETS):
        if high is None:
            condition = per_identity.c.active_days >= low
        else:
            condition = per_identity.c.active_days.between(low, high)
        columns.append(func.coalesce(func.sum(case((condition, 1), else_=0)), 0).label(f"bucket_{index}"))

    row = session.execute(select(*columns)).one()
    distribution: Dict[str, int] = {
        label: int(row[index + 1]) for index, (label, _, _) in enumerate(ACTIVE_DAY_BUCKETS)
    }
    return ActiveDays(
        distribution=distribution,
        avg_active_days_per_user=round(float(row.average or 0), 2),
    )


def latest_available_day(session, event_types: EventTypes, date_range: DateRange) -> date:
    latest = latest_day(session, event_types)
    if latest is None:
        return date_range.end
    return min(latest, date_range.end)


def is_measurable(cohort_day: date, offset: int, latest: date) -> bool:
    return cohort_day + timedelta(days=offset) <= latest


def _retention_value(retained: int, cohort_users: int, measurable: bool) -> Optional[float]:
    if not measurable:
        return None
    return pct(retained, cohort_users)


def get_retention_cohorts(session, event_types: EventTypes, date_range: DateRange) -> RetentionReport:
    """Per first-active-day cohort, the share active exactly 1, 7 and 30 days later.

    Offsets past the latest available day are reported as ``None``.
    """
    latest = latest_available_day(session, event_types, date_range)
    first = first_days(event_types, "cohort_first_days")
    cohort = (
        select(first.c.canonical_identity, first.c.first_day)
        .where(first.c.first_day >= date_range.start, first.c.first_day <= date_range.end)
        .subquery("cohort")
    )
    view = canonical_events(event_types, date_range.start, latest, name="cohort_events")

    columns = [
        cohort.c.first_day.label("cohort_day"),
        func.count(distinct(cohort.c.canonical_identity)).label("cohort_users"),
    ]
    joined = cohort
    for offset in RETENTION_OFFSETS:
        days = activity_days(view, f"cohort_days_{offset}")
        joined = joined.outerjoin(
            days,
            and_(
                days.c.canonical_identity == cohort.c.canonical_identity,
                days.c.day == day_add(cohort.c.first_day, offset),
            ),
        )
        columns.append(func.count(distinct(days.c.canonical_identity)).label(f"retained_{offset}"))

    stmt = (
        select(*columns)
        .select_from(joined)
        .group_by(cohort.c.first_day)
        .order_by(cohort.c.first_day)
    )

    cohorts: List[CohortRetention] = []
    for row in session.execute(stmt):
        values = {
            f"day_{offset}": _retention_value(
                int(getattr(row, f"retained_{offset}")),
                int(row.cohort_users),
                is_measurable(row.cohort_day, offset, latest),
            )
            for offset in RETENTION_OFFSETS
        }
        cohorts.append(CohortRetention(cohort_day=row.cohort_day, cohort_users=int(row.cohort_users), **values))

    logger.debug("Computed %d retention cohorts up to %s", len(cohorts), latest)
    return RetentionReport(latest_available_day=latest, cohorts=cohorts)
