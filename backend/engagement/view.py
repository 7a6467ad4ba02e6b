"""The canonical event view every metric is computed over.

``canonical_events`` returns a CTE with one row per raw event, carrying its
canonical identity and UTC day bucket. Higher-level metrics select from it
instead of repeating identity resolution in each query.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Optional, Sequence, Union

from sqlalchemy import and_, case, func, not_, or_, select

from .config import get_test_email, get_test_email_domain
from .dates import day_start
from .identity import (
    canonical_identity_expr,
    latest_links_subquery,
    link_applied_expr,
    missing_identity_expr,
    normalized_id_expr,
    signed_in_expr,
)
from .models import Event
from .sql import day_bucket

EventTypes = Union[str, Sequence[str], None]


def as_event_types(event_types: EventTypes) -> tuple:
    if event_types is None:
        return ()
    if isinstance(event_types, str):
        return (event_types,)
    return tuple(event_types)


def real_account_filter(email_column):
    """True for rows that do not belong to a test account."""
    email = func.lower(func.trim(email_column))
    return or_(
        email_column.is_(None),
        and_(
            not_(email.like(f"%@{get_test_email_domain()}")),
            email != get_test_email(),
        ),
    )


def canonical_events(
    event_types: EventTypes = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    *,
    exclude_test_accounts: bool = False,
    signed_in_only: bool = False,
    include_missing: bool = False,
    name: str = "canonical_events",
):
    """Build the canonical event view for an event-type filter and inclusive day range.

    Rows without an identity are dropped unless ``include_missing`` is set,
    which only the audit does.
    """
    links = latest_links_subquery(f"{name}_links")
    anonymous_id = normalized_id_expr(Event.anonymous_id)
    identity = canonical_identity_expr(Event.user_id, Event.anonymous_id, links.c.user_id)

    stmt = select(
        Event.id.label("event_id"),
        Event.event_type.label("event_type"),
        Event.created_at.label("created_at"),
        day_bucket(Event.created_at).label("day"),
        identity.label("canonical_identity"),
        anonymous_id.label("anonymous_id"),
        case((link_applied_expr(Event.user_id, links.c.user_id), 1), else_=0).label("identity_link_applied"),
        case((missing_identity_expr(Event.user_id, Event.anonymous_id), 1), else_=0).label("missing_identity"),
        case((links.c.user_id.isnot(None), 1), else_=0).label("has_link"),
        Event.user_email.label("user_email"),
        Event.page_path.label("page_path"),
        Event.entity_id.label("entity_id"),
        Event.metadata_json.label("metadata"),
    ).select_from(Event.__table__.outerjoin(links, links.c.anonymous_id == anonymous_id))

    types = as_event_types(event_types)
    if types:
        stmt = stmt.where(Event.event_type.in_(types))
    if start is not None:
        stmt = stmt.where(Event.created_at >= day_start(start))
    if end is not None:
        stmt = stmt.where(Event.created_at < day_start(end + timedelta(days=1)))
    if exclude_test_accounts:
        stmt = stmt.where(real_account_filter(Event.user_email))
    if not include_missing:
        stmt = stmt.where(identity.isnot(None))
    if signed_in_only:
        stmt = stmt.where(signed_in_expr(identity))
    return stmt.cte(name)


def activity_days(view, name: Optional[str] = None):
    """Distinct (canonical identity, day) pairs of a view."""
    stmt = select(view.c.canonical_identity, view.c.day).distinct()
    return stmt.subquery(name or f"{view.name}_days")


def first_days(event_types: EventTypes, name: str = "first_days", **view_options):
    """First-ever active day per canonical identity over the whole event history."""
    view = canonical_events(event_types, name=f"{name}_events", **view_options)
    return (
        select(view.c.canonical_identity, func.min(view.c.day).label("first_day"))
        .group_by(view.c.canonical_identity)
        .subquery(name)
    )


def latest_day(session, event_types: EventTypes) -> Optional[date]:
    view = canonical_events(event_types, name="latest_day_events")
    return session.execute(select(func.max(view.c.day))).scalar_one_or_none()
