"""Funnel-style derivations built from canonical identities.

Subscription influence ignores every event that belongs to a test account,
matched on ``user_email``.
"""
from __future__ import annotations

import logging
from datetime import datetime
from statistics import median
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, case, distinct, func, select

from .dates import DateRange
from .schemas import ConversionInfluence, FeatureAdoption, FeatureAdoptionRow, GrimoireHealth, GrimoireToApp
from .view import EventTypes, canonical_events, first_days
from .windows import APP_EVENTS, get_active_counts, pct

logger = logging.getLogger(__name__)

GRIMOIRE_EVENTS = ("grimoire_viewed",)
SUBSCRIPTION_EVENTS = ("subscription_started", "trial_converted")
SIGNUP_EVENTS = ("signup_completed", "signup")
FEATURE_EVENTS = (
    "daily_dashboard_viewed",
    "grimoire_viewed",
    "astral_chat_used",
    "tarot_drawn",
    "ritual_started",
    "chart_viewed",
)

SECONDS_PER_DAY = 86400


def _distinct_identities(view, name: str):
    return select(view.c.canonical_identity).distinct().subquery(name)


def get_grimoire_to_app(session, date_range: DateRange) -> GrimoireToApp:
    """Share of grimoire viewers in the range who also opened the app in the range."""
    grimoire = canonical_events(GRIMOIRE_EVENTS, date_range.start, date_range.end, name="funnel_grimoire_events")
    app = canonical_events(APP_EVENTS, date_range.start, date_range.end, name="funnel_app_events")
    visitors = _distinct_identities(grimoire, "grimoire_visitors")
    app_users = _distinct_identities(app, "app_users")
    stmt = select(
        func.count(distinct(visitors.c.canonical_identity)),
        func.count(distinct(app_users.c.canonical_identity)),
    ).select_from(
        visitors.outerjoin(app_users, app_users.c.canonical_identity == visitors.c.canonical_identity)
    )
    grimoire_visitors, converted = session.execute(stmt).one()
    return GrimoireToApp(
        grimoire_visitors=grimoire_visitors,
        grimoire_to_app_users=converted,
        grimoire_to_app_rate=pct(converted, grimoire_visitors),
    )


def _first_event_at(event_types: EventTypes, name: str, date_range: Optional[DateRange] = None):
    start, end = (date_range.start, date_range.end) if date_range else (None, None)
    view = canonical_events(event_types, start, end, exclude_test_accounts=True, name=f"{name}_events")
    return (
        select(view.c.canonical_identity, func.min(view.c.created_at).label("first_at"))
        .group_by(view.c.canonical_identity)
        .subquery(name)
    )


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def _median_days(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return round(median(values), 2)


def is_chronological(grimoire_at: Optional[datetime], signed_up_at: Optional[datetime], subscribed_at: datetime) -> bool:
    if grimoire_at is None or signed_up_at is None:
        return False
    return grimoire_at <= signed_up_at <= subscribed_at


def get_conversion_influence(session, date_range: DateRange) -> ConversionInfluence:
    """How often subscriptions in the range were preceded by a grimoire view.

    Medians only use subscribers whose first grimoire view, first signup and
    first subscription in the range are in that order; others are left out.
    """
    subscriptions = _first_event_at(SUBSCRIPTION_EVENTS, "influence_subscriptions", date_range)
    grimoire_first = _first_event_at(GRIMOIRE_EVENTS, "influence_grimoire_first")
    signup_first = _first_event_at(SIGNUP_EVENTS, "influence_signup_first")
    stmt = select(
        subscriptions.c.canonical_identity,
        subscriptions.c.first_at.label("subscribed_at"),
        grimoire_first.c.first_at.label("grimoire_at"),
        signup_first.c.first_at.label("signed_up_at"),
    ).select_from(
        subscriptions.outerjoin(
            grimoire_first, grimoire_first.c.canonical_identity == subscriptions.c.canonical_identity
        ).outerjoin(signup_first, signup_first.c.canonical_identity == subscriptions.c.canonical_identity)
    )
    rows = session.execute(stmt).all()

    with_grimoire_before = sum(
        1 for row in rows if row.grimoire_at is not None and row.grimoire_at < row.subscribed_at
    )
    ordered = [row for row in rows if is_chronological(row.grimoire_at, row.signed_up_at, row.subscribed_at)]
    return ConversionInfluence(
        subscription_users=len(rows),
        subscription_users_with_grimoire_before=with_grimoire_before,
        subscription_with_grimoire_before_rate=pct(with_grimoire_before, len(rows)),
        median_days_first_grimoire_to_signup=_median_days(
            [_days_between(row.grimoire_at, row.signed_up_at) for row in ordered]
        ),
        median_days_signup_to_subscription=_median_days(
            [_days_between(row.signed_up_at, row.subscribed_at) for row in ordered]
        ),
    )


def get_feature_adoption(
    session,
    date_range: DateRange,
    feature_events: Iterable[str] = FEATURE_EVENTS,
) -> FeatureAdoption:
    """Distinct users per feature event in the range, against app MAU at the range end."""
    features: List[str] = list(feature_events)
    _, _, mau = get_active_counts(session, APP_EVENTS, date_range.end)
    view = canonical_events(features, date_range.start, date_range.end, name="feature_events")
    stmt = select(view.c.event_type, func.count(distinct(view.c.canonical_identity))).group_by(view.c.event_type)
    users_by_type = {event_type: users for event_type, users in session.execute(stmt)}
    return FeatureAdoption(
        mau=mau,
        features=[
            FeatureAdoptionRow(
                event_type=event_type,
                users=users_by_type.get(event_type, 0),
                adoption_rate=pct(users_by_type.get(event_type, 0), mau),
            )
            for event_type in features
        ],
    )


def _grimoire_entry(session, date_range: DateRange) -> tuple:
    """New app users in the range, and how many of them viewed the grimoire on their first day."""
    first = first_days(APP_EVENTS, "entry_first_days")
    new_users = (
        select(first.c.canonical_identity, first.c.first_day)
        .where(first.c.first_day >= date_range.start, first.c.first_day <= date_range.end)
        .subquery("entry_new_users")
    )
    grimoire = canonical_events(GRIMOIRE_EVENTS, date_range.start, date_range.end, name="entry_grimoire_events")
    stmt = select(
        func.count(distinct(new_users.c.canonical_identity)),
        func.count(distinct(grimoire.c.canonical_identity)),
    ).select_from(
        new_users.outerjoin(
            grimoire,
            and_(
                grimoire.c.canonical_identity == new_users.c.canonical_identity,
                grimoire.c.day == new_users.c.first_day,
            ),
        )
    )
    return tuple(session.execute(stmt).one())


def _grimoire_pages_per_active_user(session, date_range: DateRange) -> float:
    app = canonical_events(APP_EVENTS, date_range.start, date_range.end, name="pages_app_events")
    grimoire = canonical_events(GRIMOIRE_EVENTS, date_range.start, date_range.end, name="pages_grimoire_events")
    active = _distinct_identities(app, "pages_active_users")
    per_user = (
        select(
            active.c.canonical_identity,
            func.count(distinct(func.coalesce(grimoire.c.entity_id, grimoire.c.page_path))).label("pages"),
        )
        .select_from(
            active.outerjoin(grimoire, grimoire.c.canonical_identity == active.c.canonical_identity)
        )
        .group_by(active.c.canonical_identity)
        .subquery("pages_per_user")
    )
    average = session.execute(select(func.avg(per_user.c.pages))).scalar_one()
    return round(float(average or 0), 2)


def _return_to_grimoire(session, date_range: DateRange) -> tuple:
    grimoire = canonical_events(GRIMOIRE_EVENTS, date_range.start, date_range.end, name="return_grimoire_events")
    per_user = (
        select(grimoire.c.canonical_identity, func.count(distinct(grimoire.c.day)).label("grimoire_days"))
        .group_by(grimoire.c.canonical_identity)
        .subquery("grimoire_days")
    )
    stmt = select(
        func.count(),
        func.coalesce(func.sum(case((per_user.c.grimoire_days >= 2, 1), else_=0)), 0),
    ).select_from(per_user)
    return tuple(session.execute(stmt).one())


def get_grimoire_health(session, date_range: DateRange) -> GrimoireHealth:
    new_users, entry_users = _grimoire_entry(session, date_range)
    viewers, returning_viewers = _return_to_grimoire(session, date_range)
    health = GrimoireHealth(
        grimoire_entry_rate=pct(entry_users, new_users),
        grimoire_views_per_active_user=_grimoire_pages_per_active_user(session, date_range),
        return_to_grimoire_rate=pct(returning_viewers, viewers),
        grimoire_to_app=get_grimoire_to_app(session, date_range),
        influence=get_conversion_influence(session, date_range),
    )
    logger.debug("Grimoire health for %s..%s: %s", date_range.start, date_range.end, health)
    return health
