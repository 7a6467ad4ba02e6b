"""Engagement overview: every headline metric for a range plus its self-diagnosis."""
from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

from .audit import detect_anomalies, detect_warnings, get_audit_info
from .config import get_key_action_events
from .dates import MAU_DAYS, DateRange, window_start
from .funnels import get_grimoire_to_app
from .referrers import get_returning_referrer_breakdown
from .retention import get_active_days, get_new_and_returning, get_retention_cohorts
from .schemas import ActivityMetrics, AuditInfo, EngagedActivity, EngagementOverview, NewReturningUsers
from .windows import APP_EVENTS, get_activity, get_dau_trend, pct

logger = logging.getLogger(__name__)


def get_engaged_activity(session, date_range: DateRange, app: ActivityMetrics, key_action_events: Sequence[str]) -> EngagedActivity:
    engaged = get_activity(session, key_action_events, date_range.end)
    signed_in = get_activity(session, key_action_events, date_range.end, signed_in_only=True)
    return EngagedActivity(
        engaged=engaged,
        signed_in_product=signed_in,
        engagement_rate=pct(engaged.mau, app.mau) if app.mau else None,
    )


def rule_metrics(
    app: ActivityMetrics,
    returning_dau: int,
    users: NewReturningUsers,
    audit: AuditInfo,
    engaged: EngagedActivity,
) -> Dict[str, Optional[float]]:
    """Flatten computed metrics into the field names the audit rules read."""
    return {
        "dau": app.dau,
        "wau": app.wau,
        "mau": app.mau,
        "returning_dau": returning_dau,
        "returning_wau": app.returning_wau,
        "returning_mau": app.returning_mau,
        "returning_users_range": users.returning_users_range,
        "distinct_canonical_identities": audit.distinct_canonical_identities,
        "signed_in_product_mau": engaged.signed_in_product.mau,
        "engaged_dau": engaged.engaged.dau,
        "engaged_wau": engaged.engaged.wau,
        "engaged_mau": engaged.engaged.mau,
    }


def get_engagement_overview(
    session,
    date_range: DateRange,
    key_action_events: Optional[Sequence[str]] = None,
) -> EngagementOverview:
    """Compute the full overview for ``date_range``, anchored on its last day.

    The audit bundle covers the MAU window ending on ``date_range.end`` so its
    distinct identity count is comparable with app MAU. Store errors propagate.
    """
    key_actions = tuple(key_action_events or get_key_action_events())
    logger.debug("Computing engagement overview for %s..%s", date_range.start, date_range.end)

    app = get_activity(session, APP_EVENTS, date_range.end)
    trend = get_dau_trend(session, APP_EVENTS, date_range)
    returning_dau = trend[-1].returning_dau if trend else 0
    users = get_new_and_returning(session, APP_EVENTS, date_range)
    engaged = get_engaged_activity(session, date_range, app, key_actions)
    audit = get_audit_info(session, APP_EVENTS, window_start(date_range.end, MAU_DAYS), date_range.end)

    metrics = rule_metrics(app, returning_dau, users, audit, engaged)
    overview = EngagementOverview(
        start=date_range.start,
        end=date_range.end,
        app=app,
        dau_trend=trend,
        returning_dau=returning_dau,
        users=users,
        active_days=get_active_days(session, APP_EVENTS, date_range),
        retention=get_retention_cohorts(session, APP_EVENTS, date_range),
        returning_referrer_breakdown=get_returning_referrer_breakdown(session, APP_EVENTS, date_range),
        engaged=engaged,
        grimoire_to_app=get_grimoire_to_app(session, date_range),
        audit=audit,
        anomalies=detect_anomalies(metrics),
        warnings=detect_warnings(metrics),
    )
    logger.info(
        "Engagement overview %s..%s: dau=%d wau=%d mau=%d anomalies=%d",
        date_range.start,
        date_range.end,
        app.dau,
        app.wau,
        app.mau,
        len(overview.anomalies),
    )
    return overview
