"""Diagnostic bundle for one event type and the sanity rules run over computed metrics.

Rules are data: each names the metric fields it reads, a predicate over
their values and a message template. A rule whose fields are not all
present is skipped rather than evaluated against a default.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import case, distinct, func, select

from .dates import DateRange
from .schemas import AuditInfo
from .view import EventTypes, as_event_types, canonical_events
from .windows import pct

logger = logging.getLogger(__name__)

Metrics = Mapping[str, Optional[float]]


def get_audit_info(session, event_types: EventTypes, start: date, end: date) -> AuditInfo:
    """Raw counts for ``event_types`` in ``[start, end]``, identity-less rows included."""
    window = DateRange.of(start, end)
    view = canonical_events(event_types, window.start, window.end, include_missing=True, name="audit_events")
    stmt = select(
        func.count().label("raw_events"),
        func.count(distinct(view.c.canonical_identity)).label("identities"),
        func.coalesce(func.sum(view.c.missing_identity), 0).label("missing"),
        func.coalesce(func.sum(view.c.identity_link_applied), 0).label("link_applied"),
        func.max(view.c.created_at).label("last_event_at"),
        func.count(distinct(view.c.anonymous_id)).label("anonymous_ids"),
        func.count(distinct(case((view.c.has_link == 1, view.c.anonymous_id)))).label("linked_anonymous_ids"),
    )
    row = session.execute(stmt).one()
    anonymous_ids = int(row.anonymous_ids or 0)
    linked = int(row.linked_anonymous_ids or 0)
    return AuditInfo(
        event_types=list(as_event_types(event_types)),
        window_start=window.start,
        window_end=window.end,
        raw_events_count=int(row.raw_events or 0),
        distinct_canonical_identities=int(row.identities or 0),
        missing_identity_rows=int(row.missing),
        identity_link_applied_rows=int(row.link_applied),
        last_event_at=row.last_event_at,
        anonymous_ids=anonymous_ids,
        linked_anonymous_ids=linked,
        link_coverage=pct(linked, anonymous_ids),
    )


@dataclass(frozen=True)
class Rule:
    fields: Tuple[str, ...]
    violated: Callable[..., bool]
    message: str

    def evaluate(self, metrics: Metrics) -> Optional[str]:
        values = [metrics.get(field) for field in self.fields]
        if any(value is None for value in values):
            return None
        if not self.violated(*values):
            return None
        return self.message.format(**dict(zip(self.fields, values)))


def _exceeds(smaller: str, larger: str, label_smaller: str, label_larger: str) -> Rule:
    return Rule(
        fields=(smaller, larger),
        violated=lambda a, b: a > b,
        message=f"{label_smaller} ({{{smaller}}}) exceeds {label_larger} ({{{larger}}})",
    )


ANOMALY_RULES: Tuple[Rule, ...] = (
    _exceeds("dau", "wau", "DAU", "WAU"),
    _exceeds("wau", "mau", "WAU", "MAU"),
    _exceeds("returning_dau", "dau", "Returning DAU", "DAU"),
    _exceeds("returning_wau", "wau", "Returning WAU", "WAU"),
    _exceeds("returning_mau", "mau", "Returning MAU", "MAU"),
    _exceeds("returning_users_range", "mau", "Returning users in range", "MAU"),
    Rule(
        fields=("distinct_canonical_identities", "mau"),
        violated=lambda identities, mau: identities != mau,
        message="Audit distinct canonical identities ({distinct_canonical_identities}) differ from MAU ({mau})",
    ),
    _exceeds("signed_in_product_mau", "mau", "Signed-in product MAU", "app MAU"),
)

WARNING_RULES: Tuple[Rule, ...] = tuple(
    Rule(
        fields=(f"engaged_{window}", window),
        violated=lambda engaged, app: app > 0 and engaged == app,
        message=(
            f"Engaged {window.upper()} ({{engaged_{window}}}) equals app {window.upper()} ({{{window}}}); "
            "key action events may be too broad"
        ),
    )
    for window in ("dau", "wau", "mau")
)


def evaluate_rules(rules: Sequence[Rule], metrics: Metrics) -> List[str]:
    messages = []
    for rule in rules:
        message = rule.evaluate(metrics)
        if message is not None:
            messages.append(message)
    return messages


def detect_anomalies(metrics: Metrics, rules: Sequence[Rule] = ANOMALY_RULES) -> List[str]:
    anomalies = evaluate_rules(rules, metrics)
    for anomaly in anomalies:
        logger.warning("Metric anomaly: %s", anomaly)
    return anomalies


def detect_warnings(metrics: Metrics, rules: Sequence[Rule] = WARNING_RULES) -> List[str]:
    warnings = evaluate_rules(rules, metrics)
    for warning in warnings:
        logger.warning("Metric warning: %s", warning)
    return warnings
