"""Attribution of range-returning identities to internal, organic or direct traffic."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import distinct, func, select

from .config import get_product_domain
from .dates import DateRange
from .schemas import ReferrerBreakdown
from .view import EventTypes, canonical_events

logger = logging.getLogger(__name__)

INTERNAL = "internal"
ORGANIC = "organic"
DIRECT = "direct"

SEARCH_PATTERNS = ("google", "bing", "yahoo", "duckduckgo", "search", "organic")


def _field(metadata: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value).strip().lower()
    return ""


def classify_referrer(metadata: Optional[Mapping[str, Any]], product_domain: Optional[str] = None) -> str:
    """Bucket an event's metadata as internal, organic or direct.

    Internal wins over organic; anything that is neither, including missing
    metadata, is direct.
    """
    if not isinstance(metadata, Mapping):
        return DIRECT
    domain = (product_domain or get_product_domain()).lower()
    origin_type = _field(metadata, "origin_type")
    referrer = _field(metadata, "referrer", "referer")
    utm_source = _field(metadata, "utm_source")

    if origin_type == "internal" or (domain and domain in referrer):
        return INTERNAL
    if origin_type == "seo":
        return ORGANIC
    if any(pattern in utm_source or pattern in referrer for pattern in SEARCH_PATTERNS):
        return ORGANIC
    return DIRECT


def get_returning_referrer_breakdown(
    session,
    event_types: EventTypes,
    date_range: DateRange,
) -> ReferrerBreakdown:
    """Classify every identity with 2+ active days in the range by its latest event in the range."""
    view = canonical_events(event_types, date_range.start, date_range.end, name="referrer_events")
    returning = (
        select(view.c.canonical_identity)
        .group_by(view.c.canonical_identity)
        .having(func.count(distinct(view.c.day)) >= 2)
        .subquery("returning_identities")
    )
    ranked = (
        select(
            view.c.canonical_identity,
            view.c.metadata,
            func.row_number()
            .over(
                partition_by=view.c.canonical_identity,
                order_by=(view.c.created_at.desc(), view.c.event_id.desc()),
            )
            .label("recency"),
        )
        .where(view.c.canonical_identity.in_(select(returning.c.canonical_identity)))
        .subquery("latest_returning_events")
    )
    stmt = select(ranked.c.canonical_identity, ranked.c.metadata).where(ranked.c.recency == 1)

    domain = get_product_domain()
    counts = {INTERNAL: 0, ORGANIC: 0, DIRECT: 0}
    for row in session.execute(stmt):
        counts[classify_referrer(row.metadata, domain)] += 1
    logger.debug("Returning referrer breakdown for %s..%s: %s", date_range.start, date_range.end, counts)

    return ReferrerBreakdown(
        organic_returning=counts[ORGANIC],
        direct_returning=counts[DIRECT],
        internal_returning=counts[INTERNAL],
    )
