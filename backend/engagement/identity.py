"""Canonical identity resolution across anonymous and signed-in events.

An event resolves to exactly one canonical identity, or to none:

* ``user:<user_id>`` when the event carries a user id,
* ``user:<linked_user_id>`` when its anonymous id has an identity link,
* ``anon:<anonymous_id>`` otherwise, when an anonymous id is present.

Events carrying neither id have no identity. They are excluded from every
canonical aggregate and only counted by the audit.

When an anonymous id has several link rows, the one with the latest
``last_seen_at`` wins (``first_seen_at`` when ``last_seen_at`` is null).
Ties are broken by the later ``first_seen_at`` and then by the highest link
row id, i.e. the most recently appended row. Links are always read at query
time, so historical events resolve against the current link table.

The pure functions and the SQL expressions below implement the same rules;
tests hold them to each other.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Tuple

from sqlalchemy import DateTime, String, and_, case, func, literal, null, select

from .models import IdentityLink

USER_PREFIX = "user:"
ANON_PREFIX = "anon:"

# Sorts below any real timestamp when a link has no seen-at values.
LINK_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class LinkRecord:
    anonymous_id: str
    user_id: str
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    id: int = 0

    def recency_key(self) -> Tuple[datetime, datetime, int]:
        seen = self.last_seen_at or self.first_seen_at or LINK_EPOCH
        return seen, self.first_seen_at or LINK_EPOCH, self.id


@dataclass(frozen=True)
class ResolvedIdentity:
    canonical_identity: Optional[str]
    identity_link_applied: bool = False
    missing_identity: bool = False


def normalize_id(value: object) -> Optional[str]:
    """Trimmed id, with empty strings treated as absent."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_link_map(links: Iterable[LinkRecord]) -> Dict[str, LinkRecord]:
    """Latest usable link per anonymous id."""
    latest: Dict[str, LinkRecord] = {}
    for link in links:
        anonymous_id = normalize_id(link.anonymous_id)
        user_id = normalize_id(link.user_id)
        if anonymous_id is None or user_id is None:
            continue
        current = latest.get(anonymous_id)
        if current is None or link.recency_key() > current.recency_key():
            latest[anonymous_id] = link
    return latest


def resolve_linked_user(anonymous_id: object, links: Mapping[str, LinkRecord]) -> Optional[str]:
    key = normalize_id(anonymous_id)
    if key is None:
        return None
    link = links.get(key)
    return normalize_id(link.user_id) if link is not None else None


def resolve_identity(
    user_id: object,
    anonymous_id: object,
    links: Mapping[str, LinkRecord],
) -> ResolvedIdentity:
    user = normalize_id(user_id)
    if user is not None:
        return ResolvedIdentity(USER_PREFIX + user)

    anonymous = normalize_id(anonymous_id)
    if anonymous is None:
        return ResolvedIdentity(None, missing_identity=True)

    linked_user = resolve_linked_user(anonymous, links)
    if linked_user is not None:
        return ResolvedIdentity(USER_PREFIX + linked_user, identity_link_applied=True)
    return ResolvedIdentity(ANON_PREFIX + anonymous)


def is_signed_in(canonical_identity: Optional[str]) -> bool:
    return bool(canonical_identity) and canonical_identity.startswith(USER_PREFIX)


# SQL counterparts -----------------------------------------------------------


def normalized_id_expr(column):
    return func.nullif(func.trim(column), "", type_=String)


def latest_links_subquery(name: str = "latest_links"):
    """One row per anonymous id holding the user id of its most recent link."""
    anonymous_id = normalized_id_expr(IdentityLink.anonymous_id)
    user_id = normalized_id_expr(IdentityLink.user_id)
    epoch = literal(LINK_EPOCH, DateTime)
    ranked = (
        select(
            anonymous_id.label("anonymous_id"),
            user_id.label("user_id"),
            func.row_number()
            .over(
                partition_by=anonymous_id,
                order_by=(
                    func.coalesce(IdentityLink.last_seen_at, IdentityLink.first_seen_at, epoch).desc(),
                    func.coalesce(IdentityLink.first_seen_at, epoch).desc(),
                    IdentityLink.id.desc(),
                ),
            )
            .label("link_rank"),
        )
        .where(anonymous_id.isnot(None), user_id.isnot(None))
        .subquery(f"{name}_ranked")
    )
    return select(ranked.c.anonymous_id, ranked.c.user_id).where(ranked.c.link_rank == 1).subquery(name)


def canonical_identity_expr(user_id, anonymous_id, linked_user_id):
    user = normalized_id_expr(user_id)
    anonymous = normalized_id_expr(anonymous_id)
    return case(
        (user.isnot(None), literal(USER_PREFIX, String) + user),
        (linked_user_id.isnot(None), literal(USER_PREFIX, String) + linked_user_id),
        (anonymous.isnot(None), literal(ANON_PREFIX, String) + anonymous),
        else_=null(),
    )


def link_applied_expr(user_id, linked_user_id):
    return and_(normalized_id_expr(user_id).is_(None), linked_user_id.isnot(None))


def missing_identity_expr(user_id, anonymous_id):
    return and_(normalized_id_expr(user_id).is_(None), normalized_id_expr(anonymous_id).is_(None))


def signed_in_expr(canonical_identity):
    """SQL form of ``is_signed_in``."""
    return canonical_identity.like(f"{USER_PREFIX}%")
