"""Print an engagement audit report for a date range.

Usage::

    python -m backend.engagement.audit_cli --start 2024-05-01 --end 2024-05-31

Exits with status 1 when any anomaly is detected.
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .database import session_scope
from .dates import DateRange, utc_today
from .overview import get_engagement_overview
from .schemas import EngagementOverview


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Audit engagement metrics for a date range.")
    parser.add_argument("--start", help="First day of the range (YYYY-MM-DD). Defaults to 30 days before --end.")
    parser.add_argument("--end", help="Last day of the range (YYYY-MM-DD). Defaults to today (UTC).")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def format_report(overview: EngagementOverview) -> str:
    app = overview.app
    audit = overview.audit
    lines = [
        f"Engagement audit {overview.start} .. {overview.end}",
        "",
        f"Audit window: {audit.window_start} .. {audit.window_end} ({', '.join(audit.event_types)})",
        f"  raw events:                {audit.raw_events_count}",
        f"  canonical identities:      {audit.distinct_canonical_identities}",
        f"  missing identity rows:     {audit.missing_identity_rows}",
        f"  identity link applied:     {audit.identity_link_applied_rows}",
        f"  anonymous ids linked:      {audit.linked_anonymous_ids}/{audit.anonymous_ids} ({audit.link_coverage}%)",
        f"  last event at:             {audit.last_event_at or '-'}",
        "",
        f"App DAU/WAU/MAU:             {app.dau}/{app.wau}/{app.mau}",
        f"Returning DAU/WAU/MAU:       {overview.returning_dau}/{app.returning_wau}/{app.returning_mau}",
        f"Stickiness DAU/MAU:          {app.stickiness_dau_mau}%",
        f"New users:                   {overview.users.new_users}",
        f"Returning (lifetime/range):  {overview.users.returning_users_lifetime}/{overview.users.returning_users_range}",
        f"Engaged MAU:                 {overview.engaged.engaged.mau}",
        f"Signed-in product MAU:       {overview.engaged.signed_in_product.mau}",
        "",
    ]
    for warning in overview.warnings:
        lines.append(f"WARNING: {warning}")
    for anomaly in overview.anomalies:
        lines.append(f"ANOMALY: {anomaly}")
    lines.append("FAIL" if overview.anomalies else "PASS")
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.start:
            date_range = DateRange.of(args.start, args.end or utc_today())
        else:
            date_range = DateRange.trailing(end=args.end)
    except ValueError as exc:
        print(f"Invalid date range: {exc}", file=sys.stderr)
        return 2

    with session_scope() as session:
        overview = get_engagement_overview(session, date_range)

    print(format_report(overview))
    return 1 if overview.anomalies else 0


if __name__ == "__main__":
    sys.exit(main())
