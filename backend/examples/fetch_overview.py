"""Example client that fetches the engagement overview from the metrics API."""
from __future__ import annotations

import argparse
import os

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch the engagement overview for a date range")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("ENGAGEMENT_API_URL", "http://127.0.0.1:8000"),
        help="Metrics API base URL (default: %(default)s or ENGAGEMENT_API_URL)",
    )
    parser.add_argument(
        "--token",
        default=os.environ.get("ENGAGEMENT_JWT_TOKEN"),
        help="Bearer token used to authenticate the request (ENGAGEMENT_JWT_TOKEN)",
    )
    parser.add_argument("--start", help="First day of the range (YYYY-MM-DD)")
    parser.add_argument("--end", help="Last day of the range (YYYY-MM-DD)")
    args = parser.parse_args()
    if not args.token:
        parser.error("A JWT must be supplied via --token or ENGAGEMENT_JWT_TOKEN")
    return args


def main() -> None:
    args = parse_args()
    headers = {"Authorization": f"Bearer {args.token}"}
    params = {key: value for key, value in (("start", args.start), ("end", args.end)) if value}

    response = requests.get(f"{args.api_url}/metrics/engagement", headers=headers, params=params, timeout=30)
    response.raise_for_status()
    overview = response.json()
    app = overview["app"]
    print(f"DAU/WAU/MAU: {app['dau']}/{app['wau']}/{app['mau']}")
    for anomaly in overview["anomalies"]:
        print("Anomaly:", anomaly)

    audit = requests.get(f"{args.api_url}/metrics/audit", headers=headers, params=params, timeout=30)
    audit.raise_for_status()
    print("Audit:", audit.json())


if __name__ == "__main__":
    main()
