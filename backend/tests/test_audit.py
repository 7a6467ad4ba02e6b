from datetime import date, datetime, timedelta

from backend.engagement.audit import (
    ANOMALY_RULES,
    WARNING_RULES,
    Rule,
    detect_anomalies,
    detect_warnings,
    evaluate_rules,
    get_audit_info,
)
from backend.engagement.windows import APP_EVENTS

BASE = date(2024, 5, 1)

CLEAN_METRICS = {
    "dau": 2,
    "wau": 5,
    "mau": 9,
    "returning_dau": 1,
    "returning_wau": 3,
    "returning_mau": 4,
    "returning_users_range": 6,
    "distinct_canonical_identities": 9,
    "signed_in_product_mau": 3,
    "engaged_dau": 1,
    "engaged_wau": 2,
    "engaged_mau": 4,
}


def test_clean_metrics_yield_no_anomalies_or_warnings():
    assert detect_anomalies(CLEAN_METRICS) == []
    assert detect_warnings(CLEAN_METRICS) == []


def test_returning_dau_above_dau_is_reported():
    metrics = dict(CLEAN_METRICS, returning_dau=5)

    anomalies = detect_anomalies(metrics)

    assert anomalies == ["Returning DAU (5) exceeds DAU (2)"]


def test_every_violated_rule_is_collected():
    metrics = dict(CLEAN_METRICS, dau=7, wau=10, distinct_canonical_identities=8, signed_in_product_mau=12)

    anomalies = detect_anomalies(metrics)

    assert "WAU (10) exceeds MAU (9)" in anomalies
    assert "Audit distinct canonical identities (8) differ from MAU (9)" in anomalies
    assert "Signed-in product MAU (12) exceeds app MAU (9)" in anomalies
    assert len(anomalies) == 3


def test_rules_with_missing_fields_are_skipped():
    assert detect_anomalies({"dau": 3}) == []
    assert detect_anomalies({"dau": 3, "wau": None, "mau": 1}) == []


def test_engaged_equal_to_app_warns():
    metrics = dict(CLEAN_METRICS, engaged_mau=9)

    warnings = detect_warnings(metrics)

    assert len(warnings) == 1
    assert warnings[0].startswith("Engaged MAU (9) equals app MAU (9)")


def test_engaged_warning_needs_activity():
    metrics = dict(CLEAN_METRICS, dau=0, engaged_dau=0)
    assert detect_warnings(metrics) == []


def test_custom_rule_table():
    rules = (Rule(fields=("mrr",), violated=lambda mrr: mrr < 0, message="Negative MRR {mrr}"),)
    assert evaluate_rules(rules, {"mrr": -5}) == ["Negative MRR -5"]
    assert len(ANOMALY_RULES) == 8
    assert len(WARNING_RULES) == 3


def test_audit_info_counts_links_and_missing_rows(session, add_event, add_link):
    add_link("device-1", "U")
    add_event("app_opened", BASE, anonymous_id="device-1", hour=8)
    add_event("app_opened", BASE, anonymous_id="device-1", hour=9)
    add_event("app_opened", BASE, anonymous_id="device-2", hour=10)
    add_event("app_opened", BASE, user_id="U", hour=11)
    add_event("app_opened", BASE, hour=12)
    add_event("grimoire_viewed", BASE, user_id="other", hour=13)
    add_event("app_opened", BASE + timedelta(days=1), user_id="later")

    audit = get_audit_info(session, APP_EVENTS, BASE, BASE)

    assert audit.event_types == ["app_opened"]
    assert audit.raw_events_count == 5
    assert audit.distinct_canonical_identities == 2
    assert audit.missing_identity_rows == 1
    assert audit.identity_link_applied_rows == 2
    assert audit.last_event_at == datetime(2024, 5, 1, 12)
    assert audit.anonymous_ids == 2
    assert audit.linked_anonymous_ids == 1
    assert audit.link_coverage == 50.0
