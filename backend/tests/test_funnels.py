from datetime import date, datetime, timedelta

from backend.engagement.dates import DateRange
from backend.engagement.funnels import (
    get_conversion_influence,
    get_feature_adoption,
    get_grimoire_health,
    get_grimoire_to_app,
    is_chronological,
)

BASE = date(2024, 5, 1)
RANGE = DateRange(BASE, BASE + timedelta(days=9))


def day(n: int) -> date:
    return BASE + timedelta(days=n - 1)


def _journey(add_event, user_id, *, grimoire=None, signup=None, subscription=None, email=None, subscription_event="subscription_started"):
    if grimoire is not None:
        add_event("grimoire_viewed", day(grimoire), user_id=user_id, user_email=email)
    if signup is not None:
        add_event("signup_completed", day(signup), user_id=user_id, user_email=email)
    if subscription is not None:
        add_event(subscription_event, day(subscription), user_id=user_id, user_email=email)


def test_is_chronological():
    first, second = datetime(2024, 5, 1), datetime(2024, 5, 2)
    assert is_chronological(first, first, second)
    assert not is_chronological(second, first, second)
    assert not is_chronological(None, first, second)


def test_grimoire_to_app_rate(session, add_event):
    add_event("grimoire_viewed", day(1), anonymous_id="reader")
    add_event("app_opened", day(3), anonymous_id="reader")
    add_event("grimoire_viewed", day(2), anonymous_id="browser")
    add_event("app_opened", day(2), anonymous_id="app-only")

    funnel = get_grimoire_to_app(session, RANGE)

    assert funnel.grimoire_visitors == 2
    assert funnel.grimoire_to_app_users == 1
    assert funnel.grimoire_to_app_rate == 50.0


def test_subscription_influence_and_medians(session, add_event):
    _journey(add_event, "A", grimoire=1, signup=2, subscription=5)
    _journey(add_event, "B", signup=1, subscription=3, subscription_event="trial_converted")
    _journey(add_event, "C", grimoire=4, signup=2, subscription=6)

    influence = get_conversion_influence(session, RANGE)

    assert influence.subscription_users == 3
    assert influence.subscription_users_with_grimoire_before == 2
    assert influence.subscription_with_grimoire_before_rate == 66.67
    assert influence.median_days_first_grimoire_to_signup == 1.0
    assert influence.median_days_signup_to_subscription == 3.0


def test_test_accounts_do_not_contribute_to_influence(session, add_event):
    _journey(add_event, "tester", grimoire=1, signup=2, subscription=3, email="foo@test.lunary.app")
    _journey(add_event, "fixed", grimoire=1, signup=2, subscription=3, email="Test@Test.Lunary.App")

    excluded = get_conversion_influence(session, RANGE)
    assert excluded.subscription_users == 0
    assert excluded.subscription_with_grimoire_before_rate == 0.0
    assert excluded.median_days_signup_to_subscription is None

    _journey(add_event, "real", grimoire=1, signup=2, subscription=3, email="foo@example.com")

    included = get_conversion_influence(session, RANGE)
    assert included.subscription_users == 1
    assert included.subscription_users_with_grimoire_before == 1
    assert included.median_days_signup_to_subscription == 1.0


def test_subscriptions_outside_range_are_ignored(session, add_event):
    _journey(add_event, "early", grimoire=1, signup=1, subscription=1)
    later = DateRange(day(2), day(5))

    assert get_conversion_influence(session, later).subscription_users == 0


def test_feature_adoption_against_app_mau(session, add_event):
    for user in ("a", "b", "c", "d"):
        add_event("app_opened", day(10), user_id=user)
    add_event("tarot_drawn", day(3), user_id="a")
    add_event("tarot_drawn", day(4), user_id="a")
    add_event("tarot_drawn", day(4), user_id="b")
    add_event("chart_viewed", day(5), user_id="c")

    adoption = get_feature_adoption(session, RANGE)
    rows = {row.event_type: row for row in adoption.features}

    assert adoption.mau == 4
    assert rows["tarot_drawn"].users == 2
    assert rows["tarot_drawn"].adoption_rate == 50.0
    assert rows["chart_viewed"].adoption_rate == 25.0
    assert rows["ritual_started"].users == 0
    assert len(adoption.features) == 6


def test_grimoire_health(session, add_event):
    add_event("app_opened", day(2), user_id="n1")
    add_event("grimoire_viewed", day(2), user_id="n1", entity_id="moon")
    add_event("grimoire_viewed", day(2), user_id="n1", page_path="/grimoire/sun")
    add_event("app_opened", day(3), user_id="n2")
    add_event("grimoire_viewed", day(4), user_id="n2", entity_id="moon")
    add_event("grimoire_viewed", day(6), user_id="n2", entity_id="moon")
    add_event("app_opened", day(5), user_id="n3")

    health = get_grimoire_health(session, RANGE)

    assert health.grimoire_entry_rate == 33.33
    assert health.grimoire_views_per_active_user == 1.0
    assert health.return_to_grimoire_rate == 50.0
    assert health.grimoire_to_app.grimoire_to_app_rate == 100.0
    assert health.influence.subscription_users == 0
