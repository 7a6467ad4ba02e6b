"""Environment-driven settings for the engagement metrics service."""
from __future__ import annotations

import os
from typing import Tuple

DEFAULT_KEY_ACTION_EVENTS = (
    "daily_dashboard_viewed",
    "grimoire_viewed",
    "astral_chat_used",
    "tarot_drawn",
    "ritual_started",
    "chart_viewed",
    "horoscope_viewed",
    "tarot_reading_completed",
    "reflection_saved",
)


def get_env_setting(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} environment variable must be set.")
    return value


def get_int_setting(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def get_database_url() -> str:
    return os.environ.get("ENGAGEMENT_DATABASE_URL", "sqlite:///./engagement.db")


def get_product_domain() -> str:
    return os.environ.get("ENGAGEMENT_PRODUCT_DOMAIN", "lunary.app").lower()


def get_test_email_domain() -> str:
    return os.environ.get("ENGAGEMENT_TEST_EMAIL_DOMAIN", "test.lunary.app").lower()


def get_test_email() -> str:
    return os.environ.get("ENGAGEMENT_TEST_EMAIL", "test@test.lunary.app").lower()


def get_key_action_events() -> Tuple[str, ...]:
    raw = os.environ.get("ENGAGEMENT_KEY_ACTION_EVENTS")
    if not raw:
        return DEFAULT_KEY_ACTION_EVENTS
    events = tuple(item.strip() for item in raw.split(",") if item.strip())
    return events or DEFAULT_KEY_ACTION_EVENTS
