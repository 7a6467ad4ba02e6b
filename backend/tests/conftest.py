import sys
from datetime import date, datetime, time
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.engagement.models import Base, Event, IdentityLink, MetricSnapshot  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'events.db'}", future=True)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def add_event(session):
    def _add_event(
        event_type: str,
        day: date,
        *,
        user_id=None,
        anonymous_id=None,
        user_email=None,
        hour: int = 12,
        at: datetime = None,
        metadata=None,
        page_path=None,
        entity_id=None,
    ) -> Event:
        event = Event(
            event_type=event_type,
            user_id=user_id,
            anonymous_id=anonymous_id,
            user_email=user_email,
            page_path=page_path,
            entity_id=entity_id,
            metadata_json=metadata,
            created_at=at or datetime.combine(day, time(hour)),
        )
        session.add(event)
        session.flush()
        return event

    return _add_event


@pytest.fixture
def add_link(session):
    def _add_link(anonymous_id: str, user_id: str, *, first_seen_at=None, last_seen_at=None) -> IdentityLink:
        link = IdentityLink(
            anonymous_id=anonymous_id,
            user_id=user_id,
            first_seen_at=first_seen_at,
            last_seen_at=last_seen_at,
        )
        session.add(link)
        session.flush()
        return link

    return _add_link


@pytest.fixture
def add_snapshot(session):
    def _add_snapshot(period_type: str, period_key: str, **fields) -> MetricSnapshot:
        snapshot = MetricSnapshot(period_type=period_type, period_key=period_key, **fields)
        session.add(snapshot)
        session.flush()
        return snapshot

    return _add_snapshot
