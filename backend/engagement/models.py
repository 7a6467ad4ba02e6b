"""SQLAlchemy models for the event log, identity links and metric snapshots."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Event(Base):
    __tablename__ = "conversion_events"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(64), index=True, nullable=False)
    user_id = Column(String(255), nullable=True, index=True)
    anonymous_id = Column(String(255), nullable=True, index=True)
    user_email = Column(String(320), nullable=True)
    page_path = Column(Text, nullable=True)
    entity_id = Column(String(255), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (Index("ix_conversion_events_type_created", "event_type", "created_at"),)


class IdentityLink(Base):
    __tablename__ = "analytics_identity_links"

    id = Column(Integer, primary_key=True, index=True)
    anonymous_id = Column(String(255), nullable=False, index=True)
    user_id = Column(String(255), nullable=False)
    first_seen_at = Column(DateTime, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)


class MetricSnapshot(Base):
    __tablename__ = "metric_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    period_type = Column(String(16), nullable=False, index=True)
    period_key = Column(String(16), nullable=False)
    new_signups = Column(Integer, nullable=True)
    wau = Column(Integer, nullable=True)
    new_trials = Column(Integer, nullable=True)
    active_subscribers = Column(Integer, nullable=True)
    mrr = Column(Float, nullable=True)
    activation_rate = Column(Float, nullable=True)
    churn_rate = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("period_type", "period_key", name="uq_metric_snapshots_period"),)


SNAPSHOT_FIELDS = (
    "new_signups",
    "wau",
    "new_trials",
    "active_subscribers",
    "mrr",
    "activation_rate",
    "churn_rate",
)
