"""Pydantic models for the results returned by the metric query functions."""
from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

Day = date


class DauTrendPoint(BaseModel):
    date: Day
    dau: int
    returning_dau: int = Field(..., description="Active on this day and on any of the 30 days before it")


class ActivityMetrics(BaseModel):
    event_types: List[str]
    anchor_day: date
    dau: int
    wau: int
    mau: int
    stickiness_dau_mau: float
    stickiness_wau_mau: float
    stickiness_dau_wau: float
    returning_wau: int = Field(..., description="Active in this 7-day window and the one before it")
    returning_mau: int = Field(..., description="Active in this 30-day window and the one before it")


class NewReturningUsers(BaseModel):
    new_users: int
    returning_users_lifetime: int
    returning_users_range: int


class ActiveDays(BaseModel):
    distribution: Dict[str, int]
    avg_active_days_per_user: float


class CohortRetention(BaseModel):
    cohort_day: date
    cohort_users: int
    day_1: Optional[float] = None
    day_7: Optional[float] = None
    day_30: Optional[float] = None


class RetentionReport(BaseModel):
    latest_available_day: date
    cohorts: List[CohortRetention]


class ReferrerBreakdown(BaseModel):
    organic_returning: int = 0
    direct_returning: int = 0
    internal_returning: int = 0

    @property
    def total(self) -> int:
        return self.organic_returning + self.direct_returning + self.internal_returning


class GrimoireToApp(BaseModel):
    grimoire_visitors: int
    grimoire_to_app_users: int
    grimoire_to_app_rate: float


class ConversionInfluence(BaseModel):
    subscription_users: int
    subscription_users_with_grimoire_before: int
    subscription_with_grimoire_before_rate: float
    median_days_first_grimoire_to_signup: Optional[float] = None
    median_days_signup_to_subscription: Optional[float] = None


class FeatureAdoptionRow(BaseModel):
    event_type: str
    users: int
    adoption_rate: float


class FeatureAdoption(BaseModel):
    mau: int
    features: List[FeatureAdoptionRow]


class GrimoireHealth(BaseModel):
    grimoire_entry_rate: float
    grimoire_views_per_active_user: float
    return_to_grimoire_rate: float
    grimoire_to_app: GrimoireToApp
    influence: ConversionInfluence


class AuditInfo(BaseModel):
    event_types: List[str]
    window_start: date
    window_end: date
    raw_events_count: int
    distinct_canonical_identities: int
    missing_identity_rows: int
    identity_link_applied_rows: int
    last_event_at: Optional[datetime] = None
    anonymous_ids: int = 0
    linked_anonymous_ids: int = 0
    link_coverage: float = 0.0


class EngagedActivity(BaseModel):
    engaged: ActivityMetrics
    signed_in_product: ActivityMetrics
    engagement_rate: Optional[float] = None


class EngagementOverview(BaseModel):
    start: date
    end: date
    app: ActivityMetrics
    dau_trend: List[DauTrendPoint]
    returning_dau: int
    users: NewReturningUsers
    active_days: ActiveDays
    retention: RetentionReport
    returning_referrer_breakdown: ReferrerBreakdown
    engaged: EngagedActivity
    grimoire_to_app: GrimoireToApp
    audit: AuditInfo
    anomalies: List[str]
    warnings: List[str]


class SnapshotPoint(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_key: str
    new_signups: Optional[int] = None
    wau: Optional[int] = None
    new_trials: Optional[int] = None
    active_subscribers: Optional[int] = None
    mrr: Optional[float] = None
    activation_rate: Optional[float] = None
    churn_rate: Optional[float] = None
    changes: Dict[str, Optional[float]] = Field(default_factory=dict)


class SnapshotTrend(BaseModel):
    period_type: str
    points: List[SnapshotPoint]
