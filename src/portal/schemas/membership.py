from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import Field, validator

from portal.schemas.base import BaseSchema, PlatformEntity
from portal.schemas.enums import BillingCycle, MembershipStatus, MembershipTier
from portal.utils.amounts import parse_amount


# Catalog
class MembershipPlan(PlatformEntity):
    """A plan from the platform catalog. Read-only."""
    name: str
    tier: MembershipTier
    billing_cycle: BillingCycle
    amount: Decimal
    currency: str = "usd"
    benefits: List[str] = Field(default_factory=list)
    is_active: bool = True
    description: Optional[str] = None
    stripe_price_id: Optional[str] = None

    @validator("amount", pre=True)
    def parse_platform_amount(cls, v: Any) -> Decimal:
        return parse_amount(v)


# Current user's subscription record
class UserMembership(PlatformEntity):
    """The authoritative subscription record, as last read from the platform."""
    user_id: str
    membership_plan_id: str
    stripe_subscription_id: Optional[str] = None
    status: MembershipStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None
    membership_plans: Optional[MembershipPlan] = None

    def period_has_elapsed(self, now: Optional[datetime] = None) -> bool:
        if self.current_period_end is None:
            return True
        now = now or datetime.now(timezone.utc)
        end = self.current_period_end
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return end <= now


# Requests sent to the platform
class CheckoutSessionRequest(BaseSchema):
    plan_id: str
    success_url: str
    cancel_url: str
    plan_switch: Optional[bool] = None


class CheckoutSession(BaseSchema):
    url: Optional[str] = None
    session_id: Optional[str] = None


class CancellationRequest(BaseSchema):
    cancel_at_period_end: bool = True
    reason: Optional[str] = None


class CheckoutVerification(BaseSchema):
    """Payload returned when a checkout session is confirmed after redirect."""
    membership: Optional[UserMembership] = None
    payment_status: Optional[str] = None
    plan: Optional[MembershipPlan] = None


# Admin
class TierShare(BaseSchema):
    tier: MembershipTier
    count: int
    percentage: float


class BillingCycleShare(BaseSchema):
    cycle: BillingCycle
    count: int
    percentage: float


class MembershipStats(BaseSchema):
    total_members: int = 0
    active_members: int = 0
    cancelled_members: int = 0
    monthly_revenue: Decimal = Decimal(0)
    annual_revenue: Decimal = Decimal(0)
    tier_distribution: List[TierShare] = Field(default_factory=list)
    billing_cycle_distribution: List[BillingCycleShare] = Field(default_factory=list)
    recent_subscriptions: List[UserMembership] = Field(default_factory=list)
    churn_rate: float = 0.0
    growth_rate: float = 0.0

    @validator("monthly_revenue", "annual_revenue", pre=True)
    def parse_revenue(cls, v: Any) -> Decimal:
        return parse_amount(v)


class MembershipFilters(BaseSchema):
    status: Optional[List[MembershipStatus]] = None
    tier: Optional[List[MembershipTier]] = None
    billing_cycle: Optional[List[BillingCycle]] = None
    search: Optional[str] = None
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None
    sort_by: Optional[str] = Field(default=None, alias="sortBy")
    sort_order: Optional[str] = Field(default=None, alias="sortOrder")

    def to_query_params(self) -> dict[str, str]:
        """Query string values: lists comma-joined, empty values dropped."""
        params: dict[str, str] = {}
        for key, value in self.model_dump(by_alias=True, mode="json").items():
            if value is None or value == "":
                continue
            if isinstance(value, list):
                if value:
                    params[key] = ",".join(str(v) for v in value)
            else:
                params[key] = str(value)
        return params


class Pagination(BaseSchema):
    current_page: int = Field(default=1, alias="currentPage")
    total_pages: int = Field(default=1, alias="totalPages")
    has_next_page: bool = Field(default=False, alias="hasNextPage")
    has_prev_page: bool = Field(default=False, alias="hasPrevPage")
    page: int = 1
    limit: int = 20
    total_count: int = Field(default=0, alias="totalCount")


class MembershipList(BaseSchema):
    data: List[UserMembership] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class MembershipStatusUpdate(BaseSchema):
    status: MembershipStatus
    notes: Optional[str] = None
