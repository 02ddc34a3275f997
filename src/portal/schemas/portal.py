"""Request and response bodies of the portal's own HTTP surface."""
from typing import List, Optional

from pydantic import Field

from portal.schemas.base import BaseSchema
from portal.schemas.enums import BillingCycle, MembershipTier, SubscriptionDecision
from portal.schemas.membership import CheckoutVerification, MembershipPlan, UserMembership
from portal.schemas.notification import Notification


class NotifyingResponse(BaseSchema):
    notifications: List[Notification] = Field(default_factory=list)


class SelectionRequest(BaseSchema):
    plan_id: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None


class StashSelectionRequest(BaseSchema):
    plan_id: str


class SelectionResponse(NotifyingResponse):
    selected_plan: Optional[MembershipPlan] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    pending_switch: Optional[MembershipPlan] = None


class PlansResponse(NotifyingResponse):
    plans: List[MembershipPlan] = Field(default_factory=list)


class MembershipStateResponse(NotifyingResponse):
    membership: Optional[UserMembership] = None
    has_active_membership: bool = False
    current_tier: Optional[MembershipTier] = None
    can_upgrade: bool = False
    can_cancel: bool = False
    can_reactivate: bool = False


class SubscribeRequest(BaseSchema):
    plan_id: Optional[str] = None


class ConfirmSwitchRequest(BaseSchema):
    plan_id: Optional[str] = None


class SubscribeResponse(NotifyingResponse):
    decision: SubscriptionDecision
    checkout_url: Optional[str] = None
    is_plan_switch: bool = False
    pending_switch: Optional[MembershipPlan] = None


class CancelRequest(BaseSchema):
    cancel_at_period_end: bool = True
    reason: Optional[str] = None


class ErrorResponse(NotifyingResponse):
    detail: str
    kind: str


class CheckoutVerificationResponse(NotifyingResponse):
    verification: CheckoutVerification
