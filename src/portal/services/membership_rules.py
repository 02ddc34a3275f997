"""
Pure rules over plans and the current membership record.

Nothing here touches the network; the controller asks these functions what
is allowed and only then issues requests.
"""
from datetime import datetime
from typing import Iterable, List, Optional

from portal.schemas.enums import (
    TIER_PRIORITY,
    BillingCycle,
    MembershipStatus,
    MembershipTier,
    SubscriptionDecision,
)
from portal.schemas.membership import MembershipPlan, UserMembership


def is_active_non_cancelling(membership: Optional[UserMembership]) -> bool:
    """An active membership that is not scheduled to end."""
    return (
        membership is not None
        and membership.status == MembershipStatus.ACTIVE
        and not membership.cancel_at_period_end
    )


def decide_subscription(
    plan: MembershipPlan, membership: Optional[UserMembership]
) -> SubscriptionDecision:
    """Decide what selecting ``plan`` leads to.

    A membership that is absent, not active, or already cancelling at period
    end never blocks a new checkout. An active one either blocks (same plan)
    or requires explicit confirmation (different plan).
    """
    if not is_active_non_cancelling(membership):
        return SubscriptionDecision.PROCEED
    if membership.membership_plan_id == plan.id:
        return SubscriptionDecision.ALREADY_SUBSCRIBED
    return SubscriptionDecision.CONFIRM_SWITCH


def can_cancel(membership: Optional[UserMembership]) -> bool:
    return is_active_non_cancelling(membership)


def can_reactivate(membership: Optional[UserMembership], now: Optional[datetime] = None) -> bool:
    return (
        membership is not None
        and membership.cancel_at_period_end
        and not membership.period_has_elapsed(now)
    )


def has_active_membership(membership: Optional[UserMembership]) -> bool:
    return membership is not None and membership.status == MembershipStatus.ACTIVE


def current_tier(membership: Optional[UserMembership]) -> Optional[MembershipTier]:
    if membership is None or membership.membership_plans is None:
        return None
    return membership.membership_plans.tier


def can_upgrade(membership: Optional[UserMembership]) -> bool:
    """True while a higher tier than the current one exists."""
    tier = current_tier(membership)
    if tier is None:
        return False
    return tier.priority < max(TIER_PRIORITY.values())


def catalog_view(
    plans: Iterable[MembershipPlan], billing_cycle: Optional[BillingCycle] = None
) -> List[MembershipPlan]:
    """Active plans, optionally for one billing cycle, cheapest tier first."""
    visible = [p for p in plans if p.is_active]
    if billing_cycle is not None:
        visible = [p for p in visible if p.billing_cycle == billing_cycle]
    return sorted(visible, key=lambda p: (p.tier.priority, p.amount))
