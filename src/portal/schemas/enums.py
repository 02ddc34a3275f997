from enum import Enum


class MembershipTier(str, Enum):
    """Named membership levels, cheapest first."""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"

    @property
    def priority(self) -> int:
        return TIER_PRIORITY[self]


TIER_PRIORITY = {
    MembershipTier.BRONZE: 1,
    MembershipTier.SILVER: 2,
    MembershipTier.GOLD: 3,
    MembershipTier.PLATINUM: 4,
}


class BillingCycle(str, Enum):
    """Recurrence of the membership charge."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class MembershipStatus(str, Enum):
    """Subscription status as reported by the platform."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"


class SubscriptionDecision(str, Enum):
    """What selecting a plan leads to, given the current membership."""
    PROCEED = "proceed"
    ALREADY_SUBSCRIBED = "already_subscribed"
    CONFIRM_SWITCH = "confirm_switch"


class NotificationLevel(str, Enum):
    """Toast levels shown by the browser."""
    SUCCESS = "success"
    ERROR = "error"
    LOADING = "loading"
    INFO = "info"


class CommandKind(str, Enum):
    """Request-issuing operations guarded against duplicate submission."""
    CHECKOUT = "checkout"
    CANCEL = "cancel"
    REACTIVATE = "reactivate"
    VERIFY = "verify"
