from .base import BaseSchema, PlatformEntity, Envelope
from .enums import MembershipTier, BillingCycle, MembershipStatus, SubscriptionDecision, NotificationLevel, CommandKind
from .membership import MembershipPlan, UserMembership, CheckoutSessionRequest, CheckoutSession, CancellationRequest, CheckoutVerification, MembershipStats, MembershipFilters, MembershipList, MembershipStatusUpdate
from .notification import Notification
