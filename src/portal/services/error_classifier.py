"""
Turn upstream failures into the membership error taxonomy by inspecting the
response metadata the platform sends back.
"""
from typing import Optional

from portal.core.exceptions import (
    AlreadySubscribedError,
    CheckoutSessionError,
    ConflictingMembershipError,
    MembershipError,
    NetworkError,
    PlanUnavailableError,
    PlatformAPIError,
)

ALREADY_SUBSCRIBED_TO_PLAN = "ALREADY_SUBSCRIBED_TO_PLAN"
ALREADY_SUBSCRIBED = "ALREADY_SUBSCRIBED"


def classify_checkout_error(
    error: PlatformAPIError, fallback_message: Optional[str] = None
) -> MembershipError:
    """Classify a failed checkout-session creation.

    Checks run in a fixed order; the first match wins.
    """
    if error.is_transport_error:
        return NetworkError(cause=error)

    message = error.message or ""
    code = error.code

    if code == ALREADY_SUBSCRIBED_TO_PLAN:
        return AlreadySubscribedError(cause=error)
    if "already has an active membership" in message or code == ALREADY_SUBSCRIBED:
        return ConflictingMembershipError(cause=error)
    if "Plan not found" in message:
        return PlanUnavailableError(cause=error)
    if "payment" in message:
        return CheckoutSessionError(
            "Payment processing failed. Please check your payment method and try again.",
            cause=error,
        )
    if "Stripe" in message:
        return CheckoutSessionError(
            "Payment service is currently unavailable. Please try again later.", cause=error
        )
    if error.status_code is not None and error.status_code >= 500:
        # raw server errors are not shown to members
        return CheckoutSessionError(fallback_message, cause=error)
    return CheckoutSessionError(message or fallback_message, cause=error)


def classify_command_error(error: PlatformAPIError, fallback_message: str) -> MembershipError:
    """Classify a failed cancel/reactivate style command."""
    if error.is_transport_error or error.status_code is None or error.status_code >= 500:
        return NetworkError(fallback_message, cause=error)
    return MembershipError(error.message or fallback_message, cause=error)


def classify_read_error(error: PlatformAPIError) -> MembershipError:
    """Reads only ever surface the generic fallback."""
    return NetworkError(cause=error)
