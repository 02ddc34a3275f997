"""
Error taxonomy for the membership flows.

Every failure of a membership operation ends up as one of these classes.
``kind`` is the stable identifier the browser switches on, ``message`` is the
text shown to the user and ``status_code`` is what the portal answers with.
"""
from typing import Any, Optional


class PlatformAPIError(Exception):
    """An upstream platform API call failed.

    Carries the response metadata the classifiers inspect: the HTTP status
    (``None`` for transport failures), the platform's machine-readable ``code``
    and its human-readable ``error`` message.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.payload = payload

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None

    def __repr__(self) -> str:
        return f"PlatformAPIError(status_code={self.status_code!r}, code={self.code!r}, message={self.message!r})"


class MembershipError(Exception):
    """Base class for classified, user-facing membership failures."""

    kind = "membership_error"
    status_code = 400
    default_message = "Something went wrong with your membership request."

    def __init__(self, message: Optional[str] = None, cause: Optional[Exception] = None):
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(self.message)


class AlreadySubscribedError(MembershipError):
    kind = "already_subscribed"
    status_code = 409
    default_message = "You are already subscribed to this plan."


class ConflictingMembershipError(MembershipError):
    kind = "conflicting_membership"
    status_code = 409
    default_message = (
        "You already have an active membership. Please cancel it first or contact support."
    )


class PlanUnavailableError(MembershipError):
    kind = "plan_unavailable"
    status_code = 404
    default_message = "Selected membership plan is not available. Please try another plan."


class CheckoutSessionError(MembershipError):
    """Creating the payment checkout session failed. Safe to retry."""

    kind = "checkout_failed"
    status_code = 502
    default_message = "Failed to subscribe to membership. Please try again."


class CheckoutVerificationError(MembershipError):
    """The checkout session could not be confirmed after the redirect back.

    Money may already have moved, so the user is sent to support instead of
    being invited to retry.
    """

    kind = "verification_failed"
    status_code = 502
    default_message = "There was an issue verifying your payment. Please contact support."


class NetworkError(MembershipError):
    kind = "network"
    status_code = 503
    default_message = "We could not reach the membership service. Please try again later."


class RequestInFlightError(MembershipError):
    kind = "request_in_flight"
    status_code = 409
    default_message = "Your previous request is still being processed."


class NoPendingSwitchError(MembershipError):
    kind = "no_pending_switch"
    status_code = 409
    default_message = "There is no plan switch waiting for confirmation."


class MembershipStateError(MembershipError):
    kind = "invalid_state"
    status_code = 409
    default_message = "This action is not available for your membership."


class SessionExpiredError(Exception):
    """The bearer token of a session has expired."""


class InvalidTokenError(Exception):
    """The bearer token could not be verified."""
