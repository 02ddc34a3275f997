"""
Membership lifecycle controller.

Holds the per-session client state of the membership screens (catalog cache,
last read of the user's membership, selected plan, pending plan switch and
in-flight flags) and issues commands to the platform.

Billing state is owned by the platform. The controller never edits the
cached membership record: after a command is acknowledged the cache is marked
stale and re-read, and until that read resolves the previous record is what
callers see.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from portal.clients.platform_api import PlatformAPIClient
from portal.core.config import settings
from portal.core.exceptions import (
    AlreadySubscribedError,
    CheckoutSessionError,
    CheckoutVerificationError,
    MembershipError,
    MembershipStateError,
    NoPendingSwitchError,
    PlanUnavailableError,
    PlatformAPIError,
    RequestInFlightError,
)
from portal.schemas.enums import BillingCycle, CommandKind, SubscriptionDecision
from portal.schemas.membership import (
    CancellationRequest,
    CheckoutSessionRequest,
    CheckoutVerification,
    MembershipPlan,
    UserMembership,
)
from portal.services import membership_rules
from portal.services.error_classifier import (
    classify_checkout_error,
    classify_command_error,
    classify_read_error,
)
from portal.services.notifier import Notifier

logger = logging.getLogger(__name__)


@dataclass
class SubscribeResult:
    decision: SubscriptionDecision
    checkout_url: Optional[str] = None
    is_plan_switch: bool = False
    pending_switch: Optional[MembershipPlan] = None


class MembershipController:
    def __init__(
        self,
        api: PlatformAPIClient,
        notifier: Optional[Notifier] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        plans_ttl: float = settings.PLANS_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.api = api
        self.notifier = notifier or Notifier()
        self.success_url = success_url or settings.checkout_success_url
        self.cancel_url = cancel_url or settings.checkout_cancel_url
        self.plans_ttl = plans_ttl
        self._clock = clock
        self.now = now

        # plan selection state
        self.selected_plan: Optional[MembershipPlan] = None
        self.billing_cycle: BillingCycle = BillingCycle.MONTHLY
        self.pending_switch: Optional[MembershipPlan] = None

        # cached reads
        self._plans: Optional[List[MembershipPlan]] = None
        self._plans_loaded_at: Optional[float] = None
        self._membership: Optional[UserMembership] = None
        self._membership_stale = True

        self._in_flight: Set[CommandKind] = set()

    # ==================== GUARDS ====================

    def is_in_flight(self, kind: CommandKind) -> bool:
        return kind in self._in_flight

    @contextmanager
    def _command(self, kind: CommandKind):
        """Mark ``kind`` as in flight for the duration of the block."""
        if kind in self._in_flight:
            logger.info(f"Rejected duplicate {kind.value} request while one is outstanding")
            raise RequestInFlightError()
        self._in_flight.add(kind)
        try:
            yield
        finally:
            self._in_flight.discard(kind)

    def _fail(self, error: MembershipError, cause: Optional[Exception] = None) -> MembershipError:
        self.notifier.error(error.message, kind=error.kind)
        if cause is not None:
            logger.warning(f"{error.kind}: {error.message} (upstream: {cause!r})")
        else:
            logger.info(f"{error.kind}: {error.message}")
        return error

    # ==================== CATALOG READER ====================

    async def list_plans(
        self, billing_cycle: Optional[BillingCycle] = None, refresh: bool = False
    ) -> List[MembershipPlan]:
        """Active plans for display, cheapest tier first."""
        plans = await self._load_plans(refresh=refresh)
        return membership_rules.catalog_view(plans, billing_cycle)

    async def _load_plans(self, refresh: bool = False) -> List[MembershipPlan]:
        fresh = (
            self._plans is not None
            and self._plans_loaded_at is not None
            and self._clock() - self._plans_loaded_at < self.plans_ttl
        )
        if fresh and not refresh:
            return self._plans
        try:
            self._plans = await self.api.list_plans()
        except PlatformAPIError as e:
            raise self._fail(classify_read_error(e), e) from e
        self._plans_loaded_at = self._clock()
        logger.info(f"Loaded {len(self._plans)} membership plans")
        return self._plans

    async def find_plan(self, plan_id: str) -> MembershipPlan:
        for plan in await self._load_plans():
            if plan.id == plan_id:
                return plan
        raise self._fail(PlanUnavailableError())

    @property
    def current_membership(self) -> Optional[UserMembership]:
        """Last membership record read from the platform, possibly stale."""
        return self._membership

    @property
    def membership_is_stale(self) -> bool:
        return self._membership_stale

    async def get_membership(self) -> Optional[UserMembership]:
        if self._membership_stale:
            return await self.refresh_membership()
        return self._membership

    async def refresh_membership(self) -> Optional[UserMembership]:
        """Read the authoritative membership record and replace the cache."""
        try:
            membership = await self.api.get_user_membership()
        except PlatformAPIError as e:
            raise self._fail(classify_read_error(e), e) from e
        self._membership = membership
        self._membership_stale = False
        return membership

    def invalidate_membership(self) -> None:
        """Force the next read to go to the platform. The cached record is kept."""
        self._membership_stale = True

    # ==================== PLAN SELECTION ====================

    async def select_plan(self, plan_id: str) -> MembershipPlan:
        plan = await self.find_plan(plan_id)
        if not plan.is_active:
            raise self._fail(PlanUnavailableError())
        self.selected_plan = plan
        self.billing_cycle = plan.billing_cycle
        return plan

    def select_billing_cycle(self, billing_cycle: BillingCycle) -> None:
        self.billing_cycle = billing_cycle
        if self.selected_plan is not None and self.selected_plan.billing_cycle != billing_cycle:
            self.selected_plan = None

    def clear_selection(self) -> None:
        self.selected_plan = None

    async def restore_selection(self, plan_id: str) -> Optional[MembershipPlan]:
        """Put back a plan picked before the user logged in."""
        try:
            plan = await self.select_plan(plan_id)
        except MembershipError:
            logger.info(f"Stashed plan {plan_id} is no longer available, dropping it")
            return None
        self.notifier.success("Welcome back! Your selected plan has been restored.")
        return plan

    # ==================== SUBSCRIPTION GUARD ====================

    async def attempt_subscribe(self, plan: Optional[MembershipPlan] = None) -> SubscribeResult:
        """Subscribe to ``plan`` (or the selected plan) if the membership allows it.

        Returns a result whose ``decision`` tells the caller whether to
        redirect to ``checkout_url``, show "already subscribed", or ask the user
        to confirm a plan switch. Only the first leads to a request.
        """
        plan = plan or self.selected_plan
        if plan is None:
            raise self._fail(PlanUnavailableError("Please select a membership plan first."))
        if not plan.is_active:
            raise self._fail(PlanUnavailableError())
        if self.pending_switch is not None:
            raise MembershipStateError("Confirm or dismiss the pending plan switch first.")
        if self.is_in_flight(CommandKind.CHECKOUT):
            raise RequestInFlightError()

        membership = await self.get_membership()
        decision = membership_rules.decide_subscription(plan, membership)

        if decision == SubscriptionDecision.ALREADY_SUBSCRIBED:
            self._fail(AlreadySubscribedError())
            return SubscribeResult(decision=decision)

        if decision == SubscriptionDecision.CONFIRM_SWITCH:
            logger.info(
                f"Active membership on {membership.membership_plan_id}, "
                f"waiting for confirmation to switch to {plan.id}"
            )
            self.pending_switch = plan
            return SubscribeResult(decision=decision, pending_switch=plan)

        url = await self._start_checkout(plan, plan_switch=False)
        return SubscribeResult(decision=decision, checkout_url=url)

    async def confirm_switch(self, plan_id: Optional[str] = None) -> SubscribeResult:
        pending = self.pending_switch
        if pending is None:
            raise NoPendingSwitchError()
        if plan_id is not None and plan_id != pending.id:
            raise NoPendingSwitchError(f"No plan switch to {plan_id} is waiting for confirmation.")
        if self.is_in_flight(CommandKind.CHECKOUT):
            raise RequestInFlightError()

        self.pending_switch = None
        url = await self._start_checkout(pending, plan_switch=True)
        return SubscribeResult(
            decision=SubscriptionDecision.PROCEED, checkout_url=url, is_plan_switch=True
        )

    def abandon_switch(self) -> bool:
        """Drop the pending switch. Returns whether one was pending."""
        had_pending = self.pending_switch is not None
        self.pending_switch = None
        return had_pending

    async def _start_checkout(self, plan: MembershipPlan, plan_switch: bool) -> str:
        if plan_switch:
            loading_message = "Switching your membership plan..."
            fallback = "Failed to switch membership plan. Please try again."
        else:
            loading_message = "Creating your membership subscription..."
            fallback = "Failed to subscribe to membership. Please try again."

        with self._command(CommandKind.CHECKOUT):
            loading = self.notifier.loading(loading_message)
            request = CheckoutSessionRequest(
                plan_id=plan.id,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                plan_switch=True if plan_switch else None,
            )
            logger.info(f"Creating checkout session for plan {plan.id} (switch={plan_switch})")
            try:
                session = await self.api.create_checkout_session(request)
            except PlatformAPIError as e:
                self.notifier.dismiss(loading)
                raise self._fail(classify_checkout_error(e, fallback), e) from e

            self.notifier.dismiss(loading)
            if not session.url:
                raise self._fail(CheckoutSessionError("Failed to create payment session."))

        self.notifier.success("Redirecting to secure payment...")
        self.selected_plan = None
        return session.url

    # ==================== CANCELLATION / REACTIVATION ====================

    async def cancel_membership(
        self, at_period_end: bool = True, reason: Optional[str] = None
    ) -> Optional[UserMembership]:
        """Ask the platform to cancel, then return the re-read membership."""
        membership = await self.get_membership()
        if not membership_rules.can_cancel(membership):
            raise self._fail(
                MembershipStateError("Only an active membership that is not already ending can be cancelled.")
            )

        with self._command(CommandKind.CANCEL):
            try:
                await self.api.cancel_membership(
                    CancellationRequest(cancel_at_period_end=at_period_end, reason=reason)
                )
            except PlatformAPIError as e:
                raise self._fail(
                    classify_command_error(e, "Failed to cancel membership. Please try again."), e
                ) from e

            self.invalidate_membership()
            if at_period_end:
                self.notifier.success("Your membership will end at the close of the current billing period.")
            else:
                self.notifier.success("Your membership has been cancelled.")
            return await self.refresh_membership()

    async def reactivate_membership(self) -> Optional[UserMembership]:
        membership = await self.get_membership()
        if not membership_rules.can_reactivate(membership, self.now()):
            raise self._fail(
                MembershipStateError("Only a membership scheduled to end can be reactivated before its period ends.")
            )

        with self._command(CommandKind.REACTIVATE):
            try:
                await self.api.reactivate_membership()
            except PlatformAPIError as e:
                raise self._fail(
                    classify_command_error(e, "Failed to reactivate membership. Please try again."), e
                ) from e

            self.invalidate_membership()
            self.notifier.success("Your membership has been reactivated.")
            return await self.refresh_membership()

    # ==================== POST-CHECKOUT ====================

    async def verify_checkout(self, session_id: Optional[str]) -> CheckoutVerification:
        """Confirm a checkout session after the payment processor redirects back."""
        if not session_id:
            raise self._fail(CheckoutVerificationError("Invalid payment session."))

        with self._command(CommandKind.VERIFY):
            try:
                verification = await self.api.get_checkout_session(session_id)
            except PlatformAPIError as e:
                logger.error(f"Verification of checkout session {session_id} failed: {e!r}")
                raise self._fail(CheckoutVerificationError(cause=e), e) from e

            self.selected_plan = None
            self.pending_switch = None
            self.notifier.success("Welcome to your new membership!")
            self.invalidate_membership()
            await self.refresh_membership()
        return verification

    # ==================== TEARDOWN ====================

    def reset(self) -> None:
        """Forget everything held for this session."""
        self.selected_plan = None
        self.pending_switch = None
        self.billing_cycle = BillingCycle.MONTHLY
        self._plans = None
        self._plans_loaded_at = None
        self._membership = None
        self._membership_stale = True
        self._in_flight.clear()
        self.notifier.clear()
