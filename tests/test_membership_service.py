"""Tests for the membership lifecycle controller."""
import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from portal.core.exceptions import (
    AlreadySubscribedError,
    CheckoutSessionError,
    CheckoutVerificationError,
    ConflictingMembershipError,
    MembershipStateError,
    NetworkError,
    NoPendingSwitchError,
    PlanUnavailableError,
    RequestInFlightError,
)
from portal.schemas.enums import BillingCycle, CommandKind, MembershipStatus, NotificationLevel, SubscriptionDecision
from tests.helpers import membership_payload

CHECKOUT = "/payments/checkout-session"
CHECKOUT_OK = {"success": True, "data": {"url": "https://checkout.test/c/cs_1", "session_id": "cs_1"}}


def with_membership(platform, **kwargs):
    platform.respond("GET", "/user-membership", json_body={"success": True, "data": membership_payload(**kwargs)})


@pytest.mark.asyncio
class TestAttemptSubscribe:
    async def test_no_membership_issues_one_checkout_request(self, controller, platform):
        platform.respond("POST", CHECKOUT, json_body=CHECKOUT_OK)
        plan = await controller.find_plan("gold-monthly")

        result = await controller.attempt_subscribe(plan)

        assert result.decision == SubscriptionDecision.PROCEED
        assert result.checkout_url == "https://checkout.test/c/cs_1"
        assert result.is_plan_switch is False
        posts = platform.calls("POST", CHECKOUT)
        assert len(posts) == 1
        body = platform.body(posts[0])
        assert body["plan_id"] == "gold-monthly"
        assert body["success_url"] == controller.success_url
        assert body["cancel_url"] == controller.cancel_url
        assert "plan_switch" not in body
        assert controller.pending_switch is None

    @pytest.mark.parametrize("status", ["cancelled", "past_due", "unpaid", "incomplete"])
    async def test_inactive_membership_never_asks_for_confirmation(self, controller, platform, status):
        with_membership(platform, plan_id="bronze-monthly", status=status)
        platform.respond("POST", CHECKOUT, json_body=CHECKOUT_OK)
        plan = await controller.find_plan("gold-monthly")

        result = await controller.attempt_subscribe(plan)

        assert result.decision == SubscriptionDecision.PROCEED
        assert controller.pending_switch is None
        assert len(platform.calls("POST", CHECKOUT)) == 1

    async def test_cancelling_membership_proceeds_to_checkout(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly", cancel_at_period_end=True)
        platform.respond("POST", CHECKOUT, json_body=CHECKOUT_OK)
        plan = await controller.find_plan("gold-monthly")

        result = await controller.attempt_subscribe(plan)

        assert result.decision == SubscriptionDecision.PROCEED
        assert len(platform.calls("POST", CHECKOUT)) == 1

    async def test_same_plan_is_rejected_without_requests(self, controller, platform, notifier):
        with_membership(platform, plan_id="bronze-monthly")
        plan = await controller.find_plan("bronze-monthly")

        result = await controller.attempt_subscribe(plan)

        assert result.decision == SubscriptionDecision.ALREADY_SUBSCRIBED
        assert result.checkout_url is None
        assert platform.mutations() == []
        errors = [n for n in notifier.peek() if n.level == NotificationLevel.ERROR]
        assert [n.kind for n in errors] == ["already_subscribed"]
        assert errors[0].message == "You are already subscribed to this plan."

    async def test_different_plan_waits_for_confirmation(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly")
        platform.respond("POST", CHECKOUT, json_body=CHECKOUT_OK)
        plan = await controller.find_plan("gold-monthly")

        result = await controller.attempt_subscribe(plan)

        assert result.decision == SubscriptionDecision.CONFIRM_SWITCH
        assert result.pending_switch.id == "gold-monthly"
        assert controller.pending_switch.id == "gold-monthly"
        assert platform.mutations() == []

        confirmed = await controller.confirm_switch("gold-monthly")

        assert confirmed.is_plan_switch is True
        assert confirmed.checkout_url == "https://checkout.test/c/cs_1"
        assert controller.pending_switch is None
        posts = platform.calls("POST", CHECKOUT)
        assert len(posts) == 1
        body = platform.body(posts[0])
        assert body["plan_id"] == "gold-monthly"
        assert body["plan_switch"] is True

    async def test_abandoned_switch_never_issues_requests(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly")
        plan = await controller.find_plan("gold-monthly")
        await controller.attempt_subscribe(plan)

        assert controller.abandon_switch() is True
        await controller.select_plan("silver-monthly")
        controller.select_billing_cycle(BillingCycle.ANNUAL)
        await controller.list_plans(refresh=True)
        await controller.refresh_membership()
        controller.clear_selection()

        assert controller.pending_switch is None
        assert platform.mutations() == []
        with pytest.raises(NoPendingSwitchError):
            await controller.confirm_switch()
        assert platform.mutations() == []

    async def test_pending_switch_blocks_another_attempt(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly")
        await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        with pytest.raises(MembershipStateError):
            await controller.attempt_subscribe(await controller.find_plan("silver-monthly"))
        assert controller.pending_switch.id == "gold-monthly"
        assert platform.mutations() == []

    async def test_confirm_for_other_plan_is_rejected(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly")
        await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        with pytest.raises(NoPendingSwitchError):
            await controller.confirm_switch("silver-monthly")
        assert controller.pending_switch.id == "gold-monthly"
        assert platform.mutations() == []

    async def test_uses_selected_plan(self, controller, platform):
        platform.respond("POST", CHECKOUT, json_body=CHECKOUT_OK)
        await controller.select_plan("gold-annual")

        result = await controller.attempt_subscribe()

        assert result.decision == SubscriptionDecision.PROCEED
        assert platform.body(platform.calls("POST", CHECKOUT)[0])["plan_id"] == "gold-annual"
        assert controller.selected_plan is None

    async def test_requires_a_plan(self, controller, platform):
        with pytest.raises(PlanUnavailableError) as exc_info:
            await controller.attempt_subscribe()
        assert exc_info.value.message == "Please select a membership plan first."
        assert platform.requests == []

    async def test_inactive_plan_is_unavailable(self, controller, platform):
        with pytest.raises(PlanUnavailableError):
            await controller.select_plan("retired-monthly")
        assert platform.mutations() == []

    async def test_duplicate_submission_is_rejected(self, controller, platform):
        release = asyncio.Event()

        async def slow_checkout(request):
            await release.wait()
            return httpx.Response(200, json=CHECKOUT_OK)

        platform.route("POST", CHECKOUT, slow_checkout)
        plan = await controller.find_plan("gold-monthly")

        first = asyncio.create_task(controller.attempt_subscribe(plan))
        for _ in range(100):
            if controller.is_in_flight(CommandKind.CHECKOUT):
                break
            await asyncio.sleep(0)
        assert controller.is_in_flight(CommandKind.CHECKOUT)

        with pytest.raises(RequestInFlightError):
            await controller.attempt_subscribe(plan)

        release.set()
        result = await first
        assert result.checkout_url == "https://checkout.test/c/cs_1"
        assert len(platform.calls("POST", CHECKOUT)) == 1
        assert not controller.is_in_flight(CommandKind.CHECKOUT)


@pytest.mark.asyncio
class TestCheckoutFailures:
    async def test_failure_clears_in_flight_and_loading_toast(self, controller, platform, notifier):
        platform.respond(
            "POST", CHECKOUT, status=409,
            json_body={"success": False, "error": "Already subscribed", "code": "ALREADY_SUBSCRIBED_TO_PLAN"},
        )
        await controller.select_plan("gold-monthly")

        with pytest.raises(AlreadySubscribedError):
            await controller.attempt_subscribe()

        assert not controller.is_in_flight(CommandKind.CHECKOUT)
        assert all(n.level != NotificationLevel.LOADING for n in notifier.peek())
        # nothing committed, the user may retry
        assert controller.selected_plan.id == "gold-monthly"

    async def test_conflicting_membership(self, controller, platform):
        platform.respond(
            "POST", CHECKOUT, status=400,
            json_body={"error": "User already has an active membership", "code": "ALREADY_SUBSCRIBED"},
        )
        with pytest.raises(ConflictingMembershipError):
            await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

    async def test_missing_redirect_url(self, controller, platform, notifier):
        platform.respond("POST", CHECKOUT, json_body={"success": True, "data": {"session_id": "cs_1"}})

        with pytest.raises(CheckoutSessionError) as exc_info:
            await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        assert exc_info.value.message == "Failed to create payment session."
        assert not controller.is_in_flight(CommandKind.CHECKOUT)
        assert notifier.peek()[-1].kind == "checkout_failed"

    async def test_server_error_shows_fallback(self, controller, platform):
        platform.respond("POST", CHECKOUT, status=500, json_body={"error": "database exploded"})

        with pytest.raises(CheckoutSessionError) as exc_info:
            await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        assert exc_info.value.message == "Failed to subscribe to membership. Please try again."

    async def test_switch_failure_uses_switch_fallback(self, controller, platform):
        with_membership(platform, plan_id="bronze-monthly")
        platform.respond("POST", CHECKOUT, status=500, json_body={"error": "boom"})
        await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        with pytest.raises(CheckoutSessionError) as exc_info:
            await controller.confirm_switch()

        assert exc_info.value.message == "Failed to switch membership plan. Please try again."
        assert controller.pending_switch is None

    async def test_unreachable_platform(self, controller, platform):
        platform.fail("POST", CHECKOUT)

        with pytest.raises(NetworkError):
            await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))
        assert not controller.is_in_flight(CommandKind.CHECKOUT)


@pytest.mark.asyncio
class TestCancellation:
    async def test_cancel_keeps_previous_record_until_refetch(self, controller, platform, notifier):
        reads = []

        def membership_read(request):
            reads.append(controller.current_membership)
            cancelled = len(reads) > 1
            return httpx.Response(
                200,
                json={"success": True, "data": membership_payload(cancel_at_period_end=cancelled)},
            )

        def cancel(request):
            # the cached record is untouched while the command is in flight
            assert controller.current_membership.cancel_at_period_end is False
            return httpx.Response(200, json={"success": True, "message": "Membership cancelled"})

        platform.route("GET", "/user-membership", membership_read)
        platform.route("POST", "/memberships/cancel", cancel)

        await controller.get_membership()
        membership = await controller.cancel_membership()

        assert len(platform.calls("POST", "/memberships/cancel")) == 1
        assert platform.body(platform.calls("POST", "/memberships/cancel")[0])["cancel_at_period_end"] is True
        # during the re-fetch the previous record was still the one on display
        assert reads[1].status == MembershipStatus.ACTIVE
        assert reads[1].cancel_at_period_end is False
        assert membership.cancel_at_period_end is True
        assert controller.current_membership.cancel_at_period_end is True
        assert not controller.membership_is_stale
        assert notifier.peek()[-1].message == "Your membership will end at the close of the current billing period."

    async def test_cancel_now(self, controller, platform, notifier):
        with_membership(platform)
        platform.respond("POST", "/memberships/cancel", json_body={"success": True})

        await controller.cancel_membership(at_period_end=False, reason="Moving away")

        body = platform.body(platform.calls("POST", "/memberships/cancel")[0])
        assert body == {"cancel_at_period_end": False, "reason": "Moving away"}
        assert notifier.peek()[-1].message == "Your membership has been cancelled."

    async def test_cancel_requires_active_membership(self, controller, platform):
        with pytest.raises(MembershipStateError):
            await controller.cancel_membership()
        assert platform.mutations() == []

    async def test_cancel_rejected_when_already_cancelling(self, controller, platform):
        with_membership(platform, cancel_at_period_end=True)
        with pytest.raises(MembershipStateError):
            await controller.cancel_membership()
        assert platform.mutations() == []

    async def test_failed_cancel_keeps_cache(self, controller, platform):
        with_membership(platform)
        platform.respond("POST", "/memberships/cancel", status=503, json_body={"error": "unavailable"})
        before = await controller.get_membership()

        with pytest.raises(NetworkError) as exc_info:
            await controller.cancel_membership()

        assert exc_info.value.message == "Failed to cancel membership. Please try again."
        assert controller.current_membership is before
        assert not controller.membership_is_stale
        assert not controller.is_in_flight(CommandKind.CANCEL)

    async def test_concurrent_cancel_is_rejected(self, controller, platform):
        with_membership(platform)
        release = asyncio.Event()

        async def slow_cancel(request):
            await release.wait()
            return httpx.Response(200, json={"success": True})

        platform.route("POST", "/memberships/cancel", slow_cancel)
        await controller.get_membership()

        first = asyncio.create_task(controller.cancel_membership())
        for _ in range(100):
            if controller.is_in_flight(CommandKind.CANCEL):
                break
            await asyncio.sleep(0)
        assert controller.is_in_flight(CommandKind.CANCEL)

        with pytest.raises(RequestInFlightError):
            await controller.cancel_membership()

        release.set()
        await first
        assert len(platform.calls("POST", "/memberships/cancel")) == 1
        assert not controller.is_in_flight(CommandKind.CANCEL)


@pytest.mark.asyncio
class TestReactivation:
    async def test_reactivate_posts_then_refetches(self, controller, platform, notifier):
        with_membership(platform, cancel_at_period_end=True)
        platform.respond("POST", "/memberships/reactivate", json_body={"success": True})
        await controller.get_membership()
        platform.requests.clear()

        await controller.reactivate_membership()

        assert [(r.method, r.url.path) for r in platform.requests] == [
            ("POST", "/memberships/reactivate"),
            ("GET", "/user-membership"),
        ]
        assert notifier.peek()[-1].message == "Your membership has been reactivated."

    async def test_reactivate_after_period_elapsed(self, controller, platform):
        with_membership(
            platform,
            cancel_at_period_end=True,
            period_end=datetime.now(timezone.utc) - timedelta(days=1),
        )
        with pytest.raises(MembershipStateError):
            await controller.reactivate_membership()
        assert platform.mutations() == []

    async def test_reactivate_requires_pending_cancellation(self, controller, platform):
        with_membership(platform)
        with pytest.raises(MembershipStateError):
            await controller.reactivate_membership()
        assert platform.mutations() == []

    async def test_concurrent_reactivate_is_rejected(self, controller, platform):
        with_membership(platform, cancel_at_period_end=True)
        release = asyncio.Event()

        async def slow_reactivate(request):
            await release.wait()
            return httpx.Response(200, json={"success": True})

        platform.route("POST", "/memberships/reactivate", slow_reactivate)
        await controller.get_membership()

        first = asyncio.create_task(controller.reactivate_membership())
        for _ in range(100):
            if controller.is_in_flight(CommandKind.REACTIVATE):
                break
            await asyncio.sleep(0)
        assert controller.is_in_flight(CommandKind.REACTIVATE)

        with pytest.raises(RequestInFlightError):
            await controller.reactivate_membership()

        release.set()
        await first
        assert len(platform.calls("POST", "/memberships/reactivate")) == 1
        assert not controller.is_in_flight(CommandKind.REACTIVATE)


@pytest.mark.asyncio
class TestVerifyCheckout:
    async def test_missing_session_id(self, controller, platform):
        with pytest.raises(CheckoutVerificationError) as exc_info:
            await controller.verify_checkout("")
        assert exc_info.value.message == "Invalid payment session."
        assert platform.requests == []

    async def test_failure_points_to_support(self, controller, platform, notifier):
        platform.respond("GET", f"{CHECKOUT}/cs_1", status=500, json_body={"error": "stripe down"})

        with pytest.raises(CheckoutVerificationError) as exc_info:
            await controller.verify_checkout("cs_1")

        assert "contact support" in exc_info.value.message
        assert notifier.peek()[-1].kind == "verification_failed"
        assert not controller.is_in_flight(CommandKind.VERIFY)

    async def test_success_refreshes_membership(self, controller, platform, notifier):
        platform.respond(
            "GET", f"{CHECKOUT}/cs_1",
            json_body={"success": True, "data": {"payment_status": "paid", "membership": membership_payload()}},
        )
        await controller.select_plan("bronze-monthly")

        verification = await controller.verify_checkout("cs_1")

        assert verification.payment_status == "paid"
        assert controller.selected_plan is None
        assert platform.requests[-1].url.path == "/user-membership"
        assert any(n.message == "Welcome to your new membership!" for n in notifier.peek())


@pytest.mark.asyncio
class TestCatalogAndSelection:
    async def test_plans_are_cached(self, controller, platform):
        await controller.list_plans()
        await controller.list_plans()
        assert len(platform.calls("GET", "/membership-plans")) == 1

        await controller.list_plans(refresh=True)
        assert len(platform.calls("GET", "/membership-plans")) == 2

    async def test_plans_expire(self, api, notifier, platform):
        from portal.services.membership_service import MembershipController

        ticks = iter([0.0, 5.0, 20.0, 20.0])
        controller = MembershipController(api, notifier, plans_ttl=10, clock=lambda: next(ticks))

        await controller.list_plans()
        await controller.list_plans()
        assert len(platform.calls("GET", "/membership-plans")) == 1

        await controller.list_plans()
        assert len(platform.calls("GET", "/membership-plans")) == 2

    async def test_catalog_order_and_filter(self, controller):
        plans = await controller.list_plans(billing_cycle=BillingCycle.MONTHLY)
        assert [p.id for p in plans] == ["bronze-monthly", "silver-monthly", "gold-monthly"]

    async def test_billing_cycle_clears_mismatched_selection(self, controller):
        await controller.select_plan("gold-monthly")
        controller.select_billing_cycle(BillingCycle.MONTHLY)
        assert controller.selected_plan.id == "gold-monthly"

        controller.select_billing_cycle(BillingCycle.ANNUAL)
        assert controller.selected_plan is None
        assert controller.billing_cycle == BillingCycle.ANNUAL

    async def test_restore_selection(self, controller, notifier):
        plan = await controller.restore_selection("silver-monthly")
        assert plan.id == "silver-monthly"
        assert notifier.peek()[-1].message == "Welcome back! Your selected plan has been restored."

    async def test_restore_unknown_plan_is_dropped(self, controller):
        assert await controller.restore_selection("no-such-plan") is None
        assert controller.selected_plan is None

    async def test_unreachable_catalog(self, controller, platform):
        platform.fail("GET", "/membership-plans")
        with pytest.raises(NetworkError):
            await controller.list_plans()

    async def test_reset_forgets_everything(self, controller, platform, notifier):
        with_membership(platform, plan_id="bronze-monthly")
        await controller.attempt_subscribe(await controller.find_plan("gold-monthly"))

        controller.reset()

        assert controller.pending_switch is None
        assert controller.current_membership is None
        assert controller.membership_is_stale
        assert notifier.peek() == []
