from typing import Optional

from fastapi import APIRouter, Header, HTTPException, status

from portal.api.deps import CurrentSession, Registry
from portal.schemas.enums import BillingCycle
from portal.schemas.portal import (
    CancelRequest,
    CheckoutVerificationResponse,
    ConfirmSwitchRequest,
    MembershipStateResponse,
    PlansResponse,
    SelectionRequest,
    SelectionResponse,
    StashSelectionRequest,
    SubscribeRequest,
    SubscribeResponse,
)
from portal.services import membership_rules
from portal.services.membership_service import MembershipController, SubscribeResult
from portal.services.session_registry import MembershipSession

router = APIRouter()


def _membership_state(session: MembershipSession, membership) -> MembershipStateResponse:
    controller = session.controller
    return MembershipStateResponse(
        membership=membership,
        has_active_membership=membership_rules.has_active_membership(membership),
        current_tier=membership_rules.current_tier(membership),
        can_upgrade=membership_rules.can_upgrade(membership),
        can_cancel=membership_rules.can_cancel(membership),
        can_reactivate=membership_rules.can_reactivate(membership, controller.now()),
        notifications=session.notifier.drain(),
    )


def _selection_state(session: MembershipSession) -> SelectionResponse:
    controller: MembershipController = session.controller
    return SelectionResponse(
        selected_plan=controller.selected_plan,
        billing_cycle=controller.billing_cycle,
        pending_switch=controller.pending_switch,
        notifications=session.notifier.drain(),
    )


def _subscribe_response(session: MembershipSession, result: SubscribeResult) -> SubscribeResponse:
    return SubscribeResponse(
        decision=result.decision,
        checkout_url=result.checkout_url,
        is_plan_switch=result.is_plan_switch,
        pending_switch=result.pending_switch,
        notifications=session.notifier.drain(),
    )


@router.get("/plans", response_model=PlansResponse)
async def read_plans(
    session: CurrentSession,
    billing_cycle: Optional[BillingCycle] = None,
    refresh: bool = False,
) -> PlansResponse:
    """Get the active membership plans."""
    plans = await session.controller.list_plans(billing_cycle=billing_cycle, refresh=refresh)
    return PlansResponse(plans=plans, notifications=session.notifier.drain())


@router.get("/me", response_model=MembershipStateResponse)
async def read_my_membership(session: CurrentSession, refresh: bool = False) -> MembershipStateResponse:
    """Get the current user's membership."""
    if refresh:
        membership = await session.controller.refresh_membership()
    else:
        membership = await session.controller.get_membership()
    return _membership_state(session, membership)


@router.get("/selection", response_model=SelectionResponse)
async def read_selection(session: CurrentSession) -> SelectionResponse:
    """Get the locally selected plan and any switch waiting for confirmation."""
    return _selection_state(session)


@router.put("/selection", response_model=SelectionResponse)
async def update_selection(selection: SelectionRequest, session: CurrentSession) -> SelectionResponse:
    """Select a plan and/or a billing cycle."""
    if selection.billing_cycle is not None:
        session.controller.select_billing_cycle(selection.billing_cycle)
    if selection.plan_id is not None:
        await session.controller.select_plan(selection.plan_id)
    return _selection_state(session)


@router.delete("/selection", response_model=SelectionResponse)
async def clear_selection(session: CurrentSession) -> SelectionResponse:
    """Discard the selected plan."""
    session.controller.clear_selection()
    return _selection_state(session)


@router.post("/selection/stash", status_code=status.HTTP_202_ACCEPTED)
async def stash_selection(
    stash: StashSelectionRequest,
    registry: Registry,
    anonymous_id: Optional[str] = Header(default=None, alias="X-Anonymous-ID"),
) -> dict:
    """Remember a plan picked before logging in; restored on the first authenticated call."""
    if not anonymous_id:
        raise HTTPException(status_code=400, detail="X-Anonymous-ID header is required")
    registry.stash_selection(anonymous_id, stash.plan_id)
    return {"message": "Please log in to subscribe to a membership plan"}


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(request: SubscribeRequest, session: CurrentSession) -> SubscribeResponse:
    """Subscribe to a plan, or learn why a confirmation step is needed."""
    controller = session.controller
    plan = await controller.find_plan(request.plan_id) if request.plan_id else None
    result = await controller.attempt_subscribe(plan)
    return _subscribe_response(session, result)


@router.post("/switch/confirm", response_model=SubscribeResponse)
async def confirm_switch(request: ConfirmSwitchRequest, session: CurrentSession) -> SubscribeResponse:
    """Confirm the pending plan switch and start its checkout."""
    result = await session.controller.confirm_switch(request.plan_id)
    return _subscribe_response(session, result)


@router.delete("/switch", response_model=SelectionResponse)
async def abandon_switch(session: CurrentSession) -> SelectionResponse:
    """Dismiss the pending plan switch."""
    session.controller.abandon_switch()
    return _selection_state(session)


@router.post("/cancel", response_model=MembershipStateResponse)
async def cancel_membership(request: CancelRequest, session: CurrentSession) -> MembershipStateResponse:
    """Cancel the membership, at period end unless told otherwise."""
    membership = await session.controller.cancel_membership(
        at_period_end=request.cancel_at_period_end, reason=request.reason
    )
    return _membership_state(session, membership)


@router.post("/reactivate", response_model=MembershipStateResponse)
async def reactivate_membership(session: CurrentSession) -> MembershipStateResponse:
    """Undo a pending cancellation."""
    membership = await session.controller.reactivate_membership()
    return _membership_state(session, membership)


@router.get("/checkout/{session_id}", response_model=CheckoutVerificationResponse)
async def verify_checkout(session_id: str, session: CurrentSession) -> CheckoutVerificationResponse:
    """Confirm a checkout session after the payment redirect."""
    verification = await session.controller.verify_checkout(session_id)
    return CheckoutVerificationResponse(
        verification=verification, notifications=session.notifier.drain()
    )
