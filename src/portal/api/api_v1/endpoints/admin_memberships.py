from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query

from portal.core.pbac import require_permission
from portal.schemas.enums import BillingCycle, MembershipStatus, MembershipTier
from portal.schemas.membership import (
    MembershipFilters,
    MembershipList,
    MembershipStats,
    MembershipStatusUpdate,
)
from portal.services.session_registry import MembershipSession

router = APIRouter()

Reader = Annotated[MembershipSession, Depends(require_permission("read", "memberships"))]
Editor = Annotated[MembershipSession, Depends(require_permission("update", "memberships"))]
StatsReader = Annotated[MembershipSession, Depends(require_permission("read", "membership_stats"))]


@router.get("/stats", response_model=MembershipStats)
async def read_stats(session: StatsReader, refresh: bool = False) -> MembershipStats:
    """Get membership statistics."""
    return await session.admin.get_stats(refresh=refresh)


@router.get("", response_model=MembershipList)
async def read_memberships(
    session: Reader,
    status: Optional[List[MembershipStatus]] = Query(default=None),
    tier: Optional[List[MembershipTier]] = Query(default=None),
    billing_cycle: Optional[List[BillingCycle]] = Query(default=None),
    search: Optional[str] = None,
    page: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    sort_order: Optional[str] = Query(default=None, alias="sortOrder", pattern="^(asc|desc)$"),
) -> MembershipList:
    """List memberships with filters."""
    filters = MembershipFilters(
        status=status,
        tier=tier,
        billing_cycle=billing_cycle,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return await session.admin.list_memberships(filters)


@router.put("/{membership_id}/status", response_model=MembershipList)
async def update_membership_status(
    membership_id: str, update: MembershipStatusUpdate, session: Editor
) -> MembershipList:
    """Set a membership's status."""
    return await session.admin.update_status(membership_id, update)


@router.post("/{membership_id}/cancel", response_model=MembershipList)
async def cancel_membership(
    membership_id: str, session: Editor, cancel_at_period_end: bool = True
) -> MembershipList:
    """Cancel a member's membership."""
    return await session.admin.cancel(membership_id, at_period_end=cancel_at_period_end)


@router.post("/{membership_id}/reactivate", response_model=MembershipList)
async def reactivate_membership(membership_id: str, session: Editor) -> MembershipList:
    """Reactivate a member's membership."""
    return await session.admin.reactivate(membership_id)
