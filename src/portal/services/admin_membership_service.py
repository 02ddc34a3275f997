"""
Admin-side membership management: statistics, filtered listing and the
status/cancel/reactivate commands on other users' memberships.

Same discipline as the member flow: one outstanding command per membership,
no local edits, and a fresh listing/statistics read after every command.
"""
import logging
from contextlib import contextmanager
from typing import Optional, Set

from portal.clients.platform_api import PlatformAPIClient
from portal.core.exceptions import PlatformAPIError, RequestInFlightError
from portal.schemas.membership import (
    CancellationRequest,
    MembershipFilters,
    MembershipList,
    MembershipStats,
    MembershipStatusUpdate,
)
from portal.services.error_classifier import classify_command_error, classify_read_error
from portal.services.notifier import Notifier

logger = logging.getLogger(__name__)

ADMIN_CANCELLATION_REASON = "Admin cancellation"


class AdminMembershipService:
    def __init__(self, api: PlatformAPIClient, notifier: Optional[Notifier] = None):
        self.api = api
        self.notifier = notifier or Notifier()
        self._in_flight: Set[str] = set()
        self._last_filters: MembershipFilters = MembershipFilters()
        self._stats: Optional[MembershipStats] = None

    def is_in_flight(self, membership_id: str) -> bool:
        return membership_id in self._in_flight

    @contextmanager
    def _command(self, membership_id: str):
        if membership_id in self._in_flight:
            raise RequestInFlightError()
        self._in_flight.add(membership_id)
        try:
            yield
        finally:
            self._in_flight.discard(membership_id)

    async def get_stats(self, refresh: bool = False) -> MembershipStats:
        if self._stats is not None and not refresh:
            return self._stats
        try:
            self._stats = await self.api.get_membership_stats()
        except PlatformAPIError as e:
            error = classify_read_error(e)
            self.notifier.error(error.message, kind=error.kind)
            raise error from e
        return self._stats

    async def list_memberships(self, filters: Optional[MembershipFilters] = None) -> MembershipList:
        filters = filters or MembershipFilters()
        try:
            listing = await self.api.list_memberships(filters)
        except PlatformAPIError as e:
            error = classify_read_error(e)
            self.notifier.error(error.message, kind=error.kind)
            raise error from e
        self._last_filters = filters
        return listing

    async def _refresh(self) -> MembershipList:
        self._stats = None
        listing = await self.list_memberships(self._last_filters)
        await self.get_stats(refresh=True)
        return listing

    async def _run(self, membership_id: str, action: str, call, success_message: str) -> MembershipList:
        with self._command(membership_id):
            try:
                await call()
            except PlatformAPIError as e:
                error = classify_command_error(e, f"Failed to {action} membership. Please try again.")
                self.notifier.error(error.message, kind=error.kind)
                logger.warning(f"Admin {action} of membership {membership_id} failed: {e!r}")
                raise error from e
            logger.info(f"Admin {action} of membership {membership_id} acknowledged")
            self.notifier.success(success_message)
            return await self._refresh()

    async def update_status(self, membership_id: str, update: MembershipStatusUpdate) -> MembershipList:
        return await self._run(
            membership_id,
            "update",
            lambda: self.api.update_membership_status(membership_id, update),
            "Membership status updated.",
        )

    async def cancel(self, membership_id: str, at_period_end: bool = True) -> MembershipList:
        request = CancellationRequest(
            reason=ADMIN_CANCELLATION_REASON, cancel_at_period_end=at_period_end
        )
        return await self._run(
            membership_id,
            "cancel",
            lambda: self.api.admin_cancel_membership(membership_id, request),
            "Membership cancelled.",
        )

    async def reactivate(self, membership_id: str) -> MembershipList:
        return await self._run(
            membership_id,
            "reactivate",
            lambda: self.api.admin_reactivate_membership(membership_id),
            "Membership reactivated.",
        )
