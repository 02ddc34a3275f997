"""
Client for the donation platform REST API.

One ``PlatformAPIClient`` exists per user session. It shares the process-wide
``httpx.AsyncClient`` (created in the application lifespan) and adds the
session's bearer token to every request.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from portal.core.config import settings
from portal.core.exceptions import PlatformAPIError
from portal.schemas.base import Envelope
from portal.schemas.membership import (
    CancellationRequest,
    CheckoutSession,
    CheckoutSessionRequest,
    CheckoutVerification,
    MembershipFilters,
    MembershipList,
    MembershipPlan,
    MembershipStats,
    MembershipStatusUpdate,
    UserMembership,
)

logger = logging.getLogger(__name__)

MEMBERSHIP_ENDPOINTS = {
    "plans": "/membership-plans",
    "my_membership": "/user-membership",
    "checkout_session": "/payments/checkout-session",
    "cancel": "/memberships/cancel",
    "reactivate": "/memberships/reactivate",
    "admin_stats": "/memberships/admin/stats",
    "admin_memberships": "/memberships/admin/memberships",
}


def create_http_client() -> httpx.AsyncClient:
    """Create the shared HTTP client used for all platform calls."""
    return httpx.AsyncClient(
        base_url=settings.PLATFORM_API_URL,
        timeout=settings.PLATFORM_API_TIMEOUT,
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )


def _error_from_response(response: httpx.Response) -> PlatformAPIError:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message = None
    code = None
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message") or payload.get("detail")
        code = payload.get("code")
    if not isinstance(message, str) or not message:
        message = f"Platform API responded with status {response.status_code}"

    return PlatformAPIError(message, status_code=response.status_code, code=code, payload=payload)


def _unwrap(payload: Any) -> Any:
    """Strip the ``{success, data}`` envelope when the platform sends one."""
    if isinstance(payload, dict) and "success" in payload and isinstance(payload["success"], bool):
        envelope = Envelope[Any].model_validate(payload)
        if not envelope.success:
            raise PlatformAPIError(
                envelope.error or "Platform API reported a failure",
                status_code=200,
                code=envelope.code,
                payload=payload,
            )
        if "data" in payload:
            return envelope.data
        # some acknowledgements carry fields next to ``success`` instead of ``data``
        return {k: v for k, v in payload.items() if k != "success"}
    return payload


class PlatformAPIClient:
    """Thin, typed wrapper over the platform membership endpoints."""

    def __init__(self, http: httpx.AsyncClient, access_token: Optional[str] = None):
        self.http = http
        self.access_token = access_token

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Issue a request and return the decoded body, envelope and all."""
        try:
            response = await self.http.request(
                method, path, json=json, params=params, headers=self._headers()
            )
        except httpx.TransportError as e:
            logger.error(f"Platform API {method} {path} failed: {e!r}")
            raise PlatformAPIError(f"Could not reach the platform API: {e}") from e

        if response.is_error:
            error = _error_from_response(response)
            logger.warning(
                f"Platform API {method} {path} -> {response.status_code} "
                f"(code={error.code}, error={error.message})"
            )
            raise error

        logger.debug(f"Platform API {method} {path} -> {response.status_code}")
        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as e:
            raise PlatformAPIError(
                "Platform API returned a non-JSON body", status_code=response.status_code
            ) from e
        return payload

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return _unwrap(await self._send(method, path, json=json, params=params))

    def _parse(self, model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} payload from platform: {e}")
            raise PlatformAPIError(f"Malformed {model.__name__} payload from platform API") from e

    # ==================== USER ENDPOINTS ====================

    async def list_plans(self) -> List[MembershipPlan]:
        """GET /membership-plans"""
        data = await self._request("GET", MEMBERSHIP_ENDPOINTS["plans"])
        return [self._parse(MembershipPlan, item) for item in (data or [])]

    async def get_user_membership(self) -> Optional[UserMembership]:
        """GET /user-membership. A 404 means the user has no membership."""
        try:
            data = await self._request("GET", MEMBERSHIP_ENDPOINTS["my_membership"])
        except PlatformAPIError as e:
            if e.status_code == 404:
                return None
            raise
        if not data:
            return None
        return self._parse(UserMembership, data)

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        """POST /payments/checkout-session"""
        data = await self._request(
            "POST",
            MEMBERSHIP_ENDPOINTS["checkout_session"],
            json=request.model_dump(exclude_none=True),
        )
        return self._parse(CheckoutSession, data or {})

    async def get_checkout_session(self, session_id: str) -> CheckoutVerification:
        """GET /payments/checkout-session/:session_id"""
        data = await self._request(
            "GET", f"{MEMBERSHIP_ENDPOINTS['checkout_session']}/{session_id}"
        )
        return self._parse(CheckoutVerification, data or {})

    async def cancel_membership(self, request: CancellationRequest) -> Any:
        """POST /memberships/cancel"""
        return await self._request(
            "POST", MEMBERSHIP_ENDPOINTS["cancel"], json=request.model_dump(exclude_none=True)
        )

    async def reactivate_membership(self) -> Any:
        """POST /memberships/reactivate"""
        return await self._request("POST", MEMBERSHIP_ENDPOINTS["reactivate"])

    # ==================== ADMIN ENDPOINTS ====================

    async def get_membership_stats(self) -> MembershipStats:
        data = await self._request("GET", MEMBERSHIP_ENDPOINTS["admin_stats"])
        return self._parse(MembershipStats, data or {})

    async def list_memberships(self, filters: Optional[MembershipFilters] = None) -> MembershipList:
        params = filters.to_query_params() if filters else None
        # the listing keeps pagination next to ``data`` so the envelope stays intact
        payload = await self._send("GET", MEMBERSHIP_ENDPOINTS["admin_memberships"], params=params)
        if isinstance(payload, dict) and payload.get("success") is False:
            raise PlatformAPIError(
                payload.get("error") or "Platform API reported a failure",
                status_code=200,
                code=payload.get("code"),
                payload=payload,
            )
        if isinstance(payload, list):
            payload = {"data": payload}
        return self._parse(MembershipList, payload or {})

    async def update_membership_status(self, membership_id: str, update: MembershipStatusUpdate) -> Any:
        return await self._request(
            "PUT",
            f"{MEMBERSHIP_ENDPOINTS['admin_memberships']}/{membership_id}/status",
            json=update.model_dump(mode="json", exclude_none=True),
        )

    async def admin_cancel_membership(self, membership_id: str, request: CancellationRequest) -> Any:
        return await self._request(
            "POST",
            f"{MEMBERSHIP_ENDPOINTS['admin_memberships']}/{membership_id}/cancel",
            json=request.model_dump(exclude_none=True),
        )

    async def admin_reactivate_membership(self, membership_id: str) -> Any:
        return await self._request(
            "POST", f"{MEMBERSHIP_ENDPOINTS['admin_memberships']}/{membership_id}/reactivate"
        )
