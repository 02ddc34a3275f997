"""Common test fixtures.

The platform API is replaced by ``FakePlatform``, an ``httpx.MockTransport``
handler that records every request and answers from a route table.
"""
import os

import httpx
import pytest

os.environ.setdefault("JWT_SECRET", "test-secret")

from portal.clients.platform_api import PlatformAPIClient
from portal.services.membership_service import MembershipController
from portal.services.notifier import Notifier
from tests.helpers import DEFAULT_PLANS, PLATFORM_URL, FakePlatform


@pytest.fixture
def platform() -> FakePlatform:
    fake = FakePlatform()
    fake.respond("GET", "/membership-plans", json_body={"success": True, "data": DEFAULT_PLANS})
    fake.respond("GET", "/user-membership", status=404, json_body={"error": "No membership found"})
    return fake


@pytest.fixture
async def http(platform):
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(platform), base_url=PLATFORM_URL
    ) as client:
        yield client


@pytest.fixture
def api(http) -> PlatformAPIClient:
    return PlatformAPIClient(http, access_token="test-token")


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def controller(api, notifier) -> MembershipController:
    return MembershipController(
        api,
        notifier,
        success_url="http://portal.test/membership/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="http://portal.test/membership",
    )
