"""Test helpers: a recording fake of the platform API and payload builders."""
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from jose import jwt

PLATFORM_URL = "http://platform.test"


class FakePlatform:
    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def respond(self, method: str, path: str, status: int = 200, json_body: Any = None) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if json_body is None:
                return httpx.Response(status)
            return httpx.Response(status, json=json_body)

        self._routes[(method, path)] = handler

    def fail(self, method: str, path: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self._routes[(method, path)] = handler

    def route(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "Not found"})
        return handler(request)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (path is None or r.url.path == path)
        ]

    def mutations(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method != "GET"]

    def body(self, request: httpx.Request) -> dict:
        return json.loads(request.content)


def plan_payload(
    plan_id: str = "gold-monthly",
    tier: str = "gold",
    billing_cycle: str = "monthly",
    amount: Any = 100,
    is_active: bool = True,
) -> dict:
    return {
        "id": plan_id,
        "name": f"{tier.title()} {billing_cycle.title()}",
        "tier": tier,
        "billing_cycle": billing_cycle,
        "amount": amount,
        "currency": "usd",
        "benefits": ["Supporter badge"],
        "is_active": is_active,
    }


def membership_payload(
    plan_id: str = "bronze-monthly",
    status: str = "active",
    cancel_at_period_end: bool = False,
    period_end: Optional[datetime] = None,
    tier: str = "bronze",
) -> dict:
    period_end = period_end or datetime.now(timezone.utc) + timedelta(days=20)
    return {
        "id": "membership-1",
        "user_id": "user-1",
        "membership_plan_id": plan_id,
        "stripe_subscription_id": "sub_123",
        "status": status,
        "current_period_start": (period_end - timedelta(days=30)).isoformat(),
        "current_period_end": period_end.isoformat(),
        "cancel_at_period_end": cancel_at_period_end,
        "membership_plans": plan_payload(plan_id=plan_id, tier=tier),
    }


DEFAULT_PLANS = [
    plan_payload("bronze-monthly", "bronze", "monthly", 10),
    plan_payload("gold-monthly", "gold", "monthly", 100),
    plan_payload("gold-annual", "gold", "annual", 1000),
    plan_payload("silver-monthly", "silver", "monthly", 50),
    plan_payload("retired-monthly", "platinum", "monthly", 500, is_active=False),
]


def make_token(
    sub: str = "user-1",
    roles: Optional[List[str]] = None,
    expires_in: int = 3600,
    secret: str = "test-secret",
) -> str:
    claims = {"sub": sub, "exp": int(time.time()) + expires_in}
    if roles is not None:
        claims["roles"] = roles
    return jwt.encode(claims, secret, algorithm="HS256")
