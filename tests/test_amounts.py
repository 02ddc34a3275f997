"""Tests for platform amount parsing."""
from decimal import Decimal

import pytest

from portal.schemas.membership import MembershipPlan
from portal.utils.amounts import parse_amount
from tests.helpers import plan_payload


@pytest.mark.parametrize(
    "raw, expected",
    [
        (100, Decimal("100")),
        (19.99, Decimal("19.99")),
        ("25.50", Decimal("25.50")),
        (" 7 ", Decimal("7")),
        (Decimal("3.10"), Decimal("3.10")),
        ({"s": 1, "e": 2, "d": [100]}, Decimal("100")),
        ({"s": 1, "e": 1, "d": [20, 5000000]}, Decimal("20.5")),
        ({"s": 1, "e": -2, "d": [500000]}, Decimal("0.05")),
        ({"s": 1, "e": 6, "d": [1234567, 8910000]}, Decimal("1234567.891")),
        ({"s": -1, "e": 0, "d": [4, 2500000]}, Decimal("-4.25")),
    ],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        None,
        True,
        "twelve",
        "NaN",
        float("inf"),
        [1, 2],
        {"s": 1, "e": 0},
        {"s": 0, "e": 0, "d": [1]},
        {"s": 1, "e": 0, "d": []},
        {"s": 1, "e": 0, "d": ["1"]},
    ],
)
def test_parse_amount_rejects(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_plan_amount_is_parsed_at_the_boundary():
    plan = MembershipPlan.model_validate(plan_payload(amount={"s": 1, "e": 1, "d": [49, 9900000]}))
    assert isinstance(plan.amount, Decimal)
    assert plan.amount == Decimal("49.99")


def test_plan_rejects_malformed_amount():
    with pytest.raises(ValueError):
        MembershipPlan.model_validate(plan_payload(amount="free"))
