"""Tests for the static plan entitlement table."""
import pytest

from worldgate.core.errors import ValidationError
from worldgate.features.plans.service import (
    GIB,
    PLAN_ENTITLEMENTS,
    at_or_over,
    exceeds,
    get_plan_entitlement,
    resolve_plan_tier,
)
from worldgate.models.plan import PlanTier, UNLIMITED


def test_basic_plan_ceilings():
    plan = PLAN_ENTITLEMENTS[PlanTier.BASIC]
    assert plan.name == "Basic"
    assert plan.requests_per_month == 1000
    assert plan.requests_per_day == 50
    assert plan.requests_per_minute == 5
    assert plan.storage_limit == 1 * GIB
    assert plan.max_elements == 100
    assert plan.allowed_models == frozenset({"gpt-4o-mini"})


def test_pro_plan_ceilings():
    plan = PLAN_ENTITLEMENTS[PlanTier.PRO]
    assert (plan.requests_per_month, plan.requests_per_day, plan.requests_per_minute) == (20000, 500, 20)
    assert plan.storage_limit == 20 * GIB
    assert plan.max_elements == 2000


def test_enterprise_plan_is_unlimited_where_expected():
    plan = PLAN_ENTITLEMENTS[PlanTier.ENTERPRISE]
    assert plan.requests_per_month == UNLIMITED
    assert plan.requests_per_day == UNLIMITED
    assert plan.requests_per_minute == 60
    assert plan.storage_limit == 200 * GIB
    assert plan.max_elements == UNLIMITED
    assert "claude-3-5-sonnet-20240620" in plan.allowed_models


def test_table_is_read_only():
    with pytest.raises(TypeError):
        PLAN_ENTITLEMENTS[PlanTier.BASIC] = PLAN_ENTITLEMENTS[PlanTier.PRO]


@pytest.mark.parametrize("raw", [None, "", "basic", "BASIC", PlanTier.BASIC])
def test_resolve_defaults_to_basic(raw):
    assert resolve_plan_tier(raw) == PlanTier.BASIC


def test_unknown_tier_rejected():
    with pytest.raises(ValidationError):
        get_plan_entitlement("gold")


def test_ceiling_helpers_honour_unlimited():
    assert at_or_over(5, 5) is True
    assert at_or_over(5, 4) is False
    assert at_or_over(UNLIMITED, 10**12) is False
    assert exceeds(10, 10) is False
    assert exceeds(10, 11) is True
    assert exceeds(UNLIMITED, 10**12) is False
