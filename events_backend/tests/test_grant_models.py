from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import TypeAdapter, ValidationError

from events_backend.app.catalog.models import Plan, PlanKind
from events_backend.app.grants.models import (
    Grant,
    GrantStatus,
    PackageGrant,
    SubscriptionGrant,
    grant_from_plan,
)

NOW = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)


def test_grant_from_subscription_plan_snapshots_terms():
    plan = Plan(
        id=2,
        kind=PlanKind.SUBSCRIPTION,
        name="plus",
        price=Decimal("130.00"),
        currency="eur",
        weekly_limit=2,
        monthly_limit=8,
    )

    grant = grant_from_plan(plan, user_id="user-1", now=NOW, external_payment_ref="pi_1")

    assert isinstance(grant, SubscriptionGrant)
    assert grant.status == GrantStatus.PENDING
    assert grant.started_at is None
    assert grant.expired_at == NOW + timedelta(days=30)
    assert (grant.weekly_limit, grant.weekly_used) == (2, 0)
    assert (grant.monthly_limit, grant.monthly_used) == (8, 0)
    assert grant.price == Decimal("130.00")
    assert grant.currency == "EUR"
    assert grant.id.startswith("grt_")


def test_grant_from_package_plan_uses_plan_duration():
    plan = Plan(id=5, kind=PlanKind.PACKAGE, name="5_events", price=Decimal("129.99"), total_credits=5, duration_days=90)

    grant = grant_from_plan(plan, user_id="user-1", now=NOW)

    assert isinstance(grant, PackageGrant)
    assert grant.credits_remaining == 5
    assert grant.expired_at == NOW + timedelta(days=90)


def test_counters_cannot_exceed_limits():
    with pytest.raises(ValidationError):
        PackageGrant(user_id="u", plan_name="p", total_credits=3, used_credits=4)
    with pytest.raises(ValidationError):
        SubscriptionGrant(user_id="u", plan_name="p", weekly_limit=1, weekly_used=2, monthly_limit=4)
    with pytest.raises(ValidationError):
        PackageGrant(user_id="u", plan_name="p", total_credits=0)


def test_grant_union_dispatches_on_kind():
    adapter = TypeAdapter(Grant)

    package = adapter.validate_python(
        {"kind": "package", "user_id": "u", "plan_name": "single", "total_credits": 1}
    )
    subscription = adapter.validate_python(
        {"kind": "subscription", "user_id": "u", "plan_name": "pro", "weekly_limit": 3, "monthly_limit": 12}
    )

    assert isinstance(package, PackageGrant)
    assert isinstance(subscription, SubscriptionGrant)


def test_is_active_at_respects_status_and_expiry():
    grant = PackageGrant(
        user_id="u",
        plan_name="single",
        total_credits=1,
        status=GrantStatus.ACTIVE,
        expired_at=NOW,
    )

    assert grant.is_active_at(NOW - timedelta(seconds=1))
    assert not grant.is_active_at(NOW)
    assert not grant.model_copy(update={"status": GrantStatus.CANCELLED}).is_active_at(NOW - timedelta(days=1))
    assert grant.model_copy(update={"status": GrantStatus.EXPIRED}).is_terminal
