"""Default plan catalog seeded into empty installations."""
from __future__ import annotations

from decimal import Decimal
from typing import Tuple

from .models import BillingCycle, Plan, PlanKind


def _subscription(
    name: str,
    display_name: str,
    description: str,
    price: str,
    *,
    weekly_limit: int,
    monthly_limit: int,
    billing_cycle: BillingCycle = BillingCycle.MONTHLY,
    duration_days: int = 30,
    sort_order: int,
    features: Tuple[str, ...],
    popular: bool = False,
    color: str,
    badge: str | None = None,
) -> Plan:
    metadata = {"features": list(features), "popular": popular, "color": color}
    if badge:
        metadata["badge"] = badge
    return Plan(
        kind=PlanKind.SUBSCRIPTION,
        name=name,
        display_name=display_name,
        description=description,
        price=Decimal(price),
        billing_cycle=billing_cycle,
        weekly_limit=weekly_limit,
        monthly_limit=monthly_limit,
        duration_days=duration_days,
        sort_order=sort_order,
        metadata=metadata,
    )


def _package(
    name: str,
    display_name: str,
    description: str,
    price: str,
    *,
    total_credits: int,
    duration_days: int = 365,
    sort_order: int,
    features: Tuple[str, ...],
    color: str,
    badge: str | None = None,
    is_active: bool = True,
) -> Plan:
    metadata = {"features": list(features), "popular": False, "color": color}
    if badge:
        metadata["badge"] = badge
    return Plan(
        kind=PlanKind.PACKAGE,
        name=name,
        display_name=display_name,
        description=description,
        price=Decimal(price),
        total_credits=total_credits,
        duration_days=duration_days,
        sort_order=sort_order,
        is_active=is_active,
        metadata=metadata,
    )


DEFAULT_PLANS: Tuple[Plan, ...] = (
    _package(
        "trial",
        "Free Trial",
        "Try publishing one event for free",
        "0.00",
        total_credits=1,
        duration_days=30,
        sort_order=0,
        features=("1 event publication", "Valid for 30 days", "No payment required"),
        color="#10B981",
        badge="Free",
    ),
    _subscription(
        "basic",
        "Basic",
        "1 event per week, up to 4 per month",
        "78.00",
        weekly_limit=1,
        monthly_limit=4,
        sort_order=1,
        features=("1 event per week", "Up to 4 events per month", "Standard listing"),
        color="#3B82F6",
    ),
    _subscription(
        "plus",
        "Plus",
        "2 events per week, up to 8 per month",
        "130.00",
        weekly_limit=2,
        monthly_limit=8,
        sort_order=2,
        features=("2 events per week", "Up to 8 events per month", "Priority listing"),
        popular=True,
        color="#8B5CF6",
        badge="Popular",
    ),
    _subscription(
        "pro",
        "Pro",
        "3 events per week, up to 12 per month",
        "156.00",
        weekly_limit=3,
        monthly_limit=12,
        sort_order=3,
        features=("3 events per week", "Up to 12 events per month", "Featured listing"),
        color="#F59E0B",
    ),
    _package(
        "single",
        "Single Event",
        "Publish one event",
        "29.00",
        total_credits=1,
        sort_order=4,
        features=("1 event publication", "Valid for 12 months"),
        color="#6B7280",
    ),
    _package(
        "10_events",
        "10 Events",
        "Bundle of 10 event publications",
        "249.99",
        total_credits=10,
        sort_order=5,
        features=("10 event publications", "Valid for 12 months"),
        color="#0EA5E9",
    ),
    _package(
        "25_events",
        "25 Events",
        "Bundle of 25 event publications",
        "499.99",
        total_credits=25,
        sort_order=6,
        features=("25 event publications", "Valid for 12 months"),
        color="#14B8A6",
        badge="Best value",
    ),
    _package(
        "5_events",
        "5 Events",
        "Bundle of 5 event publications",
        "129.99",
        total_credits=5,
        sort_order=7,
        features=("5 event publications", "Valid for 12 months"),
        color="#22C55E",
    ),
    _package(
        "50_events",
        "50 Events",
        "Bundle of 50 event publications",
        "899.99",
        total_credits=50,
        sort_order=8,
        features=("50 event publications", "Valid for 12 months"),
        color="#EF4444",
    ),
    _subscription(
        "weekly_basic",
        "Weekly Basic",
        "1 event per week, billed weekly",
        "22.00",
        weekly_limit=1,
        monthly_limit=4,
        billing_cycle=BillingCycle.WEEKLY,
        duration_days=7,
        sort_order=9,
        features=("1 event per week", "Billed weekly"),
        color="#60A5FA",
    ),
    _subscription(
        "weekly_plus",
        "Weekly Plus",
        "2 events per week, billed weekly",
        "38.00",
        weekly_limit=2,
        monthly_limit=8,
        billing_cycle=BillingCycle.WEEKLY,
        duration_days=7,
        sort_order=10,
        features=("2 events per week", "Billed weekly"),
        color="#A78BFA",
    ),
    _package(
        "student_5",
        "Student 5 Events",
        "Discounted bundle for students",
        "89.99",
        total_credits=5,
        sort_order=11,
        features=("5 event publications", "Student discount"),
        color="#F472B6",
        is_active=False,
    ),
)


__all__ = ["DEFAULT_PLANS"]
