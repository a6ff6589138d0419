"""Plan catalog: purchasable subscription and package templates."""

from .defaults import DEFAULT_PLANS
from .models import (
    DEFAULT_PACKAGE_DURATION_DAYS,
    DEFAULT_SUBSCRIPTION_DURATION_DAYS,
    BillingCycle,
    Plan,
    PlanKind,
)
from .service import PlanCatalog, PlanRepository

__all__ = [
    "BillingCycle",
    "DEFAULT_PACKAGE_DURATION_DAYS",
    "DEFAULT_PLANS",
    "DEFAULT_SUBSCRIPTION_DURATION_DAYS",
    "Plan",
    "PlanCatalog",
    "PlanKind",
    "PlanRepository",
]
