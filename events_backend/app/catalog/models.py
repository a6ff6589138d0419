"""Domain models for the plan catalog."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.exceptions import InvalidPlanConfiguration

DEFAULT_SUBSCRIPTION_DURATION_DAYS = 30
DEFAULT_PACKAGE_DURATION_DAYS = 365


class PlanKind(str, Enum):
    """Kinds of purchasable plans."""

    SUBSCRIPTION = "subscription"
    PACKAGE = "package"


class BillingCycle(str, Enum):
    """Recurring billing frequency for subscription plans."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Plan(BaseModel):
    """Immutable template from which user grants are instantiated."""

    id: Optional[int] = None
    kind: PlanKind
    name: str = Field(min_length=1, description="Canonical, unique plan name")
    display_name: str = ""
    description: str = ""
    price: Decimal
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    billing_cycle: Optional[BillingCycle] = None
    weekly_limit: Optional[int] = None
    monthly_limit: Optional[int] = None
    total_credits: Optional[int] = None
    duration_days: Optional[int] = None
    is_active: bool = True
    sort_order: int = 0
    metadata: Any = Field(default_factory=dict)
    external_price_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def is_subscription(self) -> bool:
        return self.kind == PlanKind.SUBSCRIPTION

    @property
    def is_package(self) -> bool:
        return self.kind == PlanKind.PACKAGE

    @property
    def effective_duration_days(self) -> int:
        if self.duration_days is not None:
            return self.duration_days
        if self.is_subscription:
            return DEFAULT_SUBSCRIPTION_DURATION_DAYS
        return DEFAULT_PACKAGE_DURATION_DAYS

    def metadata_dict(self) -> Dict[str, Any]:
        """Return metadata as a dictionary, decoding JSON text when needed."""

        if isinstance(self.metadata, dict):
            return dict(self.metadata)
        return json.loads(self.metadata)

    def validated(self) -> "Plan":
        """Return the plan with kind defaults applied, raising on bad field combinations."""

        def _fail(message: str, field: str) -> None:
            raise InvalidPlanConfiguration(message, detail={"plan": self.name, "field": field})

        if self.price < 0:
            _fail("Price cannot be negative", "price")

        if self.duration_days is not None and self.duration_days <= 0:
            _fail("Duration must be a positive number of days", "duration_days")

        if self.is_subscription:
            if self.weekly_limit is None or self.weekly_limit <= 0:
                _fail("Weekly limit is required for subscriptions", "weekly_limit")
            if self.monthly_limit is None or self.monthly_limit <= 0:
                _fail("Monthly limit is required for subscriptions", "monthly_limit")
            if self.total_credits is not None:
                _fail("Total credits must not be set for subscriptions", "total_credits")
        else:
            if self.total_credits is None or self.total_credits <= 0:
                _fail("Total credits is required for packages", "total_credits")
            if self.weekly_limit is not None or self.monthly_limit is not None:
                _fail("Weekly/monthly limits must not be set for packages", "weekly_limit")
            if self.billing_cycle is not None:
                _fail("Billing cycle must not be set for packages", "billing_cycle")

        metadata = self.metadata
        if isinstance(metadata, (str, bytes)):
            try:
                metadata = json.loads(metadata or "{}")
            except ValueError:
                _fail("Invalid JSON format in metadata", "metadata")
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, dict):
            _fail("Metadata must be a JSON object", "metadata")

        return self.model_copy(
            update={
                "duration_days": self.effective_duration_days,
                "metadata": metadata,
            }
        )


__all__ = [
    "BillingCycle",
    "DEFAULT_PACKAGE_DURATION_DAYS",
    "DEFAULT_SUBSCRIPTION_DURATION_DAYS",
    "Plan",
    "PlanKind",
]
