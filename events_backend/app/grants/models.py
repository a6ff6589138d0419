"""Domain models for user-owned entitlement grants."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..catalog.models import Plan, PlanKind


class GrantStatus(str, Enum):
    """Lifecycle status of a grant."""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({GrantStatus.CANCELLED, GrantStatus.EXPIRED})


def new_grant_id() -> str:
    return f"grt_{uuid4().hex}"


class GrantBase(BaseModel):
    """Fields shared by every grant variant."""

    id: str = Field(default_factory=new_grant_id)
    user_id: str
    plan_id: Optional[int] = None
    plan_name: str
    price: Decimal = Decimal("0")
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    status: GrantStatus = GrantStatus.PENDING
    started_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    external_payment_ref: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_active_at(self, now: datetime) -> bool:
        """Return ``True`` when the grant is active and not past its expiry."""

        if self.status != GrantStatus.ACTIVE:
            return False
        return self.expired_at is None or self.expired_at > now


class SubscriptionGrant(GrantBase):
    """Time-windowed allowance with weekly and monthly counters."""

    kind: Literal["subscription"] = "subscription"
    weekly_limit: int = Field(gt=0)
    weekly_used: int = Field(default=0, ge=0)
    monthly_limit: int = Field(gt=0)
    monthly_used: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_usage(self) -> "SubscriptionGrant":
        if self.weekly_used > self.weekly_limit:
            raise ValueError("weekly_used cannot exceed weekly_limit")
        if self.monthly_used > self.monthly_limit:
            raise ValueError("monthly_used cannot exceed monthly_limit")
        return self

    @property
    def weekly_remaining(self) -> int:
        return self.weekly_limit - self.weekly_used

    @property
    def monthly_remaining(self) -> int:
        return self.monthly_limit - self.monthly_used


class PackageGrant(GrantBase):
    """Fixed pool of publication credits."""

    kind: Literal["package"] = "package"
    total_credits: int = Field(gt=0)
    used_credits: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_usage(self) -> "PackageGrant":
        if self.used_credits > self.total_credits:
            raise ValueError("used_credits cannot exceed total_credits")
        return self

    @property
    def credits_remaining(self) -> int:
        return self.total_credits - self.used_credits


Grant = Annotated[Union[SubscriptionGrant, PackageGrant], Field(discriminator="kind")]


def grant_from_plan(
    plan: Plan,
    *,
    user_id: str,
    now: datetime,
    external_payment_ref: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Union[SubscriptionGrant, PackageGrant]:
    """Instantiate a pending grant from a plan template, snapshotting its terms."""

    common = dict(
        user_id=user_id,
        plan_id=plan.id,
        plan_name=plan.name,
        price=plan.price,
        currency=plan.currency,
        status=GrantStatus.PENDING,
        expired_at=now + timedelta(days=plan.effective_duration_days),
        external_payment_ref=external_payment_ref,
        metadata=metadata or {},
        created_at=now,
        updated_at=now,
    )
    if plan.kind == PlanKind.SUBSCRIPTION:
        return SubscriptionGrant(
            weekly_limit=plan.weekly_limit,
            monthly_limit=plan.monthly_limit,
            **common,
        )
    return PackageGrant(total_credits=plan.total_credits, **common)


class PaymentOutcome(str, Enum):
    """Settlement outcomes delivered by the payment collaborator."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentEvent(BaseModel):
    """Asynchronous settlement notification keyed by the provider reference."""

    external_ref: str = Field(min_length=1)
    outcome: PaymentOutcome
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PaymentEventStatus(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    UNKNOWN_REFERENCE = "unknown_reference"


class PaymentEventResult(BaseModel):
    """What applying a payment event did to the referenced grant."""

    status: PaymentEventStatus
    grant_id: Optional[str] = None
    grant_status: Optional[GrantStatus] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GrantAuditEventType(str, Enum):
    """Audit event categories emitted by the entitlement engine."""

    GRANT_CREATED = "grant_created"
    GRANT_CONSUMED = "grant_consumed"
    GRANT_ACTIVATED = "grant_activated"
    GRANT_CANCELLED = "grant_cancelled"
    GRANTS_EXPIRED = "grants_expired"
    WEEKLY_USAGE_RESET = "weekly_usage_reset"
    MONTHLY_USAGE_RESET = "monthly_usage_reset"
    PAYMENT_EVENT_IGNORED = "payment_event_ignored"


class GrantAuditEvent(BaseModel):
    """Structured audit event for a grant state change."""

    event_type: GrantAuditEventType
    grant_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PurchaseResult(BaseModel):
    """Pending grant plus the provider reference the client completes payment with."""

    grant: Grant
    payment_ref: str
    amount: Decimal
    currency: str
    client_secret: Optional[str] = None
    requires_action: bool = False

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GrantHistoryPage(BaseModel):
    grants: List[Grant]
    total: int
    limit: int
    offset: int

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GrantTotals(BaseModel):
    """Per-user aggregates computed by the grant store."""

    total_subscriptions: int = 0
    active_subscriptions: int = 0
    total_packages: int = 0
    active_packages: int = 0
    total_spent: Decimal = Decimal("0")
    credits_used: int = 0
    last_payment_at: Optional[datetime] = None
    next_billing_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class UsageStats(BaseModel):
    """Grant counts, spend and remaining allowance for one user."""

    total_subscriptions: int = 0
    active_subscriptions: int = 0
    total_packages: int = 0
    active_packages: int = 0
    total_spent: Decimal = Decimal("0")
    events_published: int = 0
    events_remaining: int = 0
    current_period_usage: int = 0
    last_payment_at: Optional[datetime] = None
    next_billing_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "Grant",
    "GrantAuditEvent",
    "GrantAuditEventType",
    "GrantBase",
    "GrantHistoryPage",
    "GrantStatus",
    "GrantTotals",
    "PackageGrant",
    "PaymentEvent",
    "PaymentEventResult",
    "PaymentEventStatus",
    "PaymentOutcome",
    "PurchaseResult",
    "SubscriptionGrant",
    "TERMINAL_STATUSES",
    "UsageStats",
    "grant_from_plan",
    "new_grant_id",
]
