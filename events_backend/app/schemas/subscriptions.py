"""API schemas for subscription, package and publishing-rights endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..catalog.models import BillingCycle, Plan, PlanKind
from ..entitlements.models import PublishingRights, RestrictionReason
from ..grants.models import (
    GrantHistoryPage,
    GrantStatus,
    PackageGrant,
    PaymentEventResult,
    PaymentEventStatus,
    PaymentOutcome,
    PurchaseResult,
    SubscriptionGrant,
    UsageStats,
)


class PlanResponse(BaseModel):
    id: Optional[int] = None
    kind: PlanKind
    name: str
    display_name: str = Field(alias="displayName")
    description: str
    price: Decimal
    currency: str
    billing_cycle: Optional[BillingCycle] = Field(alias="billingCycle", default=None)
    weekly_limit: Optional[int] = Field(alias="weeklyLimit", default=None)
    monthly_limit: Optional[int] = Field(alias="monthlyLimit", default=None)
    total_credits: Optional[int] = Field(alias="totalCredits", default=None)
    duration_days: Optional[int] = Field(alias="durationDays", default=None)
    sort_order: int = Field(alias="sortOrder", default=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            kind=plan.kind,
            name=plan.name,
            display_name=plan.display_name,
            description=plan.description,
            price=plan.price,
            currency=plan.currency,
            billing_cycle=plan.billing_cycle,
            weekly_limit=plan.weekly_limit,
            monthly_limit=plan.monthly_limit,
            total_credits=plan.total_credits,
            duration_days=plan.effective_duration_days,
            sort_order=plan.sort_order,
            metadata=plan.metadata_dict(),
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]

    model_config = ConfigDict(populate_by_name=True)


class GrantResponse(BaseModel):
    id: str
    kind: PlanKind
    plan_name: str = Field(alias="planName")
    status: GrantStatus
    price: Decimal
    currency: str
    started_at: Optional[datetime] = Field(alias="startedAt", default=None)
    expired_at: Optional[datetime] = Field(alias="expiredAt", default=None)
    weekly_limit: Optional[int] = Field(alias="weeklyLimit", default=None)
    weekly_used: Optional[int] = Field(alias="weeklyUsed", default=None)
    monthly_limit: Optional[int] = Field(alias="monthlyLimit", default=None)
    monthly_used: Optional[int] = Field(alias="monthlyUsed", default=None)
    total_credits: Optional[int] = Field(alias="totalCredits", default=None)
    used_credits: Optional[int] = Field(alias="usedCredits", default=None)
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grant(cls, grant: Union[SubscriptionGrant, PackageGrant]) -> "GrantResponse":
        counters: Dict[str, Any] = {}
        if isinstance(grant, SubscriptionGrant):
            counters = dict(
                weekly_limit=grant.weekly_limit,
                weekly_used=grant.weekly_used,
                monthly_limit=grant.monthly_limit,
                monthly_used=grant.monthly_used,
            )
        else:
            counters = dict(total_credits=grant.total_credits, used_credits=grant.used_credits)
        return cls(
            id=grant.id,
            kind=PlanKind(grant.kind),
            plan_name=grant.plan_name,
            status=grant.status,
            price=grant.price,
            currency=grant.currency,
            started_at=grant.started_at,
            expired_at=grant.expired_at,
            created_at=grant.created_at,
            **counters,
        )


class MyGrantsResponse(BaseModel):
    subscription: Optional[GrantResponse] = None
    packages: List[GrantResponse] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_grants(cls, grants: List[Union[SubscriptionGrant, PackageGrant]]) -> "MyGrantsResponse":
        subscription = next((g for g in grants if isinstance(g, SubscriptionGrant)), None)
        return cls(
            subscription=GrantResponse.from_grant(subscription) if subscription else None,
            packages=[GrantResponse.from_grant(g) for g in grants if isinstance(g, PackageGrant)],
        )


class PublishingRightsResponse(BaseModel):
    can_publish: bool = Field(alias="canPublish")
    restriction_reason: Optional[RestrictionReason] = Field(alias="restrictionReason", default=None)
    weekly_limit: int = Field(alias="weeklyLimit")
    weekly_used: int = Field(alias="weeklyUsed")
    weekly_remaining: int = Field(alias="weeklyRemaining")
    monthly_limit: int = Field(alias="monthlyLimit")
    monthly_used: int = Field(alias="monthlyUsed")
    monthly_remaining: int = Field(alias="monthlyRemaining")
    total_credits: int = Field(alias="totalCredits")
    used_credits: int = Field(alias="usedCredits")
    credits_remaining: int = Field(alias="creditsRemaining")
    selected_grant_id: Optional[str] = Field(alias="selectedGrantId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_rights(cls, rights: PublishingRights) -> "PublishingRightsResponse":
        return cls(
            can_publish=rights.can_publish,
            restriction_reason=rights.restriction_reason,
            weekly_limit=rights.weekly_limit,
            weekly_used=rights.weekly_used,
            weekly_remaining=rights.weekly_remaining,
            monthly_limit=rights.monthly_limit,
            monthly_used=rights.monthly_used,
            monthly_remaining=rights.monthly_remaining,
            total_credits=rights.total_credits,
            used_credits=rights.used_credits,
            credits_remaining=rights.credits_remaining,
            selected_grant_id=rights.selected_grant_id,
        )


class UsageStatsResponse(BaseModel):
    total_subscriptions: int = Field(alias="totalSubscriptions")
    active_subscriptions: int = Field(alias="activeSubscriptions")
    total_packages: int = Field(alias="totalPackages")
    active_packages: int = Field(alias="activePackages")
    total_spent: Decimal = Field(alias="totalSpent")
    events_published: int = Field(alias="eventsPublished")
    events_remaining: int = Field(alias="eventsRemaining")
    current_period_usage: int = Field(alias="currentPeriodUsage")
    last_payment_at: Optional[datetime] = Field(alias="lastPaymentAt", default=None)
    next_billing_at: Optional[datetime] = Field(alias="nextBillingAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_stats(cls, stats: UsageStats) -> "UsageStatsResponse":
        return cls(**stats.model_dump())


class GrantHistoryResponse(BaseModel):
    grants: List[GrantResponse]
    total: int
    limit: int
    offset: int

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_page(cls, page: GrantHistoryPage) -> "GrantHistoryResponse":
        return cls(
            grants=[GrantResponse.from_grant(grant) for grant in page.grants],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )


class PurchaseRequest(BaseModel):
    plan_id: int = Field(alias="planId", gt=0)
    payment_method_id: str = Field(alias="paymentMethodId", min_length=1)
    kind: Optional[PlanKind] = None

    model_config = ConfigDict(populate_by_name=True)


class PurchaseResponse(BaseModel):
    grant_id: str = Field(alias="grantId")
    status: GrantStatus
    payment_intent_id: str = Field(alias="paymentIntentId")
    client_secret: Optional[str] = Field(alias="clientSecret", default=None)
    requires_action: bool = Field(alias="requiresAction", default=False)
    amount: Decimal
    currency: str

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: PurchaseResult) -> "PurchaseResponse":
        return cls(
            grant_id=result.grant.id,
            status=result.grant.status,
            payment_intent_id=result.payment_ref,
            client_secret=result.client_secret,
            requires_action=result.requires_action,
            amount=result.amount,
            currency=result.currency,
        )


class PaymentWebhookPayload(BaseModel):
    external_ref: str = Field(alias="externalRef", min_length=1)
    outcome: PaymentOutcome
    timestamp: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True)


class PaymentWebhookResponse(BaseModel):
    status: PaymentEventStatus
    grant_id: Optional[str] = Field(alias="grantId", default=None)
    grant_status: Optional[GrantStatus] = Field(alias="grantStatus", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: PaymentEventResult) -> "PaymentWebhookResponse":
        return cls(status=result.status, grant_id=result.grant_id, grant_status=result.grant_status)


__all__ = [
    "GrantHistoryResponse",
    "GrantResponse",
    "MyGrantsResponse",
    "PaymentWebhookPayload",
    "PaymentWebhookResponse",
    "PlanListResponse",
    "PlanResponse",
    "PublishingRightsResponse",
    "PurchaseRequest",
    "PurchaseResponse",
    "UsageStatsResponse",
]
