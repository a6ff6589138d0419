"""Result types produced by the entitlement policy and usage consumer."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..grants.models import PackageGrant, SubscriptionGrant


class RestrictionReason(str, Enum):
    """Why a user may not publish, in descending priority."""

    NO_ACTIVE_GRANT = "no_active_grant"
    LIMIT_REACHED = "limit_reached"
    CREDITS_EXHAUSTED = "credits_exhausted"
    EXPIRED = "expired"


class PublishingRights(BaseModel):
    """Point-in-time answer to "may this user publish an event?"."""

    user_id: str
    can_publish: bool
    restriction_reason: Optional[RestrictionReason] = None
    weekly_limit: int = 0
    weekly_used: int = 0
    weekly_remaining: int = 0
    monthly_limit: int = 0
    monthly_used: int = 0
    monthly_remaining: int = 0
    total_credits: int = 0
    used_credits: int = 0
    credits_remaining: int = 0
    selected_grant_id: Optional[str] = None
    active_subscription: Optional[SubscriptionGrant] = None
    active_packages: List[PackageGrant] = Field(default_factory=list)
    evaluated_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ConsumptionReceipt(BaseModel):
    """Proof that one unit of entitlement was debited."""

    grant_id: str
    grant_kind: Literal["subscription", "package"]
    user_id: str
    consumed_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = ["ConsumptionReceipt", "PublishingRights", "RestrictionReason"]
