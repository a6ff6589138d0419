"""User-owned grants: models and the storage contract.

``GrantService`` lives in :mod:`.service` and is imported from there.
"""

from .models import (
    TERMINAL_STATUSES,
    Grant,
    GrantAuditEvent,
    GrantAuditEventType,
    GrantBase,
    GrantHistoryPage,
    GrantStatus,
    GrantTotals,
    PackageGrant,
    PaymentEvent,
    PaymentEventResult,
    PaymentEventStatus,
    PaymentOutcome,
    PurchaseResult,
    SubscriptionGrant,
    UsageStats,
    grant_from_plan,
    new_grant_id,
)
from .store import AnyGrant, GrantEventLogger, GrantStore

__all__ = [
    "AnyGrant",
    "Grant",
    "GrantAuditEvent",
    "GrantAuditEventType",
    "GrantBase",
    "GrantEventLogger",
    "GrantHistoryPage",
    "GrantStatus",
    "GrantStore",
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
