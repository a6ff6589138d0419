"""Persistence contract for user grants."""
from __future__ import annotations

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol, Sequence, Union

from .models import GrantAuditEvent, GrantBase, GrantTotals, PackageGrant, SubscriptionGrant

AnyGrant = Union[SubscriptionGrant, PackageGrant]


class GrantStore(Protocol):
    """Operations the entitlement engine requires from grant storage.

    Counter columns are only ever written by the guarded mutators
    (``debit_*`` and ``reset_*``), which must be atomic with respect to
    concurrent writers. ``debit_*`` return ``None`` when the guard rejected
    the update.
    """

    def transaction(self) -> ContextManager["GrantStore"]:
        """Yield a store whose operations share one database transaction."""

    def create_grant(self, grant: GrantBase) -> AnyGrant:
        ...

    def get_grant(self, grant_id: str) -> Optional[AnyGrant]:
        ...

    def list_grants_for_user(self, user_id: str, *, limit: int = 20, offset: int = 0) -> Sequence[AnyGrant]:
        ...

    def count_grants_for_user(self, user_id: str) -> int:
        ...

    def grant_totals(self, user_id: str) -> GrantTotals:
        ...

    def active_subscription_for(self, user_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        ...

    def active_packages_for(self, user_id: str, *, now: datetime) -> List[PackageGrant]:
        ...

    def by_external_payment_ref(self, ref: str) -> Optional[AnyGrant]:
        ...

    def has_grant_for_plan(self, user_id: str, plan_name: str) -> bool:
        """Whether the user ever held a grant of ``plan_name``, in any status."""

    def debit_subscription(self, grant_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        ...

    def debit_package(self, grant_id: str, *, now: datetime) -> Optional[PackageGrant]:
        ...

    def activate_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        ...

    def cancel_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        ...

    def cancel_active_subscriptions(self, user_id: str, *, exclude_grant_id: Optional[str], now: datetime) -> int:
        ...

    def expire_due_grants(self, now: datetime) -> int:
        ...

    def reset_weekly_usage(self) -> int:
        ...

    def reset_monthly_usage(self) -> int:
        ...

    def try_lock_job(self, job_name: str) -> bool:
        ...

    def claim_job_period(self, job_name: str, period_key: str) -> bool:
        ...


class GrantEventLogger(Protocol):
    """Captures structured grant audit events."""

    def log(self, event: GrantAuditEvent) -> None:
        ...


__all__ = ["AnyGrant", "GrantEventLogger", "GrantStore"]
