"""Purchase initiation and account views over a user's grants."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from ..catalog.models import PlanKind
from ..catalog.service import PlanCatalog
from ..entitlements.exceptions import PlanNotFound
from ..entitlements.policy import Clock, EntitlementPolicy, utc_now
from ..lifecycle.reconciler import LifecycleReconciler
from .models import (
    GrantAuditEvent,
    GrantAuditEventType,
    GrantHistoryPage,
    PaymentEvent,
    PaymentOutcome,
    PurchaseResult,
    UsageStats,
    grant_from_plan,
)
from .store import AnyGrant, GrantEventLogger, GrantStore

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE_SIZE = 100


class PaymentProvider(Protocol):
    """External payment processor integration."""

    def create_payment_intent(
        self,
        *,
        user_id: str,
        amount: Decimal,
        currency: str,
        payment_method_id: str,
        metadata: Dict[str, str],
    ) -> Dict[str, object]:
        """Create a provider payment and return at least its ``id`` and ``status``."""


@dataclass
class GrantService:
    """Coordinates purchases, cancellation and per-user grant views."""

    catalog: PlanCatalog
    store: GrantStore
    provider: PaymentProvider
    policy: EntitlementPolicy
    reconciler: LifecycleReconciler
    event_logger: GrantEventLogger
    clock: Clock = field(default=utc_now)

    def purchase(
        self,
        user_id: str,
        *,
        plan_id: int,
        payment_method_id: str,
        expected_kind: Optional[PlanKind] = None,
    ) -> PurchaseResult:
        """Create a pending grant for ``plan_id`` and the provider payment that will settle it."""

        if not payment_method_id:
            raise ValueError("payment_method_id is required")

        plan = self.catalog.get(plan_id)
        if not plan.is_active:
            raise PlanNotFound("Plan is not available for purchase.", detail={"plan_id": plan_id})
        if expected_kind is not None and plan.kind != expected_kind:
            raise ValueError(f"Plan {plan.name} is not a {expected_kind.value}")
        # Free plans settle without a payment, so each user may claim one once.
        if plan.price <= 0 and self.store.has_grant_for_plan(user_id, plan.name):
            raise ValueError(f"Plan {plan.name} can only be claimed once per user")

        payment = self.provider.create_payment_intent(
            user_id=user_id,
            amount=plan.price,
            currency=plan.currency,
            payment_method_id=payment_method_id,
            metadata={"plan_id": str(plan.id), "plan_name": plan.name, "user_id": user_id},
        )
        payment_ref = str(payment["id"])

        now = self.clock()
        grant = grant_from_plan(
            plan,
            user_id=user_id,
            now=now,
            external_payment_ref=payment_ref,
            metadata={"plan_display_name": plan.display_name},
        )
        stored = self.store.create_grant(grant)
        self.event_logger.log(
            GrantAuditEvent(
                event_type=GrantAuditEventType.GRANT_CREATED,
                grant_id=stored.id,
                user_id=user_id,
                metadata={"plan_name": plan.name, "external_ref": payment_ref},
                occurred_at=now,
            )
        )

        client_secret = payment.get("client_secret")
        requires_action = bool(payment.get("requires_action", False))
        if payment.get("status") == PaymentOutcome.SUCCEEDED.value:
            # Zero-amount plans settle synchronously.
            self.reconciler.apply_payment_event(
                PaymentEvent(external_ref=payment_ref, outcome=PaymentOutcome.SUCCEEDED, timestamp=now)
            )
            stored = self.store.get_grant(stored.id) or stored

        return PurchaseResult(
            grant=stored,
            payment_ref=payment_ref,
            amount=plan.price,
            currency=plan.currency,
            client_secret=str(client_secret) if client_secret else None,
            requires_action=requires_action,
        )

    def active_grants(self, user_id: str) -> List[AnyGrant]:
        now = self.clock()
        grants: List[AnyGrant] = []
        subscription = self.store.active_subscription_for(user_id, now=now)
        if subscription is not None:
            grants.append(subscription)
        grants.extend(self.store.active_packages_for(user_id, now=now))
        return grants

    def history(self, user_id: str, *, limit: int = 20, offset: int = 0) -> GrantHistoryPage:
        if limit < 1 or limit > MAX_HISTORY_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_HISTORY_PAGE_SIZE}")
        if offset < 0:
            raise ValueError("offset must be >= 0")
        grants = self.store.list_grants_for_user(user_id, limit=limit, offset=offset)
        total = self.store.count_grants_for_user(user_id)
        return GrantHistoryPage(grants=list(grants), total=total, limit=limit, offset=offset)

    def stats(self, user_id: str) -> UsageStats:
        totals = self.store.grant_totals(user_id)
        rights = self.policy.evaluate(user_id)
        subscription_used = rights.monthly_used
        return UsageStats(
            total_subscriptions=totals.total_subscriptions,
            active_subscriptions=totals.active_subscriptions,
            total_packages=totals.total_packages,
            active_packages=totals.active_packages,
            total_spent=totals.total_spent,
            events_published=totals.credits_used + subscription_used,
            events_remaining=rights.credits_remaining,
            current_period_usage=max(rights.weekly_used, rights.monthly_used),
            last_payment_at=totals.last_payment_at,
            next_billing_at=totals.next_billing_at,
        )

    def cancel(self, grant_id: str, user_id: str) -> AnyGrant:
        grant = self.reconciler.cancel_grant(grant_id, user_id)
        logger.info("Grant %s cancelled by user %s", grant_id, user_id, extra={"grant_status": grant.status.value})
        return grant


__all__ = ["GrantService", "MAX_HISTORY_PAGE_SIZE", "PaymentProvider"]
