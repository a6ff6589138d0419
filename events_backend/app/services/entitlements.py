"""Application wiring for the entitlement engine."""
from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Dict
from uuid import uuid4

from ..catalog.repository import PostgresPlanRepository
from ..catalog.service import PlanCatalog
from ..entitlements.consumer import UsageConsumer
from ..entitlements.policy import EntitlementPolicy
from ..grants.models import GrantAuditEvent
from ..grants.repository import PostgresGrantRepository
from ..grants.service import GrantService, PaymentProvider
from ..grants.store import GrantEventLogger
from ..lifecycle.reconciler import LifecycleReconciler
from ...config import EntitlementConfig, load_entitlement_config


logger = logging.getLogger("entitlements")


class LoggingGrantEventLogger(GrantEventLogger):
    """Event logger forwarding grant audit events to logging."""

    def log(self, event: GrantAuditEvent) -> None:
        logger.info(
            "Grant event %s grant=%s user=%s metadata=%s",
            event.event_type.value,
            event.grant_id,
            event.user_id,
            event.metadata,
        )


class LocalSandboxPaymentProvider(PaymentProvider):
    """Minimal provider implementation for local development and tests.

    Zero-amount payments are reported as already succeeded; everything else
    stays pending until a payment event is delivered to the webhook.
    """

    def __init__(self, *, ref_prefix: str = "pi_") -> None:
        self._ref_prefix = ref_prefix

    def create_payment_intent(
        self,
        *,
        user_id: str,
        amount: Decimal,
        currency: str,
        payment_method_id: str,
        metadata: Dict[str, str],
    ) -> Dict[str, object]:
        payment_id = f"{self._ref_prefix}{uuid4().hex}"
        status = "succeeded" if amount <= 0 else "pending"
        return {
            "id": payment_id,
            "status": status,
            "client_secret": f"{payment_id}_secret_{uuid4().hex[:12]}",
            "requires_action": False,
            "amount": str(amount),
            "currency": currency,
            "metadata": metadata,
        }


@lru_cache(maxsize=1)
def get_entitlement_config() -> EntitlementConfig:
    return load_entitlement_config()


@lru_cache(maxsize=1)
def get_event_logger() -> GrantEventLogger:
    return LoggingGrantEventLogger()


@lru_cache(maxsize=1)
def get_grant_store() -> PostgresGrantRepository:
    return PostgresGrantRepository()


@lru_cache(maxsize=1)
def get_plan_catalog() -> PlanCatalog:
    return PlanCatalog(repository=PostgresPlanRepository())


@lru_cache(maxsize=1)
def get_entitlement_policy() -> EntitlementPolicy:
    return EntitlementPolicy(store=get_grant_store())


@lru_cache(maxsize=1)
def get_usage_consumer() -> UsageConsumer:
    return UsageConsumer(store=get_grant_store(), event_logger=get_event_logger())


@lru_cache(maxsize=1)
def get_lifecycle_reconciler() -> LifecycleReconciler:
    config = get_entitlement_config()
    return LifecycleReconciler(
        store=get_grant_store(),
        event_logger=get_event_logger(),
        tz=config.tz,
    )


@lru_cache(maxsize=1)
def get_grant_service() -> GrantService:
    config = get_entitlement_config()
    return GrantService(
        catalog=get_plan_catalog(),
        store=get_grant_store(),
        provider=LocalSandboxPaymentProvider(ref_prefix=config.payment_ref_prefix),
        policy=get_entitlement_policy(),
        reconciler=get_lifecycle_reconciler(),
        event_logger=get_event_logger(),
    )


__all__ = [
    "LocalSandboxPaymentProvider",
    "LoggingGrantEventLogger",
    "get_entitlement_config",
    "get_entitlement_policy",
    "get_event_logger",
    "get_grant_service",
    "get_grant_store",
    "get_lifecycle_reconciler",
    "get_plan_catalog",
    "get_usage_consumer",
]
