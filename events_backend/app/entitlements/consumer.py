"""Transactional check-and-debit of publishing entitlements."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from ..grants.models import GrantAuditEvent, GrantAuditEventType, PackageGrant, SubscriptionGrant
from ..grants.store import GrantEventLogger, GrantStore
from .exceptions import ConcurrencyConflict, InsufficientEntitlement
from .models import ConsumptionReceipt
from .policy import Clock, candidate_order, restriction_reason, utc_now

logger = logging.getLogger(__name__)


@dataclass
class UsageConsumer:
    """Debits exactly one unit from the best eligible grant of a user.

    Candidates are re-read inside the transaction and debited through the
    store's guarded updates, so the only shared-state protection is the
    database row lock taken by each conditional ``UPDATE``.
    """

    store: GrantStore
    event_logger: GrantEventLogger
    clock: Clock = field(default=utc_now)

    def consume(self, user_id: str) -> ConsumptionReceipt:
        now = self.clock()
        receipt = None
        reason = None

        with self.store.transaction() as tx:
            subscription = tx.active_subscription_for(user_id, now=now)
            packages = tx.active_packages_for(user_id, now=now)
            for candidate in candidate_order(subscription, packages, now=now):
                try:
                    self._debit(tx, candidate, now=now)
                except ConcurrencyConflict:
                    logger.debug(
                        "Grant %s lost a concurrent debit, trying next candidate",
                        candidate.id,
                        extra={"user_id": user_id, "grant_id": candidate.id},
                    )
                    continue
                receipt = ConsumptionReceipt(
                    grant_id=candidate.id,
                    grant_kind=candidate.kind,
                    user_id=user_id,
                    consumed_at=now,
                )
                break

            if receipt is None:
                reason = restriction_reason(
                    tx.active_subscription_for(user_id, now=now),
                    tx.active_packages_for(user_id, now=now),
                    now=now,
                )

        if receipt is None:
            detail = {"user_id": user_id}
            if reason is not None:
                detail["restriction_reason"] = reason.value
            logger.info("No entitlement available for user %s", user_id, extra=detail)
            raise InsufficientEntitlement(detail=detail)

        self.event_logger.log(
            GrantAuditEvent(
                event_type=GrantAuditEventType.GRANT_CONSUMED,
                grant_id=receipt.grant_id,
                user_id=user_id,
                metadata={"grant_kind": receipt.grant_kind},
                occurred_at=now,
            )
        )
        return receipt

    def _debit(
        self,
        tx: GrantStore,
        candidate: Union[SubscriptionGrant, PackageGrant],
        *,
        now: datetime,
    ) -> Union[SubscriptionGrant, PackageGrant]:
        if isinstance(candidate, SubscriptionGrant):
            updated = tx.debit_subscription(candidate.id, now=now)
        else:
            updated = tx.debit_package(candidate.id, now=now)
        if updated is None:
            raise ConcurrencyConflict(detail={"grant_id": candidate.id})
        return updated


__all__ = ["UsageConsumer"]
