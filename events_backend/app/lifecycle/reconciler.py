"""Time- and payment-driven grant state transitions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from ..entitlements.exceptions import GrantNotFound, UnknownPaymentReference
from ..entitlements.policy import Clock, utc_now
from ..grants.models import (
    GrantAuditEvent,
    GrantAuditEventType,
    GrantStatus,
    PaymentEvent,
    PaymentEventResult,
    PaymentEventStatus,
    PaymentOutcome,
)
from ..grants.store import AnyGrant, GrantEventLogger, GrantStore

logger = logging.getLogger(__name__)

EXPIRE_SWEEP_JOB = "expire_sweep"
WEEKLY_RESET_JOB = "reset_weekly"
MONTHLY_RESET_JOB = "reset_monthly"


class JobRunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED_LOCKED = "skipped_locked"
    SKIPPED_PERIOD_CLAIMED = "skipped_period_claimed"


class JobRunResult(BaseModel):
    """Outcome of one invocation of a lifecycle job."""

    job_name: str
    status: JobRunStatus
    affected: int = 0
    period_key: Optional[str] = None
    ran_at: datetime

    model_config = ConfigDict(populate_by_name=True, frozen=True)


def weekly_period_key(now: datetime, tz: tzinfo = timezone.utc) -> str:
    """ISO week containing ``now`` in ``tz``; weeks start Monday 00:00."""

    year, week, _ = now.astimezone(tz).isocalendar()
    return f"{year}-W{week:02d}"


def monthly_period_key(now: datetime, tz: tzinfo = timezone.utc) -> str:
    local = now.astimezone(tz)
    return f"{local.year}-{local.month:02d}"


@dataclass
class LifecycleReconciler:
    """Applies expiry, counter resets, payment outcomes and cancellations.

    Every operation is idempotent. The scheduled jobs take a per-job
    advisory lock so overlapping runs of the same job skip, and the resets
    claim their calendar period so a second run inside the same week or
    month does nothing unless forced.
    """

    store: GrantStore
    event_logger: GrantEventLogger
    tz: tzinfo = timezone.utc
    clock: Clock = field(default=utc_now)

    def expire_sweep(self) -> JobRunResult:
        now = self.clock()
        with self.store.transaction() as tx:
            if not tx.try_lock_job(EXPIRE_SWEEP_JOB):
                return self._skipped(EXPIRE_SWEEP_JOB, JobRunStatus.SKIPPED_LOCKED, now)
            expired = tx.expire_due_grants(now)

        if expired:
            self.event_logger.log(
                GrantAuditEvent(
                    event_type=GrantAuditEventType.GRANTS_EXPIRED,
                    metadata={"count": expired},
                    occurred_at=now,
                )
            )
        logger.info("Expire sweep marked %s grants expired", expired, extra={"job": EXPIRE_SWEEP_JOB})
        return JobRunResult(job_name=EXPIRE_SWEEP_JOB, status=JobRunStatus.COMPLETED, affected=expired, ran_at=now)

    def reset_weekly(self, *, force: bool = False) -> JobRunResult:
        now = self.clock()
        return self._reset(
            WEEKLY_RESET_JOB,
            weekly_period_key(now, self.tz),
            lambda tx: tx.reset_weekly_usage(),
            GrantAuditEventType.WEEKLY_USAGE_RESET,
            now=now,
            force=force,
        )

    def reset_monthly(self, *, force: bool = False) -> JobRunResult:
        now = self.clock()
        return self._reset(
            MONTHLY_RESET_JOB,
            monthly_period_key(now, self.tz),
            lambda tx: tx.reset_monthly_usage(),
            GrantAuditEventType.MONTHLY_USAGE_RESET,
            now=now,
            force=force,
        )

    def apply_payment_event(self, event: PaymentEvent) -> PaymentEventResult:
        """Map a settlement outcome onto the referenced grant's status.

        Unknown references are reported rather than raised so that the
        delivery mechanism can redeliver once the purchase is stored.
        """

        now = self.clock()
        with self.store.transaction() as tx:
            grant = tx.by_external_payment_ref(event.external_ref)
            if grant is None:
                error = UnknownPaymentReference(
                    detail={"external_ref": event.external_ref, "outcome": event.outcome.value}
                )
                logger.warning(
                    "%s external_ref=%s",
                    error.message,
                    event.external_ref,
                    extra={"error": error.code, "outcome": event.outcome.value},
                )
                return PaymentEventResult(status=PaymentEventStatus.UNKNOWN_REFERENCE)

            if grant.is_terminal or (
                event.outcome == PaymentOutcome.SUCCEEDED and grant.status == GrantStatus.ACTIVE
            ):
                self._log_ignored(grant, event, now)
                return PaymentEventResult(
                    status=PaymentEventStatus.NOOP,
                    grant_id=grant.id,
                    grant_status=grant.status,
                )

            if event.outcome == PaymentOutcome.SUCCEEDED:
                updated = self._activate(tx, grant, now=now)
                audit_type = GrantAuditEventType.GRANT_ACTIVATED
            else:
                updated = tx.cancel_grant(grant.id, now=now)
                audit_type = GrantAuditEventType.GRANT_CANCELLED

            if updated is None:
                current = tx.get_grant(grant.id) or grant
                self._log_ignored(current, event, now)
                return PaymentEventResult(
                    status=PaymentEventStatus.NOOP,
                    grant_id=current.id,
                    grant_status=current.status,
                )

        self.event_logger.log(
            GrantAuditEvent(
                event_type=audit_type,
                grant_id=updated.id,
                user_id=updated.user_id,
                metadata={
                    "external_ref": event.external_ref,
                    "outcome": event.outcome.value,
                    "grant_kind": updated.kind,
                },
                occurred_at=now,
            )
        )
        return PaymentEventResult(
            status=PaymentEventStatus.APPLIED,
            grant_id=updated.id,
            grant_status=updated.status,
        )

    def cancel_grant(self, grant_id: str, user_id: str) -> AnyGrant:
        """Cancel a pending or active grant owned by ``user_id``; terminal grants are returned unchanged."""

        now = self.clock()
        with self.store.transaction() as tx:
            grant = tx.get_grant(grant_id)
            if grant is None or grant.user_id != user_id:
                raise GrantNotFound(detail={"grant_id": grant_id})
            if grant.is_terminal:
                return grant
            updated = tx.cancel_grant(grant_id, now=now)
            if updated is None:
                return tx.get_grant(grant_id) or grant

        self.event_logger.log(
            GrantAuditEvent(
                event_type=GrantAuditEventType.GRANT_CANCELLED,
                grant_id=updated.id,
                user_id=user_id,
                metadata={"grant_kind": updated.kind, "source": "user"},
                occurred_at=now,
            )
        )
        return updated

    def _activate(self, tx: GrantStore, grant: AnyGrant, *, now: datetime) -> Optional[AnyGrant]:
        if grant.kind == "subscription":
            replaced = tx.cancel_active_subscriptions(grant.user_id, exclude_grant_id=grant.id, now=now)
            if replaced:
                logger.info(
                    "Cancelled %s previous subscription(s) for user %s",
                    replaced,
                    grant.user_id,
                    extra={"grant_id": grant.id},
                )
        return tx.activate_grant(grant.id, now=now)

    def _reset(
        self,
        job_name: str,
        period_key: str,
        reset: Callable[[GrantStore], int],
        audit_type: GrantAuditEventType,
        *,
        now: datetime,
        force: bool,
    ) -> JobRunResult:
        with self.store.transaction() as tx:
            if not tx.try_lock_job(job_name):
                return self._skipped(job_name, JobRunStatus.SKIPPED_LOCKED, now, period_key)
            claimed = tx.claim_job_period(job_name, period_key)
            if not claimed and not force:
                return self._skipped(job_name, JobRunStatus.SKIPPED_PERIOD_CLAIMED, now, period_key)
            affected = reset(tx)

        self.event_logger.log(
            GrantAuditEvent(
                event_type=audit_type,
                metadata={"count": affected, "period_key": period_key, "forced": force},
                occurred_at=now,
            )
        )
        logger.info(
            "%s reset %s subscriptions for %s",
            job_name,
            affected,
            period_key,
            extra={"job": job_name, "period_key": period_key},
        )
        return JobRunResult(
            job_name=job_name,
            status=JobRunStatus.COMPLETED,
            affected=affected,
            period_key=period_key,
            ran_at=now,
        )

    def _skipped(
        self,
        job_name: str,
        status: JobRunStatus,
        now: datetime,
        period_key: Optional[str] = None,
    ) -> JobRunResult:
        logger.info("%s skipped: %s", job_name, status.value, extra={"job": job_name, "period_key": period_key})
        return JobRunResult(job_name=job_name, status=status, period_key=period_key, ran_at=now)

    def _log_ignored(self, grant: AnyGrant, event: PaymentEvent, now: datetime) -> None:
        self.event_logger.log(
            GrantAuditEvent(
                event_type=GrantAuditEventType.PAYMENT_EVENT_IGNORED,
                grant_id=grant.id,
                user_id=grant.user_id,
                metadata={
                    "external_ref": event.external_ref,
                    "outcome": event.outcome.value,
                    "grant_status": grant.status.value,
                },
                occurred_at=now,
            )
        )


__all__ = [
    "EXPIRE_SWEEP_JOB",
    "JobRunResult",
    "JobRunStatus",
    "LifecycleReconciler",
    "MONTHLY_RESET_JOB",
    "WEEKLY_RESET_JOB",
    "monthly_period_key",
    "weekly_period_key",
]
