"""Grant lifecycle reconciliation: expiry, counter resets, payment events."""

from .reconciler import (
    EXPIRE_SWEEP_JOB,
    MONTHLY_RESET_JOB,
    WEEKLY_RESET_JOB,
    JobRunResult,
    JobRunStatus,
    LifecycleReconciler,
    monthly_period_key,
    weekly_period_key,
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
