"""Scheduler and command-line entry point for the entitlement lifecycle jobs."""
from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone, tzinfo
from threading import Event, Lock, Thread
from typing import Callable, Dict, Optional, Sequence

from events_backend.app.lifecycle.reconciler import (
    EXPIRE_SWEEP_JOB,
    MONTHLY_RESET_JOB,
    WEEKLY_RESET_JOB,
    JobRunResult,
    JobRunStatus,
    LifecycleReconciler,
)

logger = logging.getLogger(__name__)

JOB_NAMES = (EXPIRE_SWEEP_JOB, WEEKLY_RESET_JOB, MONTHLY_RESET_JOB)
_CLI_COMMANDS = {
    "expire-sweep": EXPIRE_SWEEP_JOB,
    "reset-weekly": WEEKLY_RESET_JOB,
    "reset-monthly": MONTHLY_RESET_JOB,
}

_scheduler_lock = Lock()
_workers: Dict[str, "_JobWorker"] = {}


def _empty_metrics() -> Dict[str, object]:
    return {
        "runs": 0,
        "affected": 0,
        "skipped": 0,
        "failures": 0,
        "last_run_at": None,
        "last_success_at": None,
        "last_period_key": None,
        "last_error": None,
    }


_JOB_METRICS: Dict[str, Dict[str, object]] = {name: _empty_metrics() for name in JOB_NAMES}
_metrics_lock = Lock()


def _record_run_start(job_name: str, started_at: datetime) -> None:
    with _metrics_lock:
        _JOB_METRICS[job_name]["last_run_at"] = started_at


def _record_run_success(job_name: str, result: JobRunResult) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job_name]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        if result.status == JobRunStatus.COMPLETED:
            metrics["affected"] = int(metrics.get("affected", 0)) + result.affected
            metrics["last_success_at"] = result.ran_at
        else:
            metrics["skipped"] = int(metrics.get("skipped", 0)) + 1
        metrics["last_period_key"] = result.period_key or metrics.get("last_period_key")
        metrics["last_error"] = None


def _record_run_failure(job_name: str, error: Exception) -> None:
    with _metrics_lock:
        metrics = _JOB_METRICS[job_name]
        metrics["runs"] = int(metrics.get("runs", 0)) + 1
        metrics["failures"] = int(metrics.get("failures", 0)) + 1
        metrics["last_error"] = f"{type(error).__name__}: {error}"


def _default_reconciler() -> LifecycleReconciler:
    from events_backend.app.services.entitlements import get_lifecycle_reconciler

    return get_lifecycle_reconciler()


def run_entitlement_job(
    job_name: str,
    *,
    reconciler: Optional[LifecycleReconciler] = None,
    force: bool = False,
    now: Optional[datetime] = None,
) -> JobRunResult:
    """Run one lifecycle job, recording metrics for the outcome."""

    if job_name not in _JOB_METRICS:
        raise ValueError(f"Unknown entitlement job {job_name!r}")

    reconciler = reconciler or _default_reconciler()
    _record_run_start(job_name, now or datetime.now(timezone.utc))
    try:
        if job_name == EXPIRE_SWEEP_JOB:
            result = reconciler.expire_sweep()
        elif job_name == WEEKLY_RESET_JOB:
            result = reconciler.reset_weekly(force=force)
        else:
            result = reconciler.reset_monthly(force=force)
    except Exception as exc:
        _record_run_failure(job_name, exc)
        logger.exception("Entitlement job failed", extra={"job": job_name})
        raise
    _record_run_success(job_name, result)
    logger.info(
        "Entitlement job finished",
        extra={
            "job": job_name,
            "status": result.status.value,
            "affected": result.affected,
            "period_key": result.period_key,
        },
    )
    return result


class _JobWorker(Thread):
    def __init__(self, job_name: str, *, next_delay: Callable[[], float]):
        super().__init__(daemon=True, name=f"entitlements-{job_name}")
        self.job_name = job_name
        self._next_delay = next_delay
        self._stop_event = Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:  # pragma: no cover - thread execution
        while not self._stop_event.wait(max(1.0, self._next_delay())):
            try:
                run_entitlement_job(self.job_name)
            except Exception:
                # Errors are logged inside run_entitlement_job; continue schedule.
                pass


def _seconds_between(current: datetime, target: datetime) -> float:
    # Same-zone subtraction ignores offset changes, so compare in UTC.
    delta = target.astimezone(timezone.utc) - current.astimezone(timezone.utc)
    return max(delta.total_seconds(), 0.0)


def _seconds_until_week_start(tz: tzinfo, now: Optional[datetime] = None) -> float:
    """Seconds until the next Monday 00:00 in ``tz``."""

    current = (now or datetime.now(timezone.utc)).astimezone(tz)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    days_ahead = (7 - midnight.weekday()) % 7 or 7
    target = midnight + timedelta(days=days_ahead)
    return _seconds_between(current, target)


def _seconds_until_month_start(tz: tzinfo, now: Optional[datetime] = None) -> float:
    """Seconds until 00:00 on the first day of the next month in ``tz``."""

    current = (now or datetime.now(timezone.utc)).astimezone(tz)
    if current.month == 12:
        target = current.replace(year=current.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    else:
        target = current.replace(month=current.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return _seconds_between(current, target)


def start_entitlement_scheduler(*, tz: Optional[tzinfo] = None, sweep_interval: Optional[float] = None) -> None:
    from events_backend.app.services.entitlements import get_entitlement_config

    config = get_entitlement_config()
    zone = tz or config.tz
    interval = float(sweep_interval or config.expire_sweep_interval_seconds)

    with _scheduler_lock:
        if _workers:
            return
        _workers[EXPIRE_SWEEP_JOB] = _JobWorker(EXPIRE_SWEEP_JOB, next_delay=lambda: interval)
        _workers[WEEKLY_RESET_JOB] = _JobWorker(WEEKLY_RESET_JOB, next_delay=lambda: _seconds_until_week_start(zone))
        _workers[MONTHLY_RESET_JOB] = _JobWorker(MONTHLY_RESET_JOB, next_delay=lambda: _seconds_until_month_start(zone))
        for worker in _workers.values():
            worker.start()
        logger.info(
            "Entitlement scheduler started",
            extra={
                "sweep_interval_seconds": interval,
                "weekly_initial_delay_seconds": round(_seconds_until_week_start(zone), 2),
                "monthly_initial_delay_seconds": round(_seconds_until_month_start(zone), 2),
            },
        )


def shutdown_entitlement_scheduler() -> None:
    with _scheduler_lock:
        workers = list(_workers.values())
        for worker in workers:
            worker.stop()
        for worker in workers:
            worker.join(timeout=1.0)
        _workers.clear()
        logger.info("Entitlement scheduler stopped")


def get_job_metrics() -> Dict[str, Dict[str, object]]:
    with _metrics_lock:
        snapshot: Dict[str, Dict[str, object]] = {}
        for key, value in _JOB_METRICS.items():
            snapshot[key] = {
                **value,
                "last_run_at": value["last_run_at"].isoformat() if value.get("last_run_at") else None,
                "last_success_at": value["last_success_at"].isoformat() if value.get("last_success_at") else None,
            }
        return snapshot


def _reset_metrics_for_testing() -> None:  # pragma: no cover - used in tests only
    with _metrics_lock:
        for metrics in _JOB_METRICS.values():
            metrics.update(_empty_metrics())


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m events_backend.jobs",
        description="Run an entitlement lifecycle job once.",
    )
    parser.add_argument("command", choices=sorted(_CLI_COMMANDS))
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run a reset even if its current period was already claimed.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    # Importing the application module registers the database connection factory.
    import events_backend.main  # noqa: F401

    result = run_entitlement_job(_CLI_COMMANDS[args.command], force=args.force)
    print(f"{result.job_name}: {result.status.value} affected={result.affected}" + (
        f" period={result.period_key}" if result.period_key else ""
    ))
    return 0


__all__ = [
    "JOB_NAMES",
    "get_job_metrics",
    "main",
    "run_entitlement_job",
    "shutdown_entitlement_scheduler",
    "start_entitlement_scheduler",
]


if __name__ == "__main__":
    sys.exit(main())
