import sys
import types
from datetime import datetime, timedelta, timezone

import pytest

from events_backend import jobs
from events_backend.config import resolve_timezone
from events_backend.app.lifecycle.reconciler import JobRunResult, JobRunStatus


class FakeReconciler:
    def __init__(self, *, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def _run(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error
        return self.result

    def expire_sweep(self):
        return self._run("expire_sweep")

    def reset_weekly(self, *, force=False):
        return self._run("reset_weekly", force=force)

    def reset_monthly(self, *, force=False):
        return self._run("reset_monthly", force=force)


def test_run_entitlement_job_updates_metrics():
    jobs._reset_metrics_for_testing()

    run_time = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
    result = JobRunResult(
        job_name="reset_weekly",
        status=JobRunStatus.COMPLETED,
        affected=4,
        period_key="2026-W43",
        ran_at=run_time,
    )
    reconciler = FakeReconciler(result=result)

    returned = jobs.run_entitlement_job("reset_weekly", reconciler=reconciler, force=True, now=run_time)

    assert returned == result
    assert reconciler.calls == [("reset_weekly", {"force": True})]
    metrics = jobs.get_job_metrics()["reset_weekly"]
    assert metrics["runs"] == 1
    assert metrics["affected"] == 4
    assert metrics["skipped"] == 0
    assert metrics["last_run_at"] == run_time.isoformat()
    assert metrics["last_success_at"] == run_time.isoformat()
    assert metrics["last_period_key"] == "2026-W43"
    assert metrics["last_error"] is None


def test_skipped_runs_are_counted_separately():
    jobs._reset_metrics_for_testing()

    run_time = datetime(2026, 10, 19, 0, 5, tzinfo=timezone.utc)
    skipped = JobRunResult(job_name="expire_sweep", status=JobRunStatus.SKIPPED_LOCKED, ran_at=run_time)

    jobs.run_entitlement_job("expire_sweep", reconciler=FakeReconciler(result=skipped), now=run_time)

    metrics = jobs.get_job_metrics()["expire_sweep"]
    assert metrics["runs"] == 1
    assert metrics["skipped"] == 1
    assert metrics["last_success_at"] is None


def test_failed_job_records_error_and_reraises():
    jobs._reset_metrics_for_testing()

    reconciler = FakeReconciler(error=RuntimeError("database unavailable"))

    with pytest.raises(RuntimeError):
        jobs.run_entitlement_job("reset_monthly", reconciler=reconciler)

    metrics = jobs.get_job_metrics()["reset_monthly"]
    assert metrics["failures"] == 1
    assert metrics["last_error"] == "RuntimeError: database unavailable"


def test_unknown_job_is_rejected():
    with pytest.raises(ValueError):
        jobs.run_entitlement_job("compact", reconciler=FakeReconciler())


def test_seconds_until_week_start_uses_timezone():
    wednesday = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)
    monday_midnight = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)

    assert jobs._seconds_until_week_start(timezone.utc, wednesday) == timedelta(days=4, hours=12).total_seconds()
    assert jobs._seconds_until_week_start(timezone.utc, monday_midnight) == timedelta(days=7).total_seconds()

    plus_two = timezone(timedelta(hours=2))
    sunday_late_utc = datetime(2026, 10, 25, 21, 0, tzinfo=timezone.utc)
    assert jobs._seconds_until_week_start(plus_two, sunday_late_utc) == timedelta(hours=1).total_seconds()


def test_boundary_delays_account_for_dst_changes():
    try:
        berlin = resolve_timezone("Europe/Berlin")
    except ValueError:
        pytest.skip("no IANA timezone database available")

    autumn = datetime(2026, 10, 22, 10, 0, tzinfo=timezone.utc)
    spring = datetime(2027, 3, 25, 12, 0, tzinfo=timezone.utc)

    # Monday 00:00 CET after the October change is Sunday 23:00 UTC.
    assert jobs._seconds_until_week_start(berlin, autumn) == timedelta(days=3, hours=13).total_seconds()
    assert jobs._seconds_until_month_start(berlin, autumn) == timedelta(days=9, hours=13).total_seconds()
    # After the March change midnight is 22:00 UTC.
    assert jobs._seconds_until_week_start(berlin, spring) == timedelta(days=3, hours=10).total_seconds()
    assert jobs._seconds_until_month_start(berlin, spring) == timedelta(days=6, hours=10).total_seconds()


def test_seconds_until_month_start_rolls_over_year():
    december = datetime(2026, 12, 31, 18, 0, tzinfo=timezone.utc)
    october = datetime(2026, 10, 31, 0, 0, tzinfo=timezone.utc)

    assert jobs._seconds_until_month_start(timezone.utc, december) == timedelta(hours=6).total_seconds()
    assert jobs._seconds_until_month_start(timezone.utc, october) == timedelta(days=1).total_seconds()


def test_cli_runs_requested_job(monkeypatch, capsys):
    monkeypatch.setitem(sys.modules, "events_backend.main", types.ModuleType("events_backend.main"))
    calls = []

    def fake_run(job_name, *, force=False, **_):
        calls.append((job_name, force))
        return JobRunResult(
            job_name=job_name,
            status=JobRunStatus.SKIPPED_PERIOD_CLAIMED,
            period_key="2026-10",
            ran_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        )

    monkeypatch.setattr(jobs, "run_entitlement_job", fake_run)

    exit_code = jobs.main(["reset-monthly", "--force"])

    assert exit_code == 0
    assert calls == [("reset_monthly", True)]
    assert "reset_monthly: skipped_period_claimed affected=0 period=2026-10" in capsys.readouterr().out


def test_cli_rejects_unknown_command():
    with pytest.raises(SystemExit):
        jobs.main(["vacuum"])
