from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import pytest

from events_backend.app.catalog.models import Plan, PlanKind
from events_backend.app.catalog.service import PlanCatalog
from events_backend.app.entitlements.consumer import UsageConsumer
from events_backend.app.entitlements.policy import EntitlementPolicy
from events_backend.app.grants.models import (
    GrantAuditEvent,
    GrantBase,
    GrantStatus,
    GrantTotals,
    PackageGrant,
    SubscriptionGrant,
)
from events_backend.app.grants.service import GrantService
from events_backend.app.grants.store import AnyGrant
from events_backend.app.lifecycle.reconciler import LifecycleReconciler

NOW = datetime(2026, 10, 21, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryGrantStore:
    """Grant store whose guarded mutators are atomic under a single lock."""

    def __init__(self) -> None:
        self._grants: Dict[str, AnyGrant] = {}
        self._lock = threading.RLock()
        self.claimed_periods: Set[Tuple[str, str]] = set()
        self.held_job_locks: Set[str] = set()

    @contextmanager
    def transaction(self) -> Iterator["InMemoryGrantStore"]:
        yield self

    def add(self, grant: AnyGrant) -> AnyGrant:
        with self._lock:
            self._grants[grant.id] = grant
        return grant

    def _replace(self, grant: AnyGrant, **changes) -> AnyGrant:
        updated = grant.model_copy(update=changes)
        self._grants[grant.id] = updated
        return updated

    def create_grant(self, grant: GrantBase) -> AnyGrant:
        with self._lock:
            ref = grant.external_payment_ref
            if ref and any(g.external_payment_ref == ref for g in self._grants.values()):
                raise ValueError(f"duplicate external_payment_ref {ref}")
            self._grants[grant.id] = grant
            return grant

    def get_grant(self, grant_id: str) -> Optional[AnyGrant]:
        return self._grants.get(grant_id)

    def _for_user(self, user_id: str) -> List[AnyGrant]:
        return [grant for grant in self._grants.values() if grant.user_id == user_id]

    def list_grants_for_user(self, user_id: str, *, limit: int = 20, offset: int = 0) -> List[AnyGrant]:
        grants = sorted(self._for_user(user_id), key=lambda g: (g.created_at, g.id), reverse=True)
        return grants[offset : offset + limit]

    def count_grants_for_user(self, user_id: str) -> int:
        return len(self._for_user(user_id))

    def grant_totals(self, user_id: str) -> GrantTotals:
        grants = self._for_user(user_id)
        subscriptions = [g for g in grants if g.kind == "subscription"]
        packages = [g for g in grants if g.kind == "package"]
        started = [g.started_at for g in grants if g.started_at is not None]
        billing = [
            g.expired_at for g in subscriptions if g.status == GrantStatus.ACTIVE and g.expired_at is not None
        ]
        return GrantTotals(
            total_subscriptions=len(subscriptions),
            active_subscriptions=sum(1 for g in subscriptions if g.status == GrantStatus.ACTIVE),
            total_packages=len(packages),
            active_packages=sum(1 for g in packages if g.status == GrantStatus.ACTIVE),
            total_spent=sum(
                (g.price for g in grants if g.status in (GrantStatus.ACTIVE, GrantStatus.EXPIRED)),
                Decimal("0"),
            ),
            credits_used=sum(g.used_credits for g in packages),
            last_payment_at=max(started) if started else None,
            next_billing_at=min(billing) if billing else None,
        )

    def active_subscription_for(self, user_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        live = [
            g for g in self._for_user(user_id) if isinstance(g, SubscriptionGrant) and g.is_active_at(now)
        ]
        live.sort(key=lambda g: g.created_at, reverse=True)
        return live[0] if live else None

    def active_packages_for(self, user_id: str, *, now: datetime) -> List[PackageGrant]:
        live = [g for g in self._for_user(user_id) if isinstance(g, PackageGrant) and g.is_active_at(now)]
        return sorted(live, key=lambda g: (g.created_at, g.id))

    def by_external_payment_ref(self, ref: str) -> Optional[AnyGrant]:
        return next((g for g in self._grants.values() if g.external_payment_ref == ref), None)

    def has_grant_for_plan(self, user_id: str, plan_name: str) -> bool:
        return any(g.plan_name == plan_name for g in self._for_user(user_id))

    def debit_subscription(self, grant_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if (
                not isinstance(grant, SubscriptionGrant)
                or not grant.is_active_at(now)
                or grant.weekly_used >= grant.weekly_limit
                or grant.monthly_used >= grant.monthly_limit
            ):
                return None
            return self._replace(
                grant,
                weekly_used=grant.weekly_used + 1,
                monthly_used=grant.monthly_used + 1,
                updated_at=now,
            )

    def debit_package(self, grant_id: str, *, now: datetime) -> Optional[PackageGrant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if (
                not isinstance(grant, PackageGrant)
                or not grant.is_active_at(now)
                or grant.used_credits >= grant.total_credits
            ):
                return None
            return self._replace(grant, used_credits=grant.used_credits + 1, updated_at=now)

    def activate_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None or grant.status != GrantStatus.PENDING:
                return None
            if grant.kind == "subscription" and any(
                g.kind == "subscription" and g.status == GrantStatus.ACTIVE and g.id != grant_id
                for g in self._for_user(grant.user_id)
            ):
                raise RuntimeError("unique violation: uq_entitlement_grants_active_subscription")
            return self._replace(grant, status=GrantStatus.ACTIVE, started_at=now, updated_at=now)

    def cancel_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None or grant.status not in (GrantStatus.PENDING, GrantStatus.ACTIVE):
                return None
            return self._replace(grant, status=GrantStatus.CANCELLED, updated_at=now)

    def cancel_active_subscriptions(self, user_id: str, *, exclude_grant_id: Optional[str], now: datetime) -> int:
        with self._lock:
            targets = [
                g
                for g in self._for_user(user_id)
                if g.kind == "subscription" and g.status == GrantStatus.ACTIVE and g.id != exclude_grant_id
            ]
            for grant in targets:
                self._replace(grant, status=GrantStatus.CANCELLED, updated_at=now)
            return len(targets)

    def expire_due_grants(self, now: datetime) -> int:
        with self._lock:
            due = [
                g
                for g in self._grants.values()
                if g.status == GrantStatus.ACTIVE and g.expired_at is not None and g.expired_at <= now
            ]
            for grant in due:
                self._replace(grant, status=GrantStatus.EXPIRED)
            return len(due)

    def _reset(self, field_name: str) -> int:
        with self._lock:
            targets = [
                g
                for g in self._grants.values()
                if isinstance(g, SubscriptionGrant) and g.status == GrantStatus.ACTIVE and getattr(g, field_name) > 0
            ]
            for grant in targets:
                self._replace(grant, **{field_name: 0})
            return len(targets)

    def reset_weekly_usage(self) -> int:
        return self._reset("weekly_used")

    def reset_monthly_usage(self) -> int:
        return self._reset("monthly_used")

    def try_lock_job(self, job_name: str) -> bool:
        return job_name not in self.held_job_locks

    def claim_job_period(self, job_name: str, period_key: str) -> bool:
        with self._lock:
            key = (job_name, period_key)
            if key in self.claimed_periods:
                return False
            self.claimed_periods.add(key)
            return True


class InMemoryPlanRepository:
    def __init__(self, plans: Sequence[Plan] = ()) -> None:
        self._plans: Dict[int, Plan] = {}
        self._next_id = 1
        for plan in plans:
            self.insert_plan(plan)

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        return next((plan for plan in self._plans.values() if plan.name == name), None)

    def list_plans(self, *, kind: Optional[PlanKind] = None, active_only: bool = True) -> List[Plan]:
        plans = list(self._plans.values())
        if kind is not None:
            plans = [plan for plan in plans if plan.kind == kind]
        if active_only:
            plans = [plan for plan in plans if plan.is_active]
        return plans

    def count_plans(self) -> int:
        return len(self._plans)

    def insert_plan(self, plan: Plan) -> Plan:
        if self.get_plan_by_name(plan.name) is not None:
            raise ValueError(f"duplicate plan name {plan.name}")
        stored = plan.model_copy(update={"id": self._next_id})
        self._plans[stored.id] = stored
        self._next_id += 1
        return stored


class FakeEventLogger:
    def __init__(self) -> None:
        self.events: List[GrantAuditEvent] = []

    def log(self, event: GrantAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.event_type.value for event in self.events]


class FakePaymentProvider:
    def __init__(self, *, status: str = "pending") -> None:
        self.status = status
        self.calls: List[dict] = []

    def create_payment_intent(self, **kwargs) -> Dict[str, object]:
        self.calls.append(kwargs)
        payment_id = f"pi_test_{len(self.calls)}"
        status = "succeeded" if kwargs["amount"] <= 0 else self.status
        return {
            "id": payment_id,
            "status": status,
            "client_secret": f"{payment_id}_secret",
            "requires_action": status == "requires_action",
        }


def make_subscription(
    user_id: str = "user-1",
    *,
    weekly_limit: int = 1,
    monthly_limit: int = 4,
    weekly_used: int = 0,
    monthly_used: int = 0,
    status: GrantStatus = GrantStatus.ACTIVE,
    created_at: datetime = NOW - timedelta(days=3),
    expired_at: Optional[datetime] = NOW + timedelta(days=27),
    external_payment_ref: Optional[str] = None,
) -> SubscriptionGrant:
    return SubscriptionGrant(
        user_id=user_id,
        plan_name="basic",
        price=Decimal("78.00"),
        status=status,
        weekly_limit=weekly_limit,
        weekly_used=weekly_used,
        monthly_limit=monthly_limit,
        monthly_used=monthly_used,
        started_at=created_at if status != GrantStatus.PENDING else None,
        expired_at=expired_at,
        external_payment_ref=external_payment_ref,
        created_at=created_at,
        updated_at=created_at,
    )


def make_package(
    user_id: str = "user-1",
    *,
    total_credits: int = 3,
    used_credits: int = 0,
    status: GrantStatus = GrantStatus.ACTIVE,
    created_at: datetime = NOW - timedelta(days=3),
    expired_at: Optional[datetime] = NOW + timedelta(days=300),
    external_payment_ref: Optional[str] = None,
    plan_name: str = "5_events",
) -> PackageGrant:
    return PackageGrant(
        user_id=user_id,
        plan_name=plan_name,
        price=Decimal("129.99"),
        status=status,
        total_credits=total_credits,
        used_credits=used_credits,
        started_at=created_at if status != GrantStatus.PENDING else None,
        expired_at=expired_at,
        external_payment_ref=external_payment_ref,
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryGrantStore:
    return InMemoryGrantStore()


@pytest.fixture
def event_logger() -> FakeEventLogger:
    return FakeEventLogger()


@pytest.fixture
def plan_repository() -> InMemoryPlanRepository:
    return InMemoryPlanRepository()


@pytest.fixture
def catalog(plan_repository) -> PlanCatalog:
    return PlanCatalog(repository=plan_repository)


@pytest.fixture
def policy(store, clock) -> EntitlementPolicy:
    return EntitlementPolicy(store=store, clock=clock)


@pytest.fixture
def consumer(store, event_logger, clock) -> UsageConsumer:
    return UsageConsumer(store=store, event_logger=event_logger, clock=clock)


@pytest.fixture
def reconciler(store, event_logger, clock) -> LifecycleReconciler:
    return LifecycleReconciler(store=store, event_logger=event_logger, clock=clock)


@pytest.fixture
def provider() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def grant_service(catalog, store, provider, policy, reconciler, event_logger, clock) -> GrantService:
    return GrantService(
        catalog=catalog,
        store=store,
        provider=provider,
        policy=policy,
        reconciler=reconciler,
        event_logger=event_logger,
        clock=clock,
    )
