"""PostgreSQL persistence for user grants."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List, Optional

import psycopg2.extras

from ..persistence import PostgresRepository, managed_connection
from .models import GrantBase, GrantStatus, GrantTotals, PackageGrant, SubscriptionGrant
from .store import AnyGrant

_ACTIVE_FILTER = "status = 'active' AND (expired_at IS NULL OR expired_at > %(now)s)"


def _row_to_grant(row: dict) -> AnyGrant:
    common = dict(
        id=row["id"],
        user_id=row["user_id"],
        plan_id=row.get("plan_id"),
        plan_name=row["plan_name"],
        price=Decimal(str(row["price"])),
        currency=row["currency"],
        status=GrantStatus(row["status"]),
        started_at=row.get("started_at"),
        expired_at=row.get("expired_at"),
        external_payment_ref=row.get("external_payment_ref"),
        metadata=row.get("metadata") or {},
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
    if row["kind"] == "subscription":
        return SubscriptionGrant(
            weekly_limit=int(row["weekly_limit"]),
            weekly_used=int(row["weekly_used"] or 0),
            monthly_limit=int(row["monthly_limit"]),
            monthly_used=int(row["monthly_used"] or 0),
            **common,
        )
    return PackageGrant(
        total_credits=int(row["total_credits"]),
        used_credits=int(row["used_credits"] or 0),
        **common,
    )


def _grant_params(grant: GrantBase) -> dict:
    params = {
        "id": grant.id,
        "user_id": grant.user_id,
        "plan_id": grant.plan_id,
        "plan_name": grant.plan_name,
        "kind": grant.kind,
        "price": grant.price,
        "currency": grant.currency,
        "status": grant.status.value,
        "weekly_limit": None,
        "weekly_used": None,
        "monthly_limit": None,
        "monthly_used": None,
        "total_credits": None,
        "used_credits": None,
        "started_at": grant.started_at,
        "expired_at": grant.expired_at,
        "external_payment_ref": grant.external_payment_ref,
        "metadata": psycopg2.extras.Json(grant.metadata),
        "created_at": grant.created_at,
        "updated_at": grant.updated_at,
    }
    if isinstance(grant, SubscriptionGrant):
        params.update(
            weekly_limit=grant.weekly_limit,
            weekly_used=grant.weekly_used,
            monthly_limit=grant.monthly_limit,
            monthly_used=grant.monthly_used,
        )
    elif isinstance(grant, PackageGrant):
        params.update(total_credits=grant.total_credits, used_credits=grant.used_credits)
    return params


class PostgresGrantRepository(PostgresRepository):
    """Concrete grant store backed by the ``entitlement_grants`` table.

    Unbound instances open and commit one connection per call. Instances
    yielded by :meth:`transaction` share a single connection so that a
    sequence of reads and guarded writes commits or rolls back together.
    """

    @contextmanager
    def transaction(self) -> Iterator["PostgresGrantRepository"]:
        if self.bound:
            yield self
            return
        with managed_connection() as (connection, _managed):
            yield PostgresGrantRepository(conn=connection)

    def create_grant(self, grant: GrantBase) -> AnyGrant:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlement_grants (
                    id,
                    user_id,
                    plan_id,
                    plan_name,
                    kind,
                    price,
                    currency,
                    status,
                    weekly_limit,
                    weekly_used,
                    monthly_limit,
                    monthly_used,
                    total_credits,
                    used_credits,
                    started_at,
                    expired_at,
                    external_payment_ref,
                    metadata,
                    created_at,
                    updated_at
                )
                VALUES (%(id)s, %(user_id)s, %(plan_id)s, %(plan_name)s, %(kind)s, %(price)s,
                        %(currency)s, %(status)s, %(weekly_limit)s, %(weekly_used)s,
                        %(monthly_limit)s, %(monthly_used)s, %(total_credits)s, %(used_credits)s,
                        %(started_at)s, %(expired_at)s, %(external_payment_ref)s, %(metadata)s,
                        %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                _grant_params(grant),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist grant")
            return _row_to_grant(row)

    def get_grant(self, grant_id: str) -> Optional[AnyGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE id = %s
                LIMIT 1
                """,
                (grant_id,),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def list_grants_for_user(self, user_id: str, *, limit: int = 20, offset: int = 0) -> List[AnyGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
                """,
                (user_id, limit, offset),
            )
            rows = cursor.fetchall() or []
            return [_row_to_grant(row) for row in rows]

    def count_grants_for_user(self, user_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT COUNT(*) AS total FROM entitlement_grants WHERE user_id = %s",
                (user_id,),
            )
            row = cursor.fetchone()
            return int(row["total"]) if row else 0

    def grant_totals(self, user_id: str) -> GrantTotals:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT
                    COUNT(*) FILTER (WHERE kind = 'subscription') AS total_subscriptions,
                    COUNT(*) FILTER (WHERE kind = 'subscription' AND status = 'active') AS active_subscriptions,
                    COUNT(*) FILTER (WHERE kind = 'package') AS total_packages,
                    COUNT(*) FILTER (WHERE kind = 'package' AND status = 'active') AS active_packages,
                    COALESCE(SUM(price) FILTER (WHERE status IN ('active', 'expired')), 0) AS total_spent,
                    COALESCE(SUM(used_credits) FILTER (WHERE kind = 'package'), 0) AS credits_used,
                    MAX(started_at) AS last_payment_at,
                    MIN(expired_at) FILTER (WHERE kind = 'subscription' AND status = 'active') AS next_billing_at
                FROM entitlement_grants
                WHERE user_id = %s
                """,
                (user_id,),
            )
            row = cursor.fetchone() or {}
            return GrantTotals(
                total_subscriptions=int(row.get("total_subscriptions") or 0),
                active_subscriptions=int(row.get("active_subscriptions") or 0),
                total_packages=int(row.get("total_packages") or 0),
                active_packages=int(row.get("active_packages") or 0),
                total_spent=Decimal(str(row.get("total_spent") or 0)),
                credits_used=int(row.get("credits_used") or 0),
                last_payment_at=row.get("last_payment_at"),
                next_billing_at=row.get("next_billing_at"),
            )

    def active_subscription_for(self, user_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %(user_id)s
                  AND kind = 'subscription'
                  AND {_ACTIVE_FILTER}
                ORDER BY created_at DESC
                LIMIT 1
                """,
                {"user_id": user_id, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def active_packages_for(self, user_id: str, *, now: datetime) -> List[PackageGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM entitlement_grants
                WHERE user_id = %(user_id)s
                  AND kind = 'package'
                  AND {_ACTIVE_FILTER}
                ORDER BY created_at ASC, id ASC
                """,
                {"user_id": user_id, "now": now},
            )
            rows = cursor.fetchall() or []
            return [_row_to_grant(row) for row in rows]

    def by_external_payment_ref(self, ref: str) -> Optional[AnyGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM entitlement_grants
                WHERE external_payment_ref = %s
                LIMIT 1
                """,
                (ref,),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def has_grant_for_plan(self, user_id: str, plan_name: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM entitlement_grants
                    WHERE user_id = %s AND plan_name = %s
                ) AS found
                """,
                (user_id, plan_name),
            )
            row = cursor.fetchone()
            return bool(row and row["found"])

    def debit_subscription(self, grant_id: str, *, now: datetime) -> Optional[SubscriptionGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE entitlement_grants
                SET weekly_used = weekly_used + 1,
                    monthly_used = monthly_used + 1,
                    updated_at = NOW()
                WHERE id = %(grant_id)s
                  AND kind = 'subscription'
                  AND {_ACTIVE_FILTER}
                  AND weekly_used < weekly_limit
                  AND monthly_used < monthly_limit
                RETURNING *
                """,
                {"grant_id": grant_id, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def debit_package(self, grant_id: str, *, now: datetime) -> Optional[PackageGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE entitlement_grants
                SET used_credits = used_credits + 1,
                    updated_at = NOW()
                WHERE id = %(grant_id)s
                  AND kind = 'package'
                  AND {_ACTIVE_FILTER}
                  AND used_credits < total_credits
                RETURNING *
                """,
                {"grant_id": grant_id, "now": now},
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def activate_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET status = 'active',
                    started_at = %s,
                    updated_at = NOW()
                WHERE id = %s AND status = 'pending'
                RETURNING *
                """,
                (now, grant_id),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def cancel_grant(self, grant_id: str, *, now: datetime) -> Optional[AnyGrant]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET status = 'cancelled',
                    updated_at = %s
                WHERE id = %s AND status IN ('pending', 'active')
                RETURNING *
                """,
                (now, grant_id),
            )
            row = cursor.fetchone()
            return _row_to_grant(row) if row else None

    def cancel_active_subscriptions(self, user_id: str, *, exclude_grant_id: Optional[str], now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET status = 'cancelled',
                    updated_at = %(now)s
                WHERE user_id = %(user_id)s
                  AND kind = 'subscription'
                  AND status = 'active'
                  AND (%(exclude)s::text IS NULL OR id <> %(exclude)s)
                """,
                {"user_id": user_id, "exclude": exclude_grant_id, "now": now},
            )
            return cursor.rowcount

    def expire_due_grants(self, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET status = 'expired',
                    updated_at = NOW()
                WHERE status = 'active'
                  AND expired_at IS NOT NULL
                  AND expired_at <= %s
                """,
                (now,),
            )
            return cursor.rowcount

    def reset_weekly_usage(self) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET weekly_used = 0,
                    updated_at = NOW()
                WHERE kind = 'subscription'
                  AND status = 'active'
                  AND weekly_used > 0
                """
            )
            return cursor.rowcount

    def reset_monthly_usage(self) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE entitlement_grants
                SET monthly_used = 0,
                    updated_at = NOW()
                WHERE kind = 'subscription'
                  AND status = 'active'
                  AND monthly_used > 0
                """
            )
            return cursor.rowcount

    def try_lock_job(self, job_name: str) -> bool:
        """Take the transaction-scoped advisory lock for ``job_name`` without waiting."""

        if not self.bound:
            raise RuntimeError("Job locks require a transaction-bound repository")
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT pg_try_advisory_xact_lock(hashtext(%s)) AS locked",
                (f"entitlements:{job_name}",),
            )
            row = cursor.fetchone()
            return bool(row and row["locked"])

    def claim_job_period(self, job_name: str, period_key: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO entitlement_job_runs (job_name, period_key, claimed_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (job_name, period_key) DO NOTHING
                """,
                (job_name, period_key),
            )
            return cursor.rowcount > 0


__all__ = ["PostgresGrantRepository"]
