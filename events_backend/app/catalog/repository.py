"""PostgreSQL persistence for plan templates."""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

import psycopg2.extras

from ..persistence import PostgresRepository
from .models import BillingCycle, Plan, PlanKind


def _row_to_plan(row: dict) -> Plan:
    billing_cycle = row.get("billing_cycle")
    return Plan(
        id=row["id"],
        kind=PlanKind(row["kind"]),
        name=row["name"],
        display_name=row.get("display_name") or "",
        description=row.get("description") or "",
        price=Decimal(str(row["price"])),
        currency=row.get("currency") or "EUR",
        billing_cycle=BillingCycle(billing_cycle) if billing_cycle else None,
        weekly_limit=row.get("weekly_limit"),
        monthly_limit=row.get("monthly_limit"),
        total_credits=row.get("total_credits"),
        duration_days=row.get("duration_days"),
        is_active=bool(row.get("is_active", True)),
        sort_order=int(row.get("sort_order") or 0),
        metadata=row.get("metadata") or {},
        external_price_id=row.get("external_price_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresPlanRepository(PostgresRepository):
    """Concrete repository reading and writing ``subscription_plans``."""

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscription_plans
                WHERE id = %s
                LIMIT 1
                """,
                (plan_id,),
            )
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM subscription_plans
                WHERE name = %s
                LIMIT 1
                """,
                (name,),
            )
            row = cursor.fetchone()
            return _row_to_plan(row) if row else None

    def list_plans(self, *, kind: Optional[PlanKind] = None, active_only: bool = True) -> List[Plan]:
        clauses = []
        params: list = []
        if kind is not None:
            clauses.append("kind = %s")
            params.append(kind.value)
        if active_only:
            clauses.append("is_active = TRUE")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT *
                FROM subscription_plans
                {where}
                ORDER BY sort_order ASC, id ASC
                """,
                tuple(params),
            )
            rows = cursor.fetchall() or []
            return [_row_to_plan(row) for row in rows]

    def count_plans(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS total FROM subscription_plans")
            row = cursor.fetchone()
            return int(row["total"]) if row else 0

    def insert_plan(self, plan: Plan) -> Plan:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscription_plans (
                    kind,
                    name,
                    display_name,
                    description,
                    price,
                    currency,
                    billing_cycle,
                    weekly_limit,
                    monthly_limit,
                    total_credits,
                    duration_days,
                    is_active,
                    sort_order,
                    metadata,
                    external_price_id
                )
                VALUES (%(kind)s, %(name)s, %(display_name)s, %(description)s, %(price)s,
                        %(currency)s, %(billing_cycle)s, %(weekly_limit)s, %(monthly_limit)s,
                        %(total_credits)s, %(duration_days)s, %(is_active)s, %(sort_order)s,
                        %(metadata)s, %(external_price_id)s)
                RETURNING *
                """,
                {
                    "kind": plan.kind.value,
                    "name": plan.name,
                    "display_name": plan.display_name,
                    "description": plan.description,
                    "price": plan.price,
                    "currency": plan.currency,
                    "billing_cycle": plan.billing_cycle.value if plan.billing_cycle else None,
                    "weekly_limit": plan.weekly_limit,
                    "monthly_limit": plan.monthly_limit,
                    "total_credits": plan.total_credits,
                    "duration_days": plan.duration_days,
                    "is_active": plan.is_active,
                    "sort_order": plan.sort_order,
                    "metadata": psycopg2.extras.Json(plan.metadata_dict()),
                    "external_price_id": plan.external_price_id,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist plan")
            return _row_to_plan(row)


__all__ = ["PostgresPlanRepository"]
