"""Plan catalog lookups, validation and seeding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Sequence

from ..entitlements.exceptions import PlanNotFound
from .defaults import DEFAULT_PLANS
from .models import Plan, PlanKind

logger = logging.getLogger(__name__)


class PlanRepository(Protocol):
    """Persistence operations required by the plan catalog."""

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        ...

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        ...

    def list_plans(self, *, kind: Optional[PlanKind] = None, active_only: bool = True) -> Sequence[Plan]:
        ...

    def count_plans(self) -> int:
        ...

    def insert_plan(self, plan: Plan) -> Plan:
        ...


@dataclass
class PlanCatalog:
    """Read-mostly access to the published plan templates."""

    repository: PlanRepository

    def get(self, plan_id: int) -> Plan:
        plan = self.repository.get_plan(plan_id)
        if plan is None:
            raise PlanNotFound(detail={"plan_id": plan_id})
        return plan

    def get_by_name(self, name: str) -> Plan:
        plan = self.repository.get_plan_by_name(name)
        if plan is None:
            raise PlanNotFound(detail={"plan_name": name})
        return plan

    def list_available(self, kind: Optional[PlanKind] = None) -> List[Plan]:
        plans = [plan for plan in self.repository.list_plans(kind=kind, active_only=True) if plan.is_active]
        plans.sort(key=lambda plan: (plan.sort_order, plan.id if plan.id is not None else 0))
        return plans

    def validate(self, plan: Plan) -> Plan:
        """Return the normalized plan or raise ``InvalidPlanConfiguration``."""

        return plan.validated()

    def create_plan(self, plan: Plan) -> Plan:
        normalized = self.validate(plan)
        stored = self.repository.insert_plan(normalized)
        logger.info(
            "Created plan %s",
            stored.name,
            extra={"plan_id": stored.id, "plan_kind": stored.kind.value},
        )
        return stored

    def seed_default_plans(self, plans: Iterable[Plan] = DEFAULT_PLANS, *, currency: Optional[str] = None) -> int:
        """Insert the default catalog when no plan exists yet; return the number inserted.

        ``currency`` overrides the currency of every seeded plan.
        """

        if self.repository.count_plans() > 0:
            logger.debug("Plan catalog already populated, skipping seed")
            return 0
        inserted = 0
        for plan in plans:
            if currency:
                plan = plan.model_copy(update={"currency": currency.upper()})
            self.create_plan(plan)
            inserted += 1
        logger.info("Seeded %s default plans", inserted)
        return inserted


__all__ = ["PlanCatalog", "PlanRepository"]
