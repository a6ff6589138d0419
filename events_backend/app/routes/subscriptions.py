"""API routes exposing plans, grants and publishing rights."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, status

from events_backend import app_context

from ..catalog.models import PlanKind
from ..entitlements.exceptions import EntitlementError, UnknownPaymentReference
from ..grants.models import PaymentEvent, PaymentEventStatus
from ..schemas.subscriptions import (
    GrantHistoryResponse,
    GrantResponse,
    MyGrantsResponse,
    PaymentWebhookPayload,
    PaymentWebhookResponse,
    PlanListResponse,
    PlanResponse,
    PublishingRightsResponse,
    PurchaseRequest,
    PurchaseResponse,
    UsageStatsResponse,
)
from ..services.entitlements import (
    get_entitlement_policy,
    get_grant_service,
    get_lifecycle_reconciler,
    get_plan_catalog,
)


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    return app_context.get_current_user(session_token=session_token)


router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=PlanListResponse)
def list_plans(kind: Optional[PlanKind] = Query(default=None)) -> PlanListResponse:
    plans = get_plan_catalog().list_available(kind)
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in plans])


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: int) -> PlanResponse:
    try:
        plan = get_plan_catalog().get(plan_id)
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return PlanResponse.from_plan(plan)


@router.get("/my", response_model=MyGrantsResponse)
def my_grants(*, current_user=Depends(_get_current_user)) -> MyGrantsResponse:
    grants = get_grant_service().active_grants(str(current_user.id))
    return MyGrantsResponse.from_grants(grants)


@router.get("/publishing-rights", response_model=PublishingRightsResponse)
def publishing_rights(*, current_user=Depends(_get_current_user)) -> PublishingRightsResponse:
    rights = get_entitlement_policy().evaluate(str(current_user.id))
    return PublishingRightsResponse.from_rights(rights)


@router.get("/stats", response_model=UsageStatsResponse)
def usage_stats(*, current_user=Depends(_get_current_user)) -> UsageStatsResponse:
    stats = get_grant_service().stats(str(current_user.id))
    return UsageStatsResponse.from_stats(stats)


@router.get("/history", response_model=GrantHistoryResponse)
def grant_history(
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    *,
    current_user=Depends(_get_current_user),
) -> GrantHistoryResponse:
    try:
        page = get_grant_service().history(str(current_user.id), limit=limit, offset=offset)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return GrantHistoryResponse.from_page(page)


@router.post("/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
def purchase(
    payload: PurchaseRequest,
    *,
    current_user=Depends(_get_current_user),
) -> PurchaseResponse:
    try:
        result = get_grant_service().purchase(
            str(current_user.id),
            plan_id=payload.plan_id,
            payment_method_id=payload.payment_method_id,
            expected_kind=payload.kind,
        )
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return PurchaseResponse.from_result(result)


@router.post("/webhook/payments", response_model=PaymentWebhookResponse)
def receive_payment_event(payload: PaymentWebhookPayload) -> PaymentWebhookResponse:
    event = PaymentEvent(
        external_ref=payload.external_ref,
        outcome=payload.outcome,
        timestamp=payload.timestamp or datetime.now(timezone.utc),
    )
    result = get_lifecycle_reconciler().apply_payment_event(event)
    if result.status == PaymentEventStatus.UNKNOWN_REFERENCE:
        raise UnknownPaymentReference(detail={"external_ref": payload.external_ref}).to_http_exception()
    return PaymentWebhookResponse.from_result(result)


@router.post("/{grant_id}/cancel", response_model=GrantResponse)
def cancel_grant(
    grant_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> GrantResponse:
    try:
        grant = get_grant_service().cancel(grant_id, str(current_user.id))
    except EntitlementError as exc:
        raise exc.to_http_exception() from exc
    return GrantResponse.from_grant(grant)
