"""Exceptions raised by the entitlement engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class EntitlementError(Exception):
    """Represents an entitlement failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None
    retryable: bool = False

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        if self.retryable:
            base_detail["retryable"] = True
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class _CodedError(EntitlementError):
    error_code: ClassVar[str] = "entitlement_error"
    default_message: ClassVar[str] = "Entitlement error."
    default_status: ClassVar[int] = status.HTTP_403_FORBIDDEN
    is_retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            code=self.error_code,
            message=message or self.default_message,
            status_code=self.default_status,
            detail=detail,
            retryable=self.is_retryable,
        )


class InvalidPlanConfiguration(_CodedError):
    """Catalog data is inconsistent with the plan kind."""

    error_code = "invalid_plan_configuration"
    default_message = "Plan configuration is invalid."
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class NoActiveGrant(_CodedError):
    """The user has neither an eligible subscription nor a package."""

    error_code = "no_active_grant"
    default_message = "No active subscription or package."


class LimitReached(_CodedError):
    """The active subscription has exhausted its weekly or monthly quota."""

    error_code = "limit_reached"
    default_message = "Subscription limit reached."


class CreditsExhausted(_CodedError):
    """Every active package has used all of its credits."""

    error_code = "credits_exhausted"
    default_message = "No credits remaining."


class InsufficientEntitlement(_CodedError):
    """No grant could be debited at consumption time."""

    error_code = "insufficient_entitlement"
    default_message = "No entitlement available to consume."
    default_status = status.HTTP_409_CONFLICT

    @property
    def reason(self) -> Optional[str]:
        return self.payload.get("restriction_reason")


class UnknownPaymentReference(_CodedError):
    """A payment event references a grant that is not (yet) stored."""

    error_code = "unknown_payment_reference"
    default_message = "No grant matches the payment reference."
    default_status = status.HTTP_409_CONFLICT
    is_retryable = True


class ConcurrencyConflict(_CodedError):
    """A guarded update affected zero rows because another writer won."""

    error_code = "concurrency_conflict"
    default_message = "Grant was modified concurrently."
    default_status = status.HTTP_409_CONFLICT
    is_retryable = True


class GrantNotFound(_CodedError):
    error_code = "grant_not_found"
    default_message = "Grant not found."
    default_status = status.HTTP_404_NOT_FOUND


class PlanNotFound(_CodedError):
    error_code = "plan_not_found"
    default_message = "Plan not found."
    default_status = status.HTTP_404_NOT_FOUND


__all__ = [
    "ConcurrencyConflict",
    "CreditsExhausted",
    "EntitlementError",
    "GrantNotFound",
    "InsufficientEntitlement",
    "InvalidPlanConfiguration",
    "LimitReached",
    "NoActiveGrant",
    "PlanNotFound",
    "UnknownPaymentReference",
]
