"""Entitlement engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timezone, tzinfo
from typing import Mapping, Optional
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class EntitlementConfig:
    """Configuration for the entitlement engine and its background jobs."""

    timezone_name: str
    scheduler_enabled: bool
    expire_sweep_interval_seconds: int
    default_currency: str
    payment_ref_prefix: str

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone_name)


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def resolve_timezone(name: str) -> tzinfo:
    """Return the tzinfo for an IANA zone name; ``UTC`` needs no tz database."""

    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {name!r}") from exc


def load_entitlement_config(env: Optional[Mapping[str, str]] = None) -> EntitlementConfig:
    """Load :class:`EntitlementConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    timezone_name = (env_mapping.get("ENTITLEMENT_TIMEZONE") or "UTC").strip() or "UTC"
    resolve_timezone(timezone_name)

    scheduler_enabled = _to_bool(env_mapping.get("ENTITLEMENT_SCHEDULER_ENABLED"), default=False)
    sweep_interval = max(1, _to_int(env_mapping.get("ENTITLEMENT_EXPIRE_SWEEP_INTERVAL"), default=300))
    default_currency = (env_mapping.get("ENTITLEMENT_DEFAULT_CURRENCY") or "EUR").strip().upper()
    payment_ref_prefix = env_mapping.get("ENTITLEMENT_PAYMENT_REF_PREFIX", "pi_")

    return EntitlementConfig(
        timezone_name=timezone_name,
        scheduler_enabled=scheduler_enabled,
        expire_sweep_interval_seconds=sweep_interval,
        default_currency=default_currency,
        payment_ref_prefix=payment_ref_prefix,
    )


__all__ = ["EntitlementConfig", "load_entitlement_config", "resolve_timezone"]
