from datetime import timezone

import pytest

from events_backend.config import load_entitlement_config, resolve_timezone


def test_defaults_when_environment_is_empty():
    config = load_entitlement_config({})

    assert config.timezone_name == "UTC"
    assert config.tz is timezone.utc
    assert config.scheduler_enabled is False
    assert config.expire_sweep_interval_seconds == 300
    assert config.default_currency == "EUR"
    assert config.payment_ref_prefix == "pi_"


def test_environment_overrides():
    config = load_entitlement_config(
        {
            "ENTITLEMENT_TIMEZONE": "utc",
            "ENTITLEMENT_SCHEDULER_ENABLED": "yes",
            "ENTITLEMENT_EXPIRE_SWEEP_INTERVAL": "0",
            "ENTITLEMENT_DEFAULT_CURRENCY": "usd",
            "ENTITLEMENT_PAYMENT_REF_PREFIX": "sandbox_",
        }
    )

    assert config.scheduler_enabled is True
    assert config.expire_sweep_interval_seconds == 1
    assert config.default_currency == "USD"
    assert config.payment_ref_prefix == "sandbox_"


def test_invalid_values_are_rejected():
    with pytest.raises(ValueError):
        load_entitlement_config({"ENTITLEMENT_EXPIRE_SWEEP_INTERVAL": "often"})
    with pytest.raises(ValueError):
        load_entitlement_config({"ENTITLEMENT_TIMEZONE": "Not/AZone"})


def test_resolve_named_timezone():
    try:
        zone = resolve_timezone("Europe/Berlin")
    except ValueError:
        pytest.skip("no IANA timezone database available")

    assert zone.key == "Europe/Berlin"
