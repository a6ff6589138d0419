import logging
from decimal import Decimal

from events_backend.app.grants.models import GrantAuditEvent, GrantAuditEventType
from events_backend.app.services.entitlements import LocalSandboxPaymentProvider, LoggingGrantEventLogger


def test_sandbox_provider_settles_free_payments_only():
    provider = LocalSandboxPaymentProvider(ref_prefix="sandbox_")

    free = provider.create_payment_intent(
        user_id="u", amount=Decimal("0"), currency="EUR", payment_method_id="pm", metadata={}
    )
    paid = provider.create_payment_intent(
        user_id="u", amount=Decimal("78.00"), currency="EUR", payment_method_id="pm", metadata={}
    )

    assert free["status"] == "succeeded"
    assert paid["status"] == "pending"
    assert str(paid["id"]).startswith("sandbox_")
    assert free["id"] != paid["id"]
    assert paid["requires_action"] is False


def test_logging_event_logger_forwards_to_entitlements_logger(caplog):
    caplog.set_level(logging.INFO, logger="entitlements")

    LoggingGrantEventLogger().log(
        GrantAuditEvent(
            event_type=GrantAuditEventType.GRANT_CONSUMED,
            grant_id="grt_1",
            user_id="user-1",
            metadata={"grant_kind": "package"},
        )
    )

    assert "grant_consumed" in caplog.text
    assert "grt_1" in caplog.text
