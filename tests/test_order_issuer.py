from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from premium import (
    AccessLedger,
    BasePaymentGateway,
    EntitlementGranter,
    FinalizedBy,
    GatewayConfigError,
    GatewayOrder,
    GatewayUnavailableError,
    OrderIssuer,
    PaymentStatus,
    PlanStatus,
    PremiumRepository,
    PremiumValidationError,
    RazorpayGateway,
    build_session_factory,
    init_premium_db,
    session_scope,
)
from premium.repository import as_utc_aware

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class RecordingGateway(BasePaymentGateway):
    def __init__(self, *, fail_with: Optional[Exception] = None) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.fail_with = fail_with

    @property
    def name(self):
        return "razorpay"

    @property
    def public_key_id(self) -> str:
        return "rzp_test_key"

    def create_order(self, *, amount_minor: int, currency: str, receipt: str, notes=None) -> GatewayOrder:
        self.calls.append({"amount_minor": amount_minor, "currency": currency, "receipt": receipt, "notes": notes})
        if self.fail_with is not None:
            raise self.fail_with
        order_id = f"order_test_{len(self.calls):03d}"
        return GatewayOrder(
            gateway="razorpay",
            order_id=order_id,
            amount_minor=amount_minor,
            currency=currency,
            receipt=receipt,
            raw={"id": order_id, "amount": amount_minor},
        )


def make_db():
    engine, session_factory = build_session_factory("sqlite+pysqlite:///:memory:")
    init_premium_db(engine)
    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        repo.create_plan(code="archive", name="Archive Access", price_minor=0, is_free=True)
        repo.create_plan(code="materials", name="Study Materials", price_minor=29900)
        repo.create_plan(code="combo", name="Combo", price_minor=49900, validity_days=365)
        repo.create_plan(code="gold", name="Gold", price_minor=1000)
    return engine, session_factory


def make_issuer(session_factory, gateway: BasePaymentGateway) -> OrderIssuer:
    return OrderIssuer(session_factory, gateway, EntitlementGranter(session_factory), currency="INR")


def test_free_archive_plan_grants_immediately() -> None:
    engine, session_factory = make_db()
    gateway = RecordingGateway()
    issuer = make_issuer(session_factory, gateway)

    result = issuer.create_order("alice", "archive", now=NOW)

    assert result.is_free is True
    assert result.amount_minor == 0
    assert result.order_id.startswith(f"free_alice_{int(NOW.timestamp() * 1000)}_")
    assert len(result.order_id.rsplit("_", 1)[1]) == 12
    assert result.expires_at == NOW + timedelta(days=365)
    assert gateway.calls == []

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        payment = repo.get_payment_by_gateway_order_id(result.order_id)
        assert payment.status == PaymentStatus.FREE
        assert payment.finalized_by == FinalizedBy.FREE
        assert payment.amount_minor == 0
        assert as_utc_aware(payment.paid_at) == NOW

        grant = repo.get_access_grant("alice")
        assert grant.archive_unlocked is True
        assert as_utc_aware(grant.archive_expires_at) == NOW + timedelta(days=365)
        assert grant.combo_unlocked is False

        notifications = repo.list_notifications("alice")
        assert len(notifications) == 1
        assert notifications[0].title == "Premium activated"
        assert notifications[0].message == "Your Archive Access is active."

    engine.dispose()


def test_paid_plan_opens_pending_gateway_order() -> None:
    engine, session_factory = make_db()
    gateway = RecordingGateway()
    issuer = make_issuer(session_factory, gateway)

    result = issuer.create_order("alice", " COMBO ", now=NOW)

    assert result.is_free is False
    assert result.order_id == "order_test_001"
    assert result.amount_minor == 49900
    assert result.currency == "INR"
    assert result.key_id == "rzp_test_key"
    assert result.plan["code"] == "combo"
    assert result.plan["validity_days"] == 365

    call = gateway.calls[0]
    assert call["amount_minor"] == 49900
    assert call["currency"] == "INR"
    assert call["notes"] == {"user_id": "alice", "plan_code": "combo"}
    assert call["receipt"] == f"rcpt_alice_combo_{int(NOW.timestamp() * 1000)}"

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        payment = repo.get_payment_by_gateway_order_id("order_test_001")
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount_minor == 49900
        assert payment.finalized_by is None
        assert payment.receipt == call["receipt"]
        assert repo.get_access_grant("alice") is None
        assert [log.outcome for log in repo.list_audit_logs()] == ["created"]

    engine.dispose()


def test_receipt_is_capped_at_forty_characters() -> None:
    engine, session_factory = make_db()
    gateway = RecordingGateway()
    issuer = make_issuer(session_factory, gateway)

    issuer.create_order("user-with-a-rather-long-identifier-0001", "materials", now=NOW)
    assert len(gateway.calls[0]["receipt"]) == 40

    engine.dispose()


def test_unknown_inactive_and_uncategorized_plans_are_rejected() -> None:
    engine, session_factory = make_db()
    gateway = RecordingGateway()
    issuer = make_issuer(session_factory, gateway)

    with pytest.raises(PremiumValidationError) as excinfo:
        issuer.create_order("alice", "platinum", now=NOW)
    assert excinfo.value.error_code == "PLAN_NOT_AVAILABLE"

    with pytest.raises(PremiumValidationError):
        issuer.create_order("alice", "gold", now=NOW)

    with pytest.raises(PremiumValidationError):
        issuer.create_order("alice", "", now=NOW)

    with session_scope(session_factory) as session:
        PremiumRepository(session).get_plan_by_code("materials").status = PlanStatus.INACTIVE
    with pytest.raises(PremiumValidationError):
        issuer.create_order("alice", "materials", now=NOW)

    assert gateway.calls == []
    engine.dispose()


def test_gateway_failure_persists_nothing_but_is_audited() -> None:
    engine, session_factory = make_db()
    gateway = RecordingGateway(fail_with=GatewayUnavailableError("connection refused"))
    issuer = make_issuer(session_factory, gateway)

    with pytest.raises(GatewayUnavailableError):
        issuer.create_order("alice", "combo", now=NOW)

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert repo.list_payments() == []
        logs = repo.list_audit_logs()
        assert [log.outcome for log in logs] == ["gateway_error"]
        assert logs[0].event_type == "order.create"
        assert "connection refused" in (logs[0].detail or "")

    engine.dispose()


def test_missing_credentials_only_block_paid_plans() -> None:
    engine, session_factory = make_db()
    gateway = RazorpayGateway(key_id="", key_secret="")
    issuer = make_issuer(session_factory, gateway)

    with pytest.raises(GatewayConfigError):
        issuer.create_order("alice", "combo", now=NOW)

    result = issuer.create_order("alice", "archive", now=NOW)
    assert result.is_free is True

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert [payment.status for payment in repo.list_payments()] == [PaymentStatus.FREE]
        assert [log.outcome for log in repo.list_audit_logs()] == ["config_error"]

    engine.dispose()


def test_notification_failure_does_not_undo_grant(monkeypatch) -> None:
    engine, session_factory = make_db()
    granter = EntitlementGranter(session_factory)

    def _boom(self, **_kwargs):
        raise RuntimeError("notifications table unavailable")

    monkeypatch.setattr(PremiumRepository, "create_notification", _boom)

    expires_at = granter.grant("alice", "materials", 30, plan_name="Study Materials", now=NOW)
    assert expires_at == NOW + timedelta(days=30)

    ledger = AccessLedger(session_factory)
    assert ledger.has_access("alice", "student", "materials", NOW) is True

    engine.dispose()
