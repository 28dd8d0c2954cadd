from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import pytest

from premium import (
    ClientVerifier,
    EntitlementGranter,
    FinalizedBy,
    GatewayConfigError,
    PaymentNotFoundError,
    PaymentSignatureError,
    PaymentStateError,
    PaymentStatus,
    PremiumRepository,
    PremiumValidationError,
    build_session_factory,
    init_premium_db,
    session_scope,
    sign_client_payment,
    verify_client_signature,
)
from premium.repository import as_utc_aware

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
KEY_SECRET = "rzp_key_secret_test"


def make_db():
    engine, session_factory = build_session_factory("sqlite+pysqlite:///:memory:")
    init_premium_db(engine)
    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="combo", name="Combo", price_minor=49900, validity_days=365)
        repo.create_payment(
            user_id="alice",
            plan_id=plan.id,
            amount_minor=49900,
            gateway_order_id="order_abc",
            receipt="rcpt_alice_combo_1",
            now=NOW,
        )
    return engine, session_factory


def make_verifier(session_factory, key_secret: str = KEY_SECRET) -> ClientVerifier:
    return ClientVerifier(session_factory, EntitlementGranter(session_factory), key_secret=key_secret)


def test_client_signature_uses_order_and_payment_ids() -> None:
    expected = hmac.new(KEY_SECRET.encode("utf-8"), b"order_abc|pay_001", hashlib.sha256).hexdigest()
    assert sign_client_payment("order_abc", "pay_001", KEY_SECRET) == expected
    assert verify_client_signature("order_abc", "pay_001", expected, KEY_SECRET)
    assert verify_client_signature("order_abc", "pay_001", expected.upper(), KEY_SECRET)
    assert not verify_client_signature("order_abc", "pay_002", expected, KEY_SECRET)
    assert not verify_client_signature("order_abc", "pay_001", expected, "")
    assert not verify_client_signature("order_abc", "pay_001", "", KEY_SECRET)


def test_double_verify_grants_exactly_once() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory)
    signature = sign_client_payment("order_abc", "pay_001", KEY_SECRET)

    first = verifier.verify("alice", "order_abc", "pay_001", signature, now=NOW)
    assert first.status == "processed"
    assert first.plan_code == "combo"
    assert first.expires_at == NOW + timedelta(days=365)

    second = verifier.verify("alice", "order_abc", "pay_001", signature, now=NOW + timedelta(hours=1))
    assert second.status == "already_processed"
    assert second.expires_at is None

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        payment = repo.get_payment_by_gateway_order_id("order_abc")
        assert payment.status == PaymentStatus.PAID
        assert payment.finalized_by == FinalizedBy.CLIENT
        assert payment.gateway_payment_id == "pay_001"
        assert payment.gateway_signature == signature

        grant = repo.get_access_grant("alice")
        assert grant.combo_unlocked is True
        assert as_utc_aware(grant.combo_expires_at) == NOW + timedelta(days=365)
        assert len(repo.list_notifications("alice")) == 1

    engine.dispose()


def test_other_users_order_looks_missing() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory)
    signature = sign_client_payment("order_abc", "pay_001", KEY_SECRET)

    with pytest.raises(PaymentNotFoundError):
        verifier.verify("mallory", "order_abc", "pay_001", signature, now=NOW)
    with pytest.raises(PaymentNotFoundError):
        verifier.verify("alice", "order_missing", "pay_001", signature, now=NOW)

    with session_scope(session_factory) as session:
        assert PremiumRepository(session).get_payment_by_gateway_order_id("order_abc").status == PaymentStatus.PENDING

    engine.dispose()


def test_forged_signature_leaves_payment_pending() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory)
    forged = sign_client_payment("order_abc", "pay_001", "not-the-secret")

    with pytest.raises(PaymentSignatureError):
        verifier.verify("alice", "order_abc", "pay_001", forged, now=NOW)

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert repo.get_payment_by_gateway_order_id("order_abc").status == PaymentStatus.PENDING
        assert repo.get_access_grant("alice") is None

    engine.dispose()


def test_missing_key_secret_is_a_configuration_error() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory, key_secret="")

    with pytest.raises(GatewayConfigError):
        verifier.verify("alice", "order_abc", "pay_001", "deadbeef", now=NOW)

    engine.dispose()


def test_empty_fields_are_rejected() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory)

    with pytest.raises(PremiumValidationError):
        verifier.verify("alice", "order_abc", "", "sig", now=NOW)
    with pytest.raises(PremiumValidationError):
        verifier.verify("alice", " ", "pay_001", "sig", now=NOW)
    with pytest.raises(PremiumValidationError):
        verifier.verify("alice", "order_abc", "pay_001", "", now=NOW)

    engine.dispose()


def test_failed_payment_cannot_be_verified() -> None:
    engine, session_factory = make_db()
    verifier = make_verifier(session_factory)

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        payment = repo.get_payment_by_gateway_order_id("order_abc")
        assert repo.fail_pending_payment(payment.id, now=NOW)

    signature = sign_client_payment("order_abc", "pay_001", KEY_SECRET)
    with pytest.raises(PaymentStateError):
        verifier.verify("alice", "order_abc", "pay_001", signature, now=NOW)

    with session_scope(session_factory) as session:
        assert PremiumRepository(session).get_access_grant("alice") is None

    engine.dispose()


def test_plan_without_category_leaves_payment_pending() -> None:
    engine, session_factory = build_session_factory("sqlite+pysqlite:///:memory:")
    init_premium_db(engine)
    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="gold", name="Gold", price_minor=99900)
        repo.create_payment(
            user_id="alice",
            plan_id=plan.id,
            amount_minor=99900,
            gateway_order_id="order_gold",
            now=NOW,
        )
    verifier = make_verifier(session_factory)
    signature = sign_client_payment("order_gold", "pay_001", KEY_SECRET)

    with pytest.raises(PremiumValidationError) as excinfo:
        verifier.verify("alice", "order_gold", "pay_001", signature, now=NOW)
    assert excinfo.value.error_code == "PLAN_NOT_AVAILABLE"

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert repo.get_payment_by_gateway_order_id("order_gold").status == PaymentStatus.PENDING
        assert repo.get_access_grant("alice") is None

    engine.dispose()
