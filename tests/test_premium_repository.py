from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from premium import (
    AccessCategory,
    FinalizedBy,
    PaymentStatus,
    PlanCatalog,
    PlanNotFoundError,
    PlanPatch,
    PlanStatus,
    PremiumRepository,
    PremiumStateError,
    PremiumValidationError,
    build_session_factory,
    init_premium_db,
    session_scope,
)
from premium.repository import as_utc_aware

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_db():
    engine, session_factory = build_session_factory("sqlite+pysqlite:///:memory:")
    init_premium_db(engine)
    return engine, session_factory


def test_plan_codes_are_unique_and_normalized() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="  Combo ", name="Combo", price_minor=49900)
        assert plan.code == "combo"
        assert plan.currency == "INR"
        assert plan.validity_days == 365
        assert repo.get_plan_by_code("COMBO") is not None

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        with pytest.raises(PremiumStateError) as excinfo:
            repo.create_plan(code="combo", name="Combo again", price_minor=100)
        assert excinfo.value.error_code == "PLAN_CODE_CONFLICT"

    engine.dispose()


def test_finalize_is_a_single_winner_transition() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="combo", name="Combo", price_minor=49900)
        payment = repo.create_payment(
            user_id="alice",
            plan_id=plan.id,
            amount_minor=49900,
            gateway_order_id="order_001",
            receipt="rcpt_alice_combo_1",
            now=NOW,
        )
        payment_id = payment.id

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert repo.finalize_pending_payment(
            payment_id,
            finalized_by=FinalizedBy.CLIENT,
            gateway_payment_id="pay_001",
            gateway_signature="sig",
            now=NOW,
        )
    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert not repo.finalize_pending_payment(payment_id, finalized_by=FinalizedBy.WEBHOOK, now=NOW)
        assert not repo.fail_pending_payment(payment_id, now=NOW)

    with session_scope(session_factory) as session:
        stored = PremiumRepository(session).get_payment_by_gateway_order_id("order_001")
        assert stored.status == PaymentStatus.PAID
        assert stored.finalized_by == FinalizedBy.CLIENT
        assert stored.gateway_payment_id == "pay_001"
        assert as_utc_aware(stored.paid_at) == NOW
        assert stored.plan.code == "combo"

    engine.dispose()


def test_failed_payment_cannot_be_finalized() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="materials", name="Materials", price_minor=29900)
        payment = repo.create_payment(user_id="alice", plan_id=plan.id, amount_minor=29900, gateway_order_id="order_f")
        assert repo.fail_pending_payment(payment.id, now=NOW)
        assert not repo.finalize_pending_payment(payment.id, finalized_by=FinalizedBy.CLIENT, now=NOW)

    engine.dispose()


def test_duplicate_gateway_order_id_is_rejected() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="combo", name="Combo", price_minor=49900)
        repo.create_payment(user_id="alice", plan_id=plan.id, amount_minor=49900, gateway_order_id="order_dup")
        with pytest.raises(PremiumStateError):
            repo.create_payment(user_id="bob", plan_id=plan.id, amount_minor=49900, gateway_order_id="order_dup")

    with session_scope(session_factory) as session:
        payments = PremiumRepository(session).list_payments()
        assert [item.user_id for item in payments] == ["alice"]

    engine.dispose()


def test_payments_can_only_start_pending_or_free() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        plan = repo.create_plan(code="combo", name="Combo", price_minor=49900)
        with pytest.raises(PremiumStateError):
            repo.create_payment(
                user_id="alice",
                plan_id=plan.id,
                amount_minor=49900,
                gateway_order_id="order_paid",
                status=PaymentStatus.PAID,
            )

    engine.dispose()


def test_access_grant_row_is_created_once_and_updated_per_category() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        first = repo.ensure_access_grant("alice", now=NOW)
        second = repo.ensure_access_grant("alice", now=NOW)
        assert first is second
        repo.apply_category_grant("alice", AccessCategory.MATERIALS, expires_at=NOW + timedelta(days=30), now=NOW)

    with session_scope(session_factory) as session:
        grant = PremiumRepository(session).get_access_grant("alice")
        assert grant.materials_unlocked is True
        assert as_utc_aware(grant.materials_expires_at) == NOW + timedelta(days=30)
        assert grant.archive_unlocked is False
        assert grant.combo_unlocked is False

    with session_scope(session_factory) as session:
        with pytest.raises(PremiumStateError):
            PremiumRepository(session).apply_category_grant(
                "nobody", AccessCategory.ARCHIVE, expires_at=NOW + timedelta(days=1), now=NOW
            )

    engine.dispose()


def test_audit_log_filters() -> None:
    engine, session_factory = make_db()

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        repo.record_audit_log(
            event_type="payment.captured",
            raw_payload="{}",
            outcome="processed",
            gateway_order_id="order_a",
            signature_valid=True,
            occurred_at=NOW,
        )
        repo.record_audit_log(
            event_type="payment.webhook",
            raw_payload="not json",
            outcome="rejected_signature",
            occurred_at=NOW + timedelta(seconds=1),
        )

    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        assert [log.outcome for log in repo.list_audit_logs()] == ["rejected_signature", "processed"]
        assert len(repo.list_audit_logs(gateway_order_id="order_a")) == 1
        assert len(repo.list_audit_logs(outcome="rejected_signature")) == 1

    engine.dispose()


def test_catalog_admin_operations() -> None:
    engine, session_factory = make_db()
    catalog = PlanCatalog(session_factory)

    archive = catalog.create_plan(code="archive", name="Archive", price_minor=0, is_free=True)
    combo = catalog.create_plan(code="combo", name="Combo", price_minor=49900)
    assert [plan.code for plan in catalog.list_active()] == ["archive", "combo"]

    updated = catalog.update_plan(combo.id, PlanPatch(price_minor=59900, name=" Combo Plus "))
    assert updated.price_minor == 59900
    assert updated.name == "Combo Plus"
    assert updated.validity_days == 365

    with pytest.raises(PremiumStateError) as excinfo:
        catalog.update_plan(combo.id, PlanPatch(code="archive"))
    assert excinfo.value.error_code == "PLAN_CODE_CONFLICT"

    deactivated = catalog.deactivate_plan(archive.id)
    assert deactivated.status == PlanStatus.INACTIVE
    assert [plan.code for plan in catalog.list_active()] == ["combo"]
    assert {plan.code for plan in catalog.list_all()} == {"archive", "combo"}
    assert catalog.get_by_code(" ARCHIVE ").status == PlanStatus.INACTIVE

    with pytest.raises(PlanNotFoundError):
        catalog.deactivate_plan("missing-plan-id")

    engine.dispose()


def test_plan_with_orders_keeps_grant_fields() -> None:
    engine, session_factory = make_db()
    catalog = PlanCatalog(session_factory)
    combo = catalog.create_plan(code="combo", name="Combo", price_minor=49900)
    with session_scope(session_factory) as session:
        PremiumRepository(session).create_payment(
            user_id="alice",
            plan_id=combo.id,
            amount_minor=49900,
            gateway_order_id="order_1",
            now=NOW,
        )

    for patch in (PlanPatch(code="bundle"), PlanPatch(validity_days=30), PlanPatch(is_free=True)):
        with pytest.raises(PremiumStateError) as excinfo:
            catalog.update_plan(combo.id, patch)
        assert excinfo.value.error_code == "PLAN_IN_USE"

    updated = catalog.update_plan(
        combo.id,
        PlanPatch(code="combo", name="Combo 2026", price_minor=59900, status=PlanStatus.INACTIVE),
    )
    assert updated.code == "combo"
    assert updated.name == "Combo 2026"
    assert updated.price_minor == 59900
    assert updated.status == PlanStatus.INACTIVE
    assert updated.validity_days == 365

    engine.dispose()


def test_plan_patch_is_validated_before_store_access() -> None:
    engine, session_factory = make_db()
    catalog = PlanCatalog(session_factory)

    with pytest.raises(PremiumValidationError):
        catalog.update_plan("any", PlanPatch())
    with pytest.raises(PremiumValidationError):
        catalog.update_plan("any", PlanPatch(price_minor=-1))
    with pytest.raises(PremiumValidationError):
        catalog.update_plan("any", PlanPatch(validity_days=0))
    with pytest.raises(PremiumValidationError):
        catalog.update_plan("any", PlanPatch(code="   "))
    with pytest.raises(PremiumValidationError):
        catalog.create_plan(code="x", name="X", price_minor=-5)

    engine.dispose()
