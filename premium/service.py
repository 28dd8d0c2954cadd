from __future__ import annotations

import datetime as dt
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Final, Optional

from observability import get_logger, log_event

from .db import SessionFactory, session_scope
from .exceptions import (
    GatewayConfigError,
    GatewayUnavailableError,
    PaymentNotFoundError,
    PaymentSignatureError,
    PaymentStateError,
    PremiumValidationError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from .gateway import BasePaymentGateway
from .ledger import category_for_plan_code
from .models import TERMINAL_SUCCESS_STATUSES, FinalizedBy, PaymentStatus, Plan
from .repository import PremiumRepository, _current
from .signatures import verify_client_signature, verify_webhook_signature

SUCCESS_EVENT_TYPES: Final[frozenset[str]] = frozenset({"payment.captured", "order.paid"})
RECEIPT_MAX_LENGTH: Final[int] = 40
NOTIFICATION_TITLE: Final[str] = "Premium activated"
STALE_PAYMENT_BATCH_SIZE: Final[int] = 500

_LOGGER = get_logger("premium.service")


def _epoch_ms(now: dt.datetime) -> int:
    return int(now.timestamp() * 1000)


def _plan_summary(plan: Plan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "code": plan.code,
        "name": plan.name,
        "price_minor": int(plan.price_minor or 0),
        "currency": plan.currency,
        "validity_days": int(plan.validity_days or 0),
        "is_free": plan.is_free_of_charge,
    }


class EntitlementGranter:
    """
    The only writer of access grants.

    Callers are expected to have won the payment finalization already; the
    granter does not look at payment status.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def grant(
        self,
        user_id: str,
        plan_code: str,
        validity_days: int,
        *,
        plan_name: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> dt.datetime:
        category = category_for_plan_code(plan_code)
        if category is None:
            raise PremiumValidationError(f"plan has no access category: {plan_code}", error_code="PLAN_NOT_AVAILABLE")
        current = _current(now)
        expires_at = current + dt.timedelta(days=int(validity_days))

        with session_scope(self._session_factory) as session:
            repo = PremiumRepository(session)
            repo.ensure_access_grant(user_id, now=current)
            repo.apply_category_grant(user_id, category, expires_at=expires_at, now=current)

        log_event(
            _LOGGER,
            logging.INFO,
            "premium.grant.applied",
            user_id=user_id,
            plan_code=plan_code,
            category=category.value,
            expires_at=expires_at,
        )

        # Notification is a side effect; the grant above is already committed.
        try:
            with session_scope(self._session_factory) as session:
                PremiumRepository(session).create_notification(
                    user_id=user_id,
                    title=NOTIFICATION_TITLE,
                    message=f"Your {plan_name or plan_code} is active.",
                )
        except Exception as exc:  # noqa: BLE001
            log_event(
                _LOGGER,
                logging.WARNING,
                "premium.notification.failed",
                user_id=user_id,
                plan_code=plan_code,
                error=str(exc),
            )
        return expires_at


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    amount_minor: int
    currency: str
    plan: dict[str, Any]
    is_free: bool = False
    key_id: str = ""
    expires_at: Optional[dt.datetime] = None


class OrderIssuer:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: BasePaymentGateway,
        granter: EntitlementGranter,
        *,
        currency: str = "INR",
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._granter = granter
        self._currency = str(currency or "INR").upper()

    def _load_plan(self, plan_code: str) -> Plan:
        code = str(plan_code or "").strip().lower()
        if not code:
            raise PremiumValidationError("planCode is required")
        with session_scope(self._session_factory) as session:
            plan = PremiumRepository(session).get_plan_by_code(code)
        if plan is None or not plan.is_active:
            raise PremiumValidationError(f"plan not available: {code}", error_code="PLAN_NOT_AVAILABLE")
        if category_for_plan_code(plan.code) is None:
            raise PremiumValidationError(f"plan has no access category: {code}", error_code="PLAN_NOT_AVAILABLE")
        return plan

    def create_order(self, user_id: str, plan_code: str, *, now: Optional[dt.datetime] = None) -> OrderResult:
        user_key = str(user_id or "").strip()
        if not user_key:
            raise PremiumValidationError("user_id is required")
        plan = self._load_plan(plan_code)
        current = _current(now)
        if plan.is_free_of_charge:
            return self._issue_free(user_key, plan, current)
        return self._issue_paid(user_key, plan, current)

    def _issue_free(self, user_id: str, plan: Plan, now: dt.datetime) -> OrderResult:
        expires_at = self._granter.grant(
            user_id,
            plan.code,
            plan.validity_days,
            plan_name=plan.name,
            now=now,
        )
        order_id = f"free_{user_id}_{_epoch_ms(now)}_{secrets.token_hex(6)}"
        with session_scope(self._session_factory) as session:
            PremiumRepository(session).create_payment(
                user_id=user_id,
                plan_id=plan.id,
                amount_minor=0,
                currency=plan.currency or self._currency,
                gateway_order_id=order_id,
                status=PaymentStatus.FREE,
                finalized_by=FinalizedBy.FREE,
                paid_at=now,
                now=now,
            )
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.order.free_granted",
            user_id=user_id,
            plan_code=plan.code,
            order_id=order_id,
        )
        return OrderResult(
            order_id=order_id,
            amount_minor=0,
            currency=plan.currency or self._currency,
            plan=_plan_summary(plan),
            is_free=True,
            expires_at=expires_at,
        )

    def _issue_paid(self, user_id: str, plan: Plan, now: dt.datetime) -> OrderResult:
        receipt = f"rcpt_{user_id}_{plan.code}_{_epoch_ms(now)}"[:RECEIPT_MAX_LENGTH]
        notes = {"user_id": user_id, "plan_code": plan.code}
        request_payload = {
            "amount": int(plan.price_minor),
            "currency": self._currency,
            "receipt": receipt,
            "notes": notes,
        }
        try:
            order = self._gateway.create_order(
                amount_minor=int(plan.price_minor),
                currency=self._currency,
                receipt=receipt,
                notes=notes,
            )
        except (GatewayConfigError, GatewayUnavailableError) as exc:
            outcome = "config_error" if isinstance(exc, GatewayConfigError) else "gateway_error"
            with session_scope(self._session_factory) as session:
                PremiumRepository(session).record_audit_log(
                    provider=self._gateway.name,
                    event_type="order.create",
                    raw_payload=json.dumps(request_payload, ensure_ascii=False),
                    outcome=outcome,
                    detail=str(exc),
                    occurred_at=now,
                )
            log_event(
                _LOGGER,
                logging.ERROR,
                "premium.order.gateway_failed",
                user_id=user_id,
                plan_code=plan.code,
                outcome=outcome,
                error=str(exc),
            )
            raise

        with session_scope(self._session_factory) as session:
            repo = PremiumRepository(session)
            repo.create_payment(
                user_id=user_id,
                plan_id=plan.id,
                amount_minor=int(plan.price_minor),
                currency=self._currency,
                receipt=receipt,
                gateway_order_id=order.order_id,
                status=PaymentStatus.PENDING,
                now=now,
            )
            repo.record_audit_log(
                provider=self._gateway.name,
                event_type="order.create",
                gateway_order_id=order.order_id,
                raw_payload=json.dumps(order.raw or request_payload, ensure_ascii=False, default=str),
                outcome="created",
                occurred_at=now,
            )
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.order.created",
            user_id=user_id,
            plan_code=plan.code,
            order_id=order.order_id,
            amount_minor=int(plan.price_minor),
        )
        return OrderResult(
            order_id=order.order_id,
            amount_minor=int(plan.price_minor),
            currency=self._currency,
            plan=_plan_summary(plan),
            key_id=self._gateway.public_key_id,
        )


@dataclass(frozen=True)
class VerifyResult:
    status: str
    order_id: str
    plan_code: Optional[str] = None
    expires_at: Optional[dt.datetime] = None


class ClientVerifier:
    def __init__(self, session_factory: SessionFactory, granter: EntitlementGranter, *, key_secret: str) -> None:
        self._session_factory = session_factory
        self._granter = granter
        self._key_secret = str(key_secret or "")

    def verify(
        self,
        user_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        *,
        now: Optional[dt.datetime] = None,
    ) -> VerifyResult:
        user_key = str(user_id or "").strip()
        order_key = str(order_id or "").strip()
        payment_key = str(payment_id or "").strip()
        provided = str(signature or "").strip()
        if not (user_key and order_key and payment_key and provided):
            raise PremiumValidationError("orderId, paymentId and signature are required")

        with session_scope(self._session_factory) as session:
            payment = PremiumRepository(session).get_payment_by_gateway_order_id(order_key)
            plan = payment.plan if payment is not None else None
        # Someone else's order looks exactly like a missing one.
        if payment is None or plan is None or str(payment.user_id) != user_key:
            raise PaymentNotFoundError(f"payment not found: {order_key}")

        if not self._key_secret:
            raise GatewayConfigError("RAZORPAY_KEY_SECRET is missing")
        if not verify_client_signature(order_key, payment_key, provided, self._key_secret):
            log_event(
                _LOGGER,
                logging.WARNING,
                "premium.verify.signature_invalid",
                user_id=user_key,
                order_id=order_key,
            )
            raise PaymentSignatureError("invalid payment signature")

        if payment.status in TERMINAL_SUCCESS_STATUSES:
            return VerifyResult(status="already_processed", order_id=order_key, plan_code=plan.code)
        if payment.status != PaymentStatus.PENDING:
            raise PaymentStateError(f"payment is {payment.status.value}: {order_key}")
        if category_for_plan_code(plan.code) is None:
            raise PremiumValidationError(f"plan has no access category: {plan.code}", error_code="PLAN_NOT_AVAILABLE")

        current = _current(now)
        with session_scope(self._session_factory) as session:
            won = PremiumRepository(session).finalize_pending_payment(
                payment.id,
                finalized_by=FinalizedBy.CLIENT,
                gateway_payment_id=payment_key,
                gateway_signature=provided,
                now=current,
            )
        if not won:
            log_event(_LOGGER, logging.INFO, "premium.verify.already_processed", order_id=order_key)
            return VerifyResult(status="already_processed", order_id=order_key, plan_code=plan.code)

        expires_at = self._granter.grant(
            user_key,
            plan.code,
            plan.validity_days,
            plan_name=plan.name,
            now=current,
        )
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.verify.processed",
            user_id=user_key,
            order_id=order_key,
            plan_code=plan.code,
        )
        return VerifyResult(status="processed", order_id=order_key, plan_code=plan.code, expires_at=expires_at)


@dataclass(frozen=True)
class WebhookResult:
    status: str
    event_type: str = ""
    order_id: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[dt.datetime] = None
    detail: dict[str, Any] = field(default_factory=dict)


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    container = payload.get(name)
    if not isinstance(container, dict):
        return {}
    entity = container.get("entity")
    return entity if isinstance(entity, dict) else {}


def extract_gateway_order_id(event: dict[str, Any]) -> Optional[str]:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return None
    candidates = (
        _entity(payload, "payment").get("order_id"),
        _entity(payload, "order").get("id"),
        _entity(payload, "payment_link").get("order_id"),
    )
    for value in candidates:
        text = str(value or "").strip()
        if text:
            return text
    return None


def extract_gateway_payment_id(event: dict[str, Any]) -> Optional[str]:
    payload = event.get("payload")
    if not isinstance(payload, dict):
        return None
    text = str(_entity(payload, "payment").get("id") or "").strip()
    return text or None


class WebhookReconciler:
    def __init__(
        self,
        session_factory: SessionFactory,
        granter: EntitlementGranter,
        *,
        webhook_secret: str,
        provider: str = "razorpay",
    ) -> None:
        self._session_factory = session_factory
        self._granter = granter
        self._webhook_secret = str(webhook_secret or "")
        self._provider = provider

    def _audit(
        self,
        *,
        raw_text: str,
        signature: str,
        signature_valid: bool,
        outcome: str,
        event_type: str = "payment.webhook",
        gateway_order_id: Optional[str] = None,
        detail: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            PremiumRepository(session).record_audit_log(
                provider=self._provider,
                event_type=event_type,
                gateway_order_id=gateway_order_id,
                raw_payload=raw_text,
                signature=signature,
                signature_valid=signature_valid,
                outcome=outcome,
                detail=detail,
                occurred_at=now,
            )

    def handle(self, raw_body: bytes, signature_header: str, *, now: Optional[dt.datetime] = None) -> WebhookResult:
        """
        Reconcile one signed gateway delivery.

        Rejections (bad signature, unparseable body) raise; everything else is
        acknowledged with a status so the gateway stops retrying.
        """

        current = _current(now)
        signature = str(signature_header or "").strip()
        raw_text = bytes(raw_body or b"").decode("utf-8", errors="replace")

        if not self._webhook_secret:
            self._audit(
                raw_text=raw_text,
                signature=signature,
                signature_valid=False,
                outcome="rejected_config",
                detail="webhook secret missing",
                now=current,
            )
            raise GatewayConfigError("RAZORPAY_WEBHOOK_SECRET is missing")

        if not verify_webhook_signature(bytes(raw_body or b""), signature, self._webhook_secret):
            self._audit(
                raw_text=raw_text,
                signature=signature,
                signature_valid=False,
                outcome="rejected_signature",
                detail="invalid webhook signature",
                now=current,
            )
            log_event(_LOGGER, logging.WARNING, "premium.webhook.signature_invalid", body_bytes=len(raw_body or b""))
            raise WebhookSignatureError("invalid webhook signature")

        event: Any = None
        detail = "payload is not a JSON object"
        try:
            event = json.loads(raw_text)
        except ValueError as exc:
            detail = str(exc)
        if not isinstance(event, dict):
            self._audit(
                raw_text=raw_text,
                signature=signature,
                signature_valid=True,
                outcome="rejected_payload",
                detail=detail,
                now=current,
            )
            raise WebhookPayloadError(f"invalid webhook payload: {detail}")

        event_type = str(event.get("event") or "").strip().lower()
        order_id = extract_gateway_order_id(event)
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.webhook.received",
            event_type=event_type or "unknown",
            order_id=order_id,
        )

        try:
            result = self._reconcile(event, event_type=event_type, order_id=order_id, now=current)
        except Exception as exc:
            self._audit(
                raw_text=raw_text,
                signature=signature,
                signature_valid=True,
                outcome="error",
                event_type=event_type or "payment.webhook",
                gateway_order_id=order_id,
                detail=str(exc),
                now=current,
            )
            raise

        self._audit(
            raw_text=raw_text,
            signature=signature,
            signature_valid=True,
            outcome=result.status,
            event_type=event_type or "payment.webhook",
            gateway_order_id=order_id,
            detail=result.reason,
            now=current,
        )
        return result

    def _reconcile(
        self,
        event: dict[str, Any],
        *,
        event_type: str,
        order_id: Optional[str],
        now: dt.datetime,
    ) -> WebhookResult:
        if not order_id:
            log_event(_LOGGER, logging.INFO, "premium.webhook.ignored", event_type=event_type, reason="no_order_id")
            return WebhookResult(status="ignored", event_type=event_type, reason="order id not present")

        with session_scope(self._session_factory) as session:
            payment = PremiumRepository(session).get_payment_by_gateway_order_id(order_id)
            plan = payment.plan if payment is not None else None
        if payment is None or plan is None:
            log_event(_LOGGER, logging.INFO, "premium.webhook.missing", event_type=event_type, order_id=order_id)
            return WebhookResult(status="missing", event_type=event_type, order_id=order_id, reason="unknown order")

        if payment.status in TERMINAL_SUCCESS_STATUSES:
            return WebhookResult(status="already_processed", event_type=event_type, order_id=order_id)
        if payment.status != PaymentStatus.PENDING:
            log_event(
                _LOGGER,
                logging.WARNING,
                "premium.webhook.ignored_terminal",
                event_type=event_type,
                order_id=order_id,
                payment_status=payment.status.value,
            )
            return WebhookResult(
                status="ignored",
                event_type=event_type,
                order_id=order_id,
                reason=f"payment is {payment.status.value}",
            )

        if event_type not in SUCCESS_EVENT_TYPES:
            log_event(_LOGGER, logging.INFO, "premium.webhook.ignored", event_type=event_type or "unknown", order_id=order_id)
            return WebhookResult(
                status="ignored",
                event_type=event_type,
                order_id=order_id,
                reason=f"unsupported event={event_type or '-'}",
            )
        if category_for_plan_code(plan.code) is None:
            # Left pending: nothing can be granted for this plan.
            log_event(
                _LOGGER,
                logging.WARNING,
                "premium.webhook.plan_unmapped",
                event_type=event_type,
                order_id=order_id,
                plan_code=plan.code,
            )
            return WebhookResult(
                status="ignored",
                event_type=event_type,
                order_id=order_id,
                reason=f"plan has no access category: {plan.code}",
            )

        with session_scope(self._session_factory) as session:
            won = PremiumRepository(session).finalize_pending_payment(
                payment.id,
                finalized_by=FinalizedBy.WEBHOOK,
                gateway_payment_id=extract_gateway_payment_id(event),
                now=now,
            )
        if not won:
            return WebhookResult(status="already_processed", event_type=event_type, order_id=order_id)

        expires_at = self._granter.grant(
            payment.user_id,
            plan.code,
            plan.validity_days,
            plan_name=plan.name,
            now=now,
        )
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.webhook.processed",
            event_type=event_type,
            order_id=order_id,
            user_id=payment.user_id,
        )
        return WebhookResult(status="processed", event_type=event_type, order_id=order_id, expires_at=expires_at)


def close_stale_payments(
    repo: PremiumRepository,
    *,
    timeout_seconds: int,
    now: Optional[dt.datetime] = None,
    batch_size: int = STALE_PAYMENT_BATCH_SIZE,
) -> int:
    """
    Fail pending payments older than `timeout_seconds`, oldest first.

    Uses the same `status = 'pending'` guard as the finalizers, so a payment
    confirmed concurrently stays paid. Batches repeat until no stale record
    is left.
    """

    current = _current(now)
    cutoff = current - dt.timedelta(seconds=int(timeout_seconds))

    closed = 0
    while True:
        batch = repo.list_stale_pending_payments(cutoff=cutoff, limit=batch_size)
        if not batch:
            break
        progressed = 0
        for payment in batch:
            if repo.fail_pending_payment(payment.id, now=current):
                progressed += 1
        closed += progressed
        if progressed == 0:
            break
    return closed
