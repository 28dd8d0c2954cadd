from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .exceptions import PlanNotFoundError, PremiumStateError
from .models import (
    AccessCategory,
    AccessGrant,
    FinalizedBy,
    Notification,
    NotificationStatus,
    PaymentAuditLog,
    PaymentRecord,
    PaymentStatus,
    Plan,
    PlanStatus,
)

if TYPE_CHECKING:
    from .catalog import PlanPatch


def as_utc_aware(dt: datetime) -> datetime:
    """
    Normalize datetimes to UTC aware.

    SQLite often returns offset-naive datetimes even when SQLAlchemy models use
    DateTime(timezone=True). Treat naive values as UTC to avoid TypeError when
    comparing with timezone-aware "now".
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _current(now: Optional[datetime]) -> datetime:
    return as_utc_aware(now) if now else datetime.now(timezone.utc)


_GRANT_COLUMNS = {
    AccessCategory.ARCHIVE: (AccessGrant.archive_unlocked, AccessGrant.archive_expires_at),
    AccessCategory.MATERIALS: (AccessGrant.materials_unlocked, AccessGrant.materials_expires_at),
    AccessCategory.COMBO: (AccessGrant.combo_unlocked, AccessGrant.combo_expires_at),
}


class PremiumRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # Plans

    def create_plan(
        self,
        *,
        code: str,
        name: str,
        price_minor: int,
        validity_days: int = 365,
        currency: str = "INR",
        status: PlanStatus = PlanStatus.ACTIVE,
        is_free: bool = False,
        now: Optional[datetime] = None,
    ) -> Plan:
        normalized_code = str(code or "").strip().lower()
        if not normalized_code:
            raise PremiumStateError("plan code is required", error_code="INVALID_REQUEST")
        if self.get_plan_by_code(normalized_code) is not None:
            raise PremiumStateError(f"plan code already exists: {normalized_code}", error_code="PLAN_CODE_CONFLICT")
        current = _current(now)
        plan = Plan(
            code=normalized_code,
            name=str(name or "").strip(),
            price_minor=int(price_minor),
            currency=str(currency or "INR").strip().upper(),
            validity_days=int(validity_days),
            status=status,
            is_free=bool(is_free),
            created_at=current,
            updated_at=current,
        )
        try:
            with self.session.begin_nested():
                self.session.add(plan)
                self.session.flush()
        except IntegrityError as exc:
            raise PremiumStateError(
                f"plan code already exists: {normalized_code}", error_code="PLAN_CODE_CONFLICT"
            ) from exc
        return plan

    def get_plan_by_code(self, code: str) -> Optional[Plan]:
        normalized = str(code or "").strip().lower()
        if not normalized:
            return None
        return self.session.scalar(select(Plan).where(Plan.code == normalized))

    def get_plan_by_id(self, plan_id: str) -> Optional[Plan]:
        return self.session.get(Plan, plan_id)

    def list_plans(self, include_inactive: bool = True) -> list[Plan]:
        query = select(Plan).order_by(Plan.created_at.asc(), Plan.code.asc())
        if not include_inactive:
            query = query.where(Plan.status == PlanStatus.ACTIVE)
        return list(self.session.scalars(query).all())

    def update_plan(self, plan_id: str, patch: "PlanPatch", *, now: Optional[datetime] = None) -> Plan:
        plan = self.session.get(Plan, plan_id)
        if not plan:
            raise PlanNotFoundError(f"plan not found: {plan_id}")

        # Payments resolve their grant through code, validity and the free flag.
        locked = [
            name
            for name, requested, current in (
                ("code", patch.code, plan.code),
                ("validity_days", patch.validity_days, plan.validity_days),
                ("is_free", patch.is_free, bool(plan.is_free)),
            )
            if requested is not None and requested != current
        ]
        if locked and self.plan_has_payments(plan.id):
            raise PremiumStateError(
                f"plan is referenced by payments; cannot change {', '.join(locked)}",
                error_code="PLAN_IN_USE",
            )

        if patch.code is not None:
            existing = self.get_plan_by_code(patch.code)
            if existing is not None and str(existing.id) != str(plan.id):
                raise PremiumStateError(f"plan code already exists: {patch.code}", error_code="PLAN_CODE_CONFLICT")
            plan.code = patch.code
        if patch.name is not None:
            plan.name = patch.name
        if patch.price_minor is not None:
            plan.price_minor = patch.price_minor
        if patch.validity_days is not None:
            plan.validity_days = patch.validity_days
        if patch.status is not None:
            plan.status = patch.status
        if patch.is_free is not None:
            plan.is_free = patch.is_free

        plan.updated_at = _current(now)
        self.session.flush()
        return plan

    def plan_has_payments(self, plan_id: str) -> bool:
        query = select(PaymentRecord.id).where(PaymentRecord.plan_id == plan_id).limit(1)
        return self.session.scalar(query) is not None

    def deactivate_plan(self, plan_id: str, *, now: Optional[datetime] = None) -> Plan:
        plan = self.session.get(Plan, plan_id)
        if not plan:
            raise PlanNotFoundError(f"plan not found: {plan_id}")
        plan.status = PlanStatus.INACTIVE
        plan.updated_at = _current(now)
        self.session.flush()
        return plan

    # Payment records

    def create_payment(
        self,
        *,
        user_id: str,
        plan_id: str,
        amount_minor: int,
        gateway_order_id: str,
        currency: str = "INR",
        receipt: Optional[str] = None,
        status: PaymentStatus = PaymentStatus.PENDING,
        finalized_by: Optional[FinalizedBy] = None,
        paid_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> PaymentRecord:
        if status not in {PaymentStatus.PENDING, PaymentStatus.FREE}:
            raise PremiumStateError(f"payment cannot be created with status={status.value}")
        current = _current(now)
        payment = PaymentRecord(
            user_id=str(user_id),
            plan_id=plan_id,
            amount_minor=int(amount_minor),
            currency=str(currency or "INR").upper(),
            receipt=receipt,
            gateway_order_id=str(gateway_order_id),
            status=status,
            finalized_by=finalized_by,
            paid_at=as_utc_aware(paid_at) if paid_at else None,
            created_at=current,
            updated_at=current,
        )
        try:
            with self.session.begin_nested():
                self.session.add(payment)
                self.session.flush()
        except IntegrityError as exc:
            raise PremiumStateError(f"payment already exists for order: {gateway_order_id}") from exc
        return payment

    def get_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        return self.session.get(PaymentRecord, payment_id)

    def get_payment_by_gateway_order_id(self, gateway_order_id: str) -> Optional[PaymentRecord]:
        key = str(gateway_order_id or "").strip()
        if not key:
            return None
        query = (
            select(PaymentRecord)
            .options(selectinload(PaymentRecord.plan))
            .where(PaymentRecord.gateway_order_id == key)
        )
        return self.session.scalar(query)

    def list_payments(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
    ) -> list[PaymentRecord]:
        query: Select[Any] = (
            select(PaymentRecord)
            .options(selectinload(PaymentRecord.plan))
            .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
        )
        if user_id:
            query = query.where(PaymentRecord.user_id == str(user_id))
        if status:
            query = query.where(PaymentRecord.status == status)
        query = query.limit(max(1, min(int(limit), 500))).offset(max(0, int(offset)))
        return list(self.session.scalars(query).all())

    def list_stale_pending_payments(self, *, cutoff: datetime, limit: int = 500) -> list[PaymentRecord]:
        query = (
            select(PaymentRecord)
            .where(
                PaymentRecord.status == PaymentStatus.PENDING,
                PaymentRecord.created_at <= as_utc_aware(cutoff),
            )
            .order_by(PaymentRecord.created_at.asc(), PaymentRecord.id.asc())
            .limit(max(1, int(limit)))
        )
        return list(self.session.scalars(query).all())

    def finalize_pending_payment(
        self,
        payment_id: str,
        *,
        finalized_by: FinalizedBy,
        gateway_payment_id: Optional[str] = None,
        gateway_signature: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Conditionally move a payment from pending to paid.

        Issued as one UPDATE guarded by `status = 'pending'`; the row count tells
        the caller whether it won. Returns False when another finalizer (or the
        stale-order job) got there first.
        """

        current = _current(now)
        values: dict[Any, Any] = {
            PaymentRecord.status: PaymentStatus.PAID,
            PaymentRecord.finalized_by: finalized_by,
            PaymentRecord.paid_at: current,
            PaymentRecord.updated_at: current,
        }
        if gateway_payment_id:
            values[PaymentRecord.gateway_payment_id] = str(gateway_payment_id)
        if gateway_signature:
            values[PaymentRecord.gateway_signature] = str(gateway_signature)

        statement = (
            update(PaymentRecord)
            .where(
                PaymentRecord.id == payment_id,
                PaymentRecord.status == PaymentStatus.PENDING,
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(statement)
        except IntegrityError as exc:
            raise PremiumStateError(f"payment id already recorded on another order: {gateway_payment_id}") from exc
        return int(result.rowcount or 0) == 1

    def fail_pending_payment(self, payment_id: str, *, now: Optional[datetime] = None) -> bool:
        current = _current(now)
        result = self.session.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.id == payment_id,
                PaymentRecord.status == PaymentStatus.PENDING,
            )
            .values({PaymentRecord.status: PaymentStatus.FAILED, PaymentRecord.updated_at: current})
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0) == 1

    # Access grants

    def get_access_grant(self, user_id: str) -> Optional[AccessGrant]:
        return self.session.get(AccessGrant, str(user_id))

    def ensure_access_grant(self, user_id: str, *, now: Optional[datetime] = None) -> AccessGrant:
        existing = self.get_access_grant(user_id)
        if existing is not None:
            return existing
        current = _current(now)
        grant = AccessGrant(user_id=str(user_id), created_at=current, updated_at=current)
        try:
            with self.session.begin_nested():
                self.session.add(grant)
                self.session.flush()
        except IntegrityError:
            # Concurrent first touch for the same user; the other row wins.
            existing = self.session.scalar(select(AccessGrant).where(AccessGrant.user_id == str(user_id)))
            if existing is not None:
                return existing
            raise
        return grant

    def apply_category_grant(
        self,
        user_id: str,
        category: AccessCategory,
        *,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> None:
        unlocked_column, expiry_column = _GRANT_COLUMNS[category]
        result = self.session.execute(
            update(AccessGrant)
            .where(AccessGrant.user_id == str(user_id))
            .values(
                {
                    unlocked_column: True,
                    expiry_column: as_utc_aware(expires_at),
                    AccessGrant.updated_at: _current(now),
                }
            )
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount or 0) != 1:
            raise PremiumStateError(f"access grant row missing for user={user_id}")

    # Notifications

    def create_notification(self, *, user_id: str, title: str, message: str) -> Notification:
        item = Notification(
            user_id=str(user_id),
            title=str(title)[:200],
            message=str(message),
            status=NotificationStatus.UNREAD,
        )
        self.session.add(item)
        self.session.flush()
        return item

    def list_notifications(self, user_id: str, *, limit: int = 50) -> list[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == str(user_id))
            .order_by(Notification.created_at.desc())
            .limit(max(1, min(int(limit), 200)))
        )
        return list(self.session.scalars(query).all())

    # Audit

    def record_audit_log(
        self,
        *,
        event_type: str,
        raw_payload: str,
        outcome: str,
        provider: str = "razorpay",
        gateway_order_id: Optional[str] = None,
        signature: Optional[str] = None,
        signature_valid: bool = False,
        detail: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> PaymentAuditLog:
        log = PaymentAuditLog(
            provider=str(provider or "razorpay")[:32],
            event_type=str(event_type or "")[:64] or "unknown",
            gateway_order_id=str(gateway_order_id)[:128] if gateway_order_id else None,
            signature=str(signature)[:512] if signature else None,
            signature_valid=bool(signature_valid),
            raw_payload=str(raw_payload or ""),
            outcome=str(outcome or "")[:32] or "unknown",
            detail=str(detail) if detail else None,
            occurred_at=_current(occurred_at),
        )
        self.session.add(log)
        self.session.flush()
        return log

    def list_audit_logs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        gateway_order_id: Optional[str] = None,
        outcome: Optional[str] = None,
    ) -> list[PaymentAuditLog]:
        query = select(PaymentAuditLog).order_by(PaymentAuditLog.occurred_at.desc())
        if gateway_order_id:
            query = query.where(PaymentAuditLog.gateway_order_id == gateway_order_id)
        if outcome:
            query = query.where(PaymentAuditLog.outcome == outcome)
        query = query.limit(max(1, min(int(limit), 200))).offset(max(0, int(offset)))
        return list(self.session.scalars(query).all())
