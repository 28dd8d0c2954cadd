from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_TRUTHY = {"1", "true", "yes", "y", "on"}


def coerce_bool(value: Any) -> bool:
    """
    Normalize a stored flag to a real bool.

    Older rows carry flags as 0/1 integers or "true"/"1" strings; this is the
    only place those representations are understood.
    """

    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    return str(value).strip().lower() in _TRUTHY


class LegacyBoolean(TypeDecorator):
    impl = Boolean
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Dialect) -> bool:
        return coerce_bool(value)

    def process_result_value(self, value: Any, dialect: Dialect) -> bool:
        return coerce_bool(value)

    def result_processor(self, dialect: Dialect, coltype: Any):
        # Skip Boolean's own int->bool step; it reads "false" as truthy.
        def process(value: Any) -> bool:
            return self.process_result_value(value, dialect)

        return process


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [str(item.value) for item in enum_cls]


class Base(DeclarativeBase):
    pass


class PlanStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    FREE = "free"


TERMINAL_SUCCESS_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.FREE})


class FinalizedBy(str, enum.Enum):
    CLIENT = "client"
    WEBHOOK = "webhook"
    FREE = "free"


class AccessCategory(str, enum.Enum):
    ARCHIVE = "archive"
    MATERIALS = "materials"
    COMBO = "combo"


class NotificationStatus(str, enum.Enum):
    UNREAD = "unread"
    READ = "read"


class Plan(Base):
    __tablename__ = "premium_plans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    price_minor: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(8), default="INR")
    validity_days: Mapped[int] = mapped_column(Integer, default=365)
    status: Mapped[PlanStatus] = mapped_column(
        Enum(PlanStatus, native_enum=False, values_callable=_enum_values, length=16),
        default=PlanStatus.ACTIVE,
        index=True,
    )
    is_free: Mapped[bool] = mapped_column(LegacyBoolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    payments: Mapped[list["PaymentRecord"]] = relationship(back_populates="plan")

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.ACTIVE

    @property
    def is_free_of_charge(self) -> bool:
        return bool(self.is_free) or int(self.price_minor or 0) <= 0


class PaymentRecord(Base):
    __tablename__ = "premium_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("premium_plans.id"), index=True)
    amount_minor: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(8), default="INR")
    receipt: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gateway_order_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)
    gateway_signature: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False, values_callable=_enum_values, length=16),
        default=PaymentStatus.PENDING,
    )
    finalized_by: Mapped[Optional[FinalizedBy]] = mapped_column(
        Enum(FinalizedBy, native_enum=False, values_callable=_enum_values, length=16),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    plan: Mapped[Plan] = relationship(back_populates="payments")


class AccessGrant(Base):
    __tablename__ = "premium_access_grants"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    archive_unlocked: Mapped[bool] = mapped_column(LegacyBoolean, default=False)
    archive_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    materials_unlocked: Mapped[bool] = mapped_column(LegacyBoolean, default=False)
    materials_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    combo_unlocked: Mapped[bool] = mapped_column(LegacyBoolean, default=False)
    combo_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class Notification(Base):
    __tablename__ = "premium_notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus, native_enum=False, values_callable=_enum_values, length=16),
        default=NotificationStatus.UNREAD,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)


class PaymentAuditLog(Base):
    """
    Append-only record of gateway traffic.

    Every webhook delivery (including rejected ones) and every gateway order
    attempt lands here with the raw payload for dispute resolution.
    """

    __tablename__ = "premium_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    provider: Mapped[str] = mapped_column(String(32), default="razorpay", index=True)
    event_type: Mapped[str] = mapped_column(String(64), index=True)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    signature: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    signature_valid: Mapped[bool] = mapped_column(Boolean, default=False)
    raw_payload: Mapped[str] = mapped_column(Text)
    outcome: Mapped[str] = mapped_column(String(32), index=True)
    detail: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


Index("ix_premium_payments_user_status", PaymentRecord.user_id, PaymentRecord.status)
Index("ix_premium_payments_status_created", PaymentRecord.status, PaymentRecord.created_at)
Index("ix_premium_notifications_user_created", Notification.user_id, Notification.created_at)
