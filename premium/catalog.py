from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional

from .db import SessionFactory, session_scope
from .exceptions import PremiumValidationError
from .models import Plan, PlanStatus
from .repository import PremiumRepository


@dataclass(frozen=True)
class PlanPatch:
    """Partial plan update. `None` leaves the field untouched."""

    code: Optional[str] = None
    name: Optional[str] = None
    price_minor: Optional[int] = None
    validity_days: Optional[int] = None
    status: Optional[PlanStatus] = None
    is_free: Optional[bool] = None

    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))

    def validated(self) -> "PlanPatch":
        if self.is_empty():
            raise PremiumValidationError("no fields to update")
        code = self.code
        if code is not None:
            code = code.strip().lower()
            if not code:
                raise PremiumValidationError("code is required")
        name = self.name
        if name is not None:
            name = name.strip()
            if not name:
                raise PremiumValidationError("name is required")
        if self.price_minor is not None and int(self.price_minor) < 0:
            raise PremiumValidationError("price_minor must be a non-negative integer")
        if self.validity_days is not None and int(self.validity_days) <= 0:
            raise PremiumValidationError("validity_days must be a positive integer")
        return replace(self, code=code, name=name)


class PlanCatalog:
    def __init__(self, session_factory: SessionFactory, *, currency: str = "INR") -> None:
        self._session_factory = session_factory
        self._currency = currency

    def get_by_code(self, code: str) -> Plan | None:
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).get_plan_by_code(code)

    def list_active(self) -> list[Plan]:
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).list_plans(include_inactive=False)

    def list_all(self) -> list[Plan]:
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).list_plans(include_inactive=True)

    def create_plan(
        self,
        *,
        code: str,
        name: str,
        price_minor: int,
        validity_days: int = 365,
        status: PlanStatus = PlanStatus.ACTIVE,
        is_free: bool = False,
    ) -> Plan:
        normalized_code = str(code or "").strip().lower()
        if not normalized_code:
            raise PremiumValidationError("code is required")
        if not str(name or "").strip():
            raise PremiumValidationError("name is required")
        if int(price_minor) < 0:
            raise PremiumValidationError("price_minor must be a non-negative integer")
        if int(validity_days) <= 0:
            raise PremiumValidationError("validity_days must be a positive integer")
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).create_plan(
                code=normalized_code,
                name=name,
                price_minor=int(price_minor),
                validity_days=int(validity_days),
                currency=self._currency,
                status=status,
                is_free=bool(is_free),
            )

    def update_plan(self, plan_id: str, patch: PlanPatch) -> Plan:
        checked = patch.validated()
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).update_plan(plan_id, checked)

    def deactivate_plan(self, plan_id: str) -> Plan:
        with session_scope(self._session_factory) as session:
            return PremiumRepository(session).deactivate_plan(plan_id)
