from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .db import SessionFactory, session_scope
from .models import AccessCategory, AccessGrant, coerce_bool
from .repository import PremiumRepository, _current, as_utc_aware

ADMIN_ROLE = "admin"

# Historic code the archive plan was sold under.
_PLAN_CODE_ALIASES = {"pyq": AccessCategory.ARCHIVE}


def category_for_plan_code(plan_code: str) -> Optional[AccessCategory]:
    code = str(plan_code or "").strip().lower()
    if code in _PLAN_CODE_ALIASES:
        return _PLAN_CODE_ALIASES[code]
    try:
        return AccessCategory(code)
    except ValueError:
        return None


@dataclass(frozen=True)
class ActiveAccess:
    combo_active: bool = False
    archive_active: bool = False
    materials_active: bool = False
    combo_expires_at: Optional[datetime] = None
    archive_expires_at: Optional[datetime] = None
    materials_expires_at: Optional[datetime] = None

    def is_active(self, category: AccessCategory) -> bool:
        if category == AccessCategory.COMBO:
            return self.combo_active
        if category == AccessCategory.ARCHIVE:
            return self.archive_active
        return self.materials_active

    def expires_at(self, category: AccessCategory) -> Optional[datetime]:
        if category == AccessCategory.COMBO:
            return self.combo_expires_at
        if category == AccessCategory.ARCHIVE:
            return self.archive_expires_at
        return self.materials_expires_at


def _pair_active(unlocked: Any, expires_at: Optional[datetime], now: datetime) -> bool:
    if not coerce_bool(unlocked) or expires_at is None:
        return False
    return as_utc_aware(expires_at) > now


def compute_active(grant: Optional[AccessGrant], now: Optional[datetime] = None) -> ActiveAccess:
    """
    Evaluate a grant row at `now`.

    Combo is checked first: while it is active, archive and materials read as
    unlocked with the combo expiry.
    """

    if grant is None:
        return ActiveAccess()
    current = _current(now)

    combo_active = _pair_active(grant.combo_unlocked, grant.combo_expires_at, current)
    combo_expiry = as_utc_aware(grant.combo_expires_at) if combo_active and grant.combo_expires_at else None

    def _category(unlocked: Any, expires_at: Optional[datetime]) -> tuple[bool, Optional[datetime]]:
        if combo_active:
            return True, combo_expiry
        if _pair_active(unlocked, expires_at, current):
            return True, as_utc_aware(expires_at)  # type: ignore[arg-type]
        return False, None

    archive_active, archive_expiry = _category(grant.archive_unlocked, grant.archive_expires_at)
    materials_active, materials_expiry = _category(grant.materials_unlocked, grant.materials_expires_at)
    return ActiveAccess(
        combo_active=combo_active,
        archive_active=archive_active,
        materials_active=materials_active,
        combo_expires_at=combo_expiry,
        archive_expires_at=archive_expiry,
        materials_expires_at=materials_expiry,
    )


def _is_admin(role: Optional[str]) -> bool:
    return str(role or "").strip().lower() == ADMIN_ROLE


class AccessLedger:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def has_access(
        self,
        user_id: str,
        role: Optional[str],
        plan_code: str,
        now: Optional[datetime] = None,
    ) -> bool:
        if _is_admin(role):
            return True
        category = category_for_plan_code(plan_code)
        with session_scope(self._session_factory) as session:
            repo = PremiumRepository(session)
            plan = repo.get_plan_by_code(plan_code)
            if plan is None or not plan.is_active:
                return False
            if plan.is_free_of_charge:
                return True
            if category is None:
                return False
            grant = repo.get_access_grant(user_id)
            return compute_active(grant, now).is_active(category)

    def status(self, user_id: str, role: Optional[str] = None, now: Optional[datetime] = None) -> dict[str, Any]:
        current = _current(now)
        with session_scope(self._session_factory) as session:
            grant = PremiumRepository(session).ensure_access_grant(user_id, now=current)
            active = compute_active(grant, current)

        categories: dict[str, Any] = {}
        for category in AccessCategory:
            categories[category.value] = {
                "unlocked": active.is_active(category),
                "expires_at": active.expires_at(category),
            }
        return {
            "user_id": str(user_id),
            "is_admin": _is_admin(role),
            "categories": categories,
        }
