from __future__ import annotations

from dataclasses import dataclass

from .db import SessionFactory, session_scope
from .models import PlanStatus
from .repository import PremiumRepository


@dataclass(frozen=True)
class SeedPlan:
    code: str
    name: str
    price_minor: int
    validity_days: int
    is_free: bool = False


DEFAULT_PLANS: tuple[SeedPlan, ...] = (
    SeedPlan(
        code="archive",
        name="Archive Access (All centres + all years)",
        price_minor=0,
        validity_days=365,
        is_free=True,
    ),
    SeedPlan(
        code="materials",
        name="Study Material Access (All materials)",
        price_minor=29900,
        validity_days=365,
    ),
    SeedPlan(
        code="combo",
        name="Combo (Archive + Materials)",
        price_minor=49900,
        validity_days=365,
    ),
)


def seed_default_plans(session_factory: SessionFactory, *, currency: str = "INR") -> dict[str, int]:
    """
    Ensure the default plans exist.

    Plans are keyed by `code`; existing rows are left alone so operator edits
    (price, status) survive restarts.
    """

    created = 0
    skipped = 0
    with session_scope(session_factory) as session:
        repo = PremiumRepository(session)
        for plan_seed in DEFAULT_PLANS:
            if repo.get_plan_by_code(plan_seed.code) is not None:
                skipped += 1
                continue
            repo.create_plan(
                code=plan_seed.code,
                name=plan_seed.name,
                price_minor=plan_seed.price_minor,
                validity_days=plan_seed.validity_days,
                currency=currency,
                status=PlanStatus.ACTIVE,
                is_free=plan_seed.is_free,
            )
            created += 1
    return {"plans_created": created, "plans_skipped": skipped}
