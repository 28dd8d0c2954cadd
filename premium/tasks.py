"""Scheduled maintenance jobs for premium payments."""

from __future__ import annotations

import logging
from typing import Optional

from config import DATABASE_URL, PENDING_PAYMENT_TIMEOUT_SECONDS
from observability import get_logger, log_event

from .db import SessionFactory, build_session_factory, session_scope
from .repository import PremiumRepository
from .service import close_stale_payments

_LOGGER = get_logger("premium.tasks")


def run_close_stale_payments(
    session_factory: Optional[SessionFactory] = None,
    *,
    timeout_seconds: int = PENDING_PAYMENT_TIMEOUT_SECONDS,
) -> int:
    """Fail stale pending payments. Intended for a cron/scheduler entry point."""
    engine = None
    if session_factory is None:
        engine, session_factory = build_session_factory(DATABASE_URL)
    try:
        with session_scope(session_factory) as session:
            closed = close_stale_payments(PremiumRepository(session), timeout_seconds=timeout_seconds)
    finally:
        if engine is not None:
            engine.dispose()

    if closed:
        log_event(
            _LOGGER,
            logging.INFO,
            "premium.close_stale_payments.completed",
            closed_count=closed,
            timeout_seconds=timeout_seconds,
        )
    return closed


if __name__ == "__main__":
    run_close_stale_payments()
