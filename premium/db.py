from __future__ import annotations

from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from alembic.config import Config as AlembicConfig
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from alembic import command
from config import APP_ENV, DATABASE_ECHO, ROOT_DIR

from .models import Base

SessionFactory = Callable[[], Session]


def _ensure_sqlite_parent(url: str) -> None:
    for prefix in ("sqlite:///", "sqlite+pysqlite:///"):
        if url.startswith(prefix):
            break
    else:
        return
    db_path = url[len(prefix):].split("?", 1)[0]
    if not db_path or db_path == ":memory:":
        return
    path = Path(db_path).expanduser()
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)


def _build_engine(url: str, *, echo: bool = DATABASE_ECHO) -> Engine:
    kwargs: dict[str, Any] = {
        "future": True,
        "echo": echo,
        "pool_pre_ping": True,
    }
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, **kwargs)


def build_session_factory(database_url: str) -> tuple[Engine, SessionFactory]:
    _ensure_sqlite_parent(database_url)
    engine = _build_engine(database_url)
    session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    return engine, session_factory


def _is_production_env() -> bool:
    return str(APP_ENV or "").strip().lower() in {"prod", "production"}


def _is_postgres_url(database_url: str) -> bool:
    normalized = str(database_url or "").strip().lower()
    return normalized.startswith("postgresql://") or normalized.startswith("postgresql+")


def _run_alembic_upgrade(database_url: str, revision: str = "head") -> None:
    config_path = Path(ROOT_DIR).resolve() / "alembic.ini"
    if not config_path.exists():
        raise RuntimeError(f"missing alembic.ini: {config_path}")
    alembic_cfg = AlembicConfig(str(config_path))
    alembic_cfg.set_main_option("script_location", str(Path(ROOT_DIR).resolve() / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    # Keep the service JSON log handlers in place.
    alembic_cfg.attributes["skip_logging_config"] = True
    command.upgrade(alembic_cfg, revision)


def init_premium_db(engine: Engine | None = None, *, database_url: str | None = None) -> None:
    if engine is not None:
        # Test-only fast path: isolated engines can still be initialized directly.
        Base.metadata.create_all(bind=engine)
        return
    if not database_url:
        raise RuntimeError("database_url is required when no engine is given")
    if _is_production_env() and not _is_postgres_url(database_url):
        raise RuntimeError("DATABASE_URL must be PostgreSQL in production")
    _ensure_sqlite_parent(database_url)
    _run_alembic_upgrade(database_url, "head")


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
