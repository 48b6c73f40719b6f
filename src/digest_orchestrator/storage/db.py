"""
Инициализация базы данных и сессий SQLAlchemy.

Назначение:
- создание engine (лениво, по POSTGRES_DSN)
- контекстный менеджер для сессий
- единая точка доступа к БД для всех сервисов
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from digest_orchestrator.common.config import get_settings

# =============================================================================
# ENGINE / SESSION FACTORY
# =============================================================================
_engine: Engine | None = None
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _build_engine(dsn: str) -> Engine:
    if dsn.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if ":memory:" in dsn or dsn.rstrip("/") in {"sqlite:", "sqlite+pysqlite:"}:
            # in-memory база живёт в одном соединении
            kwargs["poolclass"] = StaticPool
        return create_engine(dsn, **kwargs)

    return create_engine(dsn, pool_pre_ping=True)


def init_engine(dsn: str | None = None) -> Engine:
    """
    (Пере)создаёт engine. Без аргумента берёт POSTGRES_DSN из настроек.
    """
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = _build_engine(dsn or get_settings().postgres_dsn)
    SessionLocal.configure(bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return init_engine()
    return _engine


# =============================================================================
# CONTEXT MANAGER
# =============================================================================
@contextmanager
def db_session() -> Iterator[Session]:
    """
    Контекстный менеджер для работы с БД.

    Использование:
        with db_session() as session:
            session.add(...)
    """
    get_engine()
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
