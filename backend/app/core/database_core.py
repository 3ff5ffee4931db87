# -*- coding: utf-8 -*-
# backend/app/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с локальным хранилищем ключ/значение
#     (SQLAlchemy 2.0 async; по умолчанию SQLite через aiosqlite).
#   • Создание AsyncEngine и async_sessionmaker, ленивое и повторяемое.
#   • Создание таблиц хранилища на старте (init_models).
#
# Канон / инварианты:
#   • Только async-движок (create_async_engine).
#   • DSN берём из Settings.LOCAL_STORE_URL: единый источник истины.
#   • Сессии expire_on_commit=False.
#   • Основные данные партнёров живут в Google Sheets; здесь только локальный
#     кэш с ключами partner_* / fallback_partner_*.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger
from backend.app.models import Base, list_models

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def create_engine_for(url: str, *, echo: bool = False) -> AsyncEngine:
    """Создаёт AsyncEngine; пул для SQLite не настраиваем."""
    logger.info("Creating async local store engine", extra={"dialect": url.split(":", 1)[0]})
    return create_async_engine(url, echo=echo, pool_pre_ping=not url.startswith("sqlite"))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


def get_engine() -> AsyncEngine:
    """Возвращает текущий AsyncEngine, создавая его лениво при первом вызове."""
    global _engine, _SessionFactory

    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for(settings.LOCAL_STORE_URL, echo=settings.DEBUG)
        _SessionFactory = create_session_factory(_engine)
        logger.info("Local store engine lazily initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = create_session_factory(get_engine())
    return _SessionFactory


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """CREATE TABLE IF NOT EXISTS для таблиц хранилища (идемпотентно)."""
    target = engine or get_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Local store tables ensured", extra={"tables": [table for _, table in list_models()]})


async def dispose_engine() -> None:
    """Закрывает движок (shutdown приложения)."""
    global _engine, _SessionFactory

    async with _engine_lock:
        if _engine is not None:
            await _engine.dispose()
        _engine = None
        _SessionFactory = None


__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "create_engine_for",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_models",
    "dispose_engine",
]
