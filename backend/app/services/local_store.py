# -*- coding: utf-8 -*-
# backend/app/services/local_store.py
# =============================================================================
# Назначение кода:
#   Локальное хранилище ключ/значение с пространствами имён по префиксу:
#   • get/set/delete отдельных ключей (значение: JSON-объект);
#   • перечисление ключей по префиксу;
#   • удаление всех ключей по набору префиксов (выход из аккаунта).
#
# Канон/инварианты:
#   • Удаление по префиксу не трогает ключи вне перечисленных префиксов.
#   • Префикс сравнивается буквально: '%' и '_' в LIKE экранируются.
#   • Хранилищем владеет PartnerDirectoryClient; другие модули ключи не пишут.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.logging_core import get_logger
from backend.app.models.local_cache_models import LocalCacheEntry

logger = get_logger(__name__)

_LIKE_ESCAPE = "\\"


def _like_prefix(prefix: str) -> str:
    escaped = (
        prefix.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", f"{_LIKE_ESCAPE}%")
        .replace("_", f"{_LIKE_ESCAPE}_")
    )
    return f"{escaped}%"


class LocalKeyValueStore:
    """Асинхронное хранилище ключ/значение поверх таблицы local_cache."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        async with self._session_factory() as session:
            entry = await session.get(LocalCacheEntry, key)
            if entry is None:
                return None
            return json.loads(entry.value)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        payload = json.dumps(value, ensure_ascii=False, sort_keys=True)
        async with self._session_factory() as session:
            entry = await session.get(LocalCacheEntry, key)
            if entry is None:
                session.add(LocalCacheEntry(key=key, value=payload))
            else:
                entry.value = payload
            await session.commit()

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(LocalCacheEntry).where(LocalCacheEntry.key == key))
            await session.commit()
            return bool(result.rowcount)

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        """Все ключи (или только с данным префиксом) в алфавитном порядке."""
        stmt = select(LocalCacheEntry.key).order_by(LocalCacheEntry.key)
        if prefix:
            stmt = stmt.where(LocalCacheEntry.key.like(_like_prefix(prefix), escape=_LIKE_ESCAPE))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete_by_prefixes(self, prefixes: Iterable[str]) -> List[str]:
        """
        Удаляет все ключи, начинающиеся с любого из prefixes.
        Возвращает список удалённых ключей.
        """
        removed: List[str] = []
        for prefix in prefixes:
            if not prefix:
                continue
            for key in await self.keys(prefix):
                if key not in removed:
                    removed.append(key)

        if not removed:
            return removed

        async with self._session_factory() as session:
            await session.execute(delete(LocalCacheEntry).where(LocalCacheEntry.key.in_(removed)))
            await session.commit()

        for key in removed:
            logger.debug("Removed from local store: %s", key)
        return removed


__all__ = ["LocalKeyValueStore"]
