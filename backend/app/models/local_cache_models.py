# -*- coding: utf-8 -*-
# backend/app/models/local_cache_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель локального хранилища ключ/значение:
#   • LocalCacheEntry: одна запись «ключ → JSON-значение».
#
# Канон/инварианты:
#   • Ключи живут в пространствах имён по префиксу: partner_<tgid>,
#     fallback_partner_<tgid>. Схема значения не навязывается.
#   • Источник истины по партнёрам: Google Sheets; запись здесь лишь копия,
#     которую можно удалить в любой момент (выход из аккаунта).
# =============================================================================

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Единый declarative Base проекта."""


class LocalCacheEntry(Base):
    __tablename__ = "local_cache"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<LocalCacheEntry key={self.key!r}>"


__all__ = ["Base", "LocalCacheEntry"]
