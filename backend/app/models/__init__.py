# -*- coding: utf-8 -*-
# backend/app/models/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа слоя моделей. Модели описывают только структуру
# локального хранилища; бизнес-логики здесь нет.
#
# Запреты:
#  • Не выполнять DDL на уровне импорта: таблицы создаёт
#    core/database_core.init_models() на старте приложения.
# =============================================================================

from __future__ import annotations

from typing import List, Tuple

from .local_cache_models import Base, LocalCacheEntry


def list_models() -> List[Tuple[str, str]]:
    """Пары (ClassName, __tablename__) всех моделей проекта."""
    return sorted(
        (mapper.class_.__name__, mapper.class_.__tablename__)
        for mapper in Base.registry.mappers
    )


__all__ = ["Base", "LocalCacheEntry", "list_models"]
