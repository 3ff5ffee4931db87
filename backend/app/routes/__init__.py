# -*- coding: utf-8 -*-
# backend/app/routes/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка подключения HTTP-роутов:
#     • общий APIRouter (api_router), в который вмонтированы все модули роутов;
#     • register(app, prefix) для подключения в FastAPI;
#     • list_registered_routes() для диагностики.
#
# Канон/инварианты:
#   • Каждый модуль роутов экспортирует `router: APIRouter` со своим prefix.
#   • Модуль не выполняет бизнес-логику, только проводку маршрутов.
#   • Ошибка импорта модуля роутов: ошибка старта, а не тихий пропуск.
# =============================================================================

from __future__ import annotations

from importlib import import_module
from typing import List, Tuple

from fastapi import APIRouter, FastAPI

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

ROUTERS_EXPECTED: Tuple[str, ...] = (
    "partners_routes",
)

api_router = APIRouter()
_ATTACHED: List[str] = []


def _include(module_basename: str) -> None:
    fqmn = f"backend.app.routes.{module_basename}"
    mod = import_module(fqmn)
    router = getattr(mod, "router", None)
    if not isinstance(router, APIRouter):
        raise RuntimeError(f"{fqmn} does not export router: APIRouter")
    api_router.include_router(router)
    _ATTACHED.append(module_basename)
    logger.info("routes: подключён модуль %s", fqmn)


for _name in ROUTERS_EXPECTED:
    _include(_name)


def register(app: FastAPI, prefix: str = "") -> None:
    """Регистрирует агрегированный роутер в приложении (prefix обычно "/api")."""
    app.include_router(api_router, prefix=prefix)
    logger.info(
        "routes: зарегистрирован агрегатор (prefix=%r). Подключено: %s.",
        prefix,
        ",".join(_ATTACHED) if _ATTACHED else "-",
    )


def list_registered_routes() -> List[str]:
    return list(_ATTACHED)


__all__ = [
    "api_router",
    "register",
    "list_registered_routes",
    "ROUTERS_EXPECTED",
]
