# ==============================================================================
# Partner Bot: FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение партнёрской программы,
# подключает middleware (CORS, корреляция X-Request-ID), обработчики ошибок и
# роутеры.
#
# Канон/инварианты:
#   • Источник истины по партнёрам: Google Sheets; локальная БД: только кэш,
#     её таблицы создаются на старте (init_models) и закрываются на остановке.
#   • Отсутствие настроек Google не роняет старт: операции сами ответят
#     «не настроено» (503).
#   • create_app() можно вызывать многократно (тесты): глобального состояния
#     приложения модуль не держит.
#
# Запреты:
#   • Не запускает бота Telegram: только HTTP-API.
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core import boot_core
from .core.config_core import get_settings
from .core.database_core import dispose_engine, init_models
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .routes import list_registered_routes, register

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    boot_core()
    await init_models()
    try:
        yield
    finally:
        await dispose_engine()
        logger.info("Local store engine disposed")


def create_app() -> FastAPI:
    """Создать FastAPI-приложение с middleware, обработчиками ошибок и роутерами."""

    settings = get_settings()
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.effective_cors_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)
    setup_exception_handlers(app)
    register(app, prefix=settings.API_PREFIX)

    @app.get("/health", tags=["health"])
    async def health() -> Dict[str, object]:
        """Проверка живости без сетевых вызовов к Google."""

        return {
            "status": "ok",
            "version": settings.APP_VERSION,
            "read_configured": settings.read_configured,
            "write_configured": settings.write_configured,
            "routes": list_registered_routes(),
        }

    logger.info("FastAPI app initialised", extra={"api_prefix": settings.API_PREFIX})
    return app


__all__ = ["create_app"]
