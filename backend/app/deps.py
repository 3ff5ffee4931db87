# -*- coding: utf-8 -*-
# backend/app/deps.py
# =============================================================================
# Partner Bot: общие зависимости FastAPI: контекст пользователя Telegram и
#               клиент партнёрской таблицы.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Личность пользователя: Telegram ID из подписанного initData
#     (заголовок X-Telegram-Init-Data, HMAC по токену бота).
#   • Вне prod допускается доверенный заголовок X-Telegram-Id (локальная
#     разработка и тесты без бота).
#   • PartnerDirectoryClient: один на процесс; локальное хранилище: его.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру/валидацию.
# =============================================================================
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import HTTPException, Request, status

from backend.app.core.config_core import get_settings
from backend.app.core.database_core import get_session_factory
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.core.security_core import (
    telegram_user_from_init_data,
    validate_telegram_init_data,
)
from backend.app.services.local_store import LocalKeyValueStore
from backend.app.services.partner_directory import PartnerDirectoryClient

logger = get_logger(__name__)

INIT_DATA_HEADER = "X-Telegram-Init-Data"
TRUSTED_ID_HEADER = "X-Telegram-Id"


# -----------------------------------------------------------------------------
# Клиент партнёрской таблицы
# -----------------------------------------------------------------------------
@lru_cache(maxsize=1)
def _directory_singleton() -> PartnerDirectoryClient:
    settings = get_settings()
    store = LocalKeyValueStore(get_session_factory())
    logger.info(
        "PartnerDirectoryClient initialized",
        extra={"read": settings.read_configured, "write": settings.write_configured},
    )
    return PartnerDirectoryClient(settings=settings, local_store=store)


def get_directory() -> PartnerDirectoryClient:
    return _directory_singleton()


# -----------------------------------------------------------------------------
# Аутентификация
# -----------------------------------------------------------------------------
@dataclass
class AuthContext:
    telegram_id: str
    first_name: str = ""
    last_name: str = ""
    username: Optional[str] = None
    # initData | header
    source: str = "initData"


def get_auth_context(request: Request) -> AuthContext:
    """
    Контекст пользователя из заголовков.
    401: нет ни подписанного initData, ни (вне prod) доверенного Telegram ID.
    """
    settings = get_settings()
    init_data = request.headers.get(INIT_DATA_HEADER)
    if init_data:
        parsed = validate_telegram_init_data(init_data)
        user = telegram_user_from_init_data(parsed)
        ctx = AuthContext(
            telegram_id=user["id"],
            first_name=user["first_name"],
            last_name=user["last_name"],
            username=user["username"],
            source="initData",
        )
    else:
        tg_id_raw = (request.headers.get(TRUSTED_ID_HEADER) or "").strip()
        if settings.is_prod or not tg_id_raw:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Telegram authentication required",
            )
        ctx = AuthContext(telegram_id=tg_id_raw, source="header")

    set_request_context(user_id=ctx.telegram_id)
    return ctx


__all__ = [
    "AuthContext",
    "INIT_DATA_HEADER",
    "TRUSTED_ID_HEADER",
    "get_auth_context",
    "get_directory",
]
