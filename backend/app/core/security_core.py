# -*- coding: utf-8 -*-
# backend/app/core/security_core.py
# =============================================================================
# Назначение кода:
#   • Валидация Telegram WebApp initData: единственный способ для
#     Mini App доказать, какой Telegram ID (внешняя идентичность партнёра)
#     стоит за запросом.
#
# Канон / инварианты:
#   • Подпись проверяется строго по алгоритму Telegram:
#       secret_key = HMAC_SHA256(key="WebAppData", msg=BOT_TOKEN)
#       hash       = HMAC_SHA256(secret_key, data-check-string)
#   • TTL по auth_date (WEBAPP_INITDATA_TTL_SEC).
#   • Любые ошибки → контролируемые 400/401/503, а не падение процесса.
#
# Запреты:
#   • Никакой бизнес-логики партнёрской программы: только «кто ты».
# =============================================================================

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from fastapi import HTTPException, status

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


def _telegram_data_check_string(init_items: Dict[str, str]) -> str:
    """
    data-check-string: пары key=value, отсортированные по ключу, через '\\n'.
    Поле 'hash' исключается.
    """
    return "\n".join(f"{k}={v}" for k, v in sorted(init_items.items()) if k != "hash")


def sign_init_data(init_items: Dict[str, str], bot_token: str) -> str:
    """Подпись initData (hex): та же процедура, что выполняет Telegram."""
    secret_key = hmac.new(b"WebAppData", bot_token.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(
        secret_key,
        _telegram_data_check_string(init_items).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def validate_telegram_init_data(
    init_data: str,
    *,
    bot_token: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Верификация подписи Telegram WebApp initData.

    Возвращает распарсенный словарь; поле user: уже JSON-объект, если его
    удалось распарсить.
    """
    settings = get_settings()
    token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
    ttl = ttl_seconds if ttl_seconds is not None else settings.WEBAPP_INITDATA_TTL_SEC

    parsed_pairs: Dict[str, Any] = dict(parse_qsl(init_data or "", keep_blank_values=True))
    received_hash = parsed_pairs.get("hash") or ""
    if not received_hash:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing hash in initData",
        )

    if not token:
        logger.error("TELEGRAM_BOT_TOKEN is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server is not configured",
        )

    calc_hash = sign_init_data(parsed_pairs, token)
    if not hmac.compare_digest(received_hash, calc_hash):
        logger.warning("Invalid Telegram initData signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Telegram signature",
        )

    auth_date = parsed_pairs.get("auth_date")
    if auth_date and str(auth_date).isdigit():
        current = int(now if now is not None else time.time())
        if current - int(auth_date) > ttl:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="initData is too old",
            )

    user_raw = parsed_pairs.get("user")
    if user_raw:
        try:
            parsed_pairs["user"] = json.loads(user_raw)
        except ValueError:
            logger.warning("initData 'user' field is not a valid JSON")

    return parsed_pairs


def telegram_user_from_init_data(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Достаёт пользователя из проверенного initData: id строкой, имя, username.
    Без user.id запрос не аутентифицирован.
    """
    user = parsed.get("user")
    if not isinstance(user, dict) or user.get("id") in (None, ""):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="initData has no user",
        )
    return {
        "id": str(user["id"]),
        "first_name": user.get("first_name") or "",
        "last_name": user.get("last_name") or "",
        "username": user.get("username") or None,
    }


__all__ = [
    "sign_init_data",
    "validate_telegram_init_data",
    "telegram_user_from_init_data",
]
