# -*- coding: utf-8 -*-
# backend/app/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования партнёрской программы:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, user_id);
#   • защита от утечек секретов (API-ключ Sheets, токен бота, URL Apps Script);
#   • удобные утилиты для модулей.
#
# Канон / инварианты:
#   • prod: JSON (python-json-logger), dev/local: человекочитаемый формат.
#   • Логи не имеют права «ронять» приложение: ошибки фильтра → пропуск.
#   • Значимые операции сопровождаем полями env, svc, rid, uid.
#
# Запреты:
#   • Никакого логирования приватных данных партнёров целиком (телефон/e-mail
#     допускаются только в DEBUG).
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backend.app.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars): безопасно для асинхронного кода
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # telegram_id партнёра


def set_request_context(
    *,
    request_id: Optional[str] = None,
    user_id: Optional[int | str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Middleware выставляет request_id, зависимости аутентификации: user_id.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if user_id is not None:
        _uid_var.set(str(user_id))


def clear_request_context() -> None:
    _rid_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Впрыскивает в запись структурированные поля:
      • env: нормализованная среда (local/dev/prod);
      • svc: имя сервиса (PROJECT_NAME);
      • rid: request_id;
      • uid: telegram_id партнёра (если установлен).
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Маскирует значения секретов из настроек в сообщении и аргументах.

    API-ключ Sheets попадает в query-string URL чтения, поэтому маскируем
    по значению, а не по имени поля.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "GOOGLE_SHEETS_API_KEY",
        "TELEGRAM_BOT_TOKEN",
        "GOOGLE_APPS_SCRIPT_URL",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def redact(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            if isinstance(record.msg, str):
                record.msg = self.redact(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(self.redact(str(arg)) for arg in record.args)
        except Exception:  # noqa: BLE001
            # фильтр не должен ломать логирование
            pass
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev-окружений.

    2026-01-01 12:00:00 | INFO     | Partner Bot | backend.app... | rid=... uid=... | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class ProdJsonFormatter(JsonFormatter):
    """JSON-строка на запись: time, level, service, logger, env, rid, uid, msg + extra."""

    _RENAMES = {
        "asctime": "time",
        "levelname": "level",
        "svc": "service",
        "name": "logger",
        "message": "msg",
    }

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(uid)s %(message)s",
        )

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_record)
        return {self._RENAMES.get(key, key): value for key, value in base.items()}


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
def setup_logging() -> None:
    """
    Полностью настраивает логирование:
      • root-логгер, формат, уровень;
      • фильтры контекста и редактирования;
      • uvicorn/fastapi/httpx-логгеры → в root (единый формат).
    """
    settings = get_settings()
    env = settings.env_normalized
    debug = bool(settings.DEBUG)

    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    formatter: logging.Formatter
    if env in ("local", "dev"):
        formatter = DevFormatter()
    else:
        formatter = ProdJsonFormatter()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ContextFilter(env=env, service=settings.PROJECT_NAME))
    console_handler.addFilter(RedactingFilter(settings_obj=settings))
    root.addHandler(console_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(level)
        logger.propagate = True

    # httpx пишет полный URL (с ключом) на INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "debug": debug, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter.

        log = get_logger(__name__, component="sheets")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции (подключается в create_app)
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Впрыскивает X-Request-ID из заголовков в contextvars и возвращает его
    в ответе. Если заголовка нет: генерируется UUID4 (hex).
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_headers: MutableMapping[bytes, bytes] = dict(scope.get("headers") or [])
        headers: Dict[str, str] = {
            key.decode().lower(): value.decode() for key, value in raw_headers.items()
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("utf-8")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "CorrelationIdMiddleware",
    "RedactingFilter",
]
