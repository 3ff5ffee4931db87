# -*- coding: utf-8 -*-
# backend/app/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой ошибок партнёрской программы.
#   • Канонические коды ошибок для фронтенда/логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Таксономия:
#   • not_configured  : нет ID таблицы / API-ключа / URL Apps Script;
#                        без ретраев, сразу наружу.
#   • network_error   : сеть/таймаут, уже после исчерпания ретраев.
#   • remote_store_error: Sheets API ответил не-2xx.
#   • remote_rejected : Apps Script ответил success != true (текст как есть).
#   • validation_error / already_registered / invalid_inviter_code:
#                        бизнес-правила, проверяются ДО записи.
#
# Канон:
#   • Клиентский слой (PartnerDirectoryClient) ловит эти исключения на своей
#     границе и превращает в значения-результаты; сюда, в хендлеры FastAPI,
#     долетают только ошибки роутов и validate_referral_code.
#   • Клиенту никогда не утекают технические детали (URL с ключом, stack trace).
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class PartnerProgramError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code        : стабильный машинный код ошибки (snake_case).
      • message     : короткое безопасное сообщение для клиента.
      • http_status : HTTP код по умолчанию.
      • details     : безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotConfiguredError(PartnerProgramError):
    """Не заданы ID таблицы / API-ключ / URL Apps Script."""

    def __init__(
        self,
        message: str = "Google Sheets API is not configured.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_configured",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


class TransientNetworkError(PartnerProgramError):
    """Сетевая ошибка/таймаут после исчерпания всех попыток."""

    def __init__(
        self,
        message: str = "Remote store is unreachable.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="network_error",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details=details or {},
        )


class RemoteStoreError(PartnerProgramError):
    """Sheets API ответил не-2xx (ретраи на это не распространяются)."""

    def __init__(
        self,
        message: str = "Remote store returned an error.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="remote_store_error",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details=details or {},
        )


class RemoteRejectedError(PartnerProgramError):
    """Apps Script вернул success != true; message: текст ошибки скрипта."""

    def __init__(
        self,
        message: str = "Apps Script returned success: false",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="remote_rejected",
            message=message,
            http_status=status.HTTP_502_BAD_GATEWAY,
            details=details or {},
        )


class ValidationError(PartnerProgramError):
    """Некорректные входные данные."""

    def __init__(
        self,
        message: str = "Invalid data.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class AlreadyRegisteredError(PartnerProgramError):
    """Партнёр с таким Telegram ID уже есть в таблице."""

    def __init__(
        self,
        message: str = "Partner with this Telegram ID is already registered.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="already_registered",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class InvalidInviterCodeError(PartnerProgramError):
    """Промокод пригласившего не найден в таблице."""

    def __init__(
        self,
        message: str = "Invalid inviter code.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="invalid_inviter_code",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class NotFoundError(PartnerProgramError):
    def __init__(
        self,
        message: str = "Partner not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

      • PartnerProgramError → свой http_status + to_payload().
      • HTTPException       → status_code + {"error": "http_error", ...}.
      • Любая другая        → 500 + {"error": "internal_error"} (без деталей).
    """
    if isinstance(exc, PartnerProgramError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."
        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def partner_error_handler(request: Request, exc: PartnerProgramError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "PartnerProgramError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(status_code=status_code, content=payload, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return await partner_error_handler(request, ValidationError(details={"errors": errors}))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Логируем тип исключения; клиенту: только internal_error."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "status": status_code, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """Вызывать один раз при создании приложения."""
    app.add_exception_handler(PartnerProgramError, partner_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered", extra={"handlers": len(app.exception_handlers)})


__all__ = [
    "PartnerProgramError",
    "NotConfiguredError",
    "TransientNetworkError",
    "RemoteStoreError",
    "RemoteRejectedError",
    "ValidationError",
    "AlreadyRegisteredError",
    "InvalidInviterCodeError",
    "NotFoundError",
    "normalize_exception",
    "setup_exception_handlers",
]
