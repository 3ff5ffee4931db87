# -*- coding: utf-8 -*-
# backend/app/integrations/apps_script_api.py
# =============================================================================
# Назначение:
#   • Клиент записи через Google Apps Script web app (командный шлюз):
#     POST {"action": str, "data": object} → {"success": bool, "error"?: str}.
#
# Канон/инварианты:
#   • Тело отправляется JSON-строкой с Content-Type: text/plain (так Apps Script
#     принимает запросы без preflight); редиректы script.google.com → googleusercontent
#     обязательны к следованию.
#   • Весь вызов (включая ретраи и задержки) ограничен жёстким дедлайном
#     WRITE_TIMEOUT_SEC; по истечении: неуспех "request timed out (N seconds)".
#   • Транспортные ошибки ретраятся по той же политике, что и чтение.
#   • success строго True → успех; иначе ошибка скрипта пробрасывается дословно.
#   • Метод send_command НИКОГДА не бросает доменные исключения: только
#     возвращает AppsScriptResult.
#
# Запреты:
#   • URL скрипта не логируется целиком (может содержать deployment id).
# =============================================================================
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from backend.app.core.config_core import Settings
from backend.app.core.errors_core import (
    NotConfiguredError,
    PartnerProgramError,
    RemoteRejectedError,
    TransientNetworkError,
)
from backend.app.core.logging_core import get_logger
from backend.app.integrations.retry import SleepFunc, retrying_call

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# DTO
# -----------------------------------------------------------------------------
@dataclass
class AppsScriptResult:
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    # not_configured | remote_rejected | network_error | None
    error_code: Optional[str] = None

    @classmethod
    def failed(cls, exc: PartnerProgramError, payload: Optional[Dict[str, Any]] = None) -> "AppsScriptResult":
        return cls(success=False, payload=payload or {}, error=exc.message, error_code=exc.code)


class AppsScriptClient:
    """Командный шлюз записи в таблицу через Apps Script."""

    def __init__(
        self,
        *,
        script_url: Optional[str],
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.script_url = script_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "AppsScriptClient":
        params: Dict[str, Any] = {
            "script_url": settings.GOOGLE_APPS_SCRIPT_URL,
            "timeout_seconds": settings.WRITE_TIMEOUT_SEC,
            "max_attempts": settings.RETRY_MAX_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY_SEC,
        }
        params.update(overrides)
        return cls(**params)

    @property
    def configured(self) -> bool:
        return bool(self.script_url)

    async def _post(self, body: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            return await client.post(
                self.script_url,  # type: ignore[arg-type]
                content=body.encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
            )

    async def _send(self, body: str) -> httpx.Response:
        return await retrying_call(
            lambda: self._post(body),
            label="AppsScript",
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            sleep=self._sleep,
        )

    async def send_command(self, action: str, data: Dict[str, Any]) -> AppsScriptResult:
        """
        Отправить команду {action, data}.

        Выход: AppsScriptResult(success, payload, error, error_code).
        """
        if not self.configured:
            logger.error("[AppsScript] write endpoint is not configured", extra={"action": action})
            return AppsScriptResult.failed(
                NotConfiguredError("Google Apps Script URL is not configured. Set GOOGLE_APPS_SCRIPT_URL.")
            )

        body = json.dumps({"action": action, "data": data}, ensure_ascii=False)
        logger.info("[AppsScript] sending command", extra={"action": action, "body_len": len(body)})

        try:
            response = await asyncio.wait_for(self._send(body), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("[AppsScript] deadline exceeded", extra={"action": action})
            return AppsScriptResult.failed(
                TransientNetworkError(f"request timed out ({self.timeout_seconds:g} seconds)")
            )
        except TransientNetworkError as exc:
            return AppsScriptResult.failed(exc)
        except httpx.HTTPError as exc:
            logger.error("[AppsScript] HTTP client error", extra={"action": action, "error_type": type(exc).__name__})
            return AppsScriptResult.failed(
                RemoteRejectedError(f"Apps Script request failed: {type(exc).__name__}: {exc}")
            )

        if not response.is_success:
            logger.error(
                "[AppsScript] HTTP error",
                extra={"action": action, "status": response.status_code, "body": response.text[:512]},
            )
            return AppsScriptResult.failed(
                RemoteRejectedError(f"HTTP {response.status_code}: {response.reason_phrase} - {response.text}")
            )

        try:
            result = response.json()
        except ValueError:
            logger.error("[AppsScript] non-JSON response", extra={"action": action})
            return AppsScriptResult.failed(RemoteRejectedError("Apps Script returned a non-JSON response"))

        if not isinstance(result, dict) or result.get("success") is not True:
            error_text = result.get("error") if isinstance(result, dict) else None
            logger.warning("[AppsScript] command rejected", extra={"action": action, "error": error_text})
            rejection = RemoteRejectedError(str(error_text)) if error_text else RemoteRejectedError()
            return AppsScriptResult.failed(rejection, result if isinstance(result, dict) else None)

        logger.info("[AppsScript] command acknowledged", extra={"action": action})
        return AppsScriptResult(success=True, payload=result)


__all__ = ["AppsScriptClient", "AppsScriptResult"]
