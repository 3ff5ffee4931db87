# -*- coding: utf-8 -*-
# backend/app/integrations/sheets_api.py
# =============================================================================
# Назначение:
#   • Клиент чтения Google Sheets values API: именованный диапазон
#     ('Партнеры!A:M') → матрица строковых ячеек.
#   • Чтение метаданных таблицы (проверка подключения).
#
# Канон/инварианты:
#   • Строка 0 матрицы: заголовок; пропускают её потребители, а не клиент.
#   • Ответ без "values": пустая матрица (пустой лист).
#   • Транспортные ошибки ретраятся через retrying_call; не-2xx → RemoteStoreError
#     без повторов; нет ID/ключа → NotConfiguredError без сети.
#   • API-ключ уходит только в query-параметр key; в логах: маскируется.
#
# Запреты:
#   • Модуль не пишет в таблицу: запись только через apps_script_api.
# =============================================================================
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from backend.app.core.config_core import Settings
from backend.app.core.errors_core import NotConfiguredError, RemoteStoreError
from backend.app.core.logging_core import get_logger
from backend.app.integrations.retry import SleepFunc, retrying_call

logger = get_logger(__name__)

Matrix = List[List[str]]


class SheetsClient:
    """Лёгкий клиент Sheets API v4 (только чтение) с таймаутами и ретраями."""

    def __init__(
        self,
        *,
        spreadsheet_id: Optional[str],
        api_key: Optional[str],
        base_url: str = "https://sheets.googleapis.com/v4/spreadsheets",
        timeout_seconds: float = 15.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "SheetsClient":
        params: Dict[str, Any] = {
            "spreadsheet_id": settings.GOOGLE_SHEETS_ID,
            "api_key": settings.GOOGLE_SHEETS_API_KEY,
            "base_url": settings.SHEETS_API_BASE_URL,
            "timeout_seconds": settings.READ_TIMEOUT_SEC,
            "max_attempts": settings.RETRY_MAX_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY_SEC,
        }
        params.update(overrides)
        return cls(**params)

    @property
    def configured(self) -> bool:
        return bool(self.spreadsheet_id and self.api_key)

    def _ensure_configured(self) -> None:
        if not self.configured:
            raise NotConfiguredError(
                "Google Sheets API is not configured. "
                "Set GOOGLE_SHEETS_API_KEY and GOOGLE_SHEETS_ID.",
            )

    async def _get_json(self, url: str, *, label: str) -> Dict[str, Any]:
        """GET с таймаутом; транспортные ошибки пробрасываются в retrying_call."""

        async def _once() -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                return await client.get(
                    url,
                    params={"key": self.api_key},
                    headers={"Accept": "application/json"},
                )

        try:
            response = await retrying_call(
                _once,
                label=label,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                sleep=self._sleep,
            )
        except httpx.HTTPError as exc:
            # не транспортные ошибки httpx (декодирование, редиректы) не ретраим
            logger.error("[Sheets] HTTP client error", extra={"label": label, "error_type": type(exc).__name__})
            raise RemoteStoreError(
                f"Sheets API request failed: {type(exc).__name__}",
                details={"error_type": type(exc).__name__},
            ) from exc
        if not response.is_success:
            logger.error(
                "[Sheets] request failed",
                extra={"label": label, "status": response.status_code, "body": response.text[:512]},
            )
            raise RemoteStoreError(
                f"Sheets API error: {response.status_code} {response.reason_phrase}",
                details={"status": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteStoreError("Sheets API returned a non-JSON response") from exc
        return payload if isinstance(payload, dict) else {}

    async def get_values(self, range_name: str) -> Matrix:
        """
        Прочитать диапазон как матрицу строк.

        Вход: range_name: 'Лист!A:M'.
        Выход: список строк (строка 0: заголовок), ячейки приведены к str.
        Исключения: NotConfiguredError, TransientNetworkError, RemoteStoreError.
        """
        self._ensure_configured()
        url = f"{self.base_url}/{self.spreadsheet_id}/values/{quote(range_name, safe='')}"
        payload = await self._get_json(url, label=f"Sheets {range_name}")
        rows = payload.get("values") or []
        matrix: Matrix = [
            ["" if value is None else str(value) for value in row]
            for row in rows
            if isinstance(row, list)
        ]
        logger.debug("[Sheets] rows fetched", extra={"range": range_name, "count": len(matrix)})
        return matrix

    async def get_spreadsheet(self) -> Dict[str, Any]:
        """Метаданные таблицы (properties.title, sheets[])."""
        self._ensure_configured()
        url = f"{self.base_url}/{self.spreadsheet_id}"
        return await self._get_json(url, label="Sheets metadata")


__all__ = ["Matrix", "SheetsClient"]
