# -*- coding: utf-8 -*-
# backend/app/integrations/retry.py
# =============================================================================
# Назначение:
#   • Единый помощник ретраев для всех обращений к Google (чтение и запись):
#     одна и та же политика экспоненциальной задержки вместо копий цикла
#     в каждом методе.
#
# Канон/инварианты:
#   • Ретраятся ТОЛЬКО транспортные ошибки httpx (соединение, таймаут, обрыв).
#     HTTP-ответ любого статуса: это ответ, его не повторяем.
#   • Попыток не больше max_attempts; после n-й неудачной попытки ждём
#     base_delay * 2**n секунд (2 с, 4 с, ... при base_delay=1).
#   • После последней попытки не ждём: сразу TransientNetworkError.
#   • Попытки строго последовательны, без параллельных «веером».
# =============================================================================
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx

from backend.app.core.errors_core import TransientNetworkError
from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Задержка после attempt-й неудачной попытки (нумерация с 1)."""
    return base_delay * (2 ** attempt)


async def retrying_call(
    call: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Выполнить call() с ретраями на транспортных ошибках.

    Исключения: TransientNetworkError, когда все попытки исчерпаны.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await call()
        except httpx.TransportError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "[%s] max retries reached, giving up",
                    label,
                    extra={"attempts": attempt, "error": str(exc)},
                )
                raise TransientNetworkError(
                    f"Network error after {attempt} attempts: {exc}",
                    details={"attempts": attempt},
                ) from exc
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "[%s] network error (attempt %s/%s), retrying in %ss",
                label,
                attempt,
                max_attempts,
                delay,
                extra={"error": str(exc)},
            )
            await sleep(delay)


__all__ = ["SleepFunc", "backoff_delay", "retrying_call"]
