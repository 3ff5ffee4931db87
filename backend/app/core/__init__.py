# -*- coding: utf-8 -*-
# backend/app/core/__init__.py
# =============================================================================
# Назначение кода:
# Единая точка входа ядра: загрузка настроек, первичная инициализация
# логирования и стартовая самодиагностика конфигурации.
#
# Канон/инварианты:
# • Источник истины: config_core.get_settings(); локальных дублей нет.
# • boot_core() не роняет процесс: отсутствие ключей Google: это отчёт
#   с предупреждениями, а не ошибка старта.
#
# Запреты:
# • Никакой бизнес-логики и сетевых вызовов: только конфиг и проверки.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger

CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Быстрые sanity-checks ключевых настроек. Без падений: только отчёт.

    Возвращает:
        dict: { ok: bool, errors: List[str], snapshot: Dict[str, str] }
    """
    settings = get_settings()
    errors: List[str] = []

    if not settings.read_configured:
        errors.append("GOOGLE_SHEETS_ID and GOOGLE_SHEETS_API_KEY must be set for reads.")
    if not settings.write_configured:
        errors.append("GOOGLE_APPS_SCRIPT_URL must be set for registration.")
    if settings.is_prod and not settings.TELEGRAM_BOT_TOKEN:
        errors.append("BOT_TOKEN must be set in production (initData verification).")

    return {"ok": not errors, "errors": errors, "snapshot": settings.debug_dump()}


def boot_core() -> Dict[str, Any]:
    """
    Стартовая диагностика ядра: пишет сводку в лог и возвращает её.

    Возвращает dict с ключами timestamp_utc, core_version, health.
    """
    settings = get_settings()
    logger.info(
        "Core boot: version=%s env=%s",
        CORE_VERSION,
        settings.env_normalized,
    )
    health = core_health()
    if not health["ok"]:
        logger.warning("Core health warnings: %s", health["errors"])

    return {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "core_version": CORE_VERSION,
        "health": health,
    }


__all__ = [
    "CORE_VERSION",
    "boot_core",
    "core_health",
    "get_settings",
]
