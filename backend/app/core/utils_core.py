# -*- coding: utf-8 -*-
# backend/app/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/httpx.
#   • Мягкий парсинг чисел из ячеек таблицы (мусор → значение по умолчанию).
#   • Даты ISO, время UTC.
#   • Генерация реферальных кодов (base-36, верхний регистр).
#
# Канон:
#   • Все функции чистые: без сетевых вызовов и без побочных эффектов.
#   • Ячейки Google Sheets приходят строками; пустая/битая ячейка не должна
#     ронять разбор строки: возвращается значение по умолчанию.
# =============================================================================

from __future__ import annotations

import math
import secrets
import string
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

# Алфавит base-36 в верхнем регистре: 0-9A-Z
BASE36_ALPHABET = string.digits + string.ascii_uppercase

_MIN_AWARE = datetime.min.replace(tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Ячейки таблицы
# -----------------------------------------------------------------------------
def cell(row: Sequence[Any], index: int) -> str:
    """
    Значение ячейки строкой; короткие строки дополняются пустыми ячейками
    (Sheets API не присылает хвостовые пустые ячейки).
    """
    if index >= len(row):
        return ""
    value = row[index]
    return "" if value is None else str(value)


def optional_cell(row: Sequence[Any], index: int) -> Optional[str]:
    value = cell(row, index).strip()
    return value or None


def parse_float(raw: Any, default: float = 0.0) -> float:
    """
    Мягкий float: '1 234,5' → 1234.5; пусто/мусор/NaN/inf → default.
    """
    if raw is None:
        return default
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
    else:
        text = str(raw).strip().replace(" ", "").replace("\u00a0", "").replace(",", ".")
        if not text:
            return default
        try:
            value = float(text)
        except ValueError:
            return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def parse_int(raw: Any, default: int = 0) -> int:
    """
    Мягкий int: '3' → 3, '3.0' → 3, пусто/мусор → default.
    Дробная часть отбрасывается.
    """
    if raw is None:
        return default
    text = str(raw).strip()
    if not text:
        return default
    try:
        return int(text)
    except ValueError:
        pass
    value = parse_float(text, default=math.nan)
    if math.isnan(value):
        return default
    return int(value)


# -----------------------------------------------------------------------------
# Время / даты
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def today_iso() -> str:
    """Текущая дата UTC в формате YYYY-MM-DD (дата регистрации партнёра)."""
    return utcnow().date().isoformat()


def parse_iso_datetime(raw: Optional[str]) -> Optional[datetime]:
    """
    Парсер ISO-даты/времени. Всегда возвращает aware-datetime (UTC по
    умолчанию) либо None для пустой/некорректной строки.

    Примеры входа: "2025-08-27", "2025-08-27T12:30:00", "2025-08-27T12:30:00Z".
    """
    if not raw:
        return None
    candidate = raw.strip()
    if not candidate:
        return None
    try:
        if "T" not in candidate and ":" not in candidate and " " not in candidate:
            parsed = datetime.combine(date.fromisoformat(candidate), datetime.min.time())
        else:
            parsed = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sortable_datetime(raw: Optional[str]) -> datetime:
    """Ключ сортировки: некорректная дата → минимально возможная."""
    return parse_iso_datetime(raw) or _MIN_AWARE


# -----------------------------------------------------------------------------
# Реф-коды
# -----------------------------------------------------------------------------
def gen_ref_code(prefix: str = "PARTNER", length: int = 6) -> str:
    """
    Генерация реферального кода: prefix + length символов base-36
    в верхнем регистре, например PARTNER4K9Z0B.
    """
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))
    return f"{prefix}{suffix}"


def mask_secret(value: Optional[str], keep: int = 10) -> str:
    if not value:
        return "NOT SET"
    # короткий секрет не раскрываем целиком
    keep = min(keep, len(value) // 2)
    return f"{value[:keep]}..."


__all__ = [
    "BASE36_ALPHABET",
    "cell",
    "optional_cell",
    "parse_float",
    "parse_int",
    "utcnow",
    "today_iso",
    "parse_iso_datetime",
    "sortable_datetime",
    "gen_ref_code",
    "mask_secret",
]
