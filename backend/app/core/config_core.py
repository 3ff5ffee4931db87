# -*- coding: utf-8 -*-
# backend/app/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль партнёрской программы (FastAPI + httpx).
#   • Канонический источник всех настроек: Google Sheets (чтение),
#     Google Apps Script (запись), ретраи, задержки верификации, реф-коды,
#     локальное хранилище ключ/значение, Telegram.
#
# Канон / инварианты:
#   1) Чтение идёт только через Sheets values API (ID таблицы + API-ключ).
#   2) Запись идёт только через Apps Script (единый командный канал).
#   3) Отсутствие любого из трёх значений (ID, ключ, URL) НЕ роняет старт:
#      соответствующие операции деградируют до «не настроено».
#   4) Ретраи: не более RETRY_MAX_ATTEMPTS попыток, задержка
#      RETRY_BASE_DELAY_SEC * 2**attempt (2 с, 4 с при базе 1 с).
#
# ИИ-защита / самодиагностика:
#   • assert_required_secrets() печатает предупреждения, но не падает.
#   • debug_dump() отдаёт только маскированные значения.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.app.core.utils_core import mask_secret


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn."
    API_PREFIX = "Префикс REST API, например /api."
    CORS_ORIGINS = "Список разрешённых Origin (CSV)."

    GOOGLE_SHEETS_ID = "ID Google-таблицы с листами партнёров и начислений."
    GOOGLE_SHEETS_API_KEY = "API-ключ для чтения через Sheets values API."
    GOOGLE_APPS_SCRIPT_URL = "URL развёрнутого Apps Script (командный канал записи)."
    SHEETS_API_BASE_URL = "Базовый URL Sheets API v4."
    PARTNERS_SHEET_NAME = "Имя листа партнёров (колонки A–M)."
    COMMISSIONS_SHEET_NAME = "Имя листа начислений (колонки A–G)."

    READ_TIMEOUT_SEC = "Таймаут одного HTTP-запроса чтения (сек)."
    WRITE_TIMEOUT_SEC = "Жёсткий дедлайн команды записи (сек), включая ретраи."
    RETRY_MAX_ATTEMPTS = "Максимум попыток при сетевых ошибках."
    RETRY_BASE_DELAY_SEC = "База экспоненциальной задержки: base * 2**attempt."
    REGISTRATION_SETTLE_DELAY_SEC = "Пауза перед проверочным чтением после записи."
    REGISTRATION_VERIFY_ATTEMPTS = "Сколько раз перечитывать таблицу после записи."

    REFERRAL_CODE_PREFIX = "Префикс реферального кода."
    REFERRAL_CODE_LENGTH = "Длина случайной base-36 части кода."
    REFERRAL_CODE_MAX_ATTEMPTS = "Сколько раз перегенерировать код при коллизии."

    LOCAL_STORE_URL = "DSN локального хранилища ключ/значение (SQLAlchemy async)."
    TELEGRAM_BOT_TOKEN = "Токен бота (env: BOT_TOKEN): подпись initData."
    WEBAPP_INITDATA_TTL_SEC = "Срок годности Telegram initData (сек)."


class Settings(BaseSettings):
    """
    Контейнер переменных окружения партнёрской программы.

    Важное:
      • Секреты берём только из ENV/.env: в код не шьём.
      • Ретраи/задержки настраиваются здесь и больше нигде не дублируются.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("Partner Bot", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)
    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    CORS_ORIGINS: str = Field("*", description=_Doc.CORS_ORIGINS)

    # ---------------------------- GOOGLE SHEETS ------------------------------
    GOOGLE_SHEETS_ID: Optional[str] = Field(None, description=_Doc.GOOGLE_SHEETS_ID)
    GOOGLE_SHEETS_API_KEY: Optional[str] = Field(
        None,
        description=_Doc.GOOGLE_SHEETS_API_KEY,
    )
    GOOGLE_APPS_SCRIPT_URL: Optional[str] = Field(
        None,
        description=_Doc.GOOGLE_APPS_SCRIPT_URL,
    )
    SHEETS_API_BASE_URL: str = Field(
        "https://sheets.googleapis.com/v4/spreadsheets",
        description=_Doc.SHEETS_API_BASE_URL,
    )
    PARTNERS_SHEET_NAME: str = Field("Партнеры", description=_Doc.PARTNERS_SHEET_NAME)
    COMMISSIONS_SHEET_NAME: str = Field(
        "Начисления",
        description=_Doc.COMMISSIONS_SHEET_NAME,
    )

    # --------------------------- СЕТЬ / РЕТРАИ -------------------------------
    READ_TIMEOUT_SEC: float = Field(15.0, description=_Doc.READ_TIMEOUT_SEC)
    WRITE_TIMEOUT_SEC: float = Field(30.0, description=_Doc.WRITE_TIMEOUT_SEC)
    RETRY_MAX_ATTEMPTS: int = Field(3, description=_Doc.RETRY_MAX_ATTEMPTS)
    RETRY_BASE_DELAY_SEC: float = Field(1.0, description=_Doc.RETRY_BASE_DELAY_SEC)
    REGISTRATION_SETTLE_DELAY_SEC: float = Field(
        5.0,
        description=_Doc.REGISTRATION_SETTLE_DELAY_SEC,
    )
    REGISTRATION_VERIFY_ATTEMPTS: int = Field(
        2,
        description=_Doc.REGISTRATION_VERIFY_ATTEMPTS,
    )

    # ---------------------------- РЕФ-КОДЫ -----------------------------------
    REFERRAL_CODE_PREFIX: str = Field("PARTNER", description=_Doc.REFERRAL_CODE_PREFIX)
    REFERRAL_CODE_LENGTH: int = Field(6, description=_Doc.REFERRAL_CODE_LENGTH)
    REFERRAL_CODE_MAX_ATTEMPTS: int = Field(
        5,
        description=_Doc.REFERRAL_CODE_MAX_ATTEMPTS,
    )

    # ------------------------- ЛОКАЛЬНОЕ ХРАНИЛИЩЕ ---------------------------
    LOCAL_STORE_URL: str = Field(
        "sqlite+aiosqlite:///./.local_artifacts/partner_cache.db",
        description=_Doc.LOCAL_STORE_URL,
    )

    # ------------------------------- TELEGRAM --------------------------------
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        None,
        validation_alias="BOT_TOKEN",
        description=_Doc.TELEGRAM_BOT_TOKEN,
    )
    WEBAPP_INITDATA_TTL_SEC: int = Field(
        86400,
        description=_Doc.WEBAPP_INITDATA_TTL_SEC,
    )

    # =========================== ВАЛИДАТОРЫ (ИИ-защита) ======================

    @field_validator("RETRY_MAX_ATTEMPTS", "REGISTRATION_VERIFY_ATTEMPTS", "REFERRAL_CODE_MAX_ATTEMPTS")
    @classmethod
    def _v_positive_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Количество попыток должно быть >= 1")
        return value

    @field_validator("REFERRAL_CODE_LENGTH")
    @classmethod
    def _v_code_length(cls, value: int) -> int:
        if not 4 <= value <= 16:
            raise ValueError("REFERRAL_CODE_LENGTH должен быть в диапазоне 4..16")
        return value

    @field_validator("GOOGLE_SHEETS_ID", "GOOGLE_SHEETS_API_KEY", "GOOGLE_APPS_SCRIPT_URL", mode="before")
    @classmethod
    def _v_blank_to_none(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text_value = str(value).strip()
        return text_value or None

    # =========================== Удобные свойства/методы =====================

    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev") or value.startswith("test"):
            return "dev"
        if value.startswith("loc"):
            return "local"
        return "prod"

    @property
    def is_prod(self) -> bool:
        return self.env_normalized == "prod"

    @property
    def read_configured(self) -> bool:
        return bool(self.GOOGLE_SHEETS_ID and self.GOOGLE_SHEETS_API_KEY)

    @property
    def write_configured(self) -> bool:
        return bool(self.GOOGLE_APPS_SCRIPT_URL)

    def effective_cors_origins(self) -> List[str]:
        """Итоговый список CORS-Origin (после парсинга CSV)."""
        return _parse_csv(self.CORS_ORIGINS) or ["*"]

    def partners_range(self, columns: str = "A:M") -> str:
        """Именованный диапазон листа партнёров, например 'Партнеры!A:M'."""
        return f"{self.PARTNERS_SHEET_NAME}!{columns}"

    def commissions_range(self, columns: str = "A:G") -> str:
        return f"{self.COMMISSIONS_SHEET_NAME}!{columns}"

    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика. Печатает WARN, но не падает: операции
        без настроек сами вернут «не настроено».
        """
        if not self.read_configured:
            print(
                "[WARN] Google Sheets API не настроен полностью. Установите "
                "GOOGLE_SHEETS_API_KEY и GOOGLE_SHEETS_ID.",
            )
        if not self.write_configured:
            print(
                "[WARN] GOOGLE_APPS_SCRIPT_URL не задан: регистрация партнёров "
                "будет недоступна.",
            )
        if not self.TELEGRAM_BOT_TOKEN:
            print("[WARN] BOT_TOKEN не задан: подпись Telegram initData не проверяется.")

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "spreadsheetId": mask_secret(self.GOOGLE_SHEETS_ID),
            "readKey": mask_secret(self.GOOGLE_SHEETS_API_KEY),
            "writeUrl": mask_secret(self.GOOGLE_APPS_SCRIPT_URL, keep=30),
            "retry": f"{self.RETRY_MAX_ATTEMPTS}x base={self.RETRY_BASE_DELAY_SEC}s",
        }

    def ensure_local_artifacts(self) -> None:
        """Создаёт каталог .local_artifacts для SQLite-хранилища по умолчанию."""
        if "./.local_artifacts/" in self.LOCAL_STORE_URL:
            Path(".local_artifacts").mkdir(exist_ok=True)

    def initialize_runtime(self) -> None:
        self.ensure_local_artifacts()
        self.assert_required_secrets()


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


__all__ = ["Settings", "get_settings"]
