# -*- coding: utf-8 -*-
# backend/app/services/partner_directory.py
# =============================================================================
# Назначение кода:
#   PartnerDirectoryClient: единственная точка доступа к партнёрской таблице:
#   • поиск партнёра по Telegram ID и по реферальному коду;
#   • проверка промокода пригласившего;
#   • регистрация (проверки → генерация кода → запись → подтверждение чтением);
#   • история начислений и реферальная сеть на 4 уровня;
#   • локальный кэш карточки партнёра и его очистка при выходе.
#
# Канон/инварианты:
#   • Чтение: SheetsClient (ретраи внутри), запись: AppsScriptClient.
#   • Ошибки интеграций ловятся ЗДЕСЬ и превращаются в значения-результаты:
#       - get_partner / by-code → None (не найдено и сбой чтения неразличимы);
#       - commissions → [], network → пустое дерево;
#       - register → RegistrationResult(success=False, error, error_code).
#     Исключения пробрасывает только validate_referral_code.
#   • Регистрация строго последовательна: дубль → промокод пригласившего →
#     код → запись → пауза → контрольное чтение. Ошибка на шаге 1–2 = 0 записей.
#   • Подтверждение чтением НЕ меняет success, только флаг confirmed.
#   • Локальное хранилище необязательно (None = без кэша); сбои кэша не ломают
#     основную операцию.
#
# Ограничения:
#   • Проверка дубля и запись не атомарны: два параллельных запроса на один
#     Telegram ID могут оба пройти проверку (таблица без блокировок).
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from backend.app.core.config_core import Settings, get_settings
from backend.app.core.errors_core import (
    AlreadyRegisteredError,
    InvalidInviterCodeError,
    PartnerProgramError,
)
from backend.app.core.logging_core import get_logger
from backend.app.core.utils_core import gen_ref_code, today_iso
from backend.app.integrations.apps_script_api import AppsScriptClient
from backend.app.integrations.retry import SleepFunc
from backend.app.integrations.sheets_api import Matrix, SheetsClient
from backend.app.services.local_store import LocalKeyValueStore
from backend.app.services.partner_records import (
    CommissionRecord,
    ConnectionStatus,
    NetworkTree,
    NewPartnerInput,
    PartnerDashboard,
    PartnerRecord,
    RegistrationResult,
    build_network_tree,
    sort_commissions,
    summarize_commissions,
)

logger = get_logger(__name__)

PARTNER_CACHE_PREFIX = "partner_"
FALLBACK_CACHE_PREFIX = "fallback_partner_"
LOCAL_PREFIXES = (PARTNER_CACHE_PREFIX, FALLBACK_CACHE_PREFIX)

REGISTER_ACTION = "registerPartner"

# Сбой чтения таблицы при проверках регистрации отдаём общим кодом
_REGISTRATION_ERROR_CODES = {"remote_store_error": "registration_failed"}


class PartnerDirectoryClient:
    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        sheets: Optional[SheetsClient] = None,
        apps_script: Optional[AppsScriptClient] = None,
        local_store: Optional[LocalKeyValueStore] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.sheets = sheets or SheetsClient.from_settings(self.settings, sleep=sleep)
        self.apps_script = apps_script or AppsScriptClient.from_settings(self.settings, sleep=sleep)
        self.local_store = local_store
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Чтение таблицы
    # -------------------------------------------------------------------------
    async def _partner_rows(self) -> Matrix:
        rows = await self.sheets.get_values(self.settings.partners_range())
        return rows[1:]

    async def _find_partner(self, column: int, value: str, *, label: str) -> Optional[PartnerRecord]:
        try:
            rows = await self._partner_rows()
        except PartnerProgramError as exc:
            logger.warning(
                "%s: partner table read failed",
                label,
                extra={"error": exc.code, "detail": exc.message},
            )
            return None

        for row in rows:
            if column < len(row) and row[column] == value:
                return PartnerRecord.from_row(row)
        return None

    async def get_partner(self, telegram_id: str) -> Optional[PartnerRecord]:
        """
        Карточка партнёра по Telegram ID (колонка B) или None.
        None также при сбое чтения: вызывающий не отличает его от «не найден».
        """
        if not telegram_id:
            return None

        partner = await self._find_partner(1, telegram_id, label="get_partner")
        if partner is None:
            logger.info("Partner not found", extra={"telegram_id": telegram_id})
            return None

        await self._cache_put(f"{PARTNER_CACHE_PREFIX}{telegram_id}", partner)
        return partner

    async def get_partner_by_referral_code(self, code: str) -> Optional[PartnerRecord]:
        """Карточка партнёра по реферальному коду (колонка H) или None."""
        if not code:
            return None
        return await self._find_partner(7, code, label="get_partner_by_referral_code")

    async def validate_referral_code(self, code: str) -> bool:
        """
        True, если код точно (с учётом регистра) есть в колонке H.

        Исключения: NotConfiguredError, RemoteStoreError, TransientNetworkError.
        """
        rows = await self.sheets.get_values(self.settings.partners_range("H:H"))
        for row in rows[1:]:
            if row and row[0] == code:
                return True
        return False

    # -------------------------------------------------------------------------
    # Регистрация
    # -------------------------------------------------------------------------
    async def _issue_referral_code(self) -> str:
        """Новый код; при совпадении с существующим генерируем заново."""
        attempts = self.settings.REFERRAL_CODE_MAX_ATTEMPTS
        code = ""
        for attempt in range(1, attempts + 1):
            code = gen_ref_code(
                prefix=self.settings.REFERRAL_CODE_PREFIX,
                length=self.settings.REFERRAL_CODE_LENGTH,
            )
            if not await self.validate_referral_code(code):
                return code
            logger.warning("Referral code collision, regenerating", extra={"attempt": attempt})
        raise PartnerProgramError(
            code="registration_failed",
            message="Could not generate a unique referral code.",
            details={"attempts": attempts},
        )

    def _registration_payload(self, data: NewPartnerInput, referral_code: str) -> Dict[str, Any]:
        return {
            "telegramId": data.telegram_id,
            "firstName": data.first_name,
            "lastName": data.last_name,
            "phone": data.phone,
            "email": data.email,
            "username": data.username or "",
            "promoCode": referral_code,
            # Пустой промокод уходит как null, а не "", чтобы скрипт не искал пригласившего
            "inviterCode": data.normalized_inviter_code,
            "registrationDate": today_iso(),
        }

    async def _verify_registration(self, telegram_id: str) -> Optional[PartnerRecord]:
        """Контрольное чтение после записи: пауза → чтение, до N попыток."""
        attempts = max(1, self.settings.REGISTRATION_VERIFY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            await self._sleep(self.settings.REGISTRATION_SETTLE_DELAY_SEC)
            partner = await self.get_partner(telegram_id)
            if partner is not None:
                logger.info(
                    "Registration verified",
                    extra={"telegram_id": telegram_id, "attempt": attempt},
                )
                return partner
            logger.warning(
                "Registration not yet visible",
                extra={"telegram_id": telegram_id, "attempt": attempt},
            )
        return None

    async def register_partner(self, data: NewPartnerInput) -> RegistrationResult:
        """
        Регистрация нового партнёра.

        Выход: RegistrationResult; success=True означает, что запись принята
        шлюзом, confirmed=True: что её удалось прочитать обратно.
        """
        logger.info(
            "Registering partner",
            extra={"telegram_id": data.telegram_id, "has_inviter": bool(data.normalized_inviter_code)},
        )
        try:
            if await self.get_partner(data.telegram_id) is not None:
                raise AlreadyRegisteredError()

            inviter_code = data.normalized_inviter_code
            if inviter_code and not await self.validate_referral_code(inviter_code):
                raise InvalidInviterCodeError()

            referral_code = await self._issue_referral_code()
        except PartnerProgramError as exc:
            logger.info(
                "Registration rejected before write",
                extra={"telegram_id": data.telegram_id, "error": exc.code},
            )
            return RegistrationResult.failure(exc.message, _REGISTRATION_ERROR_CODES.get(exc.code, exc.code))

        payload = self._registration_payload(data, referral_code)
        write = await self.apps_script.send_command(REGISTER_ACTION, payload)
        if not write.success:
            logger.error(
                "Registration write failed",
                extra={"telegram_id": data.telegram_id, "error": write.error_code},
            )
            return RegistrationResult.failure(
                write.error or "Failed to write to Google Sheets",
                write.error_code or "registration_failed",
            )

        verified = await self._verify_registration(data.telegram_id)
        if verified is not None:
            await self._cache_delete(f"{FALLBACK_CACHE_PREFIX}{data.telegram_id}")
        else:
            logger.warning(
                "Registration acknowledged but not visible yet",
                extra={"telegram_id": data.telegram_id},
            )
            await self._cache_put(
                f"{FALLBACK_CACHE_PREFIX}{data.telegram_id}",
                PartnerRecord(
                    id="",
                    telegram_id=data.telegram_id,
                    first_name=data.first_name,
                    last_name=data.last_name,
                    phone=data.phone,
                    email=data.email,
                    username=data.username or None,
                    referral_code=referral_code,
                    inviter_code=data.normalized_inviter_code,
                    registration_date=payload["registrationDate"],
                ),
            )

        return RegistrationResult(
            success=True,
            referral_code=referral_code,
            confirmed=verified is not None,
        )

    # -------------------------------------------------------------------------
    # Начисления и сеть
    # -------------------------------------------------------------------------
    async def get_partner_commissions(self, telegram_id: str) -> List[CommissionRecord]:
        """Начисления партнёра, свежие сверху; при любом сбое: []."""
        if not telegram_id:
            return []
        try:
            rows = await self.sheets.get_values(self.settings.commissions_range())
        except PartnerProgramError as exc:
            logger.warning(
                "Commission table read failed",
                extra={"telegram_id": telegram_id, "error": exc.code},
            )
            return []

        records = [
            CommissionRecord.from_row(row)
            for row in rows[1:]
            if len(row) > 2 and row[2] == telegram_id
        ]
        return sort_commissions(records)

    async def get_partner_network(self, telegram_id: str) -> NetworkTree:
        root = await self.get_partner(telegram_id)
        if root is None:
            return NetworkTree()
        try:
            rows = await self._partner_rows()
        except PartnerProgramError as exc:
            logger.warning(
                "Network read failed",
                extra={"telegram_id": telegram_id, "error": exc.code},
            )
            return NetworkTree()

        partners = [PartnerRecord.from_row(row) for row in rows]
        tree = build_network_tree(root.telegram_id, partners)
        logger.info(
            "Network resolved",
            extra={"telegram_id": telegram_id, "counts": tree.counts},
        )
        return tree

    async def get_partner_dashboard(self, telegram_id: str) -> Optional[PartnerDashboard]:
        partner = await self.get_partner(telegram_id)
        if partner is None:
            return None
        commissions = await self.get_partner_commissions(telegram_id)
        network = await self.get_partner_network(telegram_id)
        return PartnerDashboard(
            partner=partner,
            commissions=commissions,
            summary=summarize_commissions(commissions),
            network_counts=network.counts,
        )

    # -------------------------------------------------------------------------
    # Подключение
    # -------------------------------------------------------------------------
    async def check_connection(self) -> ConnectionStatus:
        if not self.sheets.configured:
            return ConnectionStatus(
                success=False,
                message="Google Sheets API is not configured. Set GOOGLE_SHEETS_API_KEY and GOOGLE_SHEETS_ID.",
            )
        try:
            meta = await self.sheets.get_spreadsheet()
        except PartnerProgramError as exc:
            return ConnectionStatus(success=False, message=exc.message)

        title = (meta.get("properties") or {}).get("title")
        sheets = [
            str((sheet.get("properties") or {}).get("title"))
            for sheet in meta.get("sheets") or []
            if isinstance(sheet, dict)
        ]
        return ConnectionStatus(
            success=True,
            message=f"Connected to spreadsheet: {title}" if title else "Connected",
            title=title,
            sheets=sheets,
        )

    # -------------------------------------------------------------------------
    # Локальные данные
    # -------------------------------------------------------------------------
    async def _cache_put(self, key: str, partner: PartnerRecord) -> None:
        if self.local_store is None:
            return
        try:
            await self.local_store.set(key, partner.to_dict())
        except SQLAlchemyError as exc:
            logger.warning("Local store write failed", extra={"key": key, "error": str(exc)})

    async def _cache_delete(self, key: str) -> bool:
        if self.local_store is None:
            return False
        try:
            return await self.local_store.delete(key)
        except SQLAlchemyError as exc:
            logger.warning("Local store delete failed", extra={"key": key, "error": str(exc)})
            return False

    async def cached_partner(self, telegram_id: str) -> Tuple[Optional[PartnerRecord], Optional[str]]:
        """
        Локальная копия карточки: сперва partner_<id>, затем fallback_partner_<id>.
        Выход: (запись, источник 'cache' | 'fallback') или (None, None).
        """
        if self.local_store is None or not telegram_id:
            return None, None
        for prefix, source in ((PARTNER_CACHE_PREFIX, "cache"), (FALLBACK_CACHE_PREFIX, "fallback")):
            try:
                data = await self.local_store.get(f"{prefix}{telegram_id}")
            except SQLAlchemyError as exc:
                logger.warning("Local store read failed", extra={"error": str(exc)})
                return None, None
            if data:
                return PartnerRecord.from_dict(data), source
        return None, None

    async def clear_local_data(self, telegram_id: Optional[str] = None) -> int:
        """
        Удалить локальные ключи partner_* и fallback_partner_*.
        С telegram_id: только два ключа этого пользователя (точное совпадение).
        Выход: число удалённых ключей.
        """
        if self.local_store is None:
            return 0
        if telegram_id:
            removed = 0
            for prefix in LOCAL_PREFIXES:
                if await self._cache_delete(f"{prefix}{telegram_id}"):
                    removed += 1
        else:
            try:
                removed = len(await self.local_store.delete_by_prefixes(LOCAL_PREFIXES))
            except SQLAlchemyError as exc:
                logger.warning("Local store clear failed", extra={"error": str(exc)})
                removed = 0
        logger.info("Local partner data cleared", extra={"removed": removed, "scoped": bool(telegram_id)})
        return removed


__all__ = [
    "PARTNER_CACHE_PREFIX",
    "FALLBACK_CACHE_PREFIX",
    "PartnerDirectoryClient",
]
