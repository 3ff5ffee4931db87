# -*- coding: utf-8 -*-
# backend/app/routes/partners_routes.py
# =============================================================================
# Назначение кода:
#   • Публичные ручки «Партнёрская программа»: карточка и дашборд партнёра,
#     история начислений, реферальная сеть, проверка промокода, регистрация,
#     выход (очистка локальных данных), проверка подключения к таблице.
#
# Канон/инварианты:
#   • Пользователь: только из AuthContext (initData / доверенный заголовок);
#     чужие данные по Telegram ID не отдаются.
#   • Вся работа с таблицей: через PartnerDirectoryClient; здесь только
#     перевод результатов в HTTP.
#   • /me: сначала таблица, затем локальная копия (source=cache|fallback).
#   • Регистрация: ответ всегда RegistrationOut; HTTP-код по error_code.
#
# Запреты:
#   • Нет прямых HTTP-вызовов к Google и нет SQL.
#   • Публичная карточка по коду не содержит телефон/email.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from backend.app.core.errors_core import NotFoundError
from backend.app.core.logging_core import get_logger
from backend.app.deps import AuthContext, get_auth_context, get_directory
from backend.app.schemas.partner_schemas import (
    CodeValidationOut,
    CommissionListOut,
    CommissionOut,
    CommissionSummaryOut,
    ConnectionOut,
    DashboardOut,
    LogoutOut,
    NetworkOut,
    PartnerLookupOut,
    PartnerOut,
    PublicPartnerOut,
    RegisterPartnerIn,
    RegistrationOut,
)
from backend.app.services.partner_directory import PartnerDirectoryClient
from backend.app.services.partner_records import NewPartnerInput, summarize_commissions

logger = get_logger(__name__)
router = APIRouter(prefix="/partners", tags=["partners"])

_REGISTRATION_STATUS = {
    "already_registered": status.HTTP_409_CONFLICT,
    "invalid_inviter_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_configured": status.HTTP_503_SERVICE_UNAVAILABLE,
    "network_error": status.HTTP_502_BAD_GATEWAY,
    "remote_rejected": status.HTTP_502_BAD_GATEWAY,
    "registration_failed": status.HTTP_502_BAD_GATEWAY,
}

# =============================================================================
# GET /partners/connection: доступность таблицы
# =============================================================================


@router.get("/connection", response_model=ConnectionOut)
async def connection(directory: PartnerDirectoryClient = Depends(get_directory)) -> ConnectionOut:
    return ConnectionOut.from_status(await directory.check_connection())


# =============================================================================
# Текущий партнёр
# =============================================================================


@router.get("/me", response_model=PartnerLookupOut)
async def me(
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> PartnerLookupOut:
    partner = await directory.get_partner(ctx.telegram_id)
    source = "remote"
    if partner is None:
        partner, source = await directory.cached_partner(ctx.telegram_id)
    if partner is None:
        raise NotFoundError()
    return PartnerLookupOut(partner=PartnerOut.from_record(partner), source=source)


@router.get("/me/dashboard", response_model=DashboardOut)
async def dashboard(
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> DashboardOut:
    data = await directory.get_partner_dashboard(ctx.telegram_id)
    if data is None:
        raise NotFoundError()
    return DashboardOut.from_dashboard(data)


@router.get("/me/commissions", response_model=CommissionListOut)
async def commissions(
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> CommissionListOut:
    records = await directory.get_partner_commissions(ctx.telegram_id)
    return CommissionListOut(
        items=[CommissionOut.from_record(r) for r in records],
        summary=CommissionSummaryOut.from_summary(summarize_commissions(records)),
    )


@router.get("/me/network", response_model=NetworkOut)
async def network(
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> NetworkOut:
    return NetworkOut.from_tree(await directory.get_partner_network(ctx.telegram_id))


# =============================================================================
# Промокоды
# =============================================================================


@router.get("/by-code/{code}", response_model=PublicPartnerOut)
async def by_code(
    code: str,
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> PublicPartnerOut:
    partner = await directory.get_partner_by_referral_code(code)
    if partner is None:
        raise NotFoundError()
    return PublicPartnerOut.from_record(partner)


@router.get("/validate-code/{code}", response_model=CodeValidationOut)
async def validate_code(
    code: str,
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> CodeValidationOut:
    # NotConfigured/RemoteStore/TransientNetwork уходят в обработчики ошибок
    return CodeValidationOut(code=code, valid=await directory.validate_referral_code(code))


# =============================================================================
# POST /partners/register
# =============================================================================


@router.post("/register", response_model=RegistrationOut, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterPartnerIn,
    response: Response,
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> RegistrationOut:
    result = await directory.register_partner(
        NewPartnerInput(
            telegram_id=ctx.telegram_id,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
            email=payload.email,
            username=payload.username or ctx.username,
            inviter_code=payload.inviter_code,
        )
    )
    logger.info(
        "Registration handled",
        extra={"success": result.success, "confirmed": result.confirmed, "error": result.error_code},
    )
    if not result.success:
        response.status_code = _REGISTRATION_STATUS.get(
            result.error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    elif not result.confirmed:
        response.status_code = status.HTTP_202_ACCEPTED
    return RegistrationOut.from_result(result)


# =============================================================================
# POST /partners/logout: очистка локальных данных пользователя
# =============================================================================


@router.post("/logout", response_model=LogoutOut)
async def logout(
    ctx: AuthContext = Depends(get_auth_context),
    directory: PartnerDirectoryClient = Depends(get_directory),
) -> LogoutOut:
    removed = await directory.clear_local_data(ctx.telegram_id)
    return LogoutOut(removed=removed)


__all__ = ["router"]
