# -*- coding: utf-8 -*-
# backend/app/schemas/partner_schemas.py
# =============================================================================
# Назначение кода:
#   Pydantic-схемы HTTP API партнёрской программы: карточка партнёра,
#   начисления, сеть, дашборд, регистрация, служебные ответы.
#
# Канон / инварианты:
#   • Схемы: только декларативные DTO; построение из доменных записей:
#     через классметоды from_record(...), без обращений к сети.
#   • Регистрационный ответ всегда содержит success и confirmed; error/error_code
#     заполнены только при неуспехе.
# =============================================================================

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.app.services.partner_records import (
    CommissionRecord,
    CommissionSummary,
    ConnectionStatus,
    NetworkTree,
    PartnerDashboard,
    PartnerRecord,
    RegistrationResult,
)


# -----------------------------------------------------------------------------
# Партнёр
# -----------------------------------------------------------------------------
class PartnerOut(BaseModel):
    id: str
    telegram_id: str
    first_name: str
    last_name: str
    phone: str
    email: str
    username: Optional[str] = None
    referral_code: str
    inviter_code: Optional[str] = None
    inviter_telegram_id: Optional[str] = None
    registration_date: str = Field(..., description="YYYY-MM-DD")
    total_earnings: float = 0.0
    sales_count: int = 0

    @classmethod
    def from_record(cls, record: PartnerRecord) -> "PartnerOut":
        return cls(**record.to_dict())


class PartnerLookupOut(BaseModel):
    partner: PartnerOut
    source: str = Field("remote", description="remote | cache | fallback")


class PublicPartnerOut(BaseModel):
    """Публичная карточка по реферальному коду: без контактов."""

    first_name: str
    last_name: str
    username: Optional[str] = None
    referral_code: str
    display_name: str = ""

    @classmethod
    def from_record(cls, record: PartnerRecord) -> "PublicPartnerOut":
        return cls(
            first_name=record.first_name,
            last_name=record.last_name,
            username=record.username,
            referral_code=record.referral_code,
            display_name=record.full_name,
        )


# -----------------------------------------------------------------------------
# Начисления
# -----------------------------------------------------------------------------
class CommissionOut(BaseModel):
    id: str
    sale_id: Optional[str] = None
    partner_telegram_id: str
    level: int = Field(..., ge=1, le=4)
    amount: float
    percentage: float
    date: str

    @classmethod
    def from_record(cls, record: CommissionRecord) -> "CommissionOut":
        return cls(**record.to_dict())


class LevelTotalsOut(BaseModel):
    level: int
    count: int
    amount: float


class CommissionSummaryOut(BaseModel):
    total_amount: float
    count: int
    by_level: List[LevelTotalsOut]

    @classmethod
    def from_summary(cls, summary: CommissionSummary) -> "CommissionSummaryOut":
        return cls(
            total_amount=summary.total_amount,
            count=summary.count,
            by_level=[
                LevelTotalsOut(level=b.level, count=b.count, amount=b.amount)
                for b in summary.by_level
            ],
        )


class CommissionListOut(BaseModel):
    items: List[CommissionOut]
    summary: CommissionSummaryOut


# -----------------------------------------------------------------------------
# Сеть
# -----------------------------------------------------------------------------
class NetworkOut(BaseModel):
    level1: List[PartnerOut] = Field(default_factory=list)
    level2: List[PartnerOut] = Field(default_factory=list)
    level3: List[PartnerOut] = Field(default_factory=list)
    level4: List[PartnerOut] = Field(default_factory=list)
    counts: List[int]
    total: int

    @classmethod
    def from_tree(cls, tree: NetworkTree) -> "NetworkOut":
        return cls(
            level1=[PartnerOut.from_record(p) for p in tree.level1],
            level2=[PartnerOut.from_record(p) for p in tree.level2],
            level3=[PartnerOut.from_record(p) for p in tree.level3],
            level4=[PartnerOut.from_record(p) for p in tree.level4],
            counts=tree.counts,
            total=tree.total,
        )


class DashboardOut(BaseModel):
    partner: PartnerOut
    recent_commissions: List[CommissionOut]
    summary: CommissionSummaryOut
    network_counts: List[int]
    network_total: int

    @classmethod
    def from_dashboard(cls, dashboard: PartnerDashboard, recent: int = 10) -> "DashboardOut":
        return cls(
            partner=PartnerOut.from_record(dashboard.partner),
            recent_commissions=[CommissionOut.from_record(c) for c in dashboard.commissions[:recent]],
            summary=CommissionSummaryOut.from_summary(dashboard.summary),
            network_counts=dashboard.network_counts,
            network_total=dashboard.network_total,
        )


# -----------------------------------------------------------------------------
# Регистрация
# -----------------------------------------------------------------------------
class RegisterPartnerIn(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field("", max_length=128)
    phone: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=3, max_length=256)
    username: Optional[str] = Field(None, max_length=64)
    inviter_code: Optional[str] = Field(None, max_length=64)

    @field_validator("first_name", "last_name", "phone", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("username")
    @classmethod
    def _strip_at(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lstrip("@")
        return value or None


class RegistrationOut(BaseModel):
    success: bool
    referral_code: Optional[str] = None
    confirmed: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_result(cls, result: RegistrationResult) -> "RegistrationOut":
        return cls(
            success=result.success,
            referral_code=result.referral_code,
            confirmed=result.confirmed,
            error=result.error,
            error_code=result.error_code,
        )


# -----------------------------------------------------------------------------
# Служебное
# -----------------------------------------------------------------------------
class CodeValidationOut(BaseModel):
    code: str
    valid: bool


class ConnectionOut(BaseModel):
    success: bool
    message: str
    title: Optional[str] = None
    sheets: List[str] = Field(default_factory=list)

    @classmethod
    def from_status(cls, status: ConnectionStatus) -> "ConnectionOut":
        return cls(success=status.success, message=status.message, title=status.title, sheets=status.sheets)


class LogoutOut(BaseModel):
    removed: int


__all__ = [
    "PartnerOut",
    "PartnerLookupOut",
    "PublicPartnerOut",
    "CommissionOut",
    "LevelTotalsOut",
    "CommissionSummaryOut",
    "CommissionListOut",
    "NetworkOut",
    "DashboardOut",
    "RegisterPartnerIn",
    "RegistrationOut",
    "CodeValidationOut",
    "ConnectionOut",
    "LogoutOut",
]
