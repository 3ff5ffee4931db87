# -*- coding: utf-8 -*-
# backend/app/services/partner_records.py
# =============================================================================
# Назначение кода:
#   Типизированные записи партнёрской программы и чистые операции над ними:
#   • PartnerRecord / CommissionRecord: разбор строк таблицы (позиционно);
#   • NetworkTree + build_network_tree: реферальная сеть на 4 уровня (BFS);
#   • sort_commissions / summarize_commissions: история и агрегаты начислений;
#   • RegistrationResult / ConnectionStatus / NewPartnerInput: результаты и вход.
#
# Канон/инварианты:
#   • Колонки листа «Партнеры» (A..M): id, telegram_id, first_name, last_name,
#     phone, email, username, referral_code, inviter_code, inviter_telegram_id,
#     registration_date, total_earnings, sales_count.
#   • Колонки листа «Начисления» (A..G): id, sale_id, partner_telegram_id,
#     level, amount, percentage, date.
#   • Битые числа → 0; уровень начисления вне 1..4 → 1.
#   • Узел сети появляется не более чем на одном уровне; партнёр без
#     inviter_telegram_id детьми не становится никогда.
#
# Запреты:
#   • Никакой сети и ввода-вывода: модуль только преобразует данные.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from backend.app.core.utils_core import (
    cell,
    optional_cell,
    parse_float,
    parse_int,
    sortable_datetime,
)

NETWORK_DEPTH = 4
COMMISSION_LEVELS = (1, 2, 3, 4)


# -----------------------------------------------------------------------------
# Партнёр
# -----------------------------------------------------------------------------
@dataclass
class PartnerRecord:
    id: str
    telegram_id: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""
    username: Optional[str] = None
    referral_code: str = ""
    inviter_code: Optional[str] = None
    inviter_telegram_id: Optional[str] = None
    registration_date: str = ""
    total_earnings: float = 0.0
    sales_count: int = 0

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "PartnerRecord":
        return cls(
            id=cell(row, 0),
            telegram_id=cell(row, 1),
            first_name=cell(row, 2),
            last_name=cell(row, 3),
            phone=cell(row, 4),
            email=cell(row, 5),
            username=optional_cell(row, 6),
            referral_code=cell(row, 7),
            inviter_code=optional_cell(row, 8),
            inviter_telegram_id=optional_cell(row, 9),
            registration_date=cell(row, 10),
            total_earnings=parse_float(cell(row, 11)),
            sales_count=parse_int(cell(row, 12)),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartnerRecord":
        """Восстановление из локального хранилища (обратная операция to_dict)."""
        return cls(
            id=str(data.get("id") or ""),
            telegram_id=str(data.get("telegram_id") or ""),
            first_name=str(data.get("first_name") or ""),
            last_name=str(data.get("last_name") or ""),
            phone=str(data.get("phone") or ""),
            email=str(data.get("email") or ""),
            username=data.get("username") or None,
            referral_code=str(data.get("referral_code") or ""),
            inviter_code=data.get("inviter_code") or None,
            inviter_telegram_id=data.get("inviter_telegram_id") or None,
            registration_date=str(data.get("registration_date") or ""),
            total_earnings=parse_float(data.get("total_earnings")),
            sales_count=parse_int(data.get("sales_count")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


# -----------------------------------------------------------------------------
# Начисление
# -----------------------------------------------------------------------------
def _commission_level(raw: str) -> int:
    level = parse_int(raw, default=1)
    return level if level in COMMISSION_LEVELS else 1


@dataclass
class CommissionRecord:
    id: str
    partner_telegram_id: str
    sale_id: Optional[str] = None
    level: int = 1
    amount: float = 0.0
    percentage: float = 0.0
    date: str = ""

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "CommissionRecord":
        return cls(
            id=cell(row, 0),
            sale_id=optional_cell(row, 1),
            partner_telegram_id=cell(row, 2),
            level=_commission_level(cell(row, 3)),
            amount=parse_float(cell(row, 4)),
            percentage=parse_float(cell(row, 5)),
            date=cell(row, 6),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sort_commissions(records: Iterable[CommissionRecord]) -> List[CommissionRecord]:
    """
    Свежие сверху. sorted() стабилен: при равных датах порядок строк таблицы
    сохраняется. Нераспознанные даты уходят в конец.
    """
    return sorted(records, key=lambda r: sortable_datetime(r.date), reverse=True)


@dataclass
class LevelTotals:
    level: int
    count: int = 0
    amount: float = 0.0


@dataclass
class CommissionSummary:
    total_amount: float = 0.0
    count: int = 0
    by_level: List[LevelTotals] = field(
        default_factory=lambda: [LevelTotals(level=lvl) for lvl in COMMISSION_LEVELS]
    )

    def level(self, level: int) -> LevelTotals:
        return self.by_level[level - 1]


def summarize_commissions(records: Iterable[CommissionRecord]) -> CommissionSummary:
    summary = CommissionSummary()
    for record in records:
        summary.count += 1
        summary.total_amount += record.amount
        bucket = summary.level(record.level)
        bucket.count += 1
        bucket.amount += record.amount
    summary.total_amount = round(summary.total_amount, 2)
    for bucket in summary.by_level:
        bucket.amount = round(bucket.amount, 2)
    return summary


# -----------------------------------------------------------------------------
# Реферальная сеть
# -----------------------------------------------------------------------------
@dataclass
class NetworkTree:
    level1: List[PartnerRecord] = field(default_factory=list)
    level2: List[PartnerRecord] = field(default_factory=list)
    level3: List[PartnerRecord] = field(default_factory=list)
    level4: List[PartnerRecord] = field(default_factory=list)

    @property
    def levels(self) -> List[List[PartnerRecord]]:
        return [self.level1, self.level2, self.level3, self.level4]

    @property
    def counts(self) -> List[int]:
        return [len(level) for level in self.levels]

    @property
    def total(self) -> int:
        return sum(self.counts)


def build_network_tree(
    root_telegram_id: str,
    partners: Iterable[PartnerRecord],
    depth: int = NETWORK_DEPTH,
) -> NetworkTree:
    """
    Обход в ширину от корня по связи inviter_telegram_id → telegram_id.

    Уровень N+1: партнёры, чей inviter_telegram_id входит в множество
    telegram_id уровня N. Порядок внутри уровня: порядок строк таблицы.
    Строки, уже попавшие на предыдущие уровни (или строки корня), повторно не
    берутся, поэтому циклы в данных не раздувают дерево. Дубликаты одного
    telegram_id (разные строки) попадают на уровень каждый.
    """
    tree = NetworkTree()
    all_partners = list(partners)
    taken: Set[int] = {i for i, p in enumerate(all_partners) if p.telegram_id == root_telegram_id}
    frontier: Set[str] = {root_telegram_id}

    for level_index in range(min(depth, NETWORK_DEPTH)):
        if not frontier:
            break
        current: List[PartnerRecord] = []
        for row_index, partner in enumerate(all_partners):
            inviter = partner.inviter_telegram_id
            if not inviter or inviter not in frontier:
                continue
            if row_index in taken:
                continue
            taken.add(row_index)
            current.append(partner)
        tree.levels[level_index].extend(current)
        frontier = {p.telegram_id for p in current}

    return tree


# -----------------------------------------------------------------------------
# Вход/выход операций
# -----------------------------------------------------------------------------
@dataclass
class NewPartnerInput:
    telegram_id: str
    first_name: str
    last_name: str
    phone: str
    email: str
    username: Optional[str] = None
    inviter_code: Optional[str] = None

    @property
    def normalized_inviter_code(self) -> Optional[str]:
        """Промокод пригласившего, если он непустой после trim, иначе None."""
        if self.inviter_code is None:
            return None
        code = self.inviter_code.strip()
        return code or None


@dataclass
class RegistrationResult:
    success: bool
    referral_code: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    # Запись увидена повторным чтением таблицы после регистрации
    confirmed: bool = False

    @classmethod
    def failure(cls, error: str, error_code: str) -> "RegistrationResult":
        return cls(success=False, error=error, error_code=error_code)


@dataclass
class ConnectionStatus:
    success: bool
    message: str
    title: Optional[str] = None
    sheets: List[str] = field(default_factory=list)


@dataclass
class PartnerDashboard:
    partner: PartnerRecord
    commissions: List[CommissionRecord]
    summary: CommissionSummary
    network_counts: List[int]

    @property
    def network_total(self) -> int:
        return sum(self.network_counts)


__all__ = [
    "NETWORK_DEPTH",
    "PartnerRecord",
    "CommissionRecord",
    "LevelTotals",
    "CommissionSummary",
    "NetworkTree",
    "NewPartnerInput",
    "RegistrationResult",
    "ConnectionStatus",
    "PartnerDashboard",
    "build_network_tree",
    "sort_commissions",
    "summarize_commissions",
]
