# -*- coding: utf-8 -*-
# backend/app/services/__init__.py
# =============================================================================
# Сервисный слой партнёрской программы (единая точка входа)
# -----------------------------------------------------------------------------
#   • partner_records   : записи партнёров/комиссий, сеть по уровням.
#   • partner_directory : чтение из Google Sheets, регистрация через
#                          Apps Script, локальный кэш.
#   • local_store       : ключ/значение поверх SQLAlchemy.
#
# Никакой бизнес-логики и сетевых вызовов на уровне импорта.
# =============================================================================

from __future__ import annotations

from .local_store import LocalKeyValueStore  # noqa: F401
from .partner_directory import PartnerDirectoryClient  # noqa: F401
from .partner_records import (  # noqa: F401
    CommissionRecord,
    NetworkTree,
    PartnerRecord,
    RegistrationResult,
    build_network_tree,
    sort_commissions,
    summarize_commissions,
)

__all__ = [
    "LocalKeyValueStore",
    "PartnerDirectoryClient",
    "PartnerRecord",
    "CommissionRecord",
    "NetworkTree",
    "RegistrationResult",
    "build_network_tree",
    "sort_commissions",
    "summarize_commissions",
]
