# -*- coding: utf-8 -*-
# backend/app/schemas/__init__.py
# =============================================================================
# Назначение кода:
#   Фасад Pydantic-схем API: единый импорт
#       from backend.app.schemas import PartnerOut, RegistrationOut, ...
#
# Запреты:
#   • Никакой бизнес-логики, сети и БД: только реэкспорт схем.
# =============================================================================

from __future__ import annotations

from backend.app.schemas.partner_schemas import *  # noqa: F401,F403
from backend.app.schemas.partner_schemas import __all__ as _partner_all

__all__ = sorted(_partner_all)
