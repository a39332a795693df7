"""Durable build ledger: one control record per index build."""

from __future__ import annotations

from .models import BuildLedger, BuildStatus
from .repository import LedgerRepository

__all__ = [
    "BuildLedger",
    "BuildStatus",
    "LedgerRepository",
]
