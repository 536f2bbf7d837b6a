"""Investment holding records.

A holding is one purchase event: money put into an asset at a unit price on
a given date. Holdings are what the user enters and what gets persisted;
positions are derived from them in ``consolidation.py``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from errors import ValidationError


class InvestmentCategory(str, Enum):
    CRYPTO = "Crypto"
    FIXED_INCOME = "Fixed Income"
    INVESTMENT_FUND = "Investment Fund"
    STOCKS = "Stocks"
    TREASURY = "Treasury"
    ETF = "ETF"
    REIT = "REIT"
    GOODS = "Goods"
    OTHER = "Other"


CATEGORY_COLORS = {
    InvestmentCategory.CRYPTO: "#3B82F6",
    InvestmentCategory.FIXED_INCOME: "#10B981",
    InvestmentCategory.INVESTMENT_FUND: "#8B5CF6",
    InvestmentCategory.STOCKS: "#F59E0B",
    InvestmentCategory.TREASURY: "#EF4444",
    InvestmentCategory.ETF: "#EC4899",
    InvestmentCategory.REIT: "#6B7280",
    InvestmentCategory.GOODS: "#F97316",
    InvestmentCategory.OTHER: "#374151",
}

VOLATILE_CATEGORIES = frozenset({InvestmentCategory.CRYPTO, InvestmentCategory.STOCKS})


def parse_category(value) -> InvestmentCategory:
    if isinstance(value, InvestmentCategory):
        return value
    try:
        return InvestmentCategory(value)
    except ValueError:
        raise ValidationError(f"Unknown investment category: {value!r}")


@dataclass(frozen=True)
class Holding:
    asset_id: str
    symbol: str
    name: str
    amount: float
    buy_price: float
    category: InvestmentCategory
    purchase_date: date
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def quantity(self) -> float:
        return self.amount / self.buy_price

    @property
    def is_admissible(self) -> bool:
        return _positive(self.amount) and _positive(self.buy_price)


def _positive(value) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0


def validate_holding(holding: Holding) -> Holding:
    """Raise ``ValidationError`` unless the holding may enter aggregation."""
    if not holding.asset_id or not str(holding.asset_id).strip():
        raise ValidationError("Holding needs an asset id")
    if not _positive(holding.amount):
        raise ValidationError(f"Invested amount must be positive (got {holding.amount!r})")
    if not _positive(holding.buy_price):
        raise ValidationError(f"Buy price must be positive (got {holding.buy_price!r})")
    parse_category(holding.category)
    return holding


def holding_from_row(row) -> Holding:
    """Map an ``Investment`` ORM row onto a ``Holding``."""
    return Holding(
        id=row.id,
        asset_id=row.asset_id,
        symbol=row.symbol or "",
        name=row.name or "",
        amount=float(row.amount),
        buy_price=float(row.buy_price),
        category=parse_category(row.category),
        purchase_date=row.purchase_date,
        notes=row.notes,
    )
