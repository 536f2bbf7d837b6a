"""Portfolio-level statistics derived from consolidated positions.

Everything here is read-only presentation math: filters, totals, category
breakdown, risk heuristics and heatmap colouring.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from consolidation import ConsolidatedPosition
from holdings import CATEGORY_COLORS, VOLATILE_CATEGORIES, InvestmentCategory

CONCENTRATION_LIMIT_PCT = 50.0
VOLATILE_SHARE_LIMIT = 0.7
MIN_DIVERSIFIED_POSITIONS = 5

# Up to 20 distinct colours for per-asset allocation slices
ASSET_COLORS = [
    "#3B82F6", "#10B981", "#8B5CF6", "#F59E0B", "#EF4444", "#EC4899", "#6B7280", "#F97316", "#374151",
    "#6366F1", "#22D3EE", "#F43F5E", "#A3E635", "#FBBF24", "#E879F9", "#14B8A6", "#F87171", "#A21CAF",
    "#FDE68A", "#4ADE80",
]

# (lower bound on profit %, colour), checked top-down
PERFORMANCE_BANDS = [
    (20, "#059669"),
    (10, "#10B981"),
    (0, "#34D399"),
    (-10, "#F59E0B"),
    (-20, "#F97316"),
]
WORST_BAND_COLOR = "#DC2626"

# (lower bound on |profit %|, opacity), checked top-down
INTENSITY_TIERS = [
    (50, 1.0),
    (30, 0.95),
    (20, 0.85),
    (10, 0.75),
    (5, 0.65),
    (1, 0.55),
    (0, 0.45),
]

TIMELINE_PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}


@dataclass(frozen=True)
class PortfolioMetrics:
    total_invested: float
    total_current_value: float
    total_profit: float
    total_profit_percentage: float
    profitable_count: int
    unprofitable_count: int
    average_profit: float
    best_performer: Optional[ConsolidatedPosition]
    worst_performer: Optional[ConsolidatedPosition]


@dataclass(frozen=True)
class CategorySlice:
    category: InvestmentCategory
    value: float
    original_value: float
    profit: float
    count: int
    percentage: float
    color: str


@dataclass(frozen=True)
class RiskFlag:
    code: str
    message: str


def filter_positions(
    positions: Iterable[ConsolidatedPosition], category: Optional[str] = None
) -> List[ConsolidatedPosition]:
    positions = list(positions)
    if category in (None, "", "all"):
        return positions
    return [p for p in positions if p.category == category or p.category.value == category]


def sort_positions(positions: Iterable[ConsolidatedPosition], sort_by: str = "profit") -> List[ConsolidatedPosition]:
    """Numeric keys sort descending, ``name`` ascending. Ties keep input order."""
    keys = {
        "profit": lambda p: p.profit,
        "profitPercentage": lambda p: p.profit_percentage,
        "value": lambda p: p.current_value,
    }
    if sort_by == "name":
        return sorted(positions, key=lambda p: p.name.lower())
    if sort_by not in keys:
        return list(positions)
    return sorted(positions, key=keys[sort_by], reverse=True)


def best_performer(positions: Sequence[ConsolidatedPosition]) -> Optional[ConsolidatedPosition]:
    """Highest profit %; on ties the first one in input order wins."""
    best = None
    for position in positions:
        if best is None or position.profit_percentage > best.profit_percentage:
            best = position
    return best


def worst_performer(positions: Sequence[ConsolidatedPosition]) -> Optional[ConsolidatedPosition]:
    """Lowest profit %; on ties the first one in input order wins."""
    worst = None
    for position in positions:
        if worst is None or position.profit_percentage < worst.profit_percentage:
            worst = position
    return worst


def portfolio_metrics(positions: Sequence[ConsolidatedPosition]) -> PortfolioMetrics:
    positions = list(positions)
    total_invested = sum(p.total_amount for p in positions)
    total_value = sum(p.current_value for p in positions)
    total_profit = total_value - total_invested
    return PortfolioMetrics(
        total_invested=total_invested,
        total_current_value=total_value,
        total_profit=total_profit,
        total_profit_percentage=(total_profit / total_invested * 100) if total_invested > 0 else 0.0,
        profitable_count=sum(1 for p in positions if p.profit > 0),
        unprofitable_count=sum(1 for p in positions if p.profit < 0),
        average_profit=total_profit / len(positions) if positions else 0.0,
        best_performer=best_performer(positions),
        worst_performer=worst_performer(positions),
    )


def positions_frame(positions: Iterable[ConsolidatedPosition]) -> pd.DataFrame:
    """One row per position, columns named for tables and plotly charts."""
    rows = [
        {
            "AssetId": p.asset_id,
            "Symbol": p.symbol,
            "Name": p.name,
            "Category": p.category.value,
            "Invested": p.total_amount,
            "Quantity": p.total_quantity,
            "AvgBuyPrice": p.average_buy_price,
            "CurrentPrice": p.current_price,
            "CurrentValue": p.current_value,
            "Profit": p.profit,
            "ProfitPct": p.profit_percentage,
            "StalePrice": p.price_is_stale,
        }
        for p in positions
    ]
    columns = [
        "AssetId", "Symbol", "Name", "Category", "Invested", "Quantity", "AvgBuyPrice",
        "CurrentPrice", "CurrentValue", "Profit", "ProfitPct", "StalePrice",
    ]
    return pd.DataFrame(rows, columns=columns)


def category_breakdown(positions: Sequence[ConsolidatedPosition]) -> List[CategorySlice]:
    """Per-category value/profit sums, largest value first."""
    df = positions_frame(positions)
    if df.empty:
        return []

    grouped = (
        df.groupby("Category", sort=False)
        .agg(value=("CurrentValue", "sum"), original=("Invested", "sum"), profit=("Profit", "sum"), count=("AssetId", "size"))
        .sort_values("value", ascending=False, kind="stable")
    )
    total_value = float(df["CurrentValue"].sum())

    slices = []
    for name, row in grouped.iterrows():
        category = InvestmentCategory(name)
        slices.append(
            CategorySlice(
                category=category,
                value=float(row["value"]),
                original_value=float(row["original"]),
                profit=float(row["profit"]),
                count=int(row["count"]),
                percentage=float(row["value"]) / total_value * 100 if total_value > 0 else 0.0,
                color=CATEGORY_COLORS.get(category, "#374151"),
            )
        )
    return slices


def concentration(positions: Sequence[ConsolidatedPosition]) -> Tuple[Optional[InvestmentCategory], float]:
    """(largest category, its share of total value in %)."""
    top_category, top_pct = None, 0.0
    for entry in category_breakdown(positions):
        if entry.percentage > top_pct:
            top_category, top_pct = entry.category, entry.percentage
    return top_category, top_pct


def risk_flags(positions: Sequence[ConsolidatedPosition]) -> List[RiskFlag]:
    """Advisory warnings; an empty portfolio raises none."""
    positions = list(positions)
    if not positions:
        return []

    flags = []
    category, pct = concentration(positions)
    if pct > CONCENTRATION_LIMIT_PCT:
        flags.append(RiskFlag("concentration", f"High concentration in {category.value} ({pct:.1f}%)"))

    volatile = [p for p in positions if p.category in VOLATILE_CATEGORIES]
    if len(volatile) / len(positions) > VOLATILE_SHARE_LIMIT:
        flags.append(RiskFlag("volatile_exposure", "High exposure to volatile assets"))

    if len(positions) < MIN_DIVERSIFIED_POSITIONS:
        flags.append(RiskFlag("low_diversification", "Low diversification - consider adding more assets"))
    return flags


def performance_color(profit_percentage: float) -> str:
    for lower, color in PERFORMANCE_BANDS:
        if profit_percentage >= lower:
            return color
    return WORST_BAND_COLOR


def color_intensity(profit_percentage: float) -> float:
    magnitude = abs(profit_percentage)
    for lower, opacity in INTENSITY_TIERS:
        if magnitude >= lower:
            return opacity
    return INTENSITY_TIERS[-1][1]


def heatmap_cells(positions: Sequence[ConsolidatedPosition], sort_by: str = "performance") -> List[dict]:
    order = {"performance": "profitPercentage", "value": "value", "name": "name"}.get(sort_by, sort_by)
    cells = []
    for p in sort_positions(positions, order):
        cells.append(
            {
                "asset_id": p.asset_id,
                "name": p.name,
                "symbol": p.symbol,
                "category": p.category.value,
                "current_value": p.current_value,
                "profit": p.profit,
                "profit_percentage": p.profit_percentage,
                "size": math.sqrt(max(p.current_value, 0.0)) * 2,
                "color": performance_color(p.profit_percentage),
                "opacity": color_intensity(p.profit_percentage),
            }
        )
    return cells


def asset_allocation(positions: Sequence[ConsolidatedPosition]) -> List[dict]:
    """Per-asset share of portfolio value, largest first."""
    total = sum(p.current_value for p in positions)
    slices = [
        {
            "name": p.name,
            "symbol": p.symbol,
            "category": p.category.value,
            "value": p.current_value,
            "percentage": p.current_value / total * 100 if total > 0 else 0.0,
            "profit": p.profit,
            "profit_percentage": p.profit_percentage,
            "color": ASSET_COLORS[index % len(ASSET_COLORS)],
        }
        for index, p in enumerate(positions)
    ]
    return sorted(slices, key=lambda s: -s["value"])


def timeline_stats(
    points: Iterable[Tuple[datetime, float]],
    period: str = "all",
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """Change and range over a value series, restricted to ``period``."""
    points = sorted(points, key=lambda pt: pt[0])
    days = TIMELINE_PERIOD_DAYS.get(period)
    if days is not None:
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        points = [pt for pt in points if pt[0] >= cutoff]
    if not points:
        return None

    values = [value for _, value in points]
    first, last = values[0], values[-1]
    change = last - first
    return {
        "first": first,
        "last": last,
        "change": change,
        "change_percentage": change / first * 100 if first else 0.0,
        "max": max(values),
        "min": min(values),
        "points": len(values),
    }
