"""Consolidate raw holdings into one position per asset.

Pure functions only: the same holdings and quotes always produce the same
positions, so this is safe to run on every page refresh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from holdings import Holding, InvestmentCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsolidatedPosition:
    asset_id: str
    symbol: str
    name: str
    category: InvestmentCategory
    total_amount: float
    total_quantity: float
    average_buy_price: float
    current_price: float
    current_value: float
    profit: float
    profit_percentage: float
    holdings_count: int
    price_is_stale: bool


@dataclass
class _Group:
    holdings: List[Holding]
    total_amount: float = 0.0
    total_quantity: float = 0.0


def _group_key(holding: Holding) -> Tuple[InvestmentCategory, str]:
    return (holding.category, holding.asset_id)


def _fallback_price(holdings: List[Holding]) -> float:
    """Buy price of the most recently dated holding; later input wins ties."""
    latest = holdings[0]
    for holding in holdings[1:]:
        if holding.purchase_date >= latest.purchase_date:
            latest = holding
    return latest.buy_price


def consolidate(
    holdings: Iterable[Holding],
    quotes_by_id: Optional[Mapping[str, float]] = None,
) -> List[ConsolidatedPosition]:
    """
    Group holdings by (category, asset id) and compute per-asset totals.

    Holdings with a non-positive amount or buy price are skipped. The current
    price comes from ``quotes_by_id`` when the asset has a live quote,
    otherwise from the group's most recent purchase and the position is
    marked ``price_is_stale``. Positions come back in order of first
    appearance.
    """
    quotes_by_id = quotes_by_id or {}
    groups: Dict[Tuple[InvestmentCategory, str], _Group] = {}

    for holding in holdings:
        if not holding.is_admissible:
            logger.warning(
                "Skipping holding %s (%s): amount=%r buy_price=%r",
                holding.id, holding.asset_id, holding.amount, holding.buy_price,
            )
            continue
        group = groups.setdefault(_group_key(holding), _Group(holdings=[]))
        group.holdings.append(holding)
        group.total_amount += holding.amount
        group.total_quantity += holding.amount / holding.buy_price

    positions = []
    for (category, asset_id), group in groups.items():
        if group.total_quantity <= 0 or group.total_amount <= 0:
            logger.warning("Dropping %s/%s: zero aggregate quantity", category.value, asset_id)
            continue

        quote = quotes_by_id.get(asset_id)
        stale = quote is None or not quote > 0
        current_price = _fallback_price(group.holdings) if stale else float(quote)

        current_value = group.total_quantity * current_price
        profit = current_value - group.total_amount
        first = group.holdings[0]
        positions.append(
            ConsolidatedPosition(
                asset_id=asset_id,
                symbol=first.symbol,
                name=first.name,
                category=category,
                total_amount=group.total_amount,
                total_quantity=group.total_quantity,
                average_buy_price=group.total_amount / group.total_quantity,
                current_price=current_price,
                current_value=current_value,
                profit=profit,
                profit_percentage=profit / group.total_amount * 100,
                holdings_count=len(group.holdings),
                price_is_stale=stale,
            )
        )
    return positions


def quotes_to_prices(quotes) -> Dict[str, float]:
    """Map ``Quote`` objects (or dicts) to ``{asset_id: current_price}``."""
    prices = {}
    for quote in quotes or []:
        if isinstance(quote, Mapping):
            asset_id, price = quote.get("id"), quote.get("current_price")
        else:
            asset_id, price = quote.id, quote.current_price
        if asset_id and price is not None:
            prices[asset_id] = float(price)
    return prices
