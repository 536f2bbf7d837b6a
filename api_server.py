"""Lightweight tool server exposing categorization, portfolio analytics and the assistant over FastAPI."""

import logging
from dataclasses import asdict
from datetime import date
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from analytics import (
    asset_allocation,
    category_breakdown,
    filter_positions,
    heatmap_cells,
    portfolio_metrics,
    risk_flags,
    sort_positions,
)
from app_logging import setup_logging
from assistant import FinanceAssistant
from categorizer import smart_categorize
from config import Settings
from consolidation import ConsolidatedPosition, consolidate, quotes_to_prices
from database import SessionLocal
from errors import (
    BackendError,
    FinanceError,
    LLMAPIError,
    LLMConfigError,
    MarketDataError,
    NotAuthenticatedError,
    RateLimitError,
    ValidationError,
)
from exports import transactions_to_csv
from finance_store import FinanceStore
from gemini import GeminiClient
from holdings import Holding, parse_category
from market_data import CoinGeckoClient

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tools Server", version="0.2.0")

# Most specific first; the first isinstance match wins
ERROR_STATUS = [
    (ValidationError, 422),
    (NotAuthenticatedError, 401),
    (RateLimitError, 429),
    (LLMConfigError, 503),
    (MarketDataError, 502),
    (LLMAPIError, 502),
    (BackendError, 502),
]


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


def get_session_factory():
    return SessionLocal


def get_market_client() -> CoinGeckoClient:
    return CoinGeckoClient()


def get_llm() -> GeminiClient:
    return GeminiClient()


# --- Schemas ---

class HoldingIn(BaseModel):
    asset_id: str
    symbol: str = ""
    name: str = ""
    amount: float
    buy_price: float
    category: str
    purchase_date: date
    notes: Optional[str] = None

    def to_holding(self) -> Holding:
        return Holding(
            asset_id=self.asset_id,
            symbol=self.symbol,
            name=self.name or self.asset_id,
            amount=self.amount,
            buy_price=self.buy_price,
            category=parse_category(self.category),
            purchase_date=self.purchase_date,
            notes=self.notes,
        )


class PortfolioRequest(BaseModel):
    holdings: List[HoldingIn]
    quotes: Optional[Dict[str, float]] = Field(None, description="asset_id -> live price; fetched when omitted")
    category: Optional[str] = None
    sort_by: str = "profit"


class PositionOut(BaseModel):
    asset_id: str
    symbol: str
    name: str
    category: str
    total_amount: float
    total_quantity: float
    average_buy_price: float
    current_price: float
    current_value: float
    profit: float
    profit_percentage: float
    holdings_count: int
    price_is_stale: bool

    @classmethod
    def from_position(cls, p: ConsolidatedPosition) -> "PositionOut":
        return cls(
            asset_id=p.asset_id,
            symbol=p.symbol,
            name=p.name,
            category=p.category.value,
            total_amount=p.total_amount,
            total_quantity=p.total_quantity,
            average_buy_price=p.average_buy_price,
            current_price=p.current_price,
            current_value=p.current_value,
            profit=p.profit,
            profit_percentage=p.profit_percentage,
            holdings_count=p.holdings_count,
            price_is_stale=p.price_is_stale,
        )


class CategorySliceOut(BaseModel):
    category: str
    value: float
    original_value: float
    profit: float
    count: int
    percentage: float
    color: str


class RiskFlagOut(BaseModel):
    code: str
    message: str


class MetricsOut(BaseModel):
    total_invested: float
    total_current_value: float
    total_profit: float
    total_profit_percentage: float
    profitable_count: int
    unprofitable_count: int
    average_profit: float
    best_performer: Optional[str]
    worst_performer: Optional[str]


class AnalyticsResponse(BaseModel):
    positions: List[PositionOut]
    metrics: MetricsOut
    categories: List[CategorySliceOut]
    allocation: List[dict]
    risk_flags: List[RiskFlagOut]


class HeatmapRequest(BaseModel):
    holdings: List[HoldingIn]
    quotes: Optional[Dict[str, float]] = None
    sort_by: str = "performance"


class CategorizeRequest(BaseModel):
    description: str


class CategorizeResponse(BaseModel):
    category: str
    type: str


class AssistantRequest(BaseModel):
    user_id: int
    message: str = Field(..., min_length=1)


class AssistantResponse(BaseModel):
    content: str
    is_error: bool
    is_success: bool
    kind: Optional[str]


# --- Helpers ---

def _positions(holdings: List[HoldingIn], quotes: Optional[Dict[str, float]], market: CoinGeckoClient):
    parsed = [h.to_holding() for h in holdings]
    if quotes is None:
        ids = sorted({h.asset_id for h in parsed})
        try:
            quotes = quotes_to_prices(market.get_prices(ids)) if ids else {}
        except RateLimitError:
            raise
        except MarketDataError as err:
            # Positions fall back to their latest buy price and come back stale
            logger.warning("Live quotes unavailable, using buy prices: %s", err)
            quotes = {}
    return consolidate(parsed, quotes)


# --- Endpoints ---

@app.post("/tools/categorize_transaction", response_model=CategorizeResponse)
async def categorize_transaction(req: CategorizeRequest):
    category, txn_type = smart_categorize(req.description)
    return CategorizeResponse(category=category, type=txn_type)


@app.post("/tools/consolidate", response_model=List[PositionOut])
def consolidate_holdings(req: PortfolioRequest, market: CoinGeckoClient = Depends(get_market_client)):
    positions = _positions(req.holdings, req.quotes, market)
    return [PositionOut.from_position(p) for p in sort_positions(filter_positions(positions, req.category), req.sort_by)]


@app.post("/tools/portfolio_analytics", response_model=AnalyticsResponse)
def portfolio_analytics(req: PortfolioRequest, market: CoinGeckoClient = Depends(get_market_client)):
    positions = filter_positions(_positions(req.holdings, req.quotes, market), req.category)
    metrics = portfolio_metrics(positions)
    return AnalyticsResponse(
        positions=[PositionOut.from_position(p) for p in sort_positions(positions, req.sort_by)],
        metrics=MetricsOut(
            total_invested=metrics.total_invested,
            total_current_value=metrics.total_current_value,
            total_profit=metrics.total_profit,
            total_profit_percentage=metrics.total_profit_percentage,
            profitable_count=metrics.profitable_count,
            unprofitable_count=metrics.unprofitable_count,
            average_profit=metrics.average_profit,
            best_performer=metrics.best_performer.asset_id if metrics.best_performer else None,
            worst_performer=metrics.worst_performer.asset_id if metrics.worst_performer else None,
        ),
        categories=[
            CategorySliceOut(
                category=s.category.value,
                value=s.value,
                original_value=s.original_value,
                profit=s.profit,
                count=s.count,
                percentage=s.percentage,
                color=s.color,
            )
            for s in category_breakdown(positions)
        ],
        allocation=asset_allocation(positions),
        risk_flags=[RiskFlagOut(code=f.code, message=f.message) for f in risk_flags(positions)],
    )


@app.post("/tools/heatmap")
def heatmap(req: HeatmapRequest, market: CoinGeckoClient = Depends(get_market_client)):
    return {"cells": heatmap_cells(_positions(req.holdings, req.quotes, market), req.sort_by)}


@app.get("/tools/prices")
def prices(ids: Optional[str] = None, market: CoinGeckoClient = Depends(get_market_client)):
    coin_ids = [i for i in (ids or "").split(",") if i] or None
    quotes = market.get_prices(coin_ids)
    return {"quotes": [asdict(q) for q in quotes]}


@app.post("/tools/assistant/message", response_model=AssistantResponse)
def assistant_message(
    req: AssistantRequest,
    session_factory=Depends(get_session_factory),
    llm: GeminiClient = Depends(get_llm),
):
    store = FinanceStore(session_factory)
    store.sign_in(req.user_id)
    reply = FinanceAssistant(store, llm).handle_message(req.message)
    return AssistantResponse(content=reply.content, is_error=reply.is_error, is_success=reply.is_success, kind=reply.kind)


@app.get("/users/{user_id}/transactions.csv")
def export_transactions_csv(user_id: int, session_factory=Depends(get_session_factory)):
    store = FinanceStore(session_factory)
    store.sign_in(user_id)
    return Response(
        content=transactions_to_csv(store.transactions),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="transacoes_{user_id}.csv"'},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    setup_logging(Settings.load().log_level)
    uvicorn.run("api_server:app", host="0.0.0.0", port=8001, reload=True)
