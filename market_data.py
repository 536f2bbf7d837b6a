"""CoinGecko market data client."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from config import Settings
from errors import MarketDataError, RateLimitError

logger = logging.getLogger(__name__)

# Well-known instruments polled when the caller does not pass ids
POPULAR_CRYPTOS = [
    {"id": "bitcoin", "symbol": "BTC", "name": "Bitcoin"},
    {"id": "ethereum", "symbol": "ETH", "name": "Ethereum"},
    {"id": "avalanche-2", "symbol": "AVAX", "name": "Avalanche"},
    {"id": "solana", "symbol": "SOL", "name": "Solana"},
    {"id": "cardano", "symbol": "ADA", "name": "Cardano"},
    {"id": "binancecoin", "symbol": "BNB", "name": "BNB"},
    {"id": "ripple", "symbol": "XRP", "name": "XRP"},
    {"id": "dogecoin", "symbol": "DOGE", "name": "Dogecoin"},
    {"id": "chainlink", "symbol": "LINK", "name": "Chainlink"},
    {"id": "litecoin", "symbol": "LTC", "name": "Litecoin"},
    {"id": "polkadot", "symbol": "DOT", "name": "Polkadot"},
    {"id": "uniswap", "symbol": "UNI", "name": "Uniswap"},
    {"id": "polygon", "symbol": "MATIC", "name": "Polygon"},
    {"id": "stellar", "symbol": "XLM", "name": "Stellar"},
    {"id": "vechain", "symbol": "VET", "name": "VeChain"},
]

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0


@dataclass(frozen=True)
class Quote:
    id: str
    symbol: str
    name: str
    current_price: float
    market_cap: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    last_updated: Optional[str] = None
    image: Optional[str] = None
    sparkline_7d: List[float] = field(default_factory=list)

    @classmethod
    def from_payload(cls, coin: Dict[str, Any]) -> "Quote":
        sparkline = (coin.get("sparkline_in_7d") or {}).get("price") or []
        return cls(
            id=coin["id"],
            symbol=str(coin.get("symbol") or "").upper(),
            name=coin.get("name") or coin["id"],
            current_price=coin.get("current_price"),
            market_cap=coin.get("market_cap"),
            price_change_24h=coin.get("price_change_24h"),
            price_change_percentage_24h=coin.get("price_change_percentage_24h"),
            volume_24h=coin.get("total_volume"),
            circulating_supply=coin.get("circulating_supply"),
            total_supply=coin.get("total_supply"),
            max_supply=coin.get("max_supply"),
            last_updated=coin.get("last_updated"),
            image=coin.get("image"),
            sparkline_7d=list(sparkline),
        )


# One request attempt ends in exactly one of these outcomes.

@dataclass(frozen=True)
class FetchSuccess:
    payload: Any


@dataclass(frozen=True)
class Retryable:
    attempt: int
    reason: str


@dataclass(frozen=True)
class RateLimited:
    reason: str = "Too Many Requests"


Outcome = Union[FetchSuccess, Retryable, RateLimited]


class CoinGeckoClient:
    """
    Thin client over the CoinGecko public REST API.

    Transient failures (connection errors, non-2xx, unparsable bodies) are
    retried up to ``MAX_ATTEMPTS`` times, sleeping ``BACKOFF_SECONDS`` times
    the attempt number in between. HTTP 429 raises ``RateLimitError`` on the
    spot. Nothing is cached.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 15,
    ):
        self.base_url = (base_url or Settings.load().coingecko_api_base).rstrip("/")
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = timeout

    def _attempt(self, url: str, params: Optional[dict], attempt: int) -> Outcome:
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as err:
            return Retryable(attempt, f"{type(err).__name__}: {err}")

        if resp.status_code == 429:
            return RateLimited()
        if not 200 <= resp.status_code < 300:
            return Retryable(attempt, f"HTTP {resp.status_code}")
        try:
            return FetchSuccess(resp.json())
        except ValueError as err:
            return Retryable(attempt, f"invalid JSON: {err}")

    def _get_json(self, path: str, params: Optional[dict] = None):
        url = f"{self.base_url}{path}"
        last: Optional[Retryable] = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            outcome = self._attempt(url, params, attempt)
            if isinstance(outcome, FetchSuccess):
                return outcome.payload
            if isinstance(outcome, RateLimited):
                logger.warning("CoinGecko rate limit hit for %s", path)
                raise RateLimitError(outcome.reason)

            last = outcome
            logger.warning("CoinGecko %s attempt %d/%d failed: %s", path, attempt, MAX_ATTEMPTS, outcome.reason)
            if attempt < MAX_ATTEMPTS:
                self.sleep(BACKOFF_SECONDS * attempt)

        raise MarketDataError(f"CoinGecko request {path} failed after {MAX_ATTEMPTS} attempts: {last.reason}")

    def get_prices(self, coin_ids: Optional[List[str]] = None) -> List[Quote]:
        """Fetch market quotes for ``coin_ids`` (default: ``POPULAR_CRYPTOS``)."""
        ids = list(coin_ids) if coin_ids else [c["id"] for c in POPULAR_CRYPTOS]
        payload = self._get_json(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "ids": ",".join(ids),
                "order": "market_cap_desc",
                "per_page": 100,
                "page": 1,
                "sparkline": "true",
                "price_change_percentage": "24h",
            },
        )
        if not isinstance(payload, list):
            raise MarketDataError(f"Unexpected /coins/markets payload: {str(payload)[:200]}")
        try:
            return [Quote.from_payload(coin) for coin in payload]
        except (KeyError, TypeError, AttributeError) as err:
            raise MarketDataError(f"Malformed coin in /coins/markets payload: {err!r}") from err

    def get_price(self, coin_id: str) -> Optional[Quote]:
        try:
            quotes = self.get_prices([coin_id])
        except RateLimitError:
            raise
        except MarketDataError as err:
            logger.error("Error fetching price for %s: %s", coin_id, err)
            return None
        return quotes[0] if quotes else None

    def search(self, query: str) -> List[Dict[str, str]]:
        try:
            payload = self._get_json("/search", {"query": query})
        except RateLimitError:
            raise
        except MarketDataError as err:
            logger.error("Error searching %r: %s", query, err)
            return []
        coins = payload.get("coins") if isinstance(payload, dict) else None
        return [
            {"id": coin["id"], "symbol": str(coin.get("symbol") or "").upper(), "name": coin.get("name") or ""}
            for coin in (coins or [])[:10]
            if isinstance(coin, dict) and coin.get("id")
        ]

    def get_history(self, coin_id: str, days: int = 30) -> Dict[str, list]:
        try:
            payload = self._get_json(
                f"/coins/{coin_id}/market_chart",
                {"vs_currency": "usd", "days": days, "interval": "daily"},
            )
        except RateLimitError:
            raise
        except MarketDataError as err:
            logger.error("Error fetching history for %s: %s", coin_id, err)
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        return {
            "prices": payload.get("prices") or [],
            "market_caps": payload.get("market_caps") or [],
            "total_volumes": payload.get("total_volumes") or [],
        }

    def get_trending(self) -> List[Dict[str, Any]]:
        try:
            payload = self._get_json("/search/trending")
        except RateLimitError:
            raise
        except MarketDataError as err:
            logger.error("Error fetching trending coins: %s", err)
            return []
        coins = payload.get("coins") if isinstance(payload, dict) else None
        trending = []
        for entry in (coins or [])[:10]:
            item = entry.get("item") if isinstance(entry, dict) else None
            if not isinstance(item, dict):
                continue
            change = ((item.get("data") or {}).get("price_change_percentage_24h") or {}).get("usd", 0)
            trending.append(
                {
                    "id": item.get("id"),
                    "symbol": str(item.get("symbol", "")).upper(),
                    "name": item.get("name"),
                    "price_change_percentage_24h": change or 0,
                }
            )
        return trending


class PricePoller:
    """
    Keeps the latest quote snapshot and refreshes it on a fixed interval.

    A refresh is skipped while another one is in flight, so a slow request
    never stacks a second one behind it. Failures keep the previous snapshot.
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        interval_seconds: float = 90,
        coin_ids: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.interval_seconds = interval_seconds
        self.coin_ids = coin_ids
        self._clock = clock
        self._lock = threading.Lock()
        self.quotes: List[Quote] = []
        self.last_fetched_at: Optional[float] = None
        self.last_error: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def is_due(self, now: Optional[float] = None) -> bool:
        if self.last_fetched_at is None:
            return True
        now = self._clock() if now is None else now
        return now - self.last_fetched_at >= self.interval_seconds

    def refresh_if_due(self, now: Optional[float] = None) -> bool:
        """Fetch when due and idle. Returns True when a fetch was attempted."""
        now = self._clock() if now is None else now
        if not self.is_due(now):
            return False
        if not self._lock.acquire(blocking=False):
            logger.debug("Price refresh already in flight; skipping")
            return False
        try:
            self.quotes = self.client.get_prices(self.coin_ids)
            self.last_error = None
        except RateLimitError:
            self.last_error = "rate_limited"
        except MarketDataError as err:
            logger.error("Price refresh failed: %s", err)
            self.last_error = "failed"
        finally:
            self.last_fetched_at = now
            self._lock.release()
        return True

    def prices(self) -> Dict[str, float]:
        return {q.id: float(q.current_price) for q in self.quotes if q.current_price is not None}
