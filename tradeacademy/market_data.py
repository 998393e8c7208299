"""
Market Data Service

Database-backed quote cache in front of an external market data provider.
A cached quote is served while it is younger than its update frequency;
stale or missing quotes are fetched from the provider and upserted.
Provider failures are surfaced to the caller, nothing is retried.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from tradeacademy.models import (
    AssetType, MarketData, MarketDataStatus, UpdateFrequency, db, utcnow
)
from tradeacademy.utils.exceptions import MarketDataError, SymbolNotFoundError
from tradeacademy.utils.logger import get_event_logger, log_market_data_event

logger = get_event_logger(__name__)


def _decimal(value: Any) -> Optional[Decimal]:
    if value in (None, "", "None", "-"):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _percent(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(str(value).rstrip("%"))
    except ValueError:
        return None


class AlphaVantageProvider:
    """Alpha Vantage quote provider over plain HTTP."""

    name = "alpha_vantage"

    def __init__(self, api_key: str, base_url: str, timeout: int = 10, session=None):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, subject: str, **params) -> Dict[str, Any]:
        params["apikey"] = self.api_key
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            logger.error(
                "Alpha Vantage request failed",
                function=params.get("function"),
                symbol=subject,
                error=str(e),
            )
            raise MarketDataError(
                "Market data provider is unavailable",
                symbol=subject,
                details={"provider": self.name, "reason": str(e)},
            ) from e
        except ValueError as e:
            raise MarketDataError(
                "Market data provider returned malformed data",
                symbol=subject,
                details={"provider": self.name},
            ) from e

        if "Error Message" in payload:
            logger.warning("Alpha Vantage API error", symbol=subject, error=payload["Error Message"])
            return {}
        if "Note" in payload or "Information" in payload:
            note = payload.get("Note") or payload.get("Information")
            logger.warning("Alpha Vantage rate limit or notice", symbol=subject, note=note)
            raise MarketDataError(
                "Market data provider rate limit reached",
                symbol=subject,
                details={"provider": self.name, "note": note},
            )
        return payload

    def get_quote(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Latest quote for ``symbol`` or None when the provider does not know it."""
        payload = self._request(symbol, function="GLOBAL_QUOTE", symbol=symbol)
        quote = payload.get("Global Quote") or {}
        price = _decimal(quote.get("05. price"))
        if not quote or price is None:
            return None

        volume = quote.get("06. volume")
        return {
            "symbol": quote.get("01. symbol", symbol).upper(),
            "price": price,
            "open_price": _decimal(quote.get("02. open")),
            "high_price": _decimal(quote.get("03. high")),
            "low_price": _decimal(quote.get("04. low")),
            "previous_close": _decimal(quote.get("08. previous close")),
            "change": _decimal(quote.get("09. change")),
            "change_percent": _percent(quote.get("10. change percent")),
            "volume": int(volume) if volume else None,
        }

    def get_daily_history(self, symbol: str) -> List[Dict[str, Any]]:
        payload = self._request(
            symbol, function="TIME_SERIES_DAILY", symbol=symbol, outputsize="compact"
        )
        series = payload.get("Time Series (Daily)") or {}
        history = []
        for day, bar in series.items():
            history.append(
                {
                    "date": day,
                    "open": float(bar.get("1. open", 0)),
                    "high": float(bar.get("2. high", 0)),
                    "low": float(bar.get("3. low", 0)),
                    "close": float(bar.get("4. close", 0)),
                    "volume": int(bar.get("5. volume", 0)),
                }
            )
        return sorted(history, key=lambda bar: bar["date"])

    def get_company_overview(self, symbol: str) -> Dict[str, Any]:
        payload = self._request(symbol, function="OVERVIEW", symbol=symbol)
        if not payload:
            return {}
        return {
            "name": payload.get("Name"),
            "exchange": payload.get("Exchange"),
            "currency": payload.get("Currency"),
            "sector": payload.get("Sector"),
            "industry": payload.get("Industry"),
            "description": payload.get("Description"),
            "market_cap": _decimal(payload.get("MarketCapitalization")),
            "pe_ratio": _decimal(payload.get("PERatio")),
            "eps": _decimal(payload.get("EPS")),
            "dividend_yield": _decimal(payload.get("DividendYield")),
            "beta": _decimal(payload.get("Beta")),
            "52_week_high": _decimal(payload.get("52WeekHigh")),
            "52_week_low": _decimal(payload.get("52WeekLow")),
        }

    def search(self, keywords: str) -> List[Dict[str, Any]]:
        payload = self._request(keywords, function="SYMBOL_SEARCH", keywords=keywords)
        return [
            {
                "symbol": match.get("1. symbol"),
                "name": match.get("2. name"),
                "type": match.get("3. type"),
                "region": match.get("4. region"),
                "currency": match.get("8. currency"),
            }
            for match in payload.get("bestMatches", [])
        ]


class MarketDataService:
    """
    Quote cache backed by the ``market_data`` table.

    Args:
        provider: object exposing ``get_quote``, ``get_daily_history``,
            ``get_company_overview`` and ``search``
        default_frequency: update frequency assigned to newly cached symbols
    """

    def __init__(self, provider, default_frequency: str = UpdateFrequency.ONE_MINUTE.value):
        self.provider = provider
        self.default_frequency = UpdateFrequency(default_frequency)

    @staticmethod
    def normalize_symbol(symbol: str) -> str:
        return (symbol or "").strip().upper()

    def get_quote(self, symbol: str, now: Optional[datetime] = None) -> MarketData:
        """
        Return a fresh quote record for ``symbol``.

        Raises:
            SymbolNotFoundError: the provider has no quote for the symbol
            MarketDataError: the provider could not be reached
        """
        symbol = self.normalize_symbol(symbol)
        record = MarketData.query.filter_by(symbol=symbol).first()

        if record is not None and not record.needs_update(now):
            return record

        quote = self.provider.get_quote(symbol)
        if quote is None:
            log_market_data_event("quote_not_found", symbol)
            raise SymbolNotFoundError(symbol)

        if record is None:
            record = MarketData(
                symbol=symbol,
                update_frequency=self.default_frequency,
                asset_type=AssetType.STOCK,
                status=MarketDataStatus.ACTIVE,
                historical_data=[],
                fundamentals={},
            )
            db.session.add(record)

        for key in (
            "price", "open_price", "high_price", "low_price",
            "previous_close", "change", "change_percent", "volume",
        ):
            setattr(record, key, quote.get(key))
        record.last_updated = now or utcnow()

        db.session.commit()
        log_market_data_event(
            "quote_refreshed", symbol, price=float(record.price), volume=record.volume
        )
        return record

    def get_price(self, symbol: str) -> Decimal:
        return Decimal(self.get_quote(symbol).price)

    def get_historical(
        self, symbol: str, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[Dict[str, Any]]:
        """Daily bars between ``start`` and ``end`` (inclusive)."""
        record = self.get_quote(symbol)
        now = utcnow()
        if (
            not record.historical_data
            or record.historical_updated_at is None
            or now - record.historical_updated_at > UpdateFrequency.ONE_DAY.threshold
        ):
            record.historical_data = self.provider.get_daily_history(record.symbol)
            record.historical_updated_at = now
            db.session.commit()
        return record.historical_between(start, end)

    def get_company_profile(self, symbol: str) -> Dict[str, Any]:
        record = self.get_quote(symbol)
        if not record.fundamentals:
            overview = self.provider.get_company_overview(record.symbol)
            record.fundamentals = {
                key: float(value) if isinstance(value, Decimal) else value
                for key, value in overview.items()
            }
            if overview.get("name"):
                record.name = overview["name"]
            if overview.get("exchange"):
                record.exchange = overview["exchange"]
            db.session.commit()
        return {**record.to_dict(), "fundamentals": record.fundamentals}

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Search cached symbols first, then the provider."""
        term = (query or "").strip()
        if not term:
            return []

        pattern = f"%{term}%"
        cached = (
            MarketData.query.filter(
                db.or_(MarketData.symbol.ilike(pattern), MarketData.name.ilike(pattern))
            )
            .filter(MarketData.status == MarketDataStatus.ACTIVE)
            .limit(limit)
            .all()
        )
        results = [
            {"symbol": r.symbol, "name": r.name, "type": r.asset_type.value, "cached": True}
            for r in cached
        ]
        if len(results) < limit:
            seen = {r["symbol"] for r in results}
            for match in self.provider.search(term):
                if match["symbol"] and match["symbol"] not in seen:
                    results.append({**match, "cached": False})
                    seen.add(match["symbol"])
                if len(results) >= limit:
                    break
        return results

    def get_top_movers(self, limit: int = 10, asset_type: Optional[str] = None) -> Dict[str, Any]:
        """Biggest cached gainers and losers by percentage change."""
        query = MarketData.query.filter(
            MarketData.status == MarketDataStatus.ACTIVE,
            MarketData.change_percent.isnot(None),
        )
        if asset_type:
            query = query.filter(MarketData.asset_type == AssetType(asset_type))

        gainers = query.order_by(MarketData.change_percent.desc()).limit(limit).all()
        losers = query.order_by(MarketData.change_percent.asc()).limit(limit).all()
        return {
            "gainers": [r.to_dict() for r in gainers],
            "losers": [r.to_dict() for r in losers],
        }
