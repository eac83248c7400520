"""
CoinGecko Provider - Public API adapter.

Free tier works without a key; a demo key is sent as a header when set.
"""

import logging
from typing import Any

from data_acquisition.models import Candle, DataKind, NormalizedRecord, OHLCVKey, OHLCVSeries, PriceQuote
from data_acquisition.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    from_epoch,
    to_decimal,
    to_optional_decimal,
)
from data_acquisition.providers.symbols import coingecko_id, normalize_symbol


logger = logging.getLogger(__name__)


class CoinGeckoProvider(ProviderAdapter):
    """
    CoinGecko v3 API.

    Endpoints used:
    - /simple/price - Spot price with 24h change, volume, market cap
    - /coins/{id}/ohlc - OHLC candles (no volume; reported as 0)

    Rate limits:
    - ~30 calls/minute on the free tier
    """

    supported_kinds = frozenset({DataKind.PRICE, DataKind.OHLCV})

    # /ohlc only accepts these day windows; granularity follows the window
    OHLC_DAYS = (1, 7, 14, 30, 90, 180, 365)

    INTERVAL_MINUTES = {
        "1m": 1, "5m": 5, "15m": 15, "30m": 30,
        "1h": 60, "4h": 240, "1d": 1440, "1w": 10080,
    }

    def _headers(self) -> dict[str, str]:
        if self.config.api_key:
            return {"x-cg-demo-api-key": self.config.api_key}
        return {}

    def _ohlc_days(self, parsed: OHLCVKey) -> int:
        span_days = self.INTERVAL_MINUTES[parsed.interval] * parsed.limit / 1440
        for days in self.OHLC_DAYS:
            if days >= span_days:
                return days
        return self.OHLC_DAYS[-1]

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is DataKind.PRICE:
            return ProviderRequest(
                url=f"{self.base_url}/simple/price",
                params={
                    "ids": coingecko_id(normalize_symbol(key)),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                    "include_24hr_vol": "true",
                    "include_market_cap": "true",
                    "include_last_updated_at": "true",
                },
                headers=self._headers(),
            )
        if kind is DataKind.OHLCV:
            parsed = OHLCVKey.parse(key)
            return ProviderRequest(
                url=f"{self.base_url}/coins/{coingecko_id(parsed.symbol)}/ohlc",
                params={"vs_currency": "usd", "days": self._ohlc_days(parsed)},
                headers=self._headers(),
            )
        raise self._unsupported(kind)

    def check_body(self, body: Any) -> None:
        if isinstance(body, dict) and "error" in body:
            raise self._api_error(str(body["error"]), body)
        if isinstance(body, dict) and isinstance(body.get("status"), dict):
            status = body["status"]
            if status.get("error_code"):
                raise self._api_error(str(status.get("error_message", status["error_code"])), body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        try:
            if kind is DataKind.PRICE:
                return self._normalize_price(raw, key)
            if kind is DataKind.OHLCV:
                return self._normalize_ohlc(raw, key)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        raise self._unsupported(kind)

    def _normalize_price(self, raw: dict[str, Any], key: str) -> NormalizedRecord:
        symbol = normalize_symbol(key)
        coin_id = coingecko_id(symbol)
        data = raw.get(coin_id)
        if not data:
            raise self._normalization_error(f"No data for {coin_id}", raw, field_name=coin_id)

        quote = PriceQuote(
            symbol=symbol,
            price=to_decimal(data["usd"], "usd"),
            change_24h_pct=to_optional_decimal(data.get("usd_24h_change")),
            volume_24h=to_optional_decimal(data.get("usd_24h_vol")),
            market_cap=to_optional_decimal(data.get("usd_market_cap")),
        )
        updated = data.get("last_updated_at")
        return self._record(DataKind.PRICE, key, quote, from_epoch(updated) if updated else None)

    def _normalize_ohlc(self, raw: list[list[Any]], key: str) -> NormalizedRecord:
        parsed = OHLCVKey.parse(key)
        candles = tuple(
            Candle(
                timestamp=from_epoch(row[0], millis=True),
                open=to_decimal(row[1], "open"),
                high=to_decimal(row[2], "high"),
                low=to_decimal(row[3], "low"),
                close=to_decimal(row[4], "close"),
                volume=to_decimal(0),
            )
            for row in raw[-parsed.limit:]
        )
        series = OHLCVSeries(symbol=parsed.symbol, interval=parsed.interval, candles=candles)
        timestamp = candles[-1].timestamp if candles else None
        return self._record(DataKind.OHLCV, key, series, timestamp)
