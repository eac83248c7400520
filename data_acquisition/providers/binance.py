"""
Binance Provider - Public spot API adapter.

No authentication required for public endpoints.
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
from data_acquisition.providers.symbols import binance_symbol, normalize_symbol


logger = logging.getLogger(__name__)


class BinanceProvider(ProviderAdapter):
    """
    Binance spot public API.

    Endpoints used:
    - /ticker/24hr - 24h ticker (price)
    - /klines - Kline/candlestick data (ohlcv)

    Rate limits:
    - 1200 request weight/minute, IP-based
    """

    supported_kinds = frozenset({DataKind.PRICE, DataKind.OHLCV})

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is DataKind.PRICE:
            return ProviderRequest(
                url=f"{self.base_url}/ticker/24hr",
                params={"symbol": binance_symbol(normalize_symbol(key))},
            )
        if kind is DataKind.OHLCV:
            parsed = OHLCVKey.parse(key)
            return ProviderRequest(
                url=f"{self.base_url}/klines",
                params={
                    "symbol": binance_symbol(parsed.symbol),
                    "interval": parsed.interval,
                    "limit": parsed.limit,
                },
            )
        raise self._unsupported(kind)

    def check_body(self, body: Any) -> None:
        # Binance reports errors as {"code": -1121, "msg": "Invalid symbol."}
        if isinstance(body, dict) and "code" in body and "msg" in body:
            raise self._api_error(f"{body['code']} {body['msg']}", body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        try:
            if kind is DataKind.PRICE:
                return self._normalize_ticker(raw, key)
            if kind is DataKind.OHLCV:
                return self._normalize_klines(raw, key)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        raise self._unsupported(kind)

    def _normalize_ticker(self, raw: dict[str, Any], key: str) -> NormalizedRecord:
        symbol = normalize_symbol(key)
        quote = PriceQuote(
            symbol=symbol,
            price=to_decimal(raw["lastPrice"], "lastPrice"),
            change_24h_pct=to_optional_decimal(raw.get("priceChangePercent")),
            volume_24h=to_optional_decimal(raw.get("quoteVolume")),
            quote_currency="USDT",
        )
        timestamp = from_epoch(raw["closeTime"], millis=True) if raw.get("closeTime") else None
        return self._record(DataKind.PRICE, key, quote, timestamp)

    def _normalize_klines(self, raw: list[list[Any]], key: str) -> NormalizedRecord:
        parsed = OHLCVKey.parse(key)
        candles = tuple(
            Candle(
                timestamp=from_epoch(kline[0], millis=True),
                open=to_decimal(kline[1], "open"),
                high=to_decimal(kline[2], "high"),
                low=to_decimal(kline[3], "low"),
                close=to_decimal(kline[4], "close"),
                volume=to_decimal(kline[5], "volume"),
            )
            for kline in raw
        )
        series = OHLCVSeries(symbol=parsed.symbol, interval=parsed.interval, candles=candles)
        timestamp = candles[-1].timestamp if candles else None
        return self._record(DataKind.OHLCV, key, series, timestamp)
