"""
Kraken Provider - Public REST API adapter.

Kraken wraps every response in {"error": [...], "result": {...}} and keys
results by its own pair names (e.g. XXBTZUSD for XBTUSD).
"""

import logging
from typing import Any

from data_acquisition.models import Candle, DataKind, NormalizedRecord, OHLCVKey, OHLCVSeries, PriceQuote
from data_acquisition.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    from_epoch,
    to_decimal,
)
from data_acquisition.providers.symbols import kraken_pair, normalize_symbol


logger = logging.getLogger(__name__)


class KrakenProvider(ProviderAdapter):
    """
    Kraken public API.

    Endpoints used:
    - /Ticker - Last trade, 24h volume and opening price
    - /OHLC - Candles
    """

    supported_kinds = frozenset({DataKind.PRICE, DataKind.OHLCV})

    INTERVAL_MINUTES = {
        "1m": 1, "5m": 5, "15m": 15, "30m": 30,
        "1h": 60, "4h": 240, "1d": 1440, "1w": 10080,
    }

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is DataKind.PRICE:
            return ProviderRequest(
                url=f"{self.base_url}/Ticker",
                params={"pair": kraken_pair(normalize_symbol(key))},
            )
        if kind is DataKind.OHLCV:
            parsed = OHLCVKey.parse(key)
            return ProviderRequest(
                url=f"{self.base_url}/OHLC",
                params={
                    "pair": kraken_pair(parsed.symbol),
                    "interval": self.INTERVAL_MINUTES[parsed.interval],
                },
            )
        raise self._unsupported(kind)

    def check_body(self, body: Any) -> None:
        if isinstance(body, dict) and body.get("error"):
            raise self._api_error("; ".join(str(e) for e in body["error"]), body)

    @staticmethod
    def _pair_result(raw: dict[str, Any]) -> Any:
        result = raw["result"]
        pairs = [name for name in result if name != "last"]
        if not pairs:
            raise KeyError("result")
        return result[pairs[0]]

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        try:
            if kind is DataKind.PRICE:
                return self._normalize_ticker(raw, key)
            if kind is DataKind.OHLCV:
                return self._normalize_ohlc(raw, key)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        raise self._unsupported(kind)

    def _normalize_ticker(self, raw: dict[str, Any], key: str) -> NormalizedRecord:
        ticker = self._pair_result(raw)
        last = to_decimal(ticker["c"][0], "c")
        opening = to_decimal(ticker["o"], "o")
        change = ((last - opening) / opening * 100) if opening else None
        quote = PriceQuote(
            symbol=normalize_symbol(key),
            price=last,
            change_24h_pct=change,
            volume_24h=to_decimal(ticker["v"][1], "v"),
        )
        return self._record(DataKind.PRICE, key, quote)

    def _normalize_ohlc(self, raw: dict[str, Any], key: str) -> NormalizedRecord:
        parsed = OHLCVKey.parse(key)
        rows = self._pair_result(raw)
        # [time, open, high, low, close, vwap, volume, count]
        candles = tuple(
            Candle(
                timestamp=from_epoch(row[0]),
                open=to_decimal(row[1], "open"),
                high=to_decimal(row[2], "high"),
                low=to_decimal(row[3], "low"),
                close=to_decimal(row[4], "close"),
                volume=to_decimal(row[6], "volume"),
            )
            for row in rows[-parsed.limit:]
        )
        series = OHLCVSeries(symbol=parsed.symbol, interval=parsed.interval, candles=candles)
        timestamp = candles[-1].timestamp if candles else None
        return self._record(DataKind.OHLCV, key, series, timestamp)
