"""CoinCap Provider - Asset price adapter."""

import logging
from typing import Any

from data_acquisition.models import DataKind, NormalizedRecord, PriceQuote
from data_acquisition.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    from_epoch,
    to_decimal,
    to_optional_decimal,
)
from data_acquisition.providers.symbols import coincap_id, normalize_symbol


logger = logging.getLogger(__name__)


class CoinCapProvider(ProviderAdapter):
    """CoinCap v2 /assets/{id}. Optional bearer key raises the rate limit."""

    supported_kinds = frozenset({DataKind.PRICE})

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is not DataKind.PRICE:
            raise self._unsupported(kind)
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return ProviderRequest(
            url=f"{self.base_url}/assets/{coincap_id(normalize_symbol(key))}",
            headers=headers,
        )

    def check_body(self, body: Any) -> None:
        if isinstance(body, dict) and body.get("error"):
            raise self._api_error(str(body["error"]), body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        if kind is not DataKind.PRICE:
            raise self._unsupported(kind)
        try:
            data = raw["data"]
            quote = PriceQuote(
                symbol=normalize_symbol(key),
                price=to_decimal(data["priceUsd"], "priceUsd"),
                change_24h_pct=to_optional_decimal(data.get("changePercent24Hr")),
                volume_24h=to_optional_decimal(data.get("volumeUsd24Hr")),
                market_cap=to_optional_decimal(data.get("marketCapUsd")),
            )
            timestamp = from_epoch(raw["timestamp"], millis=True) if raw.get("timestamp") else None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        return self._record(DataKind.PRICE, key, quote, timestamp)
