"""
Whale Alert Provider - Large transaction feed.

Requires an API key (ACQ_WHALE_ALERT_API_KEY). Keys are currency symbols;
address lookups are left to the next provider in the chain.
"""

import logging
import time
from typing import Any

from data_acquisition.models import DataKind, NormalizedRecord, WhaleActivity, WhaleTransaction
from data_acquisition.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    from_epoch,
    to_decimal,
    to_optional_decimal,
)
from data_acquisition.providers.symbols import normalize_symbol


logger = logging.getLogger(__name__)


class WhaleAlertProvider(ProviderAdapter):
    """Whale Alert v1 /transactions."""

    supported_kinds = frozenset({DataKind.WHALE})
    requires_api_key = True

    MIN_VALUE_USD = 500_000
    LOOKBACK_SECONDS = 3600

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is not DataKind.WHALE:
            raise self._unsupported(kind)
        if key.strip().lower().startswith("0x"):
            raise ValueError(f"{self.name} does not support address lookups")
        return ProviderRequest(
            url=f"{self.base_url}/transactions",
            params={
                "api_key": self.config.api_key or "",
                "min_value": self.MIN_VALUE_USD,
                "start": int(time.time()) - self.LOOKBACK_SECONDS,
                "currency": normalize_symbol(key).lower(),
            },
        )

    def check_body(self, body: Any) -> None:
        if isinstance(body, dict) and body.get("result") == "error":
            raise self._api_error(str(body.get("message", "unknown")), body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        if kind is not DataKind.WHALE:
            raise self._unsupported(kind)
        try:
            transactions = tuple(
                WhaleTransaction(
                    tx_hash=str(tx["hash"]),
                    blockchain=str(tx.get("blockchain", "")),
                    symbol=str(tx.get("symbol", "")).upper(),
                    amount=to_decimal(tx["amount"], "amount"),
                    amount_usd=to_optional_decimal(tx.get("amount_usd")),
                    from_address=(tx.get("from") or {}).get("address"),
                    to_address=(tx.get("to") or {}).get("address"),
                    timestamp=from_epoch(tx["timestamp"]),
                )
                for tx in raw.get("transactions") or []
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e

        activity = WhaleActivity(subject=normalize_symbol(key), transactions=transactions)
        timestamp = max((tx.timestamp for tx in transactions), default=None)
        return self._record(DataKind.WHALE, key, activity, timestamp)
