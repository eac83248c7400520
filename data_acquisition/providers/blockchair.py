"""Blockchair Provider - Multi-chain address balances."""

import logging
from decimal import Decimal
from typing import Any

from data_acquisition.models import BalanceKey, BalanceRecord, DataKind, NormalizedRecord
from data_acquisition.providers.base import ProviderAdapter, ProviderRequest, to_decimal


logger = logging.getLogger(__name__)


class BlockchairProvider(ProviderAdapter):
    """Blockchair /{chain}/dashboards/address/{address}."""

    supported_kinds = frozenset({DataKind.BLOCKCHAIN_BALANCE})

    # chain alias -> (blockchair chain, unit, smallest-unit decimals)
    CHAINS: dict[str, tuple[str, str, int]] = {
        "eth": ("ethereum", "ETH", 18),
        "ethereum": ("ethereum", "ETH", 18),
        "btc": ("bitcoin", "BTC", 8),
        "bitcoin": ("bitcoin", "BTC", 8),
        "ltc": ("litecoin", "LTC", 8),
        "litecoin": ("litecoin", "LTC", 8),
        "doge": ("dogecoin", "DOGE", 8),
        "dogecoin": ("dogecoin", "DOGE", 8),
        "bch": ("bitcoin-cash", "BCH", 8),
    }

    def _chain(self, alias: str) -> tuple[str, str, int]:
        chain = self.CHAINS.get(alias)
        if chain is None:
            raise ValueError(f"{self.name} does not support chain {alias}")
        return chain

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is not DataKind.BLOCKCHAIN_BALANCE:
            raise self._unsupported(kind)
        parsed = BalanceKey.parse(key)
        chain, _, _ = self._chain(parsed.chain)
        params = {"key": self.config.api_key} if self.config.api_key else {}
        return ProviderRequest(
            url=f"{self.base_url}/{chain}/dashboards/address/{parsed.address}",
            params=params,
        )

    def check_body(self, body: Any) -> None:
        if not isinstance(body, dict):
            return
        context = body.get("context") or {}
        code = context.get("code")
        if code is not None and code != 200:
            raise self._api_error(str(context.get("error", code)), body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        if kind is not DataKind.BLOCKCHAIN_BALANCE:
            raise self._unsupported(kind)
        parsed = BalanceKey.parse(key)
        chain, unit, decimals = self._chain(parsed.chain)
        try:
            data = raw["data"]
            # Blockchair keys Ethereum addresses in lower case
            entry = data.get(parsed.address) or data.get(parsed.address.lower())
            if entry is None:
                raise self._normalization_error(
                    f"No data for {parsed.address}", raw, field_name="data"
                )
            balance = to_decimal(entry["address"]["balance"], "balance")
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e

        record = BalanceRecord(
            chain=parsed.chain,
            address=parsed.address,
            balance=balance / (Decimal(10) ** decimals),
            unit=unit,
        )
        return self._record(DataKind.BLOCKCHAIN_BALANCE, key, record)
