"""
Etherscan Provider - Ethereum account data.

Serves ETH balances and, as a whale fallback, large transfers touching a
given address. Works without a key at a reduced rate.
"""

import logging
from decimal import Decimal
from typing import Any

from data_acquisition.models import (
    BalanceKey,
    BalanceRecord,
    DataKind,
    NormalizedRecord,
    WhaleActivity,
    WhaleTransaction,
)
from data_acquisition.providers.base import (
    ProviderAdapter,
    ProviderRequest,
    from_epoch,
    to_decimal,
)


logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18


class EtherscanProvider(ProviderAdapter):
    """
    Etherscan account module.

    Endpoints used:
    - action=balance - Current balance in wei
    - action=txlist - Recent normal transactions
    """

    supported_kinds = frozenset({DataKind.BLOCKCHAIN_BALANCE, DataKind.WHALE})

    # Minimum transfer size (ETH) reported as whale activity
    WHALE_THRESHOLD_ETH = Decimal("100")
    TX_PAGE_SIZE = 100

    # Etherscan answers "no data" with status 0 and this message
    EMPTY_MESSAGES = ("No transactions found",)

    def _params(self, **params: Any) -> dict[str, Any]:
        params["module"] = "account"
        if self.config.api_key:
            params["apikey"] = self.config.api_key
        return params

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is DataKind.BLOCKCHAIN_BALANCE:
            parsed = BalanceKey.parse(key)
            if parsed.chain not in ("eth", "ethereum"):
                raise ValueError(f"{self.name} only serves Ethereum, got {parsed.chain}")
            return ProviderRequest(
                url=self.base_url,
                params=self._params(action="balance", address=parsed.address, tag="latest"),
            )
        if kind is DataKind.WHALE:
            address = key.strip()
            if not address.lower().startswith("0x"):
                raise ValueError(f"{self.name} whale lookups need an address, got {key}")
            return ProviderRequest(
                url=self.base_url,
                params=self._params(
                    action="txlist",
                    address=address,
                    sort="desc",
                    page=1,
                    offset=self.TX_PAGE_SIZE,
                ),
            )
        raise self._unsupported(kind)

    def check_body(self, body: Any) -> None:
        if not isinstance(body, dict):
            return
        if str(body.get("status")) == "0" and body.get("message") not in self.EMPTY_MESSAGES:
            raise self._api_error(f"{body.get('message')}: {body.get('result')}", body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        try:
            if kind is DataKind.BLOCKCHAIN_BALANCE:
                parsed = BalanceKey.parse(key)
                record = BalanceRecord(
                    chain="eth",
                    address=parsed.address,
                    balance=to_decimal(raw["result"], "result") / WEI_PER_ETH,
                    unit="ETH",
                )
                return self._record(kind, key, record)
            if kind is DataKind.WHALE:
                return self._normalize_transfers(raw, key)
        except (KeyError, TypeError, ValueError, ArithmeticError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        raise self._unsupported(kind)

    def _normalize_transfers(self, raw: dict[str, Any], key: str) -> NormalizedRecord:
        transactions = []
        for tx in raw.get("result") or []:
            amount = to_decimal(tx["value"], "value") / WEI_PER_ETH
            if amount < self.WHALE_THRESHOLD_ETH:
                continue
            transactions.append(WhaleTransaction(
                tx_hash=str(tx["hash"]),
                blockchain="ethereum",
                symbol="ETH",
                amount=amount,
                amount_usd=None,
                from_address=tx.get("from"),
                to_address=tx.get("to"),
                timestamp=from_epoch(tx["timeStamp"]),
            ))

        activity = WhaleActivity(subject=key.strip(), transactions=tuple(transactions))
        timestamp = max((tx.timestamp for tx in transactions), default=None)
        return self._record(DataKind.WHALE, key, activity, timestamp)
