"""Alternative.me Provider - Crypto Fear & Greed Index."""

import logging
from typing import Any

from data_acquisition.models import DataKind, NormalizedRecord, SentimentReading
from data_acquisition.providers.base import ProviderAdapter, ProviderRequest, from_epoch


logger = logging.getLogger(__name__)


class AlternativeMeProvider(ProviderAdapter):
    """
    Fear & Greed Index (0 = extreme fear, 100 = extreme greed).

    The index is market-wide; any sentiment key maps to the same reading.
    """

    supported_kinds = frozenset({DataKind.SENTIMENT})

    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        if kind is not DataKind.SENTIMENT:
            raise self._unsupported(kind)
        return ProviderRequest(url=f"{self.base_url}/fng/", params={"limit": 1})

    def check_body(self, body: Any) -> None:
        if isinstance(body, dict):
            error = (body.get("metadata") or {}).get("error")
            if error:
                raise self._api_error(str(error), body)

    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        if kind is not DataKind.SENTIMENT:
            raise self._unsupported(kind)
        try:
            entries = raw["data"]
            if not entries:
                raise self._normalization_error("Empty index data", raw, field_name="data")
            latest = entries[0]
            reading = SentimentReading(
                subject=key.strip().lower() or "global",
                value=float(latest["value"]),
                classification=str(latest.get("value_classification", "")),
            )
            timestamp = from_epoch(latest["timestamp"]) if latest.get("timestamp") else None
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise self._normalization_error(f"Failed to normalize data: {e}", raw, e) from e
        return self._record(DataKind.SENTIMENT, key, reading, timestamp)
