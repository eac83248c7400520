"""
Provider Adapter - Abstract interface for all upstream providers.

All adapters MUST implement this interface to ensure:
- Isolation (provider JSON never leaves the adapter)
- Replaceability
- Fail-safety (malformed payloads raise NormalizationError)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from data_acquisition.config import ProviderConfig
from data_acquisition.exceptions import FetchError, NormalizationError
from data_acquisition.models import DataKind, NormalizedRecord, Payload, utcnow
from data_acquisition.retry import RetryingFetcher


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    """One outbound HTTP call, fully described."""
    url: str
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """
    Abstract base class for all providers.

    Each adapter must:
    1. Declare supported_kinds
    2. Implement build_request() - Map (key, kind) to an HTTP call
    3. Implement normalize() - Convert the raw body to a NormalizedRecord

    raw_fetch() performs the call through the provider's RetryingFetcher
    and may be overridden by adapters that need more than one request.
    """

    supported_kinds: frozenset[DataKind] = frozenset()
    requires_api_key: bool = False

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def base_url(self) -> str:
        return self.config.base_url.rstrip("/")

    @property
    def is_available(self) -> bool:
        """Enabled, and holding an API key when one is required."""
        if not self.config.enabled:
            return False
        return bool(self.config.api_key) or not self.requires_api_key

    def supports(self, kind: DataKind) -> bool:
        return kind in self.supported_kinds

    @abstractmethod
    def build_request(self, key: str, kind: DataKind) -> ProviderRequest:
        """Describe the HTTP call for a query. Raises ValueError for keys this provider cannot serve."""

    async def raw_fetch(self, key: str, kind: DataKind, http: RetryingFetcher) -> Any:
        """Perform the call and return the decoded body."""
        request = self.build_request(key, kind)
        response = await http.fetch(
            request.url,
            method=request.method,
            params=request.params,
            headers=request.headers,
        )
        response.raise_for_status(self.name)
        self.check_body(response.body)
        return response.body

    def check_body(self, body: Any) -> None:
        """Raise FetchError for API-level errors reported inside a 2xx body."""

    @abstractmethod
    def normalize(self, raw: Any, key: str, kind: DataKind) -> NormalizedRecord:
        """Map a raw body onto the canonical record. Raises NormalizationError."""

    # =========================================================
    # HELPERS
    # =========================================================

    def _record(
        self,
        kind: DataKind,
        key: str,
        payload: Payload,
        timestamp: Optional[datetime] = None,
    ) -> NormalizedRecord:
        return NormalizedRecord(
            kind=kind,
            key=key,
            source=self.name,
            payload=payload,
            timestamp=timestamp or utcnow(),
        )

    def _api_error(self, message: str, body: Any = None) -> FetchError:
        return FetchError(
            message=f"API error: {message}",
            source_name=self.name,
            response_body=str(body)[:1000] if body is not None else None,
        )

    def _normalization_error(
        self,
        message: str,
        raw: Any,
        error: Optional[BaseException] = None,
        field_name: Optional[str] = None,
    ) -> NormalizationError:
        return NormalizationError(
            message=message,
            source_name=self.name,
            raw_data=raw,
            field_name=field_name,
            original_error=error,
        )

    def _unsupported(self, kind: DataKind) -> ValueError:
        return ValueError(f"{self.name} does not support {kind.value}")

    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "supported_kinds": sorted(k.value for k in self.supported_kinds),
            "requires_api_key": self.requires_api_key,
            "available": self.is_available,
        }

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name!r})>"


# =============================================================
# PARSING HELPERS
# =============================================================


def to_decimal(value: Any, field_name: str = "") -> Decimal:
    """Decimal from a JSON number or numeric string."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"{field_name or 'value'} is required")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{field_name or 'value'} is not numeric: {value!r}") from e


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def from_epoch(value: Any, millis: bool = False) -> datetime:
    seconds = float(value) / 1000 if millis else float(value)
    return datetime.fromtimestamp(seconds, tz=timezone.utc)
