"""
Data Acquisition Models - Canonical records and bookkeeping structures.

Every provider normalizes into NormalizedRecord. No consumer of this layer
depends on provider-specific JSON.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union


T = TypeVar("T")


class DataKind(Enum):
    """Logical query categories; each selects a provider priority list."""
    PRICE = "price"
    OHLCV = "ohlcv"
    SENTIMENT = "sentiment"
    WHALE = "whale"
    BLOCKCHAIN_BALANCE = "blockchain_balance"


class ErrorType(Enum):
    """Error taxonomy used by the error tracker."""
    NETWORK = "network"
    VALIDATION = "validation"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class CacheStatus(Enum):
    """Outcome of a cache lookup."""
    FRESH = "fresh"
    STALE = "stale"
    MISS = "miss"


class EventType(Enum):
    """Observability events published by the orchestrator."""
    CACHE_HIT = "cache_hit"
    CACHE_STALE = "cache_stale"
    PROVIDER_SUCCESS = "provider_success"
    PROVIDER_FAILURE = "provider_failure"
    FALLBACK = "fallback"
    EXHAUSTED = "exhausted"
    ERROR_TRACKED = "error_tracked"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================
# CACHE / IN-FLIGHT BOOKKEEPING
# =============================================================


@dataclass
class CacheEntry(Generic[T]):
    """Single cache slot. Owned by exactly one TTLCache."""
    value: T
    stored_at: float
    ttl_seconds: float
    stale_while_revalidate: bool = False
    hits: int = 0

    def age_seconds(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl_seconds


@dataclass(frozen=True)
class CacheLookup(Generic[T]):
    """Result of TTLCache.get()."""
    status: CacheStatus
    value: Optional[T] = None
    age_seconds: Optional[float] = None

    @property
    def hit(self) -> bool:
        return self.status is not CacheStatus.MISS

    @property
    def is_fresh(self) -> bool:
        return self.status is CacheStatus.FRESH

    @property
    def should_revalidate(self) -> bool:
        """A stale value was served; the caller should refresh it."""
        return self.status is CacheStatus.STALE


@dataclass
class PendingRequest(Generic[T]):
    """One outstanding underlying fetch shared by every interested caller."""
    key: str
    task: "asyncio.Task[T]"
    started_at: float
    waiters: int = 0


# =============================================================
# WEIGHTING
# =============================================================


@dataclass
class SourceMetrics:
    """Rolling quality metrics for one named source."""
    source: str
    accuracy: float = 0.5
    freshness: float = 1.0
    quality: float = 0.8
    volatility_adj: float = 0.5
    request_count: int = 0
    success_count: int = 0
    last_update: datetime = field(default_factory=utcnow)
    last_success: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.request_count == 0:
            return 0.0
        return self.success_count / self.request_count

    def composite_score(self) -> float:
        return (
            self.accuracy * 0.4
            + self.freshness * 0.2
            + self.quality * 0.2
            + self.volatility_adj * 0.2
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "accuracy": self.accuracy,
            "freshness": self.freshness,
            "quality": self.quality,
            "volatility_adj": self.volatility_adj,
            "request_count": self.request_count,
            "success_count": self.success_count,
            "last_update": self.last_update.isoformat(),
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }


@dataclass(frozen=True)
class WeightConfig:
    """Static weight bounds for one source."""
    min: float
    max: float
    initial: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.min <= self.max <= 1.0:
            raise ValueError(
                f"WeightConfig requires 0 <= min <= max <= 1, got min={self.min} max={self.max}"
            )
        if not self.min <= self.initial <= self.max:
            raise ValueError(f"initial weight {self.initial} outside [{self.min}, {self.max}]")


# =============================================================
# ERRORS
# =============================================================


@dataclass
class ErrorEvent:
    """A classified failure kept in the error tracker's ring buffer."""
    id: str
    type: ErrorType
    message: str
    context: dict[str, Any]
    timestamp: datetime
    recovered: bool = False
    stack: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def component(self) -> str:
        return self.context.get("component", "")

    @property
    def action(self) -> str:
        return self.context.get("action", "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "message": self.message,
            "context": {k: to_jsonable(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "recovered": self.recovered,
            "stack": self.stack,
            "status_code": self.status_code,
        }


# =============================================================
# NORMALIZED PAYLOADS
# =============================================================


@dataclass(frozen=True)
class PriceQuote:
    symbol: str
    price: Decimal
    change_24h_pct: Optional[Decimal] = None
    volume_24h: Optional[Decimal] = None
    market_cap: Optional[Decimal] = None
    quote_currency: str = "USD"

    def is_empty(self) -> bool:
        return self.price <= 0


@dataclass(frozen=True)
class Candle:
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass(frozen=True)
class OHLCVSeries:
    symbol: str
    interval: str
    candles: tuple[Candle, ...]

    def is_empty(self) -> bool:
        return len(self.candles) == 0


@dataclass(frozen=True)
class SentimentReading:
    """Index value on a 0-100 scale (0 = extreme fear, 100 = extreme greed)."""
    subject: str
    value: float
    classification: str

    def is_empty(self) -> bool:
        return not 0.0 <= self.value <= 100.0


@dataclass(frozen=True)
class WhaleTransaction:
    tx_hash: str
    blockchain: str
    symbol: str
    amount: Decimal
    amount_usd: Optional[Decimal]
    from_address: Optional[str]
    to_address: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class WhaleActivity:
    subject: str
    transactions: tuple[WhaleTransaction, ...]

    def is_empty(self) -> bool:
        return len(self.transactions) == 0

    @property
    def total_usd(self) -> Decimal:
        return sum(
            (tx.amount_usd for tx in self.transactions if tx.amount_usd is not None),
            Decimal("0"),
        )


@dataclass(frozen=True)
class BalanceRecord:
    chain: str
    address: str
    balance: Decimal
    unit: str

    def is_empty(self) -> bool:
        return self.balance < 0


Payload = Union[PriceQuote, OHLCVSeries, SentimentReading, WhaleActivity, BalanceRecord]


@dataclass(frozen=True)
class NormalizedRecord:
    """
    Canonical answer to one logical query.

    `timestamp` is the data time reported by the provider, `fetched_at`
    is when this layer received it.
    """
    kind: DataKind
    key: str
    source: str
    payload: Payload
    timestamp: datetime
    fetched_at: datetime = field(default_factory=utcnow)

    def is_empty(self) -> bool:
        return self.payload is None or self.payload.is_empty()

    def data_age_ms(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return max(0.0, (now - self.timestamp).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "key": self.key,
            "source": self.source,
            "timestamp": self.timestamp.isoformat(),
            "fetched_at": self.fetched_at.isoformat(),
            "payload": to_jsonable(self.payload),
        }


# =============================================================
# KEYS
# =============================================================


@dataclass(frozen=True)
class OHLCVKey:
    """Parsed OHLCV key of the form SYMBOL:INTERVAL[:LIMIT]."""
    symbol: str
    interval: str = "1h"
    limit: int = 100

    SUPPORTED_INTERVALS = ("1m", "5m", "15m", "30m", "1h", "4h", "1d", "1w")

    @classmethod
    def parse(cls, key: str) -> "OHLCVKey":
        parts = [p.strip() for p in key.split(":")]
        if not parts[0]:
            raise ValueError("OHLCV key requires a symbol")
        symbol = parts[0].upper()
        interval = parts[1] if len(parts) > 1 and parts[1] else "1h"
        if interval not in cls.SUPPORTED_INTERVALS:
            raise ValueError(f"Unsupported interval: {interval}")
        limit = int(parts[2]) if len(parts) > 2 and parts[2] else 100
        if limit < 1 or limit > 1000:
            raise ValueError("Limit must be between 1 and 1000")
        return cls(symbol=symbol, interval=interval, limit=limit)


@dataclass(frozen=True)
class BalanceKey:
    """Parsed balance key of the form CHAIN:ADDRESS."""
    chain: str
    address: str

    @classmethod
    def parse(cls, key: str) -> "BalanceKey":
        chain, sep, address = key.partition(":")
        if not sep:
            chain, address = "eth", key
        if not address:
            raise ValueError("Balance key requires an address")
        return cls(chain=chain.lower(), address=address.strip())


# =============================================================
# HEALTH SNAPSHOTS
# =============================================================


@dataclass(frozen=True)
class LatencySnapshot:
    avg: float = 0.0
    min: float = 0.0
    max: float = 0.0
    last: float = 0.0
    samples: int = 0


@dataclass(frozen=True)
class RecoverySnapshot:
    uptime: float = 0.0
    success_rate: float = 0.0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    total_attempts: int = 0
    is_healthy: bool = True
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None


@dataclass(frozen=True)
class ErrorSnapshot:
    total_errors: int = 0
    recent_errors: tuple[ErrorEvent, ...] = ()
    last_error: Optional[ErrorEvent] = None


@dataclass(frozen=True)
class ProviderDiagnostics:
    """Read-only health view of one provider."""
    provider: str
    latency: LatencySnapshot
    recovery: RecoverySnapshot
    errors: ErrorSnapshot
    generated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "latency": to_jsonable(self.latency),
            "recovery": to_jsonable(self.recovery),
            "errors": {
                "total_errors": self.errors.total_errors,
                "recent_errors": [e.to_dict() for e in self.errors.recent_errors],
                "last_error": self.errors.last_error.to_dict() if self.errors.last_error else None,
            },
            "generated_at": self.generated_at.isoformat(),
        }


# =============================================================
# OBSERVABILITY
# =============================================================


@dataclass(frozen=True)
class AcquisitionEvent:
    """Fire-and-forget notification sent to the event channel."""
    type: EventType
    key: Optional[str] = None
    kind: Optional[DataKind] = None
    provider: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, enums, Decimals and datetimes."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if hasattr(value, "__dataclass_fields__"):
        return {
            name: to_jsonable(getattr(value, name))
            for name in value.__dataclass_fields__
        }
    return value
