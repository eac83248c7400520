"""
Data Acquisition - Configuration.

============================================================
PROVIDERS AND CATEGORIES
============================================================

Per provider:
- base URL and optional API key
- token bucket (capacity, refill per second)
- cache TTL, retry count, per-attempt timeout, backoff

Per data kind:
- provider priority list (fallback order)
- cache policy (TTL, stale-while-revalidate, size)

Configuration can be loaded from:
- Default values
- Environment variables (a .env file is honoured)
- YAML config file
- A plain dict

============================================================
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from dotenv import load_dotenv

from data_acquisition.exceptions import ConfigurationError
from data_acquisition.models import DataKind
from data_acquisition.retry import RetryPolicy


logger = logging.getLogger(__name__)


ENV_PREFIX = "ACQ_"


# =============================================================
# PROVIDER CONFIG
# =============================================================


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket parameters."""
    capacity: float = 5.0
    refill_rate: float = 1.0  # tokens per second


@dataclass(frozen=True)
class ProviderConfig:
    """Connection and resilience settings for one provider."""
    name: str
    base_url: str
    api_key: Optional[str] = None
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache_ttl_seconds: float = 30.0
    retries: int = 3
    timeout_seconds: float = 10.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 10.0
    enabled: bool = True

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retries,
            timeout=self.timeout_seconds,
            base_delay=self.backoff_base_seconds,
            max_delay=self.backoff_max_seconds,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "base_url": self.base_url,
            "has_api_key": bool(self.api_key),
            "rate_limit": {
                "capacity": self.rate_limit.capacity,
                "refill_rate": self.rate_limit.refill_rate,
            },
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "retries": self.retries,
            "timeout_seconds": self.timeout_seconds,
            "backoff": {
                "base_seconds": self.backoff_base_seconds,
                "max_seconds": self.backoff_max_seconds,
            },
            "enabled": self.enabled,
        }


DEFAULT_PROVIDERS: dict[str, ProviderConfig] = {
    "coingecko": ProviderConfig(
        name="coingecko",
        base_url="https://api.coingecko.com/api/v3",
        rate_limit=RateLimitConfig(capacity=10, refill_rate=0.5),  # ~30/min free tier
        cache_ttl_seconds=30.0,
    ),
    "coincap": ProviderConfig(
        name="coincap",
        base_url="https://api.coincap.io/v2",
        rate_limit=RateLimitConfig(capacity=10, refill_rate=3.3),
        cache_ttl_seconds=30.0,
    ),
    "binance": ProviderConfig(
        name="binance",
        base_url="https://api.binance.com/api/v3",
        rate_limit=RateLimitConfig(capacity=20, refill_rate=20.0),
        cache_ttl_seconds=15.0,
    ),
    "kraken": ProviderConfig(
        name="kraken",
        base_url="https://api.kraken.com/0/public",
        rate_limit=RateLimitConfig(capacity=5, refill_rate=1.0),
        cache_ttl_seconds=30.0,
    ),
    "alternative_me": ProviderConfig(
        name="alternative_me",
        base_url="https://api.alternative.me",
        rate_limit=RateLimitConfig(capacity=5, refill_rate=1.0),
        cache_ttl_seconds=300.0,
    ),
    "whale_alert": ProviderConfig(
        name="whale_alert",
        base_url="https://api.whale-alert.io/v1",
        rate_limit=RateLimitConfig(capacity=2, refill_rate=0.16),  # 10/min free tier
        cache_ttl_seconds=60.0,
    ),
    "etherscan": ProviderConfig(
        name="etherscan",
        base_url="https://api.etherscan.io/api",
        rate_limit=RateLimitConfig(capacity=5, refill_rate=5.0),
        cache_ttl_seconds=60.0,
    ),
    "blockchair": ProviderConfig(
        name="blockchair",
        base_url="https://api.blockchair.com",
        rate_limit=RateLimitConfig(capacity=5, refill_rate=0.5),
        cache_ttl_seconds=60.0,
    ),
}


# =============================================================
# CATEGORY CONFIG
# =============================================================


@dataclass(frozen=True)
class CategoryConfig:
    """Fallback order and cache policy for one data kind."""
    kind: DataKind
    priority: tuple[str, ...]
    cache_ttl_seconds: Optional[float] = None  # None = shortest provider TTL
    stale_while_revalidate: bool = True
    max_stale_seconds: Optional[float] = None
    max_size: int = 1000


DEFAULT_CATEGORIES: dict[DataKind, CategoryConfig] = {
    DataKind.PRICE: CategoryConfig(
        kind=DataKind.PRICE,
        priority=("coingecko", "coincap", "binance", "kraken"),
        max_stale_seconds=300.0,
    ),
    DataKind.OHLCV: CategoryConfig(
        kind=DataKind.OHLCV,
        priority=("binance", "kraken", "coingecko"),
        cache_ttl_seconds=60.0,
        max_stale_seconds=600.0,
    ),
    DataKind.SENTIMENT: CategoryConfig(
        kind=DataKind.SENTIMENT,
        priority=("alternative_me",),
    ),
    DataKind.WHALE: CategoryConfig(
        kind=DataKind.WHALE,
        priority=("whale_alert", "etherscan"),
        stale_while_revalidate=False,
    ),
    DataKind.BLOCKCHAIN_BALANCE: CategoryConfig(
        kind=DataKind.BLOCKCHAIN_BALANCE,
        priority=("etherscan", "blockchair"),
        stale_while_revalidate=False,
    ),
}


# =============================================================
# MAIN CONFIGURATION
# =============================================================


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_kind(value: str) -> DataKind:
    try:
        return DataKind(value.strip().lower())
    except ValueError as e:
        raise ConfigurationError(f"Unknown data kind: {value}", config_key="categories") from e


@dataclass
class AcquisitionConfig:
    """
    Main configuration for the acquisition layer.

    Combines provider and category settings.
    """
    providers: dict[str, ProviderConfig] = field(default_factory=lambda: dict(DEFAULT_PROVIDERS))
    categories: dict[DataKind, CategoryConfig] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORIES)
    )

    # Error history
    max_errors: int = 100

    # Cache
    cache_max_size: int = 1000

    # Caller deadline applied when fetch() gets no explicit timeout
    default_fetch_timeout_seconds: Optional[float] = None

    def provider(self, name: str) -> ProviderConfig:
        config = self.providers.get(name)
        if config is None:
            raise ConfigurationError(f"Unknown provider: {name}", config_key="providers")
        return config

    def category(self, kind: DataKind) -> CategoryConfig:
        return self.categories.get(kind) or CategoryConfig(kind=kind, priority=())

    def cache_ttl_for(self, kind: DataKind) -> float:
        """Category TTL, or the shortest TTL among that kind's providers."""
        category = self.category(kind)
        if category.cache_ttl_seconds is not None:
            return category.cache_ttl_seconds
        ttls = [
            self.providers[name].cache_ttl_seconds
            for name in category.priority
            if name in self.providers
        ]
        return min(ttls) if ttls else 30.0

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid setting."""
        if self.max_errors < 1:
            raise ConfigurationError("max_errors must be >= 1", config_key="max_errors")
        if self.cache_max_size < 1:
            raise ConfigurationError("cache_max_size must be >= 1", config_key="cache_max_size")

        for name, provider in self.providers.items():
            key = f"providers.{name}"
            if not provider.base_url:
                raise ConfigurationError("base_url is required", name, config_key=key)
            if provider.rate_limit.capacity < 1:
                raise ConfigurationError("rate_limit.capacity must be >= 1", name, config_key=key)
            if provider.rate_limit.refill_rate <= 0:
                raise ConfigurationError("rate_limit.refill_rate must be > 0", name, config_key=key)
            if provider.cache_ttl_seconds < 0:
                raise ConfigurationError("cache_ttl_seconds must be >= 0", name, config_key=key)
            if provider.retries < 0:
                raise ConfigurationError("retries must be >= 0", name, config_key=key)
            if provider.timeout_seconds <= 0:
                raise ConfigurationError("timeout_seconds must be > 0", name, config_key=key)

        for kind, category in self.categories.items():
            key = f"categories.{kind.value}"
            if category.cache_ttl_seconds is not None and category.cache_ttl_seconds < 0:
                raise ConfigurationError("cache_ttl_seconds must be >= 0", config_key=key)
            if category.max_size < 1:
                raise ConfigurationError("max_size must be >= 1", config_key=key)
            unknown = [name for name in category.priority if name not in self.providers]
            if unknown:
                raise ConfigurationError(
                    f"Unknown providers in priority list: {', '.join(unknown)}",
                    config_key=key,
                )

    # =========================================================
    # LOADERS
    # =========================================================

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "AcquisitionConfig":
        """
        Load configuration from environment variables.

        Environment variables (PROVIDER is the upper-cased provider name):
        - ACQ_<PROVIDER>_API_KEY
        - ACQ_<PROVIDER>_BASE_URL
        - ACQ_<PROVIDER>_RATE_CAPACITY
        - ACQ_<PROVIDER>_RATE_REFILL
        - ACQ_<PROVIDER>_CACHE_TTL
        - ACQ_<PROVIDER>_RETRIES
        - ACQ_<PROVIDER>_TIMEOUT
        - ACQ_<PROVIDER>_ENABLED
        - ACQ_PRIORITY_<KIND>      (comma separated provider names)
        - ACQ_MAX_ERRORS
        - ACQ_CACHE_MAX_SIZE
        """
        load_dotenv(env_file)
        config = cls()

        try:
            for name, provider in list(config.providers.items()):
                prefix = f"{ENV_PREFIX}{name.upper()}_"
                updates: dict[str, Any] = {}

                if os.getenv(prefix + "API_KEY"):
                    updates["api_key"] = os.getenv(prefix + "API_KEY")
                if os.getenv(prefix + "BASE_URL"):
                    updates["base_url"] = os.getenv(prefix + "BASE_URL").rstrip("/")
                if os.getenv(prefix + "CACHE_TTL"):
                    updates["cache_ttl_seconds"] = float(os.getenv(prefix + "CACHE_TTL"))
                if os.getenv(prefix + "RETRIES"):
                    updates["retries"] = int(os.getenv(prefix + "RETRIES"))
                if os.getenv(prefix + "TIMEOUT"):
                    updates["timeout_seconds"] = float(os.getenv(prefix + "TIMEOUT"))
                if os.getenv(prefix + "ENABLED"):
                    updates["enabled"] = _parse_bool(os.getenv(prefix + "ENABLED"))

                capacity = os.getenv(prefix + "RATE_CAPACITY")
                refill = os.getenv(prefix + "RATE_REFILL")
                if capacity or refill:
                    updates["rate_limit"] = RateLimitConfig(
                        capacity=float(capacity) if capacity else provider.rate_limit.capacity,
                        refill_rate=float(refill) if refill else provider.rate_limit.refill_rate,
                    )

                if updates:
                    config.providers[name] = replace(provider, **updates)

            for kind, category in list(config.categories.items()):
                priority = os.getenv(f"{ENV_PREFIX}PRIORITY_{kind.value.upper()}")
                if priority:
                    names = tuple(p.strip() for p in priority.split(",") if p.strip())
                    config.categories[kind] = replace(category, priority=names)

            if os.getenv(ENV_PREFIX + "MAX_ERRORS"):
                config.max_errors = int(os.getenv(ENV_PREFIX + "MAX_ERRORS"))
            if os.getenv(ENV_PREFIX + "CACHE_MAX_SIZE"):
                config.cache_max_size = int(os.getenv(ENV_PREFIX + "CACHE_MAX_SIZE"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric environment value: {e}", original_error=e) from e

        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AcquisitionConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            raise ConfigurationError(
                f"Cannot read config file {path}",
                config_key=str(path),
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AcquisitionConfig":
        """
        Build configuration from a nested dict.

        Providers not mentioned keep their defaults; new provider names
        are added (they need a registered adapter to be used).
        """
        config = cls()

        try:
            for name, raw in (data.get("providers") or {}).items():
                raw = raw or {}
                base = config.providers.get(name) or ProviderConfig(
                    name=name, base_url=raw.get("base_url", "")
                )
                rate = raw.get("rate_limit") or {}
                backoff = raw.get("backoff") or {}
                config.providers[name] = replace(
                    base,
                    base_url=str(raw.get("base_url", base.base_url)).rstrip("/"),
                    api_key=raw.get("api_key", base.api_key),
                    rate_limit=RateLimitConfig(
                        capacity=float(rate.get("capacity", base.rate_limit.capacity)),
                        refill_rate=float(rate.get("refill_rate", base.rate_limit.refill_rate)),
                    ),
                    cache_ttl_seconds=float(raw.get("cache_ttl_seconds", base.cache_ttl_seconds)),
                    retries=int(raw.get("retries", base.retries)),
                    timeout_seconds=float(raw.get("timeout_seconds", base.timeout_seconds)),
                    backoff_base_seconds=float(
                        backoff.get("base_seconds", base.backoff_base_seconds)
                    ),
                    backoff_max_seconds=float(backoff.get("max_seconds", base.backoff_max_seconds)),
                    enabled=bool(raw.get("enabled", base.enabled)),
                )

            for kind_name, raw in (data.get("categories") or {}).items():
                raw = raw or {}
                kind = _parse_kind(kind_name)
                base = config.category(kind)
                priority = raw.get("priority", base.priority)
                if isinstance(priority, str):
                    priority = [p.strip() for p in priority.split(",") if p.strip()]
                ttl = raw.get("cache_ttl_seconds", base.cache_ttl_seconds)
                max_stale = raw.get("max_stale_seconds", base.max_stale_seconds)
                config.categories[kind] = replace(
                    base,
                    priority=tuple(priority),
                    cache_ttl_seconds=float(ttl) if ttl is not None else None,
                    stale_while_revalidate=bool(
                        raw.get("stale_while_revalidate", base.stale_while_revalidate)
                    ),
                    max_stale_seconds=float(max_stale) if max_stale is not None else None,
                    max_size=int(raw.get("max_size", base.max_size)),
                )

            if "max_errors" in data:
                config.max_errors = int(data["max_errors"])
            if "cache_max_size" in data:
                config.cache_max_size = int(data["cache_max_size"])
            if data.get("default_fetch_timeout_seconds") is not None:
                config.default_fetch_timeout_seconds = float(data["default_fetch_timeout_seconds"])
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", original_error=e) from e

        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary. API keys are never included."""
        return {
            "providers": {name: p.to_dict() for name, p in self.providers.items()},
            "categories": {
                kind.value: {
                    "priority": list(c.priority),
                    "cache_ttl_seconds": self.cache_ttl_for(kind),
                    "stale_while_revalidate": c.stale_while_revalidate,
                    "max_stale_seconds": c.max_stale_seconds,
                    "max_size": c.max_size,
                }
                for kind, c in self.categories.items()
            },
            "max_errors": self.max_errors,
            "cache_max_size": self.cache_max_size,
            "default_fetch_timeout_seconds": self.default_fetch_timeout_seconds,
        }
