"""
Provider adapters.

Each adapter maps (key, kind) to one upstream HTTP call and normalizes the
response into a NormalizedRecord.
"""

from data_acquisition.providers.alternative_me import AlternativeMeProvider
from data_acquisition.providers.base import ProviderAdapter, ProviderRequest
from data_acquisition.providers.binance import BinanceProvider
from data_acquisition.providers.blockchair import BlockchairProvider
from data_acquisition.providers.coincap import CoinCapProvider
from data_acquisition.providers.coingecko import CoinGeckoProvider
from data_acquisition.providers.etherscan import EtherscanProvider
from data_acquisition.providers.kraken import KrakenProvider
from data_acquisition.providers.whale_alert import WhaleAlertProvider


# Provider name (as used in configuration) -> adapter class
PROVIDER_CLASSES: dict[str, type[ProviderAdapter]] = {
    "coingecko": CoinGeckoProvider,
    "coincap": CoinCapProvider,
    "binance": BinanceProvider,
    "kraken": KrakenProvider,
    "alternative_me": AlternativeMeProvider,
    "whale_alert": WhaleAlertProvider,
    "etherscan": EtherscanProvider,
    "blockchair": BlockchairProvider,
}


__all__ = [
    "ProviderAdapter",
    "ProviderRequest",
    "PROVIDER_CLASSES",
    "AlternativeMeProvider",
    "BinanceProvider",
    "BlockchairProvider",
    "CoinCapProvider",
    "CoinGeckoProvider",
    "EtherscanProvider",
    "KrakenProvider",
    "WhaleAlertProvider",
]
