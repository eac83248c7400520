"""Ticker symbol to provider-specific identifier maps."""

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LTC": "litecoin",
    "LINK": "chainlink",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "SOL": "solana",
    "MATIC": "matic-network",
    "AVAX": "avalanche-2",
    "ATOM": "cosmos",
    "TRX": "tron",
    "USDT": "tether",
    "USDC": "usd-coin",
}

COINCAP_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binance-coin",
    "ADA": "cardano",
    "DOT": "polkadot",
    "LTC": "litecoin",
    "LINK": "chainlink",
    "BCH": "bitcoin-cash",
    "XLM": "stellar",
    "XRP": "xrp",
    "DOGE": "dogecoin",
    "SOL": "solana",
    "MATIC": "polygon",
    "AVAX": "avalanche",
    "ATOM": "cosmos",
    "TRX": "tron",
    "USDT": "tether",
    "USDC": "usd-coin",
}

# Kraken uses XBT for bitcoin and XDG for dogecoin
KRAKEN_ASSETS: dict[str, str] = {
    "BTC": "XBT",
    "DOGE": "XDG",
}


def normalize_symbol(key: str) -> str:
    """'btc', 'BTCUSDT', 'btc/usd' -> 'BTC'."""
    symbol = key.strip().upper()
    for sep in ("/", "-", "_"):
        if sep in symbol:
            symbol = symbol.split(sep, 1)[0]
    for quote in ("USDT", "USD"):
        if symbol.endswith(quote) and len(symbol) > len(quote):
            symbol = symbol[: -len(quote)]
            break
    return symbol


def coingecko_id(symbol: str) -> str:
    return COINGECKO_IDS.get(symbol, symbol.lower())


def coincap_id(symbol: str) -> str:
    return COINCAP_IDS.get(symbol, symbol.lower())


def binance_symbol(symbol: str) -> str:
    return f"{symbol}USDT"


def kraken_pair(symbol: str) -> str:
    return f"{KRAKEN_ASSETS.get(symbol, symbol)}USD"
