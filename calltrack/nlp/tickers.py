"""
Ticker normalization and the liquid-asset allow-list.

Pure functions, no I/O. Everything downstream (price lookups, the cache key,
call records) joins on the symbol returned by ``normalize``.
"""
from typing import Iterable, List, Optional

from calltrack.services.types import CanonicalTicker

# Full names and alternate spellings -> short ticker
TICKER_ALIASES = {
    "BITCOIN": "BTC",
    "ETHEREUM": "ETH",
    "SOLANA": "SOL",
    "RIPPLE": "XRP",
    "CARDANO": "ADA",
    "DOGECOIN": "DOGE",
    "AVALANCHE": "AVAX",
    "CHAINLINK": "LINK",
    "POLKADOT": "DOT",
    "LITECOIN": "LTC",
    "MONERO": "XMR",
    "POLYGON": "MATIC",
    "ARBITRUM": "ARB",
    "OPTIMISM": "OP",
    "UNISWAP": "UNI",
    "COSMOS": "ATOM",
    "JUPITER": "JUP",
    "METEORA": "MET",
    "HYPERLIQUID": "HYPE",
    "STARKNET": "STRK",
    "ZCASH": "ZEC",
    "TONCOIN": "TON",
    "TETHER": "USDT",
    "TRON": "TRX",
    "STELLAR": "XLM",
    "APTOS": "APT",
    "VECHAIN": "VET",
    "MANTLE": "MNT",
    "CRONOS": "CRO",
    "FILECOIN": "FIL",
    "KASPA": "KAS",
    "FANTOM": "FTM",
    "INJECTIVE": "INJ",
    "IMMUTABLE": "IMX",
    "THEGRAPH": "GRT",
    "ALGORAND": "ALGO",
    "THORCHAIN": "RUNE",
    "CELESTIA": "TIA",
    "RAYDIUM": "RAY",
    "FETCHAI": "FET",
    "SANDBOX": "SAND",
    "TEZOS": "XTZ",
    "AXIE": "AXS",
    "DECENTRALAND": "MANA",
    "QUANT": "QNT",
    "CONFLUX": "CFX",
    "WORMHOLE": "W",
    "JITO": "JTO",
    "HELIUM": "HNT",
    "PANCAKESWAP": "CAKE",
    "BITTENSOR": "TAO",
    "RNDR": "RENDER",
    "FART": "FARTCOIN",
}

# Liquid assets the pipeline is willing to price and report on.
# Majors, top ecosystem tokens and a short list of high-attention memes.
ALLOWED_TICKERS = frozenset({
    # Majors
    "BTC", "ETH", "XRP", "USDT", "SOL", "BNB", "DOGE", "USDC", "ADA", "TRX",
    "AVAX", "LINK", "XLM", "TON", "SHIB", "SUI", "HBAR", "DOT", "BCH", "LTC",
    "HYPE", "UNI", "PEPE", "NEAR", "LEO",
    "APT", "AAVE", "XMR", "ICP", "ETC", "POL", "MATIC", "RENDER", "TAO",
    "VET", "MNT", "CRO", "FIL", "ARB", "KAS", "ATOM", "OP", "FTM", "WIF",
    "INJ", "IMX", "BONK", "GRT", "THETA", "SEI",
    "ALGO", "JUP", "RUNE", "PYTH", "FLOKI", "LDO", "TIA", "RAY", "FET", "ONDO",
    "GALA", "JASMY", "FLOW", "SAND", "BEAM", "MOVE", "PENDLE", "XTZ", "AXS",
    "EOS", "CORE", "MANA", "ENS", "QNT",
    "STRK", "KAIA", "ZEC", "XEC", "NEO", "DYDX", "IOTA", "CFX", "BTT", "AIOZ",
    "VIRTUAL", "AERO", "W", "MET", "JTO", "HNT", "BLUR", "CAKE", "CKB", "SUPER",
    # DeFi
    "MKR", "CRV", "SNX", "COMP", "SUSHI", "YFI", "1INCH", "GMX", "ORCA",
    # L1 / L2 / infra
    "ZK", "MOBILE", "STX", "AR", "RON", "MINA", "KSM", "AXL", "OSMO", "AKT",
    "ROSE", "EGLD", "PRIME", "ORDI", "SATS", "ZETA", "DYM", "ALT", "MANTA",
    "PIXEL", "PORTAL",
    # Memes and AI agents
    "FARTCOIN", "POPCAT", "GOAT", "PNUT", "ACT", "MOODENG", "AI16Z", "ZEREBRO",
    "GRIFFAIN", "TRUMP", "MELANIA", "AIXBT", "PENGU", "BRETT", "MEW", "SPX",
    # Restaking, perps and Solana DeFi
    "WLD", "ENA", "EIGEN", "ETHFI", "ZRO", "DRIFT", "TNSR", "KMNO",
})


def _clean(raw: str) -> str:
    return raw.strip().lstrip("$").strip().upper()


def normalize(raw: str) -> str:
    """Strip the cashtag sigil, upper-case and collapse known aliases (BITCOIN -> BTC)."""
    clean = _clean(raw)
    return TICKER_ALIASES.get(clean, clean)


def canonical(raw: str, provider_ids: Optional[dict] = None) -> CanonicalTicker:
    symbol = normalize(raw)
    provider_id = provider_ids.get(symbol) if provider_ids else None
    return CanonicalTicker(symbol=symbol, provider_id=provider_id)


def is_allowed(ticker: str) -> bool:
    clean = _clean(ticker)
    return clean in ALLOWED_TICKERS or TICKER_ALIASES.get(clean) in ALLOWED_TICKERS


def filter_allowed(tickers: Iterable[str]) -> List[str]:
    return [t for t in tickers if is_allowed(t)]
