import math
import time
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Sequence, Union
import httpx
import logging
from calltrack.config import get_settings, Settings
from calltrack.nlp.tickers import canonical, normalize
from calltrack.services.types import CanonicalTicker, FailureReason, PriceLookup
from calltrack.storage.price_cache import PriceCache, cache_key

logger = logging.getLogger(__name__)

# Canonical ticker -> CoinGecko coin id
TICKER_TO_COINGECKO = {
    # Majors
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "POL": "polygon-ecosystem-token",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "TRX": "tron",
    "TON": "the-open-network",
    "XLM": "stellar",
    "SHIB": "shiba-inu",
    "SUI": "sui",
    "HBAR": "hedera-hashgraph",
    "BCH": "bitcoin-cash",
    "NEAR": "near",
    "APT": "aptos",
    "XMR": "monero",
    "ICP": "internet-computer",
    "ETC": "ethereum-classic",
    "FIL": "filecoin",
    "KAS": "kaspa",
    "ALGO": "algorand",
    "SEI": "sei-network",
    "TIA": "celestia",
    "INJ": "injective-protocol",
    "HYPE": "hyperliquid",
    "TAO": "bittensor",
    "ONDO": "ondo-finance",
    "ENA": "ethena",
    "WLD": "worldcoin-wld",

    # Solana ecosystem
    "JUP": "jupiter-exchange-solana",
    "RAY": "raydium",
    "ORCA": "orca",
    "BONK": "bonk",
    "WIF": "dogwifcoin",
    "PYTH": "pyth-network",
    "JTO": "jito-governance-token",
    "RENDER": "render-token",
    "HNT": "helium",
    "MOBILE": "helium-mobile",
    "W": "wormhole",
    "MET": "meteora",
    "DRIFT": "drift-protocol",
    "TNSR": "tensor",
    "KMNO": "kamino",

    # Memes and AI agents
    "PEPE": "pepe",
    "FLOKI": "floki",
    "POPCAT": "popcat",
    "MOODENG": "moo-deng",
    "GOAT": "goatseus-maximus",
    "PNUT": "peanut-the-squirrel",
    "ACT": "act-i-the-ai-prophecy",
    "FARTCOIN": "fartcoin",
    "TRUMP": "official-trump",
    "MELANIA": "official-melania-meme",
    "AI16Z": "ai16z",
    "ZEREBRO": "zerebro",
    "VIRTUAL": "virtual-protocol",
    "AIXBT": "aixbt",
    "PENGU": "pudgy-penguins",
    "BRETT": "based-brett",
    "MEW": "cat-in-a-dogs-world",
    "SPX": "spx6900",

    # DeFi
    "AAVE": "aave",
    "MKR": "maker",
    "CRV": "curve-dao-token",
    "SNX": "synthetix-network-token",
    "COMP": "compound-governance-token",
    "SUSHI": "sushi",
    "YFI": "yearn-finance",
    "1INCH": "1inch",
    "GMX": "gmx",
    "DYDX": "dydx",
    "LDO": "lido-dao",
    "PENDLE": "pendle",
    "EIGEN": "eigenlayer",
    "ETHFI": "ether-fi",

    # L2s
    "ARB": "arbitrum",
    "OP": "optimism",
    "STRK": "starknet",
    "ZK": "zksync",
    "IMX": "immutable-x",
    "MNT": "mantle",
    "ZRO": "layerzero",

    # AI tokens
    "FET": "fetch-ai",
}

DEFAULT_MAX_POINTS = 50

DateLike = Union[date, datetime]


def format_date(when: DateLike) -> str:
    """Calendar date of ``when`` in UTC as dd-mm-yyyy (CoinGecko's history format)."""
    if isinstance(when, datetime):
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        when = when.date()
    return when.strftime("%d-%m-%Y")


def downsample(values: Sequence[float], max_points: int = DEFAULT_MAX_POINTS) -> List[float]:
    """
    Thin a price series for charting.

    Series of at most ``max_points`` are returned unchanged. Longer ones keep
    every ``ceil(n / max_points)``-th sample starting from the first. Stored
    chart artifacts depend on this exact stride rule.
    """
    values = list(values)
    if len(values) <= max_points:
        return values
    step = math.ceil(len(values) / max_points)
    return values[::step]


def _to_timestamp(when: DateLike) -> int:
    if not isinstance(when, datetime):
        when = datetime(when.year, when.month, when.day, tzinfo=timezone.utc)
    elif when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return int(when.timestamp())


class CoinGeckoClient:
    """
    Price resolver backed by the CoinGecko v3 API.

    Request spacing between calls is the caller's job; only the retry backoff
    for throttled or failed historical lookups sleeps in here.
    """

    def __init__(
        self,
        cache: PriceCache,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = settings or get_settings()
        self.cache = cache
        self.base_url = settings.coingecko_base_url.rstrip("/")
        self.max_attempts = max(1, settings.price_max_attempts)
        self.backoff_base = settings.price_backoff_base
        self.max_points = settings.chart_max_points
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=settings.http_timeout)

        self._headers = {"Accept": "application/json", "User-Agent": "calltrack/1.0"}
        if settings.coingecko_api_key:
            self._headers["x-cg-demo-api-key"] = settings.coingecko_api_key

        logger.info(f"CoinGecko client ready ({'demo API key' if settings.coingecko_api_key else 'free tier'})")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def resolve_provider_id(self, ticker: str) -> Optional[str]:
        return TICKER_TO_COINGECKO.get(normalize(ticker))

    def canonical(self, ticker: str) -> CanonicalTicker:
        return canonical(ticker, TICKER_TO_COINGECKO)

    def current_price(self, ticker: str) -> Optional[float]:
        """Latest USD price, or None on any failure. Never cached."""
        coin_id = self.resolve_provider_id(ticker)
        if not coin_id:
            return None

        try:
            response = self._client.get(
                f"{self.base_url}/simple/price",
                params={"ids": coin_id, "vs_currencies": "usd"},
                headers=self._headers,
            )
            if response.status_code != 200:
                logger.warning(f"CoinGecko current price error for {ticker}: {response.status_code}")
                return None

            price = response.json().get(coin_id, {}).get("usd")
        except Exception as e:
            logger.error(f"CoinGecko current price request failed for {ticker}: {e}")
            return None

        return float(price) if price else None

    def historical_price(self, ticker: str, when: DateLike) -> PriceLookup:
        """
        USD price of ``ticker`` on the calendar day of ``when``.

        Served from the cache when possible. Otherwise up to ``max_attempts``
        requests are made; 429s, 5xx responses and transport errors back off
        exponentially (2s, 4s, ...) and retry, any other error status fails
        immediately. Successful fetches are cached (and flushed) before
        returning.
        """
        coin_id = self.resolve_provider_id(ticker)
        if not coin_id:
            return PriceLookup(
                success=False,
                error=f"Unknown ticker: {ticker}",
                reason=FailureReason.UNKNOWN_TICKER,
            )

        date_str = format_date(when)
        key = cache_key(coin_id, date_str)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            return PriceLookup(success=True, price=cached, date=date_str, coin_id=coin_id)

        url = f"{self.base_url}/coins/{coin_id}/history"
        params = {"date": date_str, "localization": "false"}
        failure = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._client.get(url, params=params, headers=self._headers)
            except httpx.TransportError as e:
                logger.warning(f"CoinGecko history request failed for {ticker} "
                               f"(attempt {attempt}/{self.max_attempts}): {e}")
                failure = PriceLookup(
                    success=False, error=str(e), reason=FailureReason.TRANSPORT_ERROR,
                    date=date_str, coin_id=coin_id,
                )
            else:
                status = response.status_code
                if status == 429 or status >= 500:
                    logger.warning(f"CoinGecko {'rate limited' if status == 429 else 'server error'} "
                                   f"for {ticker} (attempt {attempt}/{self.max_attempts})")
                    failure = PriceLookup(
                        success=False,
                        error=f"API error: {status}",
                        reason=FailureReason.RATE_LIMITED if status == 429 else FailureReason.HTTP_ERROR,
                        status_code=status,
                        date=date_str,
                        coin_id=coin_id,
                    )
                elif status != 200:
                    logger.warning(f"CoinGecko history error for {ticker}: {status}")
                    return PriceLookup(
                        success=False, error=f"API error: {status}", reason=FailureReason.HTTP_ERROR,
                        status_code=status, date=date_str, coin_id=coin_id,
                    )
                else:
                    return self._parse_history(response, ticker, key, date_str, coin_id)

            if attempt < self.max_attempts:
                wait = self.backoff_base * 2 ** (attempt - 1)
                logger.info(f"Retrying {ticker} history in {wait:.0f}s")
                self._sleep(wait)

        logger.error(f"Giving up on {ticker} price for {date_str} after {self.max_attempts} attempts")
        return failure

    def _parse_history(self, response: httpx.Response, ticker: str, key: str,
                       date_str: str, coin_id: str) -> PriceLookup:
        try:
            data = response.json()
        except ValueError as e:
            return PriceLookup(
                success=False, error=f"Invalid JSON: {e}", reason=FailureReason.NO_DATA,
                status_code=response.status_code, date=date_str, coin_id=coin_id,
            )

        market_data = data.get("market_data") if isinstance(data, dict) else None
        price = ((market_data or {}).get("current_price") or {}).get("usd")
        if price is None:
            return PriceLookup(
                success=False, error="No price data for this date", reason=FailureReason.NO_DATA,
                date=date_str, coin_id=coin_id,
            )

        try:
            self.cache.set(key, price)
        except OSError as e:
            logger.error(f"Failed to persist price cache entry {key}: {e}")

        return PriceLookup(success=True, price=float(price), date=date_str, coin_id=coin_id)

    def price_comparison(self, ticker: str, when: DateLike) -> PriceLookup:
        """Historical price plus the current price. No current lookup if the historical one failed."""
        historical = self.historical_price(ticker, when)
        if not historical.success:
            return historical

        current = self.current_price(ticker)
        return historical.model_copy(update={"current_price": current})

    def historical_series(self, ticker: str, start: DateLike, end: DateLike) -> List[float]:
        """USD prices between ``start`` and ``end``, downsampled for charting. Empty on failure."""
        coin_id = self.resolve_provider_id(ticker)
        if not coin_id:
            return []

        try:
            response = self._client.get(
                f"{self.base_url}/coins/{coin_id}/market_chart/range",
                params={"vs_currency": "usd", "from": _to_timestamp(start), "to": _to_timestamp(end)},
                headers=self._headers,
            )
            if response.status_code != 200:
                logger.warning(f"CoinGecko chart error for {ticker}: {response.status_code}")
                return []

            data = response.json()
            samples = data.get("prices") if isinstance(data, dict) else None
            if not isinstance(samples, list):
                return []

            prices = [float(p[1]) for p in samples]
        except Exception as e:
            logger.error(f"CoinGecko chart fetch failed for {ticker}: {e}")
            return []

        return downsample(prices, self.max_points)
