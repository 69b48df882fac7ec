import datetime as dt
import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from pydantic import ValidationError
from calltrack.config import Settings, get_settings
from calltrack.nlp.call_detector import CallDetector
from calltrack.nlp.tickers import filter_allowed, normalize
from calltrack.services.price_client import CoinGeckoClient
from calltrack.services.types import (
    ACTIONABLE_CALL_TYPES,
    CallRecord,
    ClassificationVerdict,
    InfluencerStats,
    Post,
)
from calltrack.storage.price_cache import JsonFilePriceCache

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def calculate_stats(
    username: str,
    total_posts: int,
    calls: List[CallRecord],
    stake_per_call: float = 100.0,
) -> InfluencerStats:
    """
    Roll call records up into per-account stats.

    Success rate, ROI and PnL only consider resolved records (both prices
    known); unresolved ones still count toward ``total_calls``.
    """
    resolved = [c for c in calls if c.roi_percent is not None]
    successful = sum(1 for c in resolved if c.is_successful)
    total_roi = sum(c.roi_percent for c in resolved)

    return InfluencerStats(
        username=username,
        total_posts=total_posts,
        total_calls=len(calls),
        successful_calls=successful,
        failed_calls=len(resolved) - successful,
        success_rate=(successful / len(resolved) * 100) if resolved else 0.0,
        total_roi=total_roi,
        avg_roi=(total_roi / len(resolved)) if resolved else 0.0,
        hypothetical_pnl=sum(stake_per_call * c.roi_percent / 100 for c in resolved),
        calls=calls,
    )


def _dedupe(tickers: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for t in tickers:
        if t not in seen:
            seen.add(t)
            out.append(t)
    return out


class CallAnalyzer:
    """
    Full pipeline: classify posts -> allow-list tickers -> price each call -> aggregate.

    All network calls run sequentially. ``price_request_delay`` seconds are
    slept after every per-ticker price resolution to stay under the price
    provider's free-tier ceiling.
    """

    def __init__(
        self,
        detector: CallDetector,
        prices: CoinGeckoClient,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], dt.datetime] = _utcnow,
    ):
        settings = settings or get_settings()
        self.detector = detector
        self.prices = prices
        self.request_delay = settings.price_request_delay
        self.stake_per_call = settings.stake_per_call
        self.batch_size = settings.classifier_batch_size
        self._sleep = sleep
        self._now = now

    def run(self, posts: Sequence[Post], username: str) -> InfluencerStats:
        if not posts:
            logger.warning(f"No posts to analyze for @{username}")
            return calculate_stats(username, 0, [], self.stake_per_call)

        logger.info(f"Analyzing {len(posts)} posts from @{username} "
                    f"({self.batch_size} posts per classifier request)")

        verdicts = self.detector.classify_all(
            list(posts),
            self.batch_size,
            lambda processed, total: logger.info(f"Progress: {processed}/{total} posts"),
        )

        calls: List[CallRecord] = []
        call_posts = 0
        for post in posts:
            verdict = verdicts.get(post.id)
            tickers = self._allowed_tickers(verdict)
            if not tickers:
                continue

            call_posts += 1
            logger.info(f"Call #{call_posts}: {', '.join(tickers)} ({verdict.confidence}%) "
                        f"\"{post.text[:80]}\"")

            for ticker in tickers:
                calls.append(self.analyze_call(post, ticker, verdict))

        stats = calculate_stats(username, len(posts), calls, self.stake_per_call)
        logger.info(f"Analysis complete for @{username}: {stats.total_calls} calls, "
                    f"success rate {stats.success_rate:.1f}%, "
                    f"hypothetical PnL ${stats.hypothetical_pnl:.2f} "
                    f"(${self.stake_per_call:.0f}/call)")
        return stats

    def _allowed_tickers(self, verdict: Optional[ClassificationVerdict]) -> List[str]:
        """Normalized, allow-listed tickers of an actionable verdict; empty otherwise."""
        if verdict is None or not verdict.is_call or not verdict.tickers:
            return []
        # Re-check the call invariant on ingestion
        if verdict.call_type not in ACTIONABLE_CALL_TYPES:
            return []
        return _dedupe([normalize(t) for t in filter_allowed(verdict.tickers)])

    def analyze_call(self, post: Post, ticker: str, verdict: ClassificationVerdict) -> CallRecord:
        """Price one (post, ticker) pair. Missing prices leave the record unresolved."""
        lookup = self.prices.price_comparison(ticker, post.created_at)

        chart_data = None
        if lookup.success:
            for quote in lookup.quotes(ticker):
                logger.info(f"{ticker} {quote.provenance}: ${quote.price:.6f} ({quote.date})")
            if lookup.current_price is None:
                logger.warning(f"No current price found for {ticker}")
            chart_data = self.prices.historical_series(ticker, post.created_at, self._now()) or None
        else:
            logger.warning(f"{ticker}: price data not found ({lookup.error or 'unknown error'})")

        record = CallRecord(
            post_id=post.id,
            post_text=post.text,
            post_date=post.created_at,
            username=post.username,
            ticker=ticker,
            price_at_call=lookup.price if lookup.success else None,
            current_price=lookup.current_price,
            confidence=verdict.confidence,
            reasoning=verdict.reasoning,
            chart_data=chart_data,
        )
        if record.roi_percent is not None:
            logger.info(f"{ticker} ROI: {record.roi_percent:.2f}%")

        self._sleep(self.request_delay)
        return record

    def analyze_from_file(self, path) -> InfluencerStats:
        username, posts = load_posts(path)
        return self.run(posts, username)

    def fill_missing_prices(self, stats: InfluencerStats) -> InfluencerStats:
        """Retry price resolution for unresolved records and re-aggregate."""
        updated: List[CallRecord] = []
        fixed = 0

        for i, record in enumerate(stats.calls, 1):
            if record.resolved:
                updated.append(record)
                continue

            logger.info(f"[{i}/{len(stats.calls)}] Missing price for ${record.ticker} ({record.post_date.date()})")
            changes: Dict = {}

            if not record.price_at_call:
                lookup = self.prices.historical_price(record.ticker, record.post_date)
                if lookup.success:
                    changes["price_at_call"] = lookup.price
                else:
                    logger.warning(f"Still no price for {record.ticker}: {lookup.error}")

            if (changes.get("price_at_call") or record.price_at_call) and record.current_price is None:
                changes["current_price"] = self.prices.current_price(record.ticker)

            if changes.get("price_at_call") and not record.chart_data:
                changes["chart_data"] = self.prices.historical_series(
                    record.ticker, record.post_date, self._now()
                ) or None

            new_record = CallRecord(**{**record.model_dump(), **changes})
            if new_record.resolved:
                fixed += 1
            updated.append(new_record)
            self._sleep(self.request_delay)

        logger.info(f"Resolved {fixed} previously unresolved calls for @{stats.username}")
        return calculate_stats(stats.username, stats.total_posts, updated, self.stake_per_call)


def build_analyzer(settings: Optional[Settings] = None) -> CallAnalyzer:
    """Wire the production pipeline. Raises ConfigurationError when the classifier key is missing."""
    settings = settings or get_settings()
    detector = CallDetector(settings=settings)
    prices = CoinGeckoClient(JsonFilePriceCache(settings.price_cache_path), settings=settings)
    return CallAnalyzer(detector, prices, settings=settings)


def load_posts(path) -> Tuple[str, List[Post]]:
    """
    Read a scraped-posts JSON file.

    Accepts ``{"username": ..., "tweets": [...]}`` (or ``"posts"``) or a bare
    list of posts. Entries that fail validation are skipped.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        username, raw_posts = "", data
    else:
        username = data.get("username", "")
        raw_posts = data.get("tweets", data.get("posts", []))

    posts = []
    for raw in raw_posts:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object post entry: {raw!r}")
            continue
        try:
            posts.append(Post(
                id=raw["id"],
                text=raw.get("text", ""),
                username=raw.get("username") or username,
                created_at=raw["created_at"],
            ))
        except (KeyError, ValidationError) as e:
            logger.warning(f"Skipping malformed post {raw.get('id', 'unknown')}: {e}")

    if not username and posts:
        username = posts[0].username

    logger.info(f"Loaded {len(posts)} posts for @{username} from {path}")
    return username, posts


def save_results(stats: InfluencerStats, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = stats.model_dump(mode="json")
    payload["analyzed_at"] = _utcnow().isoformat()
    payload["post_count"] = stats.total_posts
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    logger.info(f"Results saved to {path}")
    return path


def load_results(path) -> InfluencerStats:
    with open(path, "r", encoding="utf-8") as f:
        return InfluencerStats.model_validate(json.load(f))
