import json
import logging
import re
import time
from typing import Callable, Dict, List, Optional, Sequence
from calltrack.config import Settings, get_settings
from calltrack.nlp.clean import normalize_post
from calltrack.services.llm_client import CompletionBackend, XaiBackend
from calltrack.services.types import CallType, ClassificationVerdict, Post, Sentiment

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a strict crypto trade analyzer. Detect ACTIVE TRADING CALLS for tokens that are already liquid and trading on exchanges.
Only clear "buy spot" or "long" recommendations count.

Rules for "isCall":
1. The token must be tradeable right now.
   - Not a call: ICOs, presales, whitelists, "TGE soon".
   - Not a call: airdrop farming, opt-ins, claims, points programs, yield strategies.
2. Hedging and tax moves are not calls.
   - Not a call: tax loss harvesting, delta neutral positions.
3. Intent must be a recommendation to BUY or LONG for profit.
   - Liking the tech with no trading angle is commentary.

Calls:
- "Loading up more $SOL here." -> callType: spot_buy
- "$ETH looking ready to breakout, long targeting 4k." -> callType: long
- "Aping into $PEPE." -> callType: spot_buy

Not calls:
- "Solstice ICO is live, get your flares." -> callType: ico_presale, isCall: false
- "Harvested my losses on MET." -> callType: tax_strategy, isCall: false
- "Farming points on Jupiter." -> callType: airdrop_farming, isCall: false
- "ETH tech is improving" -> callType: commentary, isCall: false

Answer with JSON only."""

BATCH_PROMPT = """Classify each post below. "isCall" may be true ONLY when callType is "spot_buy" or "long".

Return a JSON array with exactly one object per post:
[
  {
    "post_id": "ID_OF_THE_POST",
    "isCall": true,
    "callType": "spot_buy | long | ico_presale | airdrop_farming | commentary | tax_strategy | other",
    "confidence": 0-100,
    "tickers": ["TICKER"],
    "sentiment": "bullish | bearish | neutral",
    "reasoning": "Short step-by-step justification, then the conclusion."
  }
]

POSTS:
"""

DEFAULT_VERDICT = ClassificationVerdict()

# Single-quoted string tokens right before a JSON delimiter: 'foo', -> "foo",
_SINGLE_QUOTED = re.compile(r"'([^']*)'(?=\s*[:,\]\}])")


def repair_quotes(text: str) -> str:
    return _SINGLE_QUOTED.sub(r'"\1"', text)


def extract_json_array(text: str) -> Optional[list]:
    """
    First well-formed JSON array of objects inside a free-text reply.

    Each ``[`` is tried as-is first, then with single-quoted strings rewritten
    to double quotes. An empty array only counts when it opens the reply's
    first bracket, so a nested ``[]`` never stands in for the outer array.
    """
    decoder = json.JSONDecoder()
    # Quote repair swaps characters one for one, so offsets line up
    candidates = (text, repair_quotes(text))
    for i, match in enumerate(re.finditer(r"\[", text)):
        for candidate in candidates:
            try:
                value, _ = decoder.raw_decode(candidate, match.start())
            except ValueError:
                continue
            if not isinstance(value, list):
                continue
            if any(isinstance(v, dict) for v in value) or (not value and i == 0):
                return value
    return None


def _coerce_enum(enum_cls, value, default):
    if isinstance(value, str):
        value = value.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return enum_cls(value)
        except ValueError:
            pass
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def verdict_from_item(item: dict) -> ClassificationVerdict:
    """Build a verdict from one (possibly sloppy) backend object."""
    tickers = item.get("tickers") or []
    if isinstance(tickers, str):
        tickers = [tickers]
    tickers = [str(t).strip() for t in tickers if t is not None and str(t).strip()]

    reasoning = item.get("reasoning")
    return ClassificationVerdict(
        is_call=_as_bool(item.get("isCall", item.get("is_call"))),
        call_type=_coerce_enum(CallType, item.get("callType", item.get("call_type")), CallType.OTHER),
        confidence=item.get("confidence", 0),
        tickers=tickers,
        sentiment=_coerce_enum(Sentiment, item.get("sentiment"), Sentiment.NEUTRAL),
        reasoning=str(reasoning) if reasoning else None,
    )


def _item_id(item: dict) -> Optional[str]:
    for key in ("post_id", "tweet_id", "id"):
        if item.get(key) is not None:
            return str(item[key])
    return None


def build_prompt(posts: Sequence[Post]) -> str:
    blocks = [
        f'[Post {i}] ID: {p.id}\n@{p.username} ({p.created_at.isoformat()}):\n"{normalize_post(p.text)}"\n'
        for i, p in enumerate(posts, 1)
    ]
    return BATCH_PROMPT + "\n---\n".join(blocks)


class CallDetector:
    """Batched buy/long call classification on top of a text-generation backend."""

    def __init__(
        self,
        backend: Optional[CompletionBackend] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = settings or get_settings()
        self.backend = backend if backend is not None else XaiBackend(settings)
        self.batch_size = settings.classifier_batch_size
        self.batch_delay = settings.classifier_batch_delay
        self._sleep = sleep

    def classify_batch(self, posts: Sequence[Post]) -> Dict[str, ClassificationVerdict]:
        """
        Classify up to one batch of posts with a single backend request.

        Every input post gets a verdict. Posts the reply leaves out, and whole
        batches whose request or parsing fails, get ``DEFAULT_VERDICT``.
        """
        results: Dict[str, ClassificationVerdict] = {}
        if not posts:
            return results

        wanted = {p.id for p in posts}
        try:
            content = self.backend.complete(SYSTEM_PROMPT, build_prompt(posts)) or ""
            items = extract_json_array(content)
            if items is None:
                logger.warning(f"No JSON array in classifier reply for {len(posts)} posts: {content[:200]!r}")
                items = []

            for item in items:
                if not isinstance(item, dict):
                    continue
                post_id = _item_id(item)
                if post_id not in wanted:
                    logger.debug(f"Ignoring verdict for unknown post id {post_id}")
                    continue
                try:
                    results[post_id] = verdict_from_item(item)
                except ValueError as e:
                    logger.warning(f"Malformed verdict for post {post_id}: {e}")
        except Exception as e:
            logger.error(f"Classifier batch failed ({len(posts)} posts): {e}")

        for p in posts:
            results.setdefault(p.id, DEFAULT_VERDICT)

        return results

    def classify_all(
        self,
        posts: Sequence[Post],
        batch_size: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Dict[str, ClassificationVerdict]:
        batch_size = batch_size or self.batch_size
        total = len(posts)
        n_batches = (total + batch_size - 1) // batch_size
        all_results: Dict[str, ClassificationVerdict] = {}

        for start in range(0, total, batch_size):
            batch = posts[start:start + batch_size]
            logger.info(f"Processing batch {start // batch_size + 1}/{n_batches} ({len(batch)} posts)")

            batch_results = self.classify_batch(batch)
            all_results.update(batch_results)

            processed = min(start + batch_size, total)
            if on_progress:
                on_progress(processed, total)

            calls = sum(1 for v in batch_results.values() if v.is_call)
            logger.info(f"Found {calls} valid calls in batch")

            if processed < total:
                self._sleep(self.batch_delay)

        return all_results

    def classify_post(self, post: Post) -> ClassificationVerdict:
        return self.classify_batch([post]).get(post.id, DEFAULT_VERDICT)
