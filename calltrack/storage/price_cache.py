"""
Historical price cache.

Historical prices for a (coin id, date) pair never change once retrieved, so
they are cached indefinitely. ``PriceCache`` keeps them in memory only (tests,
one-off runs); ``JsonFilePriceCache`` loads a flat JSON object once at
construction and rewrites it after every new entry.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional
from calltrack.logging_config import get_logger

logger = get_logger(__name__)


def cache_key(coin_id: str, date_str: str) -> str:
    return f"{coin_id}-{date_str}"


class PriceCache:
    """In-memory historical price cache."""

    def __init__(self, initial: Optional[Dict[str, float]] = None):
        self._lock = threading.Lock()
        self._prices: Dict[str, float] = dict(initial or {})

    def get(self, key: str) -> Optional[float]:
        return self._prices.get(key)

    def set(self, key: str, price: float) -> None:
        with self._lock:
            self._prices[key] = float(price)
            self.flush()

    def flush(self) -> None:
        pass

    def snapshot(self) -> Dict[str, float]:
        return dict(self._prices)

    def __contains__(self, key: str) -> bool:
        return key in self._prices

    def __len__(self) -> int:
        return len(self._prices)


class JsonFilePriceCache(PriceCache):
    """Price cache persisted as one JSON file, rewritten atomically on every write."""

    def __init__(self, path):
        self.path = Path(path)
        super().__init__(self._load())
        logger.info(f"Loaded {len(self)} cached prices from {self.path}")

    def _load(self) -> Dict[str, float]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # A corrupt cache is equivalent to a cold one
            logger.error(f"Failed to load price cache {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Ignoring price cache {self.path}: expected a JSON object")
            return {}

        prices = {}
        for key, value in data.items():
            try:
                prices[key] = float(value)
            except (TypeError, ValueError):
                logger.warning(f"Dropping malformed cache entry {key}={value!r}")
        return prices

    def flush(self) -> None:
        """Rewrite the whole file via a temp file + os.replace. Caller holds the lock."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=".price_cache.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._prices, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Flushed {len(self._prices)} cached prices to {self.path}")
