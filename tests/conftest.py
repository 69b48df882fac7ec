"""Shared fixtures: settings without delays, a scripted classifier backend, a fake sleeper."""

import json
from datetime import datetime, timezone
from typing import List

import pytest

from calltrack.config import Settings
from calltrack.services.types import Post


@pytest.fixture
def settings(tmp_path):
    return Settings(
        xai_api_key="test-key",
        coingecko_base_url="https://cg.test/api/v3",
        coingecko_api_key="",
        price_cache_path=str(tmp_path / "price_cache.json"),
        price_request_delay=2.0,
        classifier_batch_delay=1.0,
        price_backoff_base=2.0,
        price_max_attempts=3,
    )


class Sleeper:
    """Records requested sleeps instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return Sleeper()


class ScriptedBackend:
    """Classifier backend returning canned replies (or raising) in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: List[str] = []

    def complete(self, system: str, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "[]"
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def verdict_json(post_id, is_call=False, call_type="other", tickers=(), confidence=90,
                 sentiment="neutral", reasoning="test"):
    return {
        "post_id": post_id,
        "isCall": is_call,
        "callType": call_type,
        "confidence": confidence,
        "tickers": list(tickers),
        "sentiment": sentiment,
        "reasoning": reasoning,
    }


def reply_with(*items) -> str:
    return "Here is my analysis:\n" + json.dumps(list(items)) + "\nLet me know if you need more."


def make_post(post_id, text, created_at=None, username="trader1") -> Post:
    return Post(
        id=post_id,
        text=text,
        username=username,
        created_at=created_at or datetime(2025, 10, 22, 12, 19, 30, tzinfo=timezone.utc),
    )
