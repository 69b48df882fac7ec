"""Tests for the CoinGecko price resolver (mocked transport, no network)."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from calltrack.services.price_client import CoinGeckoClient, downsample, format_date
from calltrack.services.types import FailureReason
from calltrack.storage.price_cache import JsonFilePriceCache, PriceCache

CALL_DATE = datetime(2025, 10, 22, 12, 19, 30, tzinfo=timezone.utc)


def history_body(price):
    return {"id": "solana", "market_data": {"current_price": {"usd": price, "eur": price * 0.9}}}


class Provider:
    """Scripted CoinGecko: per-path queues of (status, body) or exceptions."""

    def __init__(self, **routes):
        self.routes = {k: list(v) for k, v in routes.items()}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for suffix, queue in self.routes.items():
            if path.endswith(suffix.replace("__", "/")):
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                status, body = item
                return httpx.Response(status, json=body)
        return httpx.Response(404, json={"error": "not found"})

    def count(self, fragment):
        return sum(1 for r in self.requests if fragment in r.url.path)


def make_client(provider, settings, sleeper, cache=None):
    http = httpx.Client(transport=httpx.MockTransport(provider))
    return CoinGeckoClient(cache if cache is not None else PriceCache(), settings=settings,
                           client=http, sleep=sleeper)


class TestHelpers:

    def test_format_date_dd_mm_yyyy(self):
        assert format_date(CALL_DATE) == "22-10-2025"

    def test_format_date_converts_to_utc(self):
        late = datetime(2025, 10, 22, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert format_date(late) == "23-10-2025"

    def test_format_date_accepts_date(self):
        assert format_date(CALL_DATE.date()) == "22-10-2025"

    def test_downsample_short_series_unchanged(self):
        values = [float(i) for i in range(50)]
        assert downsample(values) == values
        assert downsample([]) == []
        assert downsample([1.0]) == [1.0]

    def test_downsample_stride_rule(self):
        values = list(range(51))
        # stride = ceil(51 / 50) = 2
        assert downsample(values) == list(range(0, 51, 2))

        values = list(range(120))
        # stride = 3
        assert downsample(values) == list(range(0, 120, 3))

    @pytest.mark.parametrize("n", [1, 49, 50, 51, 99, 100, 101, 149, 151, 1000, 2017])
    def test_downsample_never_exceeds_50(self, n):
        result = downsample(list(range(n)))
        assert 1 <= len(result) <= 50
        assert result[0] == 0


class TestResolveProviderId:

    def test_known(self, settings, sleeper):
        client = make_client(Provider(), settings, sleeper)
        assert client.resolve_provider_id("$sol") == "solana"
        assert client.resolve_provider_id("JUPITER") == "jupiter-exchange-solana"

    def test_unknown_is_none(self, settings, sleeper):
        client = make_client(Provider(), settings, sleeper)
        assert client.resolve_provider_id("NOTACOIN") is None

    def test_canonical(self, settings, sleeper):
        client = make_client(Provider(), settings, sleeper)
        ticker = client.canonical("bitcoin")
        assert ticker.symbol == "BTC"
        assert ticker.provider_id == "bitcoin"


class TestHistoricalPrice:

    def test_success_and_request_shape(self, settings, sleeper):
        provider = Provider(history=[(200, history_body(185.5))])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert result.success
        assert result.price == 185.5
        assert result.date == "22-10-2025"
        assert result.coin_id == "solana"
        request = provider.requests[0]
        assert request.url.path == "/api/v3/coins/solana/history"
        assert request.url.params["date"] == "22-10-2025"

    def test_unknown_ticker_fails_without_request(self, settings, sleeper):
        provider = Provider()
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("NOTACOIN", CALL_DATE)

        assert not result.success
        assert result.reason == FailureReason.UNKNOWN_TICKER
        assert "NOTACOIN" in result.error
        assert provider.requests == []
        assert sleeper.calls == []

    def test_cache_roundtrip_skips_network(self, settings, sleeper):
        provider = Provider(history=[(200, history_body(185.5))])
        cache = PriceCache()
        client = make_client(provider, settings, sleeper, cache)

        first = client.historical_price("SOL", CALL_DATE)
        second = client.historical_price("SOL", CALL_DATE + timedelta(hours=3))

        assert first.price == second.price == 185.5
        assert provider.count("/history") == 1
        assert cache.get("solana-22-10-2025") == 185.5

    def test_jupiter_and_jup_share_cache_entry(self, settings, sleeper):
        provider = Provider(history=[(200, history_body(0.42))])
        cache = PriceCache()
        client = make_client(provider, settings, sleeper, cache)

        a = client.historical_price("JUPITER", CALL_DATE)
        b = client.historical_price("$jup", CALL_DATE)

        assert a.price == b.price == 0.42
        assert provider.count("/history") == 1
        assert list(cache.snapshot()) == ["jupiter-exchange-solana-22-10-2025"]

    def test_rate_limited_twice_then_success(self, settings, sleeper):
        provider = Provider(history=[(429, {}), (429, {}), (200, history_body(185.5))])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert result.success
        assert result.price == 185.5
        assert provider.count("/history") == 3
        assert sleeper.calls == [2.0, 4.0]

    def test_rate_limited_until_exhausted(self, settings, sleeper):
        provider = Provider(history=[(429, {})])
        cache = PriceCache()
        client = make_client(provider, settings, sleeper, cache)

        result = client.historical_price("SOL", CALL_DATE)

        assert not result.success
        assert result.reason == FailureReason.RATE_LIMITED
        assert result.status_code == 429
        assert "429" in result.error
        assert provider.count("/history") == 3
        assert sleeper.calls == [2.0, 4.0]
        assert len(cache) == 0

    def test_client_error_is_not_retried(self, settings, sleeper):
        provider = Provider(history=[(404, {"error": "coin not found"})])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert not result.success
        assert result.reason == FailureReason.HTTP_ERROR
        assert result.status_code == 404
        assert provider.count("/history") == 1
        assert sleeper.calls == []

    def test_server_error_is_retried(self, settings, sleeper):
        provider = Provider(history=[(503, {}), (200, history_body(3.5))])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert result.success
        assert sleeper.calls == [2.0]

    def test_transport_error_is_retried(self, settings, sleeper):
        provider = Provider(history=[httpx.ConnectError("connection refused"), (200, history_body(3.5))])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert result.success
        assert result.price == 3.5
        assert sleeper.calls == [2.0]

    def test_transport_error_exhausted_keeps_message(self, settings, sleeper):
        provider = Provider(history=[httpx.ReadTimeout("timed out")])
        client = make_client(provider, settings, sleeper)

        result = client.historical_price("SOL", CALL_DATE)

        assert not result.success
        assert result.reason == FailureReason.TRANSPORT_ERROR
        assert "timed out" in result.error

    def test_missing_market_data(self, settings, sleeper):
        provider = Provider(history=[(200, {"id": "solana"})])
        cache = PriceCache()
        client = make_client(provider, settings, sleeper, cache)

        result = client.historical_price("SOL", CALL_DATE)

        assert not result.success
        assert result.reason == FailureReason.NO_DATA
        assert len(cache) == 0

    def test_successful_fetch_is_persisted(self, settings, sleeper, tmp_path):
        path = tmp_path / "price_cache.json"
        provider = Provider(history=[(200, history_body(185.5))])
        client = make_client(provider, settings, sleeper, JsonFilePriceCache(path))

        client.historical_price("SOL", CALL_DATE)

        assert json.loads(path.read_text()) == {"solana-22-10-2025": 185.5}

    def test_demo_api_key_header(self, settings, sleeper):
        settings = settings.model_copy(update={"coingecko_api_key": "demo-123"})
        provider = Provider(history=[(200, history_body(1.0))])
        client = make_client(provider, settings, sleeper)

        client.historical_price("SOL", CALL_DATE)

        assert provider.requests[0].headers["x-cg-demo-api-key"] == "demo-123"


class TestCurrentPrice:

    def test_success(self, settings, sleeper):
        provider = Provider(simple__price=[(200, {"solana": {"usd": 201.25}})])
        client = make_client(provider, settings, sleeper)

        assert client.current_price("SOL") == 201.25
        assert provider.requests[0].url.params["ids"] == "solana"
        assert provider.requests[0].url.params["vs_currencies"] == "usd"

    def test_never_cached(self, settings, sleeper):
        provider = Provider(simple__price=[(200, {"solana": {"usd": 201.25}})])
        cache = PriceCache()
        client = make_client(provider, settings, sleeper, cache)

        client.current_price("SOL")
        client.current_price("SOL")

        assert provider.count("/simple/price") == 2
        assert len(cache) == 0

    def test_error_status_is_none(self, settings, sleeper):
        provider = Provider(simple__price=[(500, {})])
        client = make_client(provider, settings, sleeper)
        assert client.current_price("SOL") is None

    def test_transport_error_is_none(self, settings, sleeper):
        provider = Provider(simple__price=[httpx.ConnectError("down")])
        client = make_client(provider, settings, sleeper)
        assert client.current_price("SOL") is None

    def test_unknown_ticker_is_none(self, settings, sleeper):
        provider = Provider()
        client = make_client(provider, settings, sleeper)
        assert client.current_price("NOTACOIN") is None
        assert provider.requests == []

    def test_missing_coin_is_none(self, settings, sleeper):
        provider = Provider(simple__price=[(200, {})])
        client = make_client(provider, settings, sleeper)
        assert client.current_price("SOL") is None


class TestPriceComparison:

    def test_attaches_current_price(self, settings, sleeper):
        provider = Provider(
            history=[(200, history_body(100.0))],
            simple__price=[(200, {"solana": {"usd": 150.0}})],
        )
        client = make_client(provider, settings, sleeper)

        result = client.price_comparison("SOL", CALL_DATE)

        assert result.success
        assert result.price == 100.0
        assert result.current_price == 150.0
        quotes = result.quotes("SOL")
        assert [q.provenance for q in quotes] == ["historical", "current"]

    def test_short_circuits_on_historical_failure(self, settings, sleeper):
        provider = Provider(
            history=[(404, {})],
            simple__price=[(200, {"solana": {"usd": 150.0}})],
        )
        client = make_client(provider, settings, sleeper)

        result = client.price_comparison("SOL", CALL_DATE)

        assert not result.success
        assert result.current_price is None
        assert provider.count("/simple/price") == 0

    def test_missing_current_price(self, settings, sleeper):
        provider = Provider(
            history=[(200, history_body(100.0))],
            simple__price=[(500, {})],
        )
        client = make_client(provider, settings, sleeper)

        result = client.price_comparison("SOL", CALL_DATE)

        assert result.success
        assert result.current_price is None


class TestHistoricalSeries:

    def test_downsamples_range(self, settings, sleeper):
        samples = [[1700000000000 + i * 3600000, float(i)] for i in range(120)]
        provider = Provider(market_chart__range=[(200, {"prices": samples})])
        client = make_client(provider, settings, sleeper)
        end = CALL_DATE + timedelta(days=5)

        result = client.historical_series("SOL", CALL_DATE, end)

        assert result == [float(i) for i in range(0, 120, 3)]
        params = provider.requests[0].url.params
        assert params["vs_currency"] == "usd"
        assert int(params["from"]) == int(CALL_DATE.timestamp())
        assert int(params["to"]) == int(end.timestamp())

    def test_short_series_unchanged(self, settings, sleeper):
        provider = Provider(market_chart__range=[(200, {"prices": [[1, 1.0], [2, 2.0]]})])
        client = make_client(provider, settings, sleeper)
        assert client.historical_series("SOL", CALL_DATE, CALL_DATE) == [1.0, 2.0]

    def test_failure_is_empty(self, settings, sleeper):
        provider = Provider(market_chart__range=[(429, {})])
        client = make_client(provider, settings, sleeper)
        assert client.historical_series("SOL", CALL_DATE, CALL_DATE) == []
        assert sleeper.calls == []

    def test_unknown_ticker_is_empty(self, settings, sleeper):
        provider = Provider()
        client = make_client(provider, settings, sleeper)
        assert client.historical_series("NOTACOIN", CALL_DATE, CALL_DATE) == []
