from datetime import datetime, timedelta, timezone

import pytest
import requests

from glimmr.db import get_cached_rates, get_rate_attempts, save_diamond_pricing, save_rate
from glimmr.providers import metals_api
from glimmr.providers.base import MetalRateProvider
from glimmr.providers.metals_api import (
    SYMBOLS,
    TROY_OZ_TO_GRAMS,
    GoldAPIProvider,
    MetalPriceAPIProvider,
    capture_rate_snapshot,
    get_rates_with_cache,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.responses.pop(0)


class StubProvider(MetalRateProvider):
    provider_name = "stub"

    def __init__(self, rates=None, error=None):
        self.rates = rates or {}
        self.error = error
        self.calls = 0

    def fetch_latest_inr_per_gram(self, symbols):
        self.calls += 1
        if self.error:
            raise self.error
        return {symbol: value for symbol, value in self.rates.items() if symbol in symbols}


@pytest.fixture(autouse=True)
def _no_base_url_override(monkeypatch):
    monkeypatch.delenv("GOLDAPI_BASE_URL", raising=False)


def test_goldapi_prefers_per_gram_field():
    session = FakeSession([FakeResponse({"currency": "INR", "price": 200000, "price_gram_24k": 6500.5})])
    provider = GoldAPIProvider(api_token="token", session=session)

    assert provider.fetch_latest_inr_per_gram(["XAU"]) == {"XAU": 6500.5}
    url, kwargs = session.calls[0]
    assert url == "https://www.goldapi.io/api/XAU/INR"
    assert kwargs["headers"]["x-access-token"] == "token"


def test_goldapi_converts_ounce_price_to_grams():
    session = FakeSession([FakeResponse({"currency": "INR", "price": 85 * TROY_OZ_TO_GRAMS})])
    provider = GoldAPIProvider(api_token="token", session=session)

    assert provider.fetch_latest_inr_per_gram(["XAG"])["XAG"] == pytest.approx(85)


def test_goldapi_falls_back_to_dated_endpoint():
    session = FakeSession(
        [FakeResponse({}, status_code=503), FakeResponse({"currency": "INR", "price_gram_24k": 6400})]
    )
    provider = GoldAPIProvider(api_token="token", session=session)

    assert provider.fetch_latest_inr_per_gram(["XAU"]) == {"XAU": 6400}
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    assert session.calls[1][0] == f"https://www.goldapi.io/api/XAU/INR/{today}"


def test_goldapi_raises_when_both_endpoints_fail():
    session = FakeSession([FakeResponse({}, status_code=500), FakeResponse({}, status_code=500)])
    provider = GoldAPIProvider(api_token="token", session=session)

    with pytest.raises(RuntimeError, match="XAU"):
        provider.fetch_latest_inr_per_gram(["XAU"])


@pytest.mark.parametrize(
    "payload",
    [
        {"currency": "USD", "price_gram_24k": 80},
        {"currency": "INR", "price": -5},
        {"currency": "INR"},
        {"error": "Invalid API key"},
    ],
)
def test_goldapi_rejects_unusable_payloads(payload):
    provider = GoldAPIProvider(api_token="token", session=FakeSession([FakeResponse(payload)]))
    with pytest.raises(RuntimeError):
        provider.fetch_latest_inr_per_gram(["XAU"])


def test_goldapi_requires_token(monkeypatch):
    monkeypatch.delenv("GOLDAPI_TOKEN", raising=False)
    provider = GoldAPIProvider(session=FakeSession([]))
    with pytest.raises(RuntimeError, match="GOLDAPI_TOKEN"):
        provider.fetch_latest_inr_per_gram(["XAU"])


def test_metalpriceapi_inverts_rates():
    ounces_per_rupee = 1 / (6500 * TROY_OZ_TO_GRAMS)
    session = FakeSession([FakeResponse({"success": True, "rates": {"XAU": ounces_per_rupee}})])
    provider = MetalPriceAPIProvider(api_key="key", session=session)

    result = provider.fetch_latest_inr_per_gram(["XAU", "XAG"])

    assert set(result) == {"XAU"}
    assert result["XAU"] == pytest.approx(6500)
    assert session.calls[0][1]["params"]["base"] == "INR"


def test_build_provider_from_env(monkeypatch):
    monkeypatch.setenv("PRICE_PROVIDER", "metalpriceapi")
    assert isinstance(metals_api._build_provider_from_env(), MetalPriceAPIProvider)

    monkeypatch.setenv("PRICE_PROVIDER", "unknown")
    with pytest.raises(RuntimeError):
        metals_api._build_provider_from_env()


def _use_provider(monkeypatch, provider):
    monkeypatch.setattr(metals_api, "_build_provider_from_env", lambda troy_oz_to_grams=TROY_OZ_TO_GRAMS: provider)


def test_fresh_cache_skips_provider(conn, monkeypatch):
    provider = StubProvider({"XAU": 7000.0})
    _use_provider(monkeypatch, provider)
    save_rate(conn, "XAU", 6500.0, "goldapi")

    cached, warning = get_rates_with_cache(conn, ["XAU"])

    assert provider.calls == 0
    assert warning is None
    assert cached["XAU"]["price_inr_per_gram"] == 6500.0


def test_stale_cache_refreshes(conn, monkeypatch):
    provider = StubProvider({"XAU": 7000.0, "XAG": 90.0})
    _use_provider(monkeypatch, provider)
    stale = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()
    save_rate(conn, "XAU", 6500.0, "goldapi")
    conn.execute("UPDATE metal_rates SET fetched_at = ? WHERE symbol = 'XAU'", (stale,))

    cached, warning = get_rates_with_cache(conn, ["XAU", "XAG"])

    assert provider.calls == 1
    assert warning is None
    assert cached["XAU"]["price_inr_per_gram"] == 7000.0
    assert cached["XAG"]["provider"] == "stub"


def test_provider_failure_keeps_cached_rates(conn, monkeypatch):
    _use_provider(monkeypatch, StubProvider(error=RuntimeError("quota exceeded")))
    save_rate(conn, "XAU", 6500.0, "goldapi")

    cached, warning = get_rates_with_cache(conn, ["XAU"], force_refresh=True)

    assert cached["XAU"]["price_inr_per_gram"] == 6500.0
    assert "Using cached rates" in warning
    assert "quota exceeded" in warning


def test_provider_failure_without_cache_has_no_fallback(conn, monkeypatch):
    _use_provider(monkeypatch, StubProvider(error=requests.ConnectionError("offline")))

    cached, warning = get_rates_with_cache(conn, ["XAU"])

    assert cached == {}
    assert "no cached rates yet" in warning
    assert get_cached_rates(conn, ["XAU"]) == {}


def test_capture_rate_snapshot(conn, monkeypatch):
    _use_provider(monkeypatch, StubProvider({"XAU": 6500.0}))
    save_diamond_pricing(conn, {"base_rate_per_carat": 50000})

    snapshot, warning = capture_rate_snapshot(conn)

    assert "XAG, XPT" in warning
    assert snapshot.gold_per_gram == 6500.0
    assert snapshot.silver_per_gram is None
    assert snapshot.platinum_per_gram is None
    assert snapshot.diamond_base_rate_per_carat == 50000
    assert snapshot.clarity_multipliers["FL"] == 1.5
    assert snapshot.timestamp == get_cached_rates(conn, ["XAU"])["XAU"]["fetched_at"]


def _gold_silver_then_platinum_outage():
    return FakeSession(
        [
            FakeResponse({"currency": "INR", "price_gram_24k": 6500}),
            FakeResponse({"currency": "INR", "price_gram_24k": 85}),
            FakeResponse({}, status_code=500),
            FakeResponse({}, status_code=500),
        ]
    )


def test_goldapi_keeps_rates_when_one_symbol_fails():
    provider = GoldAPIProvider(api_token="token", session=_gold_silver_then_platinum_outage())

    assert provider.fetch_latest_inr_per_gram(["XAU", "XAG", "XPT"]) == {"XAU": 6500, "XAG": 85}


def test_goldapi_skips_unusable_payload_for_one_symbol():
    session = FakeSession(
        [
            FakeResponse({"currency": "INR", "price_gram_24k": 6500}),
            FakeResponse({"error": "Symbol not supported"}),
        ]
    )
    provider = GoldAPIProvider(api_token="token", session=session)

    assert provider.fetch_latest_inr_per_gram(["XAU", "XPT"]) == {"XAU": 6500}


def test_platinum_outage_still_caches_gold_and_silver(conn, monkeypatch):
    provider = GoldAPIProvider(api_token="token", session=_gold_silver_then_platinum_outage())
    _use_provider(monkeypatch, provider)

    cached, warning = get_rates_with_cache(conn, SYMBOLS)

    assert "XAU" in cached
    assert cached["XAU"]["price_inr_per_gram"] == 6500
    assert cached["XAG"]["price_inr_per_gram"] == 85
    assert "XPT" not in cached
    assert "XPT" in warning


def test_symbol_the_provider_never_returns_is_fetched_once_per_ttl(conn, monkeypatch):
    provider = StubProvider({"XAU": 6500.0, "XAG": 85.0})
    _use_provider(monkeypatch, provider)

    for _ in range(5):
        cached, _warning = get_rates_with_cache(conn, SYMBOLS)

    assert provider.calls == 1
    assert set(cached) == {"XAU", "XAG"}
    assert set(get_rate_attempts(conn, SYMBOLS)) == set(SYMBOLS)


def test_failed_refresh_is_not_retried_within_ttl(conn, monkeypatch):
    provider = StubProvider(error=requests.ConnectionError("offline"))
    _use_provider(monkeypatch, provider)

    get_rates_with_cache(conn, ["XAU"])
    get_rates_with_cache(conn, ["XAU"])

    assert provider.calls == 1


def test_missing_symbol_is_retried_after_ttl(conn, monkeypatch):
    provider = StubProvider({"XAU": 6500.0})
    _use_provider(monkeypatch, provider)
    get_rates_with_cache(conn, ["XAU", "XPT"])

    old = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()
    conn.execute("UPDATE rate_fetch_attempts SET attempted_at = ? WHERE symbol = 'XPT'", (old,))
    get_rates_with_cache(conn, ["XAU", "XPT"])

    assert provider.calls == 2


def test_force_refresh_ignores_recent_attempt(conn, monkeypatch):
    provider = StubProvider({"XAU": 6500.0})
    _use_provider(monkeypatch, provider)

    get_rates_with_cache(conn, ["XAU"])
    get_rates_with_cache(conn, ["XAU"], force_refresh=True)

    assert provider.calls == 2
