import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from glimmr.db import (
    get_all_settings,
    get_cached_rates,
    get_diamond_pricing,
    get_rate_attempts,
    is_rate_fresh,
    record_rate_attempts,
    save_rate,
    utc_now_iso,
)
from glimmr.logger import get_logger
from glimmr.models import RateSnapshot
from glimmr.providers.base import MetalRateProvider

logger = get_logger(__name__)

TROY_OZ_TO_GRAMS = 31.1034768

# Provider symbol -> RateSnapshot field.
SYMBOL_FIELDS = {
    "XAU": "gold_per_gram",
    "XAG": "silver_per_gram",
    "XPT": "platinum_per_gram",
}
SYMBOLS = list(SYMBOL_FIELDS)


def _retrying_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        connect=2,
        read=2,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class GoldAPIProvider(MetalRateProvider):
    """
    Provider implementation for goldapi.io.

    GET https://www.goldapi.io/api/{symbol}/INR returns the spot price per
    troy ounce and, for most metals, a ready-made `price_gram_24k`. When the
    latest endpoint fails the dated endpoint for today is tried next.
    """

    provider_name = "goldapi"
    endpoint_base = "https://www.goldapi.io/api"

    def __init__(
        self,
        api_token: str | None = None,
        timeout_seconds: int = 10,
        troy_oz_to_grams: float = TROY_OZ_TO_GRAMS,
        session: requests.Session | None = None,
    ):
        self.api_token = api_token or os.getenv("GOLDAPI_TOKEN", "")
        self.timeout_seconds = timeout_seconds
        self.troy_oz_to_grams = troy_oz_to_grams
        self.base_url = (os.getenv("GOLDAPI_BASE_URL", "").strip() or self.endpoint_base).rstrip("/")
        self.session = session or _retrying_session()

    def _candidate_urls(self, symbol: str) -> list[str]:
        latest = f"{self.base_url}/{symbol}/INR"
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        return [latest, f"{latest}/{today}"]

    def _per_gram(self, symbol: str, payload: dict[str, Any]) -> float:
        if payload.get("error"):
            raise RuntimeError(f"Gold API error for {symbol}: {payload['error']}")

        currency = str(payload.get("currency", "INR")).upper()
        if currency != "INR":
            raise RuntimeError(f"Gold API returned {currency} for {symbol}. Expected INR pricing.")

        if payload.get("price_gram_24k"):
            per_gram = float(payload["price_gram_24k"])
        elif payload.get("price"):
            per_gram = float(payload["price"]) / self.troy_oz_to_grams
        else:
            raise RuntimeError(f"Missing price field for {symbol} from Gold API")

        if per_gram <= 0:
            raise RuntimeError(f"Invalid {symbol} price from Gold API")
        return per_gram

    def fetch_latest_inr_per_gram(self, symbols: list[str]) -> dict[str, float]:
        if not self.api_token:
            raise RuntimeError("Missing GOLDAPI_TOKEN in .env")

        headers = {"x-access-token": self.api_token, "Accept": "application/json"}

        result: dict[str, float] = {}
        failures: dict[str, str] = {}
        for symbol in symbols:
            payload: dict[str, Any] | None = None
            last_error: Exception | None = None
            for url in self._candidate_urls(symbol):
                try:
                    response = self.session.get(url, headers=headers, timeout=self.timeout_seconds)
                    response.raise_for_status()
                    payload = response.json()
                    break
                except (requests.RequestException, ValueError) as exc:
                    last_error = exc
                    logger.warning("Gold API request to %s failed: %s", url, exc)

            if payload is None:
                failures[symbol] = (
                    f"Gold API request failed for {symbol} on latest and dated URLs. Last error: {last_error}"
                )
                logger.warning(failures[symbol])
                continue

            try:
                result[symbol] = self._per_gram(symbol, payload)
            except RuntimeError as exc:
                failures[symbol] = str(exc)
                logger.warning("Skipping %s: %s", symbol, exc)

        # Partial results are returned; only a total failure raises.
        if failures and not result:
            raise RuntimeError("; ".join(failures.values()))
        return result


class MetalPriceAPIProvider(MetalRateProvider):
    """
    Provider implementation for metalpriceapi.com.

    With base=INR the endpoint returns troy ounces per rupee, so each rate is
    inverted to rupees per ounce and then divided down to a gram.
    """

    provider_name = "metalpriceapi"
    endpoint = "https://api.metalpriceapi.com/v1/latest"

    def __init__(
        self,
        api_key: str | None = None,
        timeout_seconds: int = 10,
        troy_oz_to_grams: float = TROY_OZ_TO_GRAMS,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key or os.getenv("METALPRICEAPI_KEY", "")
        self.timeout_seconds = timeout_seconds
        self.troy_oz_to_grams = troy_oz_to_grams
        self.session = session or _retrying_session()

    def fetch_latest_inr_per_gram(self, symbols: list[str]) -> dict[str, float]:
        if not self.api_key:
            raise RuntimeError("Missing METALPRICEAPI_KEY in .env")

        response = self.session.get(
            self.endpoint,
            params={
                "api_key": self.api_key,
                "base": "INR",
                "currencies": ",".join(symbols),
            },
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()

        payload: dict[str, Any] = response.json()
        if payload.get("success") is False:
            raise RuntimeError(payload.get("error", "Provider returned unsuccessful response"))

        rates = payload.get("rates", {})
        result: dict[str, float] = {}

        for symbol in symbols:
            rate = rates.get(symbol)
            if rate is None:
                continue
            if float(rate) <= 0:
                raise RuntimeError(f"Invalid {symbol} rate from provider")
            result[symbol] = (1 / float(rate)) / self.troy_oz_to_grams

        return result


def _build_provider_from_env(troy_oz_to_grams: float = TROY_OZ_TO_GRAMS) -> MetalRateProvider:
    provider_name = os.getenv("PRICE_PROVIDER", "goldapi").strip().lower()
    if provider_name == "metalpriceapi":
        return MetalPriceAPIProvider(troy_oz_to_grams=troy_oz_to_grams)
    if provider_name == "goldapi":
        return GoldAPIProvider(troy_oz_to_grams=troy_oz_to_grams)
    raise RuntimeError("Unsupported PRICE_PROVIDER. Use 'goldapi' or 'metalpriceapi'.")


def get_rates_with_cache(
    conn: sqlite3.Connection,
    symbols: list[str],
    force_refresh: bool = False,
) -> tuple[dict[str, sqlite3.Row], str | None]:
    """
    Returns latest rates from cache and refreshes stale data when needed.

    If the provider fails, cached values are kept and a warning is returned.
    Symbols the cache has never seen stay absent; there is no static fallback.
    The provider is asked at most once per TTL for a symbol, even when it
    keeps answering without that symbol.
    """
    settings = get_all_settings(conn)
    ttl = settings["price_cache_ttl_seconds"]
    cached = get_cached_rates(conn, symbols)
    attempts = get_rate_attempts(conn, symbols)

    need_refresh = force_refresh
    for symbol in symbols:
        row = cached.get(symbol)
        if row is not None and is_rate_fresh(row["fetched_at"], ttl):
            continue
        attempted_at = attempts.get(symbol)
        if attempted_at is None or not is_rate_fresh(attempted_at, ttl):
            need_refresh = True
            break

    warning = None
    if need_refresh:
        record_rate_attempts(conn, symbols)
        try:
            provider = _build_provider_from_env(settings["troy_oz_to_grams"])
            fresh = provider.fetch_latest_inr_per_gram(symbols)
            for symbol, value in fresh.items():
                save_rate(conn, symbol, value, provider.provider_name)
            cached = get_cached_rates(conn, symbols)
            logger.info("Refreshed %s rates from %s", ", ".join(sorted(fresh)), provider.provider_name)

            missing = [symbol for symbol in symbols if symbol not in fresh]
            if missing:
                warning = f"Rate API returned no rate for {', '.join(missing)}. Using cached values where available."
                logger.warning(warning)
        except (RuntimeError, requests.RequestException) as exc:
            if cached:
                warning = f"Rate API unavailable. Using cached rates. Details: {exc}"
            else:
                warning = f"Rate API unavailable and no cached rates yet. Details: {exc}"
            logger.warning(warning)

    return cached, warning


def capture_rate_snapshot(
    conn: sqlite3.Connection,
    force_refresh: bool = False,
) -> tuple[RateSnapshot, str | None]:
    """
    Reads current metal rates and the diamond pricing row into one immutable
    snapshot. Pass the snapshot to every calculation of a page or batch
    instead of re-reading rates mid-way.
    """
    cached, warning = get_rates_with_cache(conn, SYMBOLS, force_refresh=force_refresh)
    diamond = get_diamond_pricing(conn)

    metal_rates: dict[str, float | None] = {field: None for field in SYMBOL_FIELDS.values()}
    for symbol, field in SYMBOL_FIELDS.items():
        row = cached.get(symbol)
        if row is not None:
            metal_rates[field] = float(row["price_inr_per_gram"])

    fetched = [row["fetched_at"] for row in cached.values()]
    snapshot = RateSnapshot(
        **metal_rates,
        diamond_base_rate_per_carat=diamond["base_rate_per_carat"],
        timestamp=min(fetched) if fetched else utc_now_iso(),
        cut_multipliers=diamond["cut_multipliers"],
        color_multipliers=diamond["color_multipliers"],
        clarity_multipliers=diamond["clarity_multipliers"],
    )
    return snapshot, warning
