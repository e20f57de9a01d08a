"""
Exchange rates relative to INR.

Rates are "units of currency X per 1 INR", as returned by the public rate API.
The service refreshes them at most once per `FX_CACHE_SECONDS`; when a refresh
fails it keeps serving the last fetched rates, and before any fetch has ever
succeeded it serves a built-in approximate table. Conversions never raise: an
unknown currency or an unexpected error converts 1:1 and logs a warning.
"""

import json
import time
import urllib.error
import urllib.request
from typing import Callable, Optional

from .config import settings
from .jsonlog import json_log
from .payment_guards import money

BASE_CURRENCY = "INR"

# 1 INR = x units. Only used until the first successful fetch.
FALLBACK_RATES: dict[str, float] = {
    "INR": 1.0,
    "USD": 0.012,
    "EUR": 0.011,
    "GBP": 0.0094,
    "JPY": 1.8,
    "CAD": 0.016,
    "AUD": 0.018,
    "CNY": 0.085,
    "SGD": 0.016,
    "HKD": 0.094,
    "MXN": 0.21,
    "BRL": 0.065,
    "ZAR": 0.22,
    "AED": 0.044,
    "SAR": 0.045,
}

COUNTRY_CURRENCIES: dict[str, str] = {
    "US": "USD",
    "IN": "INR",
    "GB": "GBP",
    "DE": "EUR",
    "FR": "EUR",
    "IT": "EUR",
    "ES": "EUR",
    "NL": "EUR",
    "CA": "CAD",
    "AU": "AUD",
    "JP": "JPY",
    "CN": "CNY",
    "SG": "SGD",
    "HK": "HKD",
    "MX": "MXN",
    "BR": "BRL",
    "ZA": "ZAR",
    "AE": "AED",
    "SA": "SAR",
}


def currency_for_country(country: Optional[str]) -> str:
    return COUNTRY_CURRENCIES.get(str(country or "").strip().upper(), "USD")


def _http_get_json(url: str, timeout: float) -> dict:
    req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise RuntimeError(f"rate API HTTP {getattr(e, 'code', '?')}") from e


def parse_rates(payload: dict) -> dict[str, float]:
    raw = payload.get("rates") if isinstance(payload, dict) else None
    if not isinstance(raw, dict):
        raise ValueError("invalid rate API response: no rates")
    rates = {BASE_CURRENCY: 1.0}
    for code, rate in raw.items():
        if code == BASE_CURRENCY or isinstance(rate, bool) or not isinstance(rate, (int, float)):
            continue
        if rate > 0:
            rates[str(code).upper()] = float(rate)
    return rates


class ExchangeRateService:
    def __init__(
        self,
        fetch_json: Optional[Callable[[str, float], dict]] = None,
        clock: Callable[[], float] = time.time,
        api_url: Optional[str] = None,
        cache_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        retry_seconds: Optional[float] = None,
    ):
        self._fetch_json = fetch_json or _http_get_json
        self._clock = clock
        self.api_url = api_url or settings.fx_api_url
        self.cache_seconds = settings.fx_cache_seconds if cache_seconds is None else cache_seconds
        self.timeout_seconds = settings.fx_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.retry_seconds = settings.fx_retry_seconds if retry_seconds is None else retry_seconds
        self._rates: dict[str, float] = {}
        self._last_update = 0.0
        self._retry_after = 0.0

    @property
    def last_update(self) -> float:
        return self._last_update

    def _is_fresh(self) -> bool:
        return bool(self._rates) and (self._clock() - self._last_update) < self.cache_seconds

    def get_rates(self) -> dict[str, float]:
        if self._is_fresh():
            return self._rates
        # After a failed fetch, serve the last good (or built-in) rates until the retry window passes.
        if self._clock() < self._retry_after:
            return self._rates if self._rates else dict(FALLBACK_RATES)
        try:
            rates = parse_rates(self._fetch_json(self.api_url, self.timeout_seconds))
        except Exception as exc:
            self._retry_after = self._clock() + self.retry_seconds
            source = "cache" if self._rates else "fallback"
            json_log("warning", "fx.fetch_failed", url=self.api_url, error=str(exc), source=source)
            return self._rates if self._rates else dict(FALLBACK_RATES)
        self._rates = rates
        self._last_update = self._clock()
        json_log("info", "fx.rates_refreshed", currencies=len(rates))
        return rates

    def _rate_for(self, currency: str) -> Optional[float]:
        try:
            rate = self.get_rates().get(currency)
        except Exception as exc:
            json_log("warning", "fx.rates_unavailable", currency=currency, error=str(exc))
            return None
        if not rate or rate <= 0:
            json_log("warning", "fx.rate_missing", currency=currency)
            return None
        return rate

    def convert_to_inr(self, amount, from_currency: str) -> tuple[float, float]:
        """Returns (amount_in_inr, rate applied per unit of `from_currency`)."""
        amount = money(amount)
        code = str(from_currency or "").upper()
        if code == BASE_CURRENCY:
            return amount, 1.0
        rate = self._rate_for(code)
        if rate is None:
            return amount, 1.0
        return amount / rate, 1.0 / rate

    def convert_from_inr(self, amount_inr, to_currency: str) -> tuple[float, float]:
        """Returns (converted_amount, rate applied per INR)."""
        amount_inr = money(amount_inr)
        code = str(to_currency or "").upper()
        if code == BASE_CURRENCY:
            return amount_inr, 1.0
        rate = self._rate_for(code)
        if rate is None:
            return amount_inr, 1.0
        return amount_inr * rate, rate


_service: Optional[ExchangeRateService] = None


def get_exchange_rate_service() -> ExchangeRateService:
    global _service
    if _service is None:
        _service = ExchangeRateService()
    return _service
