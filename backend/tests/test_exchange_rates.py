import pytest

from backend.app.exchange_rates import FALLBACK_RATES, ExchangeRateService, currency_for_country, parse_rates


class FakeFetcher:
    def __init__(self, payload=None, error=None):
        self.payload = payload or {"base": "INR", "rates": {"INR": 1, "USD": 0.0125, "EUR": 0.011}}
        self.error = error
        self.calls = []

    def __call__(self, url, timeout):
        self.calls.append((url, timeout))
        if self.error:
            raise self.error
        return self.payload


class FakeClock:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def _svc(fetcher, clock=None):
    return ExchangeRateService(fetch_json=fetcher, clock=clock or FakeClock(), api_url="http://rates.test/INR", cache_seconds=3600, timeout_seconds=10)


def test_convert_to_and_from_inr():
    svc = _svc(FakeFetcher())
    amount, rate = svc.convert_to_inr(100, "USD")
    assert amount == pytest.approx(8000)
    assert rate == pytest.approx(80)

    amount, rate = svc.convert_from_inr(8000, "usd")
    assert amount == pytest.approx(100)
    assert rate == 0.0125


def test_inr_passes_through_without_fetch():
    fetcher = FakeFetcher()
    svc = _svc(fetcher)
    assert svc.convert_to_inr(250, "INR") == (250, 1.0)
    assert svc.convert_from_inr(250, "INR") == (250, 1.0)
    assert fetcher.calls == []


def test_rates_are_cached_for_ttl():
    fetcher = FakeFetcher()
    clock = FakeClock()
    svc = _svc(fetcher, clock)

    svc.convert_to_inr(1, "USD")
    clock.t += 3599
    svc.convert_to_inr(1, "EUR")
    assert len(fetcher.calls) == 1
    assert fetcher.calls[0] == ("http://rates.test/INR", 10)

    clock.t += 2
    svc.convert_to_inr(1, "USD")
    assert len(fetcher.calls) == 2


def test_fetch_failure_before_first_success_uses_fallback_table():
    svc = _svc(FakeFetcher(error=TimeoutError("timed out")))
    amount, rate = svc.convert_from_inr(1000, "USD")
    assert rate == FALLBACK_RATES["USD"]
    assert amount == pytest.approx(1000 * FALLBACK_RATES["USD"])


def test_fetch_failure_after_success_keeps_last_rates():
    fetcher = FakeFetcher()
    clock = FakeClock()
    svc = _svc(fetcher, clock)
    svc.get_rates()

    fetcher.error = OSError("network down")
    clock.t += 7200
    assert svc.get_rates()["USD"] == 0.0125


def test_failed_refresh_backs_off_before_retrying():
    fetcher = FakeFetcher()
    clock = FakeClock()
    svc = ExchangeRateService(
        fetch_json=fetcher, clock=clock, api_url="http://rates.test/INR", cache_seconds=3600, timeout_seconds=10, retry_seconds=300
    )
    svc.get_rates()

    fetcher.error = OSError("network down")
    clock.t += 7200
    for _ in range(5):
        assert svc.convert_to_inr(1, "USD")[1] == pytest.approx(80)
    assert len(fetcher.calls) == 2

    clock.t += 301
    fetcher.error = None
    svc.get_rates()
    assert len(fetcher.calls) == 3
    assert svc.last_update == clock.t


def test_unknown_currency_degrades_to_one_to_one():
    svc = _svc(FakeFetcher())
    assert svc.convert_to_inr(42, "XYZ") == (42, 1.0)
    assert svc.convert_from_inr(42, "XYZ") == (42, 1.0)


def test_parse_rates_rejects_payload_without_rates():
    with pytest.raises(ValueError):
        parse_rates({"result": "error"})
    assert parse_rates({"rates": {"USD": 0.012, "BAD": "x", "ZERO": 0}}) == {"INR": 1.0, "USD": 0.012}


def test_currency_for_country():
    assert currency_for_country("in") == "INR"
    assert currency_for_country("DE") == "EUR"
    assert currency_for_country("ZZ") == "USD"
    assert currency_for_country(None) == "USD"
