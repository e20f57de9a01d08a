from fastapi import APIRouter, Query

from ..exchange_rates import BASE_CURRENCY, currency_for_country, get_exchange_rate_service
from ..validation import CountryCode, CurrencyCode

router = APIRouter(prefix="/fx", tags=["fx"])


@router.get("/rates")
def get_rates():
    svc = get_exchange_rate_service()
    return {"base": BASE_CURRENCY, "rates": svc.get_rates(), "last_update": svc.last_update}


@router.get("/convert")
def convert(
    amount: float = Query(...),
    currency: CurrencyCode = Query(...),
    direction: str = Query(default="to_inr", pattern="^(to_inr|from_inr)$"),
):
    svc = get_exchange_rate_service()
    if direction == "to_inr":
        converted, rate = svc.convert_to_inr(amount, currency)
    else:
        converted, rate = svc.convert_from_inr(amount, currency)
    return {"amount": amount, "currency": currency, "direction": direction, "converted": converted, "rate": rate}


@router.get("/currency-for-country")
def country_currency(country: CountryCode = Query(...)):
    return {"country": country, "currency": currency_for_country(country)}
