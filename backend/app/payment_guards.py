from fastapi import HTTPException

# Tolerance for every "is this paid off" / "has this drifted" comparison on money.
MONEY_EPSILON = 0.01


def money(v) -> float:
    try:
        return float(v or 0)
    except (TypeError, ValueError):
        return 0.0


def round_money(v) -> float:
    return round(money(v), 2)


def is_settled(total, paid) -> bool:
    return abs(money(total) - money(paid)) < MONEY_EPSILON


def has_drifted(stored, authoritative) -> bool:
    return abs(money(stored) - money(authoritative)) > MONEY_EPSILON


def assert_positive_amount(amount, detail: str = "amount must be > 0"):
    if money(amount) <= 0:
        raise HTTPException(status_code=400, detail=detail)
