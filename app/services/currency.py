from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.core.errors import ValidationFailed

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_CENT = Decimal("0.01")


def normalize_currency(code: str | None, default: str = "USD") -> str:
    value = (code or default).strip().upper()
    if not _CURRENCY_RE.match(value):
        raise ValidationFailed(f"Invalid currency code: {code!r}")
    return value


def validate_amount(amount) -> Decimal:
    """Positive, at most two decimal places; never rounded."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValidationFailed("Amount must be greater than zero")
    if value.as_tuple().exponent < -2:
        raise ValidationFailed("Amount cannot have more than two decimal places")
    # lossless: only pads to cents
    return value.quantize(_CENT)


def convert(
    amount: Decimal, currency: str, target: str, rates: Mapping[str, float]
) -> Decimal | None:
    """
    Convert with a rate table expressed as units of currency per one unit of
    the reference currency. None when either side is missing from the table.
    """
    if currency == target:
        return Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    src = rates.get(currency)
    dst = rates.get(target)
    if not src or not dst:
        return None
    value = Decimal(amount) / Decimal(str(src)) * Decimal(str(dst))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass
class ConvertedTotal:
    currency: str
    total: Decimal = Decimal("0.00")
    by_currency: dict[str, Decimal] = field(default_factory=dict)
    # amounts whose currency has no rate; kept out of the total
    unconverted: dict[str, Decimal] = field(default_factory=dict)


def total_in(
    amounts: Iterable[tuple[Decimal, str]],
    target: str,
    rates: Mapping[str, float],
) -> ConvertedTotal:
    out = ConvertedTotal(currency=target)
    for amount, currency in amounts:
        amount = Decimal(amount)
        out.by_currency[currency] = out.by_currency.get(currency, Decimal("0")) + amount
        converted = convert(amount, currency, target, rates)
        if converted is None:
            out.unconverted[currency] = (
                out.unconverted.get(currency, Decimal("0")) + amount
            )
            continue
        out.total += converted
    out.total = out.total.quantize(_CENT, rounding=ROUND_HALF_UP)
    return out
