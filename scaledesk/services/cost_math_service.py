from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from scaledesk.errors import InvalidLineItem, ValidationError

if TYPE_CHECKING:
    from scaledesk.services.entities import SparePart

TAX_RATE = Decimal('0.10')
CENTS = Decimal('0.01')
ZERO = Decimal('0.00')

CURRENCY_CODE_RE = re.compile(r'^[A-Z]{3}$')

# (prefix, suffix) per ISO currency code; anything else renders as "<CODE> 1,234.00".
CURRENCY_FORMATS: dict[str, tuple[str, str]] = {
    'AED': ('AED ', ''),
    'USD': ('$', ''),
    'EUR': ('€', ''),
    'GBP': ('£', ''),
    'INR': ('₹', ''),
    'SAR': ('SAR ', ''),
    'OMR': ('OMR ', ''),
}


@dataclass(frozen=True)
class CostBreakdown:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def _validated_line(part: SparePart, index: int | None = None) -> tuple[Decimal, Decimal]:
    label = 'spare_parts' if index is None else f'spare_parts[{index}]'
    quantity = part.quantity
    unit_price = part.unit_price

    if isinstance(quantity, bool) or not isinstance(quantity, (int, Decimal)):
        raise InvalidLineItem(f'{label}.quantity', 'must be a whole number')
    qty = Decimal(quantity)
    if not qty.is_finite() or qty != qty.to_integral_value():
        raise InvalidLineItem(f'{label}.quantity', 'must be a whole number')
    if qty <= 0:
        raise InvalidLineItem(f'{label}.quantity', 'must be greater than zero')

    if isinstance(unit_price, bool) or not isinstance(unit_price, (int, Decimal)):
        raise InvalidLineItem(f'{label}.unit_price', 'must be a decimal amount')
    price = Decimal(unit_price)
    if not price.is_finite():
        raise InvalidLineItem(f'{label}.unit_price', 'must be a finite number')
    if price < 0:
        raise InvalidLineItem(f'{label}.unit_price', 'cannot be negative')
    return qty, price


def line_total(part: SparePart) -> Decimal:
    qty, price = _validated_line(part)
    return round_money(qty * price)


def aggregate(parts: Iterable[SparePart], *, tax_rate: Decimal = TAX_RATE) -> CostBreakdown:
    if tax_rate < 0:
        raise ValueError('Tax rate cannot be negative')

    subtotal = ZERO
    for idx, part in enumerate(parts):
        qty, price = _validated_line(part, idx)
        # Each line is rounded where it is stored, so the subtotal matches the printed lines.
        subtotal += round_money(qty * price)

    tax = round_money(subtotal * tax_rate)
    return CostBreakdown(subtotal=subtotal, tax=tax, total=subtotal + tax)


def format_currency(amount: Decimal | int, currency_code: str) -> str:
    code = (currency_code or '').strip().upper()
    if not CURRENCY_CODE_RE.match(code):
        raise ValidationError('currency_code', f'invalid currency code {currency_code!r}')
    if isinstance(amount, bool) or not isinstance(amount, (int, Decimal)):
        raise ValidationError('amount', 'must be a decimal amount')
    value = Decimal(amount)
    if not value.is_finite():
        raise ValidationError('amount', 'must be a finite number')

    rounded = round_money(value)
    prefix, suffix = CURRENCY_FORMATS.get(code, (f'{code} ', ''))
    sign = '-' if rounded < 0 else ''
    return f'{sign}{prefix}{abs(rounded):,.2f}{suffix}'
