from __future__ import annotations

import unittest
from decimal import Decimal

from scaledesk.errors import InvalidLineItem, ValidationError
from scaledesk.services.cost_math_service import CostBreakdown, aggregate, format_currency, line_total
from scaledesk.services.entities import SparePart


def _part(name: str, qty, price) -> SparePart:
    return SparePart(part_name=name, quantity=qty, unit_price=price)


class CostMathServiceTests(unittest.TestCase):
    def test_line_totals_and_aggregate_for_load_cell_job(self) -> None:
        parts = [_part('Load cell', 2, Decimal('150.00')), _part('Cable', 1, Decimal('45.50'))]

        self.assertEqual(line_total(parts[0]), Decimal('300.00'))
        self.assertEqual(line_total(parts[1]), Decimal('45.50'))

        result = aggregate(parts)
        self.assertEqual(result.subtotal, Decimal('345.50'))
        self.assertEqual(result.tax, Decimal('34.55'))
        self.assertEqual(result.total, Decimal('380.05'))

    def test_empty_parts_yield_zero_breakdown(self) -> None:
        self.assertEqual(aggregate([]), CostBreakdown(Decimal('0'), Decimal('0'), Decimal('0')))

    def test_subtotal_equals_sum_of_rounded_line_totals(self) -> None:
        parts = [
            _part('Spring', 3, Decimal('0.335')),
            _part('Screw', 7, Decimal('0.125')),
            _part('Bracket', 1, Decimal('12.005')),
        ]
        result = aggregate(parts)
        self.assertEqual(result.subtotal, sum((line_total(p) for p in parts), Decimal('0')))
        self.assertEqual(line_total(parts[0]), Decimal('1.01'))  # 1.005 rounds half-up
        self.assertEqual(line_total(parts[1]), Decimal('0.88'))  # 0.875 rounds half-up

    def test_tax_rate_is_configurable(self) -> None:
        result = aggregate([_part('Display', 1, Decimal('200.00'))], tax_rate=Decimal('0.05'))
        self.assertEqual(result.tax, Decimal('10.00'))
        self.assertEqual(result.total, Decimal('210.00'))

    def test_bad_quantities_raise_invalid_line_item(self) -> None:
        for qty in (0, -1):
            with self.subTest(qty=qty):
                with self.assertRaises(InvalidLineItem) as ctx:
                    aggregate([_part('Fuse', qty, Decimal('1.00'))])
                self.assertEqual(ctx.exception.field, 'spare_parts[0].quantity')

    def test_negative_or_non_finite_price_raises_invalid_line_item(self) -> None:
        for price in (Decimal('-0.01'), Decimal('NaN'), Decimal('Infinity')):
            with self.subTest(price=price):
                with self.assertRaises(InvalidLineItem):
                    aggregate([_part('OK', 1, Decimal('1.00')), _part('Fuse', 1, price)])

    def test_line_total_rejects_fractional_quantity(self) -> None:
        with self.assertRaises(InvalidLineItem):
            line_total(_part('Wire', Decimal('1.5'), Decimal('2.00')))

    def test_zero_price_is_allowed(self) -> None:
        self.assertEqual(line_total(_part('Warranty seal', 1, Decimal('0'))), Decimal('0.00'))

    def test_format_currency_is_deterministic_with_two_decimals(self) -> None:
        self.assertEqual(format_currency(Decimal('1234.5'), 'AED'), 'AED 1,234.50')
        self.assertEqual(format_currency(Decimal('380.05'), 'usd'), '$380.05')
        self.assertEqual(format_currency(Decimal('0'), 'AED'), 'AED 0.00')
        self.assertEqual(format_currency(Decimal('-5'), 'AED'), '-AED 5.00')
        self.assertEqual(format_currency(Decimal('9.999'), 'CHF'), 'CHF 10.00')
        self.assertEqual(format_currency(Decimal('345.50'), 'AED'), format_currency(Decimal('345.5'), 'AED'))

    def test_format_currency_rejects_bad_input(self) -> None:
        with self.assertRaises(ValidationError):
            format_currency(Decimal('1'), 'dollars')
        with self.assertRaises(ValidationError):
            format_currency(Decimal('NaN'), 'AED')


if __name__ == '__main__':
    unittest.main()
