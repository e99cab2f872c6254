from __future__ import annotations

import unittest
from decimal import Decimal

from app.config import DEFAULT_PACK_SIZES
from app.services.scratcher_math_service import (
    BreakdownRow,
    PackSegment,
    compute_end_ticket,
    compute_slot_sale,
    compute_variance,
    pack_size_for_price,
    parse_ticket_number,
    price_key,
)


class ScratcherMathServiceTests(unittest.TestCase):
    def test_pack_size_lookup_by_face_value(self) -> None:
        self.assertEqual(pack_size_for_price(Decimal('40.00'), DEFAULT_PACK_SIZES), 30)
        self.assertEqual(pack_size_for_price(Decimal('10'), DEFAULT_PACK_SIZES), 50)
        self.assertEqual(pack_size_for_price(Decimal('5.00'), DEFAULT_PACK_SIZES), 80)
        self.assertEqual(pack_size_for_price(Decimal('1.00'), DEFAULT_PACK_SIZES), 240)
        self.assertIsNone(pack_size_for_price(Decimal('7.00'), DEFAULT_PACK_SIZES))

    def test_price_key_drops_trailing_zeros(self) -> None:
        self.assertEqual(price_key(Decimal('20.00')), '20')
        self.assertEqual(price_key(Decimal('2.50')), '2.5')

    def test_parse_ticket_number_rejects_non_digits(self) -> None:
        self.assertEqual(parse_ticket_number(' 007 '), 7)
        self.assertIsNone(parse_ticket_number(''))
        self.assertIsNone(parse_ticket_number(None))
        self.assertIsNone(parse_ticket_number('12a'))
        self.assertIsNone(parse_ticket_number('-3'))

    def test_parse_ticket_number_rejects_non_ascii_digits(self) -> None:
        for raw in ('0²0', '²', '٣'):
            self.assertIsNone(parse_ticket_number(raw))

        segment = PackSegment('pack-1', '001', '080', Decimal('5.00'))
        sale = compute_slot_sale('0²0', '025', [segment], jump_threshold=100)

        self.assertEqual(sale.sold, 0)
        self.assertEqual(sale.flags, ('invalid_ticket',))

    def test_end_ticket_keeps_start_width(self) -> None:
        self.assertEqual(compute_end_ticket('001', 80), '080')
        self.assertEqual(compute_end_ticket('100', 30), '129')
        self.assertIsNone(compute_end_ticket('001', None))

    def test_single_pack_sale_is_reading_difference(self) -> None:
        segment = PackSegment('pack-1', '001', '080', Decimal('5.00'))

        sale = compute_slot_sale('010', '025', [segment], jump_threshold=100)

        self.assertEqual(sale.sold, 15)
        self.assertEqual(sale.value, Decimal('75.00'))
        self.assertEqual(sale.flags, ())

    def test_negative_single_pack_sale_is_clamped_and_flagged(self) -> None:
        segment = PackSegment('pack-1', '001', '080', Decimal('5.00'))

        sale = compute_slot_sale('025', '010', [segment], jump_threshold=100)

        self.assertEqual(sale.sold, 0)
        self.assertEqual(sale.value, Decimal('0.00'))
        self.assertIn('negative_variance', sale.flags)

    def test_invalid_reading_is_flagged(self) -> None:
        segment = PackSegment('pack-1', '001', '080', Decimal('5.00'))

        sale = compute_slot_sale('01O', '025', [segment], jump_threshold=100)

        self.assertEqual(sale.sold, 0)
        self.assertEqual(sale.flags, ('invalid_ticket',))

    def test_large_jump_is_flagged(self) -> None:
        segment = PackSegment('pack-1', '001', '240', Decimal('1.00'))

        sale = compute_slot_sale('001', '150', [segment], jump_threshold=100)

        self.assertEqual(sale.sold, 149)
        self.assertIn('large_jump', sale.flags)

    def test_rollover_splits_sale_across_packs(self) -> None:
        segments = [
            PackSegment('pack-a', '100', '129', Decimal('20.00')),
            PackSegment('pack-b', '001', '049', Decimal('10.00')),
        ]

        sale = compute_slot_sale('110', '006', segments, jump_threshold=100)

        # 110..129 from the old pack, 001..005 from the new one.
        self.assertEqual(sale.segment_sold, (20, 5))
        self.assertEqual(sale.sold, 25)
        self.assertEqual(sale.value, Decimal('450.00'))
        self.assertIn('pack_rollover', sale.flags)

    def test_rollover_through_intermediate_pack_counts_full_pack(self) -> None:
        segments = [
            PackSegment('pack-a', '001', '030', Decimal('20.00')),
            PackSegment('pack-b', '001', '030', Decimal('20.00')),
            PackSegment('pack-c', '001', '030', Decimal('20.00')),
        ]

        sale = compute_slot_sale('021', '004', segments, jump_threshold=100)

        self.assertEqual(sale.segment_sold, (10, 30, 3))
        self.assertEqual(sale.sold, 43)
        self.assertEqual(sale.value, Decimal('860.00'))

    def test_rollover_with_unknown_pack_end_is_flagged(self) -> None:
        segments = [
            PackSegment('pack-a', '001', None, Decimal('7.00')),
            PackSegment('pack-b', '001', '080', Decimal('5.00')),
        ]

        sale = compute_slot_sale('021', '004', segments, jump_threshold=100)

        self.assertEqual(sale.segment_sold, (0, 3))
        self.assertIn('unknown_pack_size', sale.flags)

    def test_variance_sign_is_reported_minus_expected(self) -> None:
        self.assertEqual(compute_variance(Decimal('100.00'), Decimal('75.00')), Decimal('25.00'))
        self.assertEqual(compute_variance(Decimal('50.00'), Decimal('75.00')), Decimal('-25.00'))
        self.assertEqual(compute_variance(None, Decimal('75.00')), Decimal('-75.00'))

    def test_breakdown_row_json_shape(self) -> None:
        row = BreakdownRow(
            slot_id='slot-1',
            slot_number=1,
            start_ticket='010',
            end_ticket='025',
            sold=15,
            value=Decimal('75.00'),
            pack_ids=['pack-1'],
            segment_sold=[15],
        )

        raw = row.to_json()

        self.assertEqual(raw['value'], '75.00')
        self.assertEqual(raw['start_ticket'], '010')
        self.assertEqual(BreakdownRow.from_json(raw), row)


if __name__ == '__main__':
    unittest.main()
