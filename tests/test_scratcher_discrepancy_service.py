from __future__ import annotations

import csv
import unittest
from datetime import date
from decimal import Decimal
from io import StringIO

from app.models import PrincipalRole
from app.services.scratcher_discrepancy_service import discrepancies_csv, list_discrepancies
from app.services.scratcher_pack_service import activate_pack
from app.services.scratcher_settings_service import get_variance_threshold, set_variance_threshold
from app.services.scratcher_slot_service import create_slot
from app.services.scratcher_snapshot_service import SnapshotItemInput, record_snapshot
from tests.support import add_principal, add_report, add_store, make_session, product_for


class ScratcherDiscrepancyServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.manager = add_principal(self.db, username='manager', role=PrincipalRole.MANAGER)
        self.clerk = add_principal(self.db, username='clerk', role=PrincipalRole.STORE, store_id=self.store.id)
        self.slot = create_slot(self.db, store_id=self.store.id, slot_number=1)
        activate_pack(
            self.db,
            slot_id=self.slot.id,
            product_id=product_for(self.db, '5').id,
            pack_code=None,
            start_ticket='001',
            receipt_file_id='file-1',
            acting_principal_id=self.manager.id,
        )

    def tearDown(self) -> None:
        self.db.close()

    def _shift(self, scr_amount: str, *, report_date: date = date(2026, 3, 2), with_start: bool = True):
        report = add_report(
            self.db,
            store_id=self.store.id,
            principal_id=self.clerk.id,
            scr_amount=Decimal(scr_amount),
            report_date=report_date,
        )
        for kind, value in (('start', '010'), ('end', '025')):
            if kind == 'start' and not with_start:
                continue
            record_snapshot(
                self.db,
                shift_report_id=report.id,
                store_id=self.store.id,
                employee_principal_id=self.clerk.id,
                snapshot_type=kind,
                items=[SnapshotItemInput(slot_id=self.slot.id, ticket_value=value)],
            )
        return report

    def test_threshold_decides_listing(self) -> None:
        # Expected sale is $75.00 in every shift below.
        over = self._shift('100.00')
        self._shift('85.00')

        rows = list_discrepancies(self.db, store_id=self.store.id)

        self.assertEqual([row['shift_report_id'] for row in rows], [over.id])
        self.assertEqual(rows[0]['variance_value'], Decimal('25.00'))
        self.assertEqual(rows[0]['employee_name'], 'Jordan')
        self.assertEqual(rows[0]['report_date'], date(2026, 3, 2))
        self.assertTrue(rows[0]['over_threshold'])

    def test_store_threshold_overrides_default(self) -> None:
        self.assertEqual(get_variance_threshold(self.db, store_id=self.store.id), Decimal('20.00'))
        set_variance_threshold(self.db, store_id=self.store.id, threshold=Decimal('30'), principal_id=self.manager.id)

        self._shift('100.00')

        self.assertEqual(list_discrepancies(self.db, store_id=self.store.id), [])

    def test_negative_threshold_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            set_variance_threshold(self.db, store_id=self.store.id, threshold=Decimal('-1'), principal_id=self.manager.id)

    def test_blocked_shift_is_listed_without_money(self) -> None:
        blocked = self._shift('75.00', with_start=False)

        rows = list_discrepancies(self.db, store_id=self.store.id)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['shift_report_id'], blocked.id)
        self.assertEqual(rows[0]['status'], 'BLOCKED')
        self.assertIsNone(rows[0]['variance_value'])
        self.assertIsNone(rows[0]['expected_total_value'])
        self.assertIn('missing_start_snapshot', rows[0]['flags'])

    def test_date_range_filters_on_report_date(self) -> None:
        early = self._shift('100.00', report_date=date(2026, 3, 1))
        late = self._shift('100.00', report_date=date(2026, 3, 9))

        in_range = list_discrepancies(self.db, store_id=self.store.id, date_from=date(2026, 3, 5))
        everything = list_discrepancies(self.db, store_id=self.store.id)

        self.assertEqual([row['shift_report_id'] for row in in_range], [late.id])
        self.assertEqual([row['shift_report_id'] for row in everything], [late.id, early.id])

    def test_csv_export_leaves_blocked_money_blank(self) -> None:
        self._shift('100.00')
        self._shift('75.00', report_date=date(2026, 3, 3), with_start=False)

        parsed = list(csv.reader(StringIO(discrepancies_csv(list_discrepancies(self.db, store_id=self.store.id)))))

        self.assertEqual(parsed[0][0], 'Report Date')
        blocked, flagged = parsed[1], parsed[2]
        self.assertEqual(blocked[2], 'BLOCKED')
        self.assertEqual(blocked[6], '')
        self.assertEqual(flagged[6], '25.00')


if __name__ == '__main__':
    unittest.main()
