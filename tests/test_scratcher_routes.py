from __future__ import annotations

import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from app.db import get_db
from app.main import app
from app.models import AuditLog, PrincipalRole, ScratcherPack, ShiftReport
from app.services.scratcher_slot_service import create_slot
from tests.support import add_principal, add_report, add_store, make_session, product_for


class ScratcherRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.store = add_store(self.db)
        self.other_store = add_store(self.db, name='Uptown')
        self.clerk = add_principal(self.db, username='clerk', role=PrincipalRole.STORE, store_id=self.store.id)
        self.manager = add_principal(
            self.db,
            username='manager',
            role=PrincipalRole.MANAGER,
            granted_store_ids=(self.store.id,),
        )
        self.lead = add_principal(self.db, username='lead', role=PrincipalRole.LEAD, store_id=self.store.id)
        self.outsider = add_principal(
            self.db,
            username='outsider',
            role=PrincipalRole.MANAGER,
            granted_store_ids=(self.other_store.id,),
        )
        self.retired = add_principal(
            self.db,
            username='retired',
            role=PrincipalRole.STORE,
            store_id=self.store.id,
            active=False,
        )
        self.slot = create_slot(self.db, store_id=self.store.id, slot_number=1)
        self.five = product_for(self.db, '5')
        self.db.commit()

        def _db():
            try:
                yield self.db
            finally:
                self.db.rollback()

        app.dependency_overrides[get_db] = _db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _as(self, principal) -> dict:
        return {'x-principal-id': str(principal.id)}

    def _activate(self, principal, **overrides):
        payload = {
            'slot_id': self.slot.id,
            'product_id': self.five.id,
            'pack_code': 'PK-1',
            'start_ticket': '001',
            'receipt_file_id': 'file-activation',
        }
        payload.update(overrides)
        prefix = '/store/scratchers' if principal.role == PrincipalRole.STORE else '/management/scratchers'
        return self.client.post(f'{prefix}/packs/activate', json=payload, headers=self._as(principal))

    def _audit_actions(self) -> list[str]:
        return list(self.db.execute(select(AuditLog.action)).scalars().all())

    def test_identity_header_is_required(self) -> None:
        self.assertEqual(self.client.get('/store/scratchers/bundle').status_code, 401)
        self.assertEqual(
            self.client.get('/store/scratchers/bundle', headers={'x-principal-id': '9999'}).status_code,
            401,
        )
        self.assertEqual(self.client.get('/store/scratchers/bundle', headers=self._as(self.retired)).status_code, 403)

    def test_roles_are_enforced(self) -> None:
        self.assertEqual(
            self.client.get('/management/scratchers/products', headers=self._as(self.clerk)).status_code,
            403,
        )
        self.assertEqual(
            self.client.get('/store/scratchers/bundle', headers=self._as(self.manager)).status_code,
            403,
        )
        response = self.client.put(
            '/management/scratchers/threshold',
            json={'store_id': self.store.id, 'variance_threshold': '30.00'},
            headers=self._as(self.lead),
        )
        self.assertEqual(response.status_code, 403)

    def test_store_bundle(self) -> None:
        response = self.client.get('/store/scratchers/bundle', headers=self._as(self.clerk))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([slot['slot_number'] for slot in body['slots']], [1])
        self.assertIsNone(body['baseline'])

    def test_activation_without_receipt_is_rejected(self) -> None:
        response = self._activate(self.clerk, receipt_file_id=None)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail'], 'Activation receipt photo is required')
        self.assertEqual(self.db.execute(select(func.count()).select_from(ScratcherPack)).scalar_one(), 0)

    def test_activation_is_audited_and_announced(self) -> None:
        response = self._activate(self.clerk)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['end_ticket'], '080')
        actions = self._audit_actions()
        self.assertIn('SCRATCHER_PACK_ACTIVATED', actions)
        self.assertIn('STORE_CHAT_MESSAGE_STUB_SENT', actions)

    def test_manager_outside_store_scope_is_forbidden(self) -> None:
        self.assertEqual(self._activate(self.outsider).status_code, 403)
        response = self.client.get(
            '/management/scratchers/discrepancies',
            params={'store_id': self.store.id},
            headers=self._as(self.outsider),
        )
        self.assertEqual(response.status_code, 403)

    def test_end_snapshot_rollover_is_rejected_with_slots(self) -> None:
        self._activate(self.manager, start_ticket='100')
        baseline = self.client.post(
            '/management/scratchers/baseline',
            json={'store_id': self.store.id, 'items': [{'slot_id': self.slot.id, 'ticket_value': '110'}]},
            headers=self._as(self.manager),
        )
        self.assertEqual(baseline.status_code, 200)

        response = self.client.post(
            '/store/scratchers/snapshots/end',
            json={'report_date': '2026-03-02', 'items': [{'slot_id': self.slot.id, 'ticket_value': '105'}]},
            headers=self._as(self.clerk),
        )

        self.assertEqual(response.status_code, 409)
        detail = response.json()['detail']
        self.assertEqual(detail['rollover_slots'], [{'slot_id': self.slot.id, 'slot_number': 1}])
        drafts = self.db.execute(
            select(func.count()).select_from(ShiftReport).where(ShiftReport.is_baseline.is_(False))
        ).scalar_one()
        self.assertEqual(drafts, 0)

    def test_end_snapshot_reconciles_and_shows_detail(self) -> None:
        self._activate(self.clerk)
        report = add_report(self.db, store_id=self.store.id, principal_id=self.clerk.id, scr_amount=Decimal('75.00'))
        self.db.commit()
        start = self.client.post(
            '/management/scratchers/snapshots/start',
            json={'shift_report_id': report.id, 'items': [{'slot_id': self.slot.id, 'ticket_value': '010'}]},
            headers=self._as(self.manager),
        )
        self.assertEqual(start.status_code, 200)

        response = self.client.post(
            '/store/scratchers/snapshots/end',
            json={'shift_report_id': report.id, 'items': [{'slot_id': self.slot.id, 'ticket_value': '025'}]},
            headers=self._as(self.clerk),
        )

        self.assertEqual(response.status_code, 200)
        calc = response.json()['calculation']
        self.assertEqual(calc['status'], 'OK')
        self.assertEqual(calc['expected_total_tickets'], 15)
        self.assertEqual(Decimal(str(calc['expected_total_value'])), Decimal('75'))

        detail = self.client.get(f'/store/scratchers/shifts/{report.id}', headers=self._as(self.clerk))
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(len(detail.json()['snapshots']), 2)

    def test_blocked_shift_surfaces_in_discrepancies_and_csv(self) -> None:
        self._activate(self.clerk)
        end = self.client.post(
            '/store/scratchers/snapshots/end',
            json={'report_date': '2026-03-02', 'items': [{'slot_id': self.slot.id, 'ticket_value': '025'}]},
            headers=self._as(self.clerk),
        )
        self.assertEqual(end.status_code, 200)

        response = self.client.get(
            '/management/scratchers/discrepancies',
            params={'store_id': self.store.id},
            headers=self._as(self.manager),
        )
        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['status'], 'BLOCKED')
        self.assertIsNone(rows[0]['variance_value'])

        export = self.client.get(
            '/management/scratchers/discrepancies.csv',
            params={'store_id': self.store.id},
            headers=self._as(self.manager),
        )
        self.assertEqual(export.status_code, 200)
        self.assertTrue(export.headers['content-type'].startswith('text/csv'))
        self.assertIn('BLOCKED', export.text)

    def test_threshold_update(self) -> None:
        response = self.client.put(
            '/management/scratchers/threshold',
            json={'store_id': self.store.id, 'variance_threshold': '35.50'},
            headers=self._as(self.manager),
        )
        self.assertEqual(response.status_code, 200)

        current = self.client.get(
            '/management/scratchers/threshold',
            params={'store_id': self.store.id},
            headers=self._as(self.lead),
        )
        self.assertEqual(Decimal(str(current.json()['variance_threshold'])), Decimal('35.5'))

        rejected = self.client.put(
            '/management/scratchers/threshold',
            json={'store_id': self.store.id, 'variance_threshold': '-1'},
            headers=self._as(self.manager),
        )
        self.assertEqual(rejected.status_code, 400)

    def test_file_registry(self) -> None:
        created = self.client.post(
            '/api/scratchers/files',
            json={'label': 'Receipt', 'storage_key': 'uploads/receipt-1.jpg', 'content_type': 'image/jpeg'},
            headers=self._as(self.clerk),
        )
        self.assertEqual(created.status_code, 200)
        file_id = created.json()['id']

        found = self.client.get('/api/scratchers/files', params={'id': file_id}, headers=self._as(self.clerk))
        self.assertEqual(found.status_code, 200)
        self.assertEqual(found.json()['storage_key'], 'uploads/receipt-1.jpg')

        missing = self.client.get('/api/scratchers/files', params={'id': 'nope'}, headers=self._as(self.clerk))
        self.assertEqual(missing.status_code, 404)


if __name__ == '__main__':
    unittest.main()
