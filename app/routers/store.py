from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.auth import Principal, Role, assert_store_scope, require_role
from app.db import get_db
from app.dependencies import get_client_ip, http_error
from app.models import ScratcherPackEventType, ScratcherSnapshotType
from app.schemas import ActivatePackBody, EndSnapshotBody, PackEventBody, ReturnPackBody
from app.services.audit_service import log_audit
from app.services.notification_service import send_store_system_message_stub
from app.services.scratcher_pack_service import (
    activate_pack,
    add_pack_event,
    event_to_dict,
    get_pack,
    get_slot_bundle,
    pack_to_dict,
    return_pack,
)
from app.services.scratcher_reconciliation_service import calculation_to_dict, get_calculation, get_shift_detail
from app.services.scratcher_slot_service import get_slot
from app.services.scratcher_snapshot_service import record_snapshot, snapshot_to_dict
from app.services.shift_report_service import ensure_shift_report_draft, get_shift_report

router = APIRouter(prefix='/store/scratchers', tags=['store-scratchers'])
store_access = require_role(Role.STORE)


def _home_store(principal: Principal) -> int:
    if principal.store_id is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='No store assigned')
    return principal.store_id


@router.get('/bundle')
def bundle(
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    store_id = _home_store(principal)
    try:
        payload = get_slot_bundle(db, store_id=store_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    # Catalog normalization may have added missing standard prices.
    db.commit()
    return payload


@router.post('/packs/activate')
def activate(
    body: ActivatePackBody,
    request: Request,
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    store_id = _home_store(principal)
    try:
        slot = get_slot(db, slot_id=body.slot_id)
        assert_store_scope(principal, slot.store_id)
        pack = activate_pack(
            db,
            slot_id=slot.id,
            product_id=body.product_id,
            pack_code=body.pack_code,
            start_ticket=body.start_ticket,
            receipt_file_id=body.receipt_file_id,
            acting_principal_id=principal.id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_PACK_ACTIVATED',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack.id, 'slot_id': slot.id, 'start_ticket': pack.start_ticket},
    )
    send_store_system_message_stub(
        db,
        actor_principal_id=principal.id,
        store_id=store_id,
        ip=get_client_ip(request),
        message=f'Scratcher pack activated in slot {slot.slot_number} starting at ticket {pack.start_ticket}.',
    )
    db.commit()
    return pack_to_dict(pack)


@router.post('/packs/{pack_id}/return')
def return_(
    pack_id: str,
    body: ReturnPackBody,
    request: Request,
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    store_id = _home_store(principal)
    try:
        assert_store_scope(principal, get_pack(db, pack_id=pack_id).store_id)
        pack = return_pack(
            db,
            pack_id=pack_id,
            receipt_file_id=body.receipt_file_id,
            note=body.note,
            acting_principal_id=principal.id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_PACK_RETURNED',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack.id, 'receipt_file_id': body.receipt_file_id},
    )
    send_store_system_message_stub(
        db,
        actor_principal_id=principal.id,
        store_id=store_id,
        ip=get_client_ip(request),
        message=f'Scratcher pack {pack.pack_code or pack.id} returned.',
    )
    db.commit()
    return pack_to_dict(pack)


@router.post('/packs/{pack_id}/return-receipt')
def return_receipt(
    pack_id: str,
    body: PackEventBody,
    request: Request,
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    store_id = _home_store(principal)
    try:
        assert_store_scope(principal, get_pack(db, pack_id=pack_id).store_id)
        event = add_pack_event(
            db,
            pack_id=pack_id,
            event_type=ScratcherPackEventType.RETURN_RECEIPT,
            acting_principal_id=principal.id,
            note=body.note,
            file_id=body.file_id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_RETURN_RECEIPT_ADDED',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack_id, 'file_id': event.file_id},
    )
    db.commit()
    return event_to_dict(event)


@router.post('/snapshots/end')
def submit_end_snapshot(
    body: EndSnapshotBody,
    request: Request,
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    store_id = _home_store(principal)
    try:
        if body.shift_report_id:
            report = get_shift_report(db, shift_report_id=body.shift_report_id)
            assert_store_scope(principal, report.store_id)
        else:
            report = ensure_shift_report_draft(
                db,
                store_id=store_id,
                employee_principal_id=principal.id,
                employee_name=principal.display_name or principal.username,
                report_date=body.report_date or date.today(),
            )
        snapshot, items = record_snapshot(
            db,
            shift_report_id=report.id,
            store_id=store_id,
            employee_principal_id=principal.id,
            snapshot_type=ScratcherSnapshotType.END,
            items=[item.to_input() for item in body.items],
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    calc = get_calculation(db, shift_report_id=report.id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_END_SNAPSHOT_SUBMITTED',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'shift_report_id': report.id, 'snapshot_id': snapshot.id, 'items': len(items)},
    )
    db.commit()
    return {
        'snapshot': snapshot_to_dict(snapshot, items),
        'calculation': calculation_to_dict(calc) if calc else None,
    }


@router.get('/shifts/{shift_report_id}')
def shift_detail(
    shift_report_id: str,
    principal: Principal = Depends(store_access),
    db: Session = Depends(get_db),
):
    try:
        assert_store_scope(principal, get_shift_report(db, shift_report_id=shift_report_id).store_id)
        detail = get_shift_detail(db, shift_report_id=shift_report_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    db.commit()
    return detail
