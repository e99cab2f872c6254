from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.auth import Principal, Role, assert_store_scope, require_role
from app.db import get_db
from app.dependencies import get_client_ip, http_error
from app.models import ScratcherSnapshotType
from app.schemas import (
    ActivatePackBody,
    BaselineBody,
    PackEventBody,
    ProductBody,
    ReturnPackBody,
    SlotCreateBody,
    SlotUpdateBody,
    StartSnapshotBody,
    ThresholdBody,
)
from app.services.audit_service import log_audit
from app.services.notification_service import send_store_system_message_stub
from app.services.scratcher_catalog_service import list_products, product_to_dict, upsert_product
from app.services.scratcher_discrepancy_service import discrepancies_csv, list_discrepancies
from app.services.scratcher_pack_service import (
    activate_pack,
    add_pack_event,
    event_to_dict,
    get_pack,
    get_slot_bundle,
    list_pack_events,
    pack_to_dict,
    return_pack,
)
from app.services.scratcher_reconciliation_service import (
    calculation_to_dict,
    compute_calculation,
    get_shift_detail,
    list_calculations,
)
from app.services.scratcher_settings_service import get_variance_threshold, set_variance_threshold
from app.services.scratcher_slot_service import create_slot, get_slot, init_slots, slot_to_dict, update_slot
from app.services.scratcher_snapshot_service import get_baseline, record_baseline, record_snapshot, snapshot_to_dict
from app.services.shift_report_service import get_shift_report

router = APIRouter(prefix='/management/scratchers', tags=['management-scratchers'])
management_access = require_role(Role.ADMIN, Role.MANAGER, Role.LEAD)
admin_access = require_role(Role.ADMIN, Role.MANAGER)


@router.get('/bundle')
def bundle(
    store_id: int,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    try:
        payload = get_slot_bundle(db, store_id=store_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    db.commit()
    return payload


@router.post('/slots/init')
def init_store_slots(
    store_id: int,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    try:
        slots = init_slots(db, store_id=store_id)
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_SLOTS_INITIALIZED',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'slots': len(slots)},
    )
    db.commit()
    return [slot_to_dict(slot) for slot in slots]


@router.post('/slots')
def add_slot(
    body: SlotCreateBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, body.store_id)
    try:
        slot = create_slot(db, store_id=body.store_id, slot_number=body.slot_number, label=body.label)
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_SLOT_CREATED',
        store_id=body.store_id,
        ip=get_client_ip(request),
        metadata={'slot_id': slot.id, 'slot_number': slot.slot_number},
    )
    db.commit()
    return slot_to_dict(slot)


@router.patch('/slots/{slot_id}')
def edit_slot(
    slot_id: str,
    body: SlotUpdateBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    changes = {name: getattr(body, name) for name in body.model_fields_set}
    try:
        assert_store_scope(principal, get_slot(db, slot_id=slot_id).store_id)
        slot = update_slot(db, slot_id=slot_id, **changes)
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_SLOT_UPDATED',
        store_id=slot.store_id,
        ip=get_client_ip(request),
        metadata={'slot_id': slot.id, 'changes': sorted(changes)},
    )
    db.commit()
    return slot_to_dict(slot)


@router.get('/products')
def products(
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    rows = [product_to_dict(product) for product in list_products(db)]
    db.commit()
    return rows


@router.post('/products')
def save_product(
    body: ProductBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    try:
        product = upsert_product(
            db,
            product_id=body.id,
            name=body.name,
            price=body.price,
            is_active=body.is_active,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_PRODUCT_SAVED',
        store_id=None,
        ip=get_client_ip(request),
        metadata={'product_id': product.id, 'price': str(product.price), 'is_active': product.is_active},
    )
    db.commit()
    return product_to_dict(product)


@router.post('/packs/activate')
def activate(
    body: ActivatePackBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
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
        store_id=slot.store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack.id, 'slot_id': slot.id, 'start_ticket': pack.start_ticket},
    )
    send_store_system_message_stub(
        db,
        actor_principal_id=principal.id,
        store_id=slot.store_id,
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
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
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
        store_id=pack.store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack.id, 'receipt_file_id': body.receipt_file_id},
    )
    send_store_system_message_stub(
        db,
        actor_principal_id=principal.id,
        store_id=pack.store_id,
        ip=get_client_ip(request),
        message=f'Scratcher pack {pack.pack_code or pack.id} returned.',
    )
    db.commit()
    return pack_to_dict(pack)


@router.get('/events')
def events(
    store_id: int,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    try:
        rows = list_pack_events(db, store_id=store_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [event_to_dict(event) for event in rows]


@router.post('/packs/{pack_id}/events')
def add_event(
    pack_id: str,
    body: PackEventBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        pack = get_pack(db, pack_id=pack_id)
        assert_store_scope(principal, pack.store_id)
        event = add_pack_event(
            db,
            pack_id=pack.id,
            event_type=body.event_type,
            acting_principal_id=principal.id,
            note=body.note,
            file_id=body.file_id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_PACK_EVENT_ADDED',
        store_id=pack.store_id,
        ip=get_client_ip(request),
        metadata={'pack_id': pack.id, 'event_type': event.event_type.value},
    )
    db.commit()
    return event_to_dict(event)


@router.get('/baseline')
def baseline(
    store_id: int,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    found = get_baseline(db, store_id=store_id)
    return snapshot_to_dict(*found) if found else None


@router.post('/baseline')
def save_baseline(
    body: BaselineBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, body.store_id)
    try:
        snapshot, items = record_baseline(
            db,
            store_id=body.store_id,
            principal_id=principal.id,
            principal_name=principal.display_name or principal.username,
            items=[item.to_input() for item in body.items],
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_BASELINE_RECORDED',
        store_id=body.store_id,
        ip=get_client_ip(request),
        metadata={'snapshot_id': snapshot.id, 'items': len(items)},
    )
    db.commit()
    return snapshot_to_dict(snapshot, items)


@router.post('/snapshots/start')
def submit_start_snapshot(
    body: StartSnapshotBody,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        report = get_shift_report(db, shift_report_id=body.shift_report_id)
        assert_store_scope(principal, report.store_id)
        snapshot, items = record_snapshot(
            db,
            shift_report_id=report.id,
            store_id=report.store_id,
            employee_principal_id=principal.id,
            snapshot_type=ScratcherSnapshotType.START,
            items=[item.to_input() for item in body.items],
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_START_SNAPSHOT_RECORDED',
        store_id=report.store_id,
        ip=get_client_ip(request),
        metadata={'shift_report_id': report.id, 'snapshot_id': snapshot.id, 'items': len(items)},
    )
    db.commit()
    return snapshot_to_dict(snapshot, items)


@router.post('/shifts/{shift_report_id}/recalculate')
def recalculate(
    shift_report_id: str,
    request: Request,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        report = get_shift_report(db, shift_report_id=shift_report_id)
        assert_store_scope(principal, report.store_id)
        calc = compute_calculation(db, shift_report_id=report.id, store_id=report.store_id)
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_SHIFT_RECALCULATED',
        store_id=report.store_id,
        ip=get_client_ip(request),
        metadata={'shift_report_id': report.id, 'flags': calc.flags},
    )
    db.commit()
    return calculation_to_dict(calc)


@router.get('/shifts/{shift_report_id}')
def shift_detail(
    shift_report_id: str,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    try:
        assert_store_scope(principal, get_shift_report(db, shift_report_id=shift_report_id).store_id)
        detail = get_shift_detail(db, shift_report_id=shift_report_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    db.commit()
    return detail


@router.get('/calculations')
def calculations(
    store_id: int,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    return [calculation_to_dict(calc) for calc in list_calculations(db, store_id=store_id)]


@router.get('/discrepancies')
def discrepancies(
    store_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    try:
        return list_discrepancies(db, store_id=store_id, date_from=date_from, date_to=date_to)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get('/discrepancies.csv')
def export_discrepancies_csv(
    store_id: int,
    request: Request,
    date_from: date | None = None,
    date_to: date | None = None,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    try:
        rows = list_discrepancies(db, store_id=store_id, date_from=date_from, date_to=date_to)
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_DISCREPANCIES_EXPORTED_CSV',
        store_id=store_id,
        ip=get_client_ip(request),
        metadata={'rows': len(rows)},
    )
    db.commit()

    return StreamingResponse(
        iter([discrepancies_csv(rows)]),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename=store-{store_id}-scratcher-discrepancies.csv'},
    )


@router.get('/threshold')
def threshold(
    store_id: int,
    principal: Principal = Depends(management_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, store_id)
    return {'store_id': store_id, 'variance_threshold': get_variance_threshold(db, store_id=store_id)}


@router.put('/threshold')
def save_threshold(
    body: ThresholdBody,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: Session = Depends(get_db),
):
    assert_store_scope(principal, body.store_id)
    try:
        setting = set_variance_threshold(
            db,
            store_id=body.store_id,
            threshold=body.variance_threshold,
            principal_id=principal.id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_VARIANCE_THRESHOLD_UPDATED',
        store_id=body.store_id,
        ip=get_client_ip(request),
        metadata={'variance_threshold': str(setting.variance_threshold)},
    )
    db.commit()
    return {'store_id': body.store_id, 'variance_threshold': setting.variance_threshold}
