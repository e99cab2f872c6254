from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    ScratcherPack,
    ScratcherPackEvent,
    ScratcherPackEventType,
    ScratcherPackStatus,
    ScratcherSlot,
)
from app.services.scratcher_catalog_service import get_product, list_products, product_to_dict
from app.services.scratcher_errors import ScratcherConflictError, ScratcherNotFoundError
from app.services.scratcher_math_service import compute_end_ticket, pack_size_for_price, parse_ticket_number
from app.services.scratcher_reconciliation_service import recalculate_for_pack
from app.services.scratcher_slot_service import ensure_store, get_slot, list_slots, slot_to_dict
from app.services.scratcher_snapshot_service import get_baseline, snapshot_to_dict


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _append_event(
    db: Session,
    *,
    pack_id: str,
    event_type: ScratcherPackEventType,
    principal_id: int,
    note: str | None = None,
    file_id: str | None = None,
) -> ScratcherPackEvent:
    event = ScratcherPackEvent(
        pack_id=pack_id,
        event_type=event_type,
        note=note,
        file_id=file_id,
        created_by_principal_id=principal_id,
        created_at=_now(),
    )
    db.add(event)
    db.flush()
    return event


def get_pack(db: Session, *, pack_id: str) -> ScratcherPack:
    pack = db.execute(select(ScratcherPack).where(ScratcherPack.id == pack_id)).scalar_one_or_none()
    if not pack:
        raise ScratcherNotFoundError('Scratcher pack not found')
    return pack


def activate_pack(
    db: Session,
    *,
    slot_id: str,
    product_id: str | None,
    pack_code: str | None,
    start_ticket: str | None,
    receipt_file_id: str | None,
    acting_principal_id: int,
) -> ScratcherPack:
    """Load a new pack into a slot, ending whatever pack was active there.

    The prior pack's ``ended`` event is written before the new pack's
    ``activated`` event, and both land in the caller's transaction.
    """
    receipt = (receipt_file_id or '').strip()
    if not receipt:
        raise ValueError('Activation receipt photo is required')
    if not product_id:
        raise ValueError('Product is required')
    clean_start = (start_ticket or '').strip()
    if parse_ticket_number(clean_start) is None:
        raise ValueError('Start ticket must be a number')

    product = get_product(db, product_id=product_id)
    if not product.is_active:
        raise ValueError('Product is not active')
    slot = get_slot(db, slot_id=slot_id)
    if not slot.is_active:
        raise ValueError('Slot is not active')

    now = _now()
    previous = db.execute(
        select(ScratcherPack).where(
            ScratcherPack.slot_id == slot.id,
            ScratcherPack.status == ScratcherPackStatus.ACTIVE,
        )
    ).scalars().all()
    for pack in previous:
        pack.status = ScratcherPackStatus.ENDED
        pack.ended_at = now
        pack.ended_by_principal_id = acting_principal_id
        _append_event(
            db,
            pack_id=pack.id,
            event_type=ScratcherPackEventType.ENDED,
            principal_id=acting_principal_id,
            note='Pack ended on activation of a new pack.',
        )

    sequence = db.execute(
        select(func.count()).select_from(ScratcherPack).where(ScratcherPack.slot_id == slot.id)
    ).scalar_one()
    pack = ScratcherPack(
        store_id=slot.store_id,
        slot_id=slot.id,
        product_id=product.id,
        pack_code=(pack_code or '').strip() or None,
        ticket_price=product.price,
        slot_sequence=sequence + 1,
        start_ticket=clean_start,
        end_ticket=compute_end_ticket(clean_start, pack_size_for_price(product.price, settings.scratcher_pack_sizes)),
        status=ScratcherPackStatus.ACTIVE,
        activated_at=now,
        activated_by_principal_id=acting_principal_id,
        activation_receipt_file_id=receipt,
    )
    db.add(pack)
    db.flush()
    _append_event(
        db,
        pack_id=pack.id,
        event_type=ScratcherPackEventType.ACTIVATED,
        principal_id=acting_principal_id,
        file_id=receipt,
    )
    slot.active_pack_id = pack.id
    db.flush()
    return pack


def return_pack(
    db: Session,
    *,
    pack_id: str,
    receipt_file_id: str | None,
    note: str | None,
    acting_principal_id: int,
) -> ScratcherPack:
    receipt = (receipt_file_id or '').strip()
    if not receipt:
        raise ValueError('Return receipt photo is required')
    pack = get_pack(db, pack_id=pack_id)
    if pack.status == ScratcherPackStatus.RETURNED:
        raise ScratcherConflictError('Pack already returned')

    now = _now()
    pack.status = ScratcherPackStatus.RETURNED
    pack.ended_at = pack.ended_at or now
    pack.ended_by_principal_id = pack.ended_by_principal_id or acting_principal_id
    slot = db.execute(select(ScratcherSlot).where(ScratcherSlot.id == pack.slot_id)).scalar_one_or_none()
    if slot and slot.active_pack_id == pack.id:
        slot.active_pack_id = None

    _append_event(
        db,
        pack_id=pack.id,
        event_type=ScratcherPackEventType.RETURNED,
        principal_id=acting_principal_id,
        note=(note or '').strip() or None,
    )
    _append_event(
        db,
        pack_id=pack.id,
        event_type=ScratcherPackEventType.RETURN_RECEIPT,
        principal_id=acting_principal_id,
        file_id=receipt,
    )
    recalculate_for_pack(db, pack_id=pack.id)
    return pack


def add_pack_event(
    db: Session,
    *,
    pack_id: str,
    event_type: ScratcherPackEventType | str,
    acting_principal_id: int,
    note: str | None = None,
    file_id: str | None = None,
) -> ScratcherPackEvent:
    kind = ScratcherPackEventType(event_type)
    pack = get_pack(db, pack_id=pack_id)
    clean_file = (file_id or '').strip() or None
    if kind == ScratcherPackEventType.RETURN_RECEIPT and not clean_file:
        raise ValueError('Return receipt photo is required')
    event = _append_event(
        db,
        pack_id=pack.id,
        event_type=kind,
        principal_id=acting_principal_id,
        note=(note or '').strip() or None,
        file_id=clean_file,
    )
    if kind == ScratcherPackEventType.CORRECTION:
        recalculate_for_pack(db, pack_id=pack.id)
    return event


def list_packs(db: Session, *, store_id: int) -> list[ScratcherPack]:
    return list(
        db.execute(
            select(ScratcherPack)
            .where(ScratcherPack.store_id == store_id)
            .order_by(ScratcherPack.slot_id.asc(), ScratcherPack.slot_sequence.asc())
        ).scalars().all()
    )


def list_pack_events(db: Session, *, store_id: int) -> list[ScratcherPackEvent]:
    ensure_store(db, store_id)
    return list(
        db.execute(
            select(ScratcherPackEvent)
            .join(ScratcherPack, ScratcherPack.id == ScratcherPackEvent.pack_id)
            .where(ScratcherPack.store_id == store_id)
            .order_by(ScratcherPackEvent.created_at.desc())
        ).scalars().all()
    )


def pack_to_dict(pack: ScratcherPack) -> dict:
    return {
        'id': pack.id,
        'store_id': pack.store_id,
        'slot_id': pack.slot_id,
        'product_id': pack.product_id,
        'pack_code': pack.pack_code,
        'ticket_price': pack.ticket_price,
        'slot_sequence': pack.slot_sequence,
        'start_ticket': pack.start_ticket,
        'end_ticket': pack.end_ticket,
        'status': pack.status.value,
        'activated_at': pack.activated_at,
        'activated_by_principal_id': pack.activated_by_principal_id,
        'activation_receipt_file_id': pack.activation_receipt_file_id,
        'ended_at': pack.ended_at,
        'ended_by_principal_id': pack.ended_by_principal_id,
    }


def event_to_dict(event: ScratcherPackEvent) -> dict:
    return {
        'id': event.id,
        'pack_id': event.pack_id,
        'event_type': event.event_type.value,
        'note': event.note,
        'file_id': event.file_id,
        'created_by_principal_id': event.created_by_principal_id,
        'created_at': event.created_at,
    }


def get_slot_bundle(db: Session, *, store_id: int) -> dict:
    slots = list_slots(db, store_id=store_id, include_inactive=True)
    baseline = get_baseline(db, store_id=store_id)
    return {
        'slots': [slot_to_dict(slot) for slot in slots],
        'packs': [pack_to_dict(pack) for pack in list_packs(db, store_id=store_id)],
        'products': [product_to_dict(product) for product in list_products(db)],
        'baseline': snapshot_to_dict(*baseline) if baseline else None,
    }
