from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import ScratcherSlot, Store
from app.services.scratcher_catalog_service import get_product
from app.services.scratcher_errors import ScratcherConflictError, ScratcherNotFoundError

_UNSET = object()


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_store(db: Session, store_id: int) -> Store:
    store = db.execute(select(Store).where(Store.id == store_id, Store.active.is_(True))).scalar_one_or_none()
    if not store:
        raise ScratcherNotFoundError('Store not found')
    return store


def get_slot(db: Session, *, slot_id: str) -> ScratcherSlot:
    slot = db.execute(select(ScratcherSlot).where(ScratcherSlot.id == slot_id)).scalar_one_or_none()
    if not slot:
        raise ScratcherNotFoundError('Scratcher slot not found')
    return slot


def list_slots(db: Session, *, store_id: int, include_inactive: bool = False) -> list[ScratcherSlot]:
    ensure_store(db, store_id)
    query = select(ScratcherSlot).where(ScratcherSlot.store_id == store_id)
    if not include_inactive:
        query = query.where(ScratcherSlot.is_active.is_(True))
    return list(db.execute(query.order_by(ScratcherSlot.slot_number.asc())).scalars().all())


def init_slots(db: Session, *, store_id: int) -> list[ScratcherSlot]:
    ensure_store(db, store_id)
    existing = {
        number
        for number, in db.execute(select(ScratcherSlot.slot_number).where(ScratcherSlot.store_id == store_id)).all()
    }
    db.add_all(
        [
            ScratcherSlot(store_id=store_id, slot_number=number, is_active=True, created_at=_now())
            for number in range(1, settings.scratcher_max_slots + 1)
            if number not in existing
        ]
    )
    db.flush()
    return list_slots(db, store_id=store_id, include_inactive=True)


def create_slot(
    db: Session,
    *,
    store_id: int,
    slot_number: int | None = None,
    label: str | None = None,
) -> ScratcherSlot:
    ensure_store(db, store_id)
    existing = {
        number
        for number, in db.execute(select(ScratcherSlot.slot_number).where(ScratcherSlot.store_id == store_id)).all()
    }
    next_number = slot_number if slot_number is not None else max(existing, default=0) + 1
    if next_number < 1:
        raise ValueError('Slot number must be at least 1')
    if next_number > settings.scratcher_max_slots:
        raise ValueError('Maximum slot limit reached')
    if next_number in existing:
        raise ScratcherConflictError('Slot already exists')

    slot = ScratcherSlot(
        store_id=store_id,
        slot_number=next_number,
        label=(label or '').strip() or None,
        is_active=True,
        created_at=_now(),
    )
    db.add(slot)
    db.flush()
    return slot


def update_slot(
    db: Session,
    *,
    slot_id: str,
    label: object = _UNSET,
    is_active: bool | None = None,
    default_product_id: object = _UNSET,
) -> ScratcherSlot:
    slot = get_slot(db, slot_id=slot_id)
    if label is not _UNSET:
        slot.label = (str(label).strip() or None) if label is not None else None
    if is_active is not None:
        slot.is_active = is_active
    if default_product_id is not _UNSET:
        if default_product_id is not None:
            get_product(db, product_id=str(default_product_id))
        slot.default_product_id = default_product_id
    db.flush()
    return slot


def set_slot_active(db: Session, *, slot_id: str, is_active: bool) -> ScratcherSlot:
    return update_slot(db, slot_id=slot_id, is_active=is_active)


def slot_to_dict(slot: ScratcherSlot) -> dict:
    return {
        'id': slot.id,
        'store_id': slot.store_id,
        'slot_number': slot.slot_number,
        'label': slot.label,
        'is_active': slot.is_active,
        'default_product_id': slot.default_product_id,
        'active_pack_id': slot.active_pack_id,
    }

