from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import (
    ScratcherShiftSnapshot,
    ScratcherShiftSnapshotItem,
    ScratcherSlot,
    ScratcherSnapshotType,
    ShiftReport,
)
from app.services.scratcher_errors import (
    RolloverRequiredError,
    ScratcherConflictError,
    ScratcherIntegrityError,
    ScratcherNotFoundError,
)
from app.services.scratcher_math_service import parse_ticket_number
from app.services.scratcher_slot_service import list_slots
from app.services.shift_report_service import create_baseline_shift_report, get_shift_report

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotItemInput:
    slot_id: str
    ticket_value: str | None
    photo_file_id: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean_items(items: list[SnapshotItemInput]) -> list[SnapshotItemInput]:
    cleaned: list[SnapshotItemInput] = []
    seen: set[str] = set()
    for item in items:
        value = (item.ticket_value or '').strip()
        if not value:
            continue
        if item.slot_id in seen:
            raise ValueError('Only one reading per slot is allowed')
        seen.add(item.slot_id)
        cleaned.append(SnapshotItemInput(slot_id=item.slot_id, ticket_value=value, photo_file_id=item.photo_file_id))
    if not cleaned:
        raise ValueError('At least one ticket reading is required')
    return cleaned


def _store_slots(db: Session, *, store_id: int, items: list[SnapshotItemInput]) -> dict[str, ScratcherSlot]:
    slots = {slot.id: slot for slot in list_slots(db, store_id=store_id, include_inactive=True)}
    for item in items:
        if item.slot_id not in slots:
            raise ScratcherNotFoundError('Scratcher slot not found')
    return slots


def snapshot_items(db: Session, *, snapshot_id: str) -> list[ScratcherShiftSnapshotItem]:
    return list(
        db.execute(
            select(ScratcherShiftSnapshotItem).where(ScratcherShiftSnapshotItem.snapshot_id == snapshot_id)
        ).scalars().all()
    )


def find_shift_snapshot(
    db: Session,
    *,
    shift_report_id: str,
    snapshot_type: ScratcherSnapshotType,
) -> ScratcherShiftSnapshot | None:
    return db.execute(
        select(ScratcherShiftSnapshot).where(
            ScratcherShiftSnapshot.shift_report_id == shift_report_id,
            ScratcherShiftSnapshot.snapshot_type == snapshot_type,
        )
    ).scalar_one_or_none()


def get_baseline(
    db: Session, *, store_id: int
) -> tuple[ScratcherShiftSnapshot, list[ScratcherShiftSnapshotItem]] | None:
    """Latest manager-entered baseline for the store, with its items."""
    snapshot = db.execute(
        select(ScratcherShiftSnapshot)
        .where(
            ScratcherShiftSnapshot.store_id == store_id,
            ScratcherShiftSnapshot.snapshot_type == ScratcherSnapshotType.START,
            ScratcherShiftSnapshot.is_baseline.is_(True),
        )
        .order_by(ScratcherShiftSnapshot.created_at.desc())
    ).scalars().first()
    if not snapshot:
        return None
    return snapshot, snapshot_items(db, snapshot_id=snapshot.id)


def _write_snapshot(
    db: Session,
    *,
    report: ShiftReport,
    employee_principal_id: int,
    snapshot_type: ScratcherSnapshotType,
    is_baseline: bool,
    items: list[tuple[str, str, str | None, str | None]],
) -> tuple[ScratcherShiftSnapshot, list[ScratcherShiftSnapshotItem]]:
    snapshot = ScratcherShiftSnapshot(
        shift_report_id=report.id,
        store_id=report.store_id,
        employee_principal_id=employee_principal_id,
        snapshot_type=snapshot_type,
        is_baseline=is_baseline,
        created_at=_now(),
    )
    db.add(snapshot)
    db.flush()
    rows = [
        ScratcherShiftSnapshotItem(
            snapshot_id=snapshot.id,
            slot_id=slot_id,
            pack_id=pack_id,
            ticket_value=ticket_value,
            photo_file_id=photo_file_id,
        )
        for slot_id, ticket_value, pack_id, photo_file_id in items
    ]
    db.add_all(rows)
    db.flush()
    return snapshot, rows


def _rollover_slots(
    items: list[SnapshotItemInput],
    start_items: list[ScratcherShiftSnapshotItem],
    slots: dict[str, ScratcherSlot],
) -> list[dict]:
    start_by_slot = {item.slot_id: item for item in start_items}
    flagged: list[dict] = []
    for item in items:
        start_item = start_by_slot.get(item.slot_id)
        if not start_item:
            continue
        start_value = parse_ticket_number(start_item.ticket_value)
        end_value = parse_ticket_number(item.ticket_value)
        if start_value is None or end_value is None:
            continue
        slot = slots[item.slot_id]
        # A lower reading is only legitimate once a new pack has been activated.
        if end_value < start_value and slot.active_pack_id == start_item.pack_id:
            flagged.append({'slot_id': slot.id, 'slot_number': slot.slot_number})
    return sorted(flagged, key=lambda row: row['slot_number'])


def record_snapshot(
    db: Session,
    *,
    shift_report_id: str,
    store_id: int,
    employee_principal_id: int,
    snapshot_type: ScratcherSnapshotType | str,
    items: list[SnapshotItemInput],
) -> tuple[ScratcherShiftSnapshot, list[ScratcherShiftSnapshotItem]]:
    """Persist one immutable start or end reading set for a shift.

    End snapshots are checked for unresolved pack rollovers before anything
    is written. When the shift has no start snapshot, the store baseline is
    frozen onto the shift as its start. The calculation is recomputed as
    soon as the shift has an end snapshot.
    """
    kind = ScratcherSnapshotType(snapshot_type)
    cleaned = _clean_items(items)
    report = get_shift_report(db, shift_report_id=shift_report_id)
    if report.store_id != store_id:
        raise ScratcherIntegrityError('Shift report belongs to a different store')
    slots = _store_slots(db, store_id=store_id, items=cleaned)

    if find_shift_snapshot(db, shift_report_id=report.id, snapshot_type=kind):
        raise ScratcherConflictError(f'{kind.value.capitalize()} snapshot already recorded for this shift')

    if kind == ScratcherSnapshotType.END:
        start = find_shift_snapshot(db, shift_report_id=report.id, snapshot_type=ScratcherSnapshotType.START)
        baseline = None if start else get_baseline(db, store_id=store_id)
        if start:
            start_items = snapshot_items(db, snapshot_id=start.id)
        elif baseline:
            start_items = baseline[1]
        else:
            start_items = []

        rollover = _rollover_slots(cleaned, start_items, slots)
        if rollover:
            logger.info(
                'Rejected end snapshot for shift %s: rollover required on slots %s',
                report.id,
                [row['slot_number'] for row in rollover],
            )
            raise RolloverRequiredError(rollover)

        if baseline:
            baseline_snapshot, baseline_items = baseline
            _write_snapshot(
                db,
                report=report,
                employee_principal_id=baseline_snapshot.employee_principal_id,
                snapshot_type=ScratcherSnapshotType.START,
                is_baseline=False,
                items=[(row.slot_id, row.ticket_value, row.pack_id, row.photo_file_id) for row in baseline_items],
            )

    snapshot, rows = _write_snapshot(
        db,
        report=report,
        employee_principal_id=employee_principal_id,
        snapshot_type=kind,
        is_baseline=False,
        items=[
            (item.slot_id, item.ticket_value, slots[item.slot_id].active_pack_id, item.photo_file_id)
            for item in cleaned
        ],
    )

    has_end = kind == ScratcherSnapshotType.END or find_shift_snapshot(
        db, shift_report_id=report.id, snapshot_type=ScratcherSnapshotType.END
    )
    if has_end:
        from app.services.scratcher_reconciliation_service import compute_calculation

        compute_calculation(db, shift_report_id=report.id, store_id=store_id)
    return snapshot, rows


def record_baseline(
    db: Session,
    *,
    store_id: int,
    principal_id: int,
    principal_name: str | None,
    items: list[SnapshotItemInput],
) -> tuple[ScratcherShiftSnapshot, list[ScratcherShiftSnapshotItem]]:
    cleaned = _clean_items(items)
    slots = _store_slots(db, store_id=store_id, items=cleaned)
    report = create_baseline_shift_report(
        db,
        store_id=store_id,
        created_by_principal_id=principal_id,
        created_by_name=principal_name,
    )
    return _write_snapshot(
        db,
        report=report,
        employee_principal_id=principal_id,
        snapshot_type=ScratcherSnapshotType.START,
        is_baseline=True,
        items=[
            (item.slot_id, item.ticket_value, slots[item.slot_id].active_pack_id, item.photo_file_id)
            for item in cleaned
        ],
    )


def list_shift_snapshots(
    db: Session, *, shift_report_id: str
) -> list[tuple[ScratcherShiftSnapshot, list[ScratcherShiftSnapshotItem]]]:
    snapshots = db.execute(
        select(ScratcherShiftSnapshot).where(ScratcherShiftSnapshot.shift_report_id == shift_report_id)
    ).scalars().all()
    ordered = sorted(snapshots, key=lambda snap: 0 if snap.snapshot_type == ScratcherSnapshotType.START else 1)
    return [(snapshot, snapshot_items(db, snapshot_id=snapshot.id)) for snapshot in ordered]


def snapshot_to_dict(snapshot: ScratcherShiftSnapshot, items: list[ScratcherShiftSnapshotItem]) -> dict:
    return {
        'id': snapshot.id,
        'shift_report_id': snapshot.shift_report_id,
        'store_id': snapshot.store_id,
        'employee_principal_id': snapshot.employee_principal_id,
        'snapshot_type': snapshot.snapshot_type.value,
        'is_baseline': snapshot.is_baseline,
        'created_at': snapshot.created_at,
        'items': [
            {
                'id': item.id,
                'slot_id': item.slot_id,
                'pack_id': item.pack_id,
                'ticket_value': item.ticket_value,
                'photo_file_id': item.photo_file_id,
            }
            for item in items
        ],
    }
