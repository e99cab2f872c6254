from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import (
    ScratcherPack,
    ScratcherProduct,
    ScratcherShiftCalculation,
    ScratcherShiftSnapshot,
    ScratcherShiftSnapshotItem,
    ScratcherSlot,
    ScratcherSnapshotType,
    ShiftReport,
)
from app.services.scratcher_errors import ScratcherIntegrityError, ScratcherNotFoundError
from app.services.scratcher_math_service import (
    MONEY,
    BreakdownRow,
    PackSegment,
    compute_slot_sale,
    compute_variance,
)
from app.services.scratcher_settings_service import get_variance_threshold
from app.services.scratcher_slot_service import list_slots
from app.services.scratcher_snapshot_service import (
    find_shift_snapshot,
    get_baseline,
    list_shift_snapshots,
    snapshot_items,
    snapshot_to_dict,
)
from app.services.shift_report_service import get_shift_report

logger = logging.getLogger(__name__)

BLOCKING_FLAGS = ('missing_start_snapshot', 'missing_end_snapshot')
ZERO = Decimal('0.00')


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def is_blocked(flags: list[str] | None) -> bool:
    return any(flag in BLOCKING_FLAGS for flag in flags or [])


def _load_pack(db: Session, pack_id: str | None) -> ScratcherPack | None:
    if not pack_id:
        return None
    return db.execute(select(ScratcherPack).where(ScratcherPack.id == pack_id)).scalar_one_or_none()


def _default_price(db: Session, slot: ScratcherSlot) -> tuple[str | None, Decimal | None]:
    if not slot.default_product_id:
        return None, None
    product = db.execute(
        select(ScratcherProduct).where(ScratcherProduct.id == slot.default_product_id)
    ).scalar_one_or_none()
    if not product:
        return None, None
    return product.id, product.price


def _pack_chain(
    db: Session,
    slot: ScratcherSlot,
    start_pack_id: str | None,
    end_pack_id: str | None,
) -> list[ScratcherPack] | None:
    """Packs loaded into the slot from the start reading's pack to the end reading's pack.

    Returns None when the chain cannot be reconstructed.
    """
    start_pack = _load_pack(db, start_pack_id)
    end_pack = _load_pack(db, end_pack_id)
    if not start_pack or not end_pack:
        return None
    if start_pack.slot_id != slot.id or end_pack.slot_id != slot.id:
        return None
    if end_pack.slot_sequence < start_pack.slot_sequence:
        return None
    return list(
        db.execute(
            select(ScratcherPack)
            .where(
                ScratcherPack.slot_id == slot.id,
                ScratcherPack.slot_sequence >= start_pack.slot_sequence,
                ScratcherPack.slot_sequence <= end_pack.slot_sequence,
            )
            .order_by(ScratcherPack.slot_sequence.asc())
        ).scalars().all()
    )


def _slots_loaded_during(db: Session, *, store_id: int, since: datetime, until: datetime) -> set[str]:
    """Slots that had a pack loaded at some point between two readings."""
    return set(
        db.execute(
            select(ScratcherPack.slot_id).where(
                ScratcherPack.store_id == store_id,
                ScratcherPack.activated_at <= until,
                or_(ScratcherPack.ended_at.is_(None), ScratcherPack.ended_at >= since),
            )
        ).scalars().all()
    )


def _slot_row(
    db: Session,
    slot: ScratcherSlot,
    start_item: ScratcherShiftSnapshotItem | None,
    end_item: ScratcherShiftSnapshotItem | None,
    flags: set[str],
) -> BreakdownRow:
    number = slot.slot_number
    start_ticket = start_item.ticket_value if start_item else ''
    end_ticket = end_item.ticket_value if end_item else ''

    def zero_row() -> BreakdownRow:
        return BreakdownRow(
            slot_id=slot.id,
            slot_number=number,
            start_ticket=start_ticket,
            end_ticket=end_ticket,
            sold=0,
            value=ZERO,
        )

    if not start_item or not end_item:
        # Slots active during the shift but not read on one side still get a row.
        if start_item or end_item:
            flags.add(f'missing_reading_{number}')
        return zero_row()

    if start_item.pack_id == end_item.pack_id:
        pack = _load_pack(db, start_item.pack_id)
        if pack:
            product_id, price = pack.product_id, pack.ticket_price
            if pack.end_ticket is None:
                flags.add('unknown_pack_size')
            segments = [PackSegment(pack.id, pack.start_ticket, pack.end_ticket, price)]
        else:
            product_id, price = _default_price(db, slot)
            segments = [PackSegment(None, '', None, price)]
        if price is None:
            flags.add(f'missing_product_{number}')
    else:
        chain = _pack_chain(db, slot, start_item.pack_id, end_item.pack_id)
        if chain is None:
            flags.add('pack_rollover')
            flags.add(f'rollover_missing_pack_{number}')
            return zero_row()
        product_id = chain[-1].product_id
        segments = [PackSegment(pack.id, pack.start_ticket, pack.end_ticket, pack.ticket_price) for pack in chain]

    sale = compute_slot_sale(
        start_item.ticket_value,
        end_item.ticket_value,
        segments,
        jump_threshold=settings.scratcher_jump_threshold,
    )
    for flag in sale.flags:
        if flag == 'invalid_ticket':
            flags.add(f'invalid_ticket_{number}')
        elif flag == 'large_jump':
            flags.add(f'large_jump_{number}')
        elif flag == 'negative_variance':
            flags.add('negative_variance')
            flags.add(f'negative_sold_{number}')
        else:
            flags.add(flag)

    return BreakdownRow(
        slot_id=slot.id,
        slot_number=number,
        start_ticket=start_ticket,
        end_ticket=end_ticket,
        sold=sale.sold,
        value=sale.value,
        product_id=product_id,
        pack_ids=[segment.pack_id for segment in segments if segment.pack_id],
        segment_sold=list(sale.segment_sold),
    )


def _upsert(
    db: Session,
    *,
    report: ShiftReport,
    expected_tickets: int,
    expected_value: Decimal,
    variance: Decimal,
    breakdown: list[BreakdownRow],
    flags: set[str],
) -> ScratcherShiftCalculation:
    now = _now()
    calc = db.execute(
        select(ScratcherShiftCalculation).where(ScratcherShiftCalculation.shift_report_id == report.id)
    ).scalar_one_or_none()
    if not calc:
        calc = ScratcherShiftCalculation(shift_report_id=report.id, store_id=report.store_id, created_at=now)
        db.add(calc)
    calc.store_id = report.store_id
    calc.employee_principal_id = report.employee_principal_id
    calc.expected_total_tickets = expected_tickets
    calc.expected_total_value = expected_value
    calc.reported_scr_value = report.scr_amount
    calc.variance_value = variance
    calc.breakdown = [row.to_json() for row in breakdown]
    calc.flags = sorted(flags)
    calc.updated_at = now
    db.flush()
    return calc


def compute_calculation(
    db: Session,
    *,
    shift_report_id: str,
    store_id: int | None = None,
) -> ScratcherShiftCalculation:
    """Recompute and persist the expected-vs-reported result for one shift.

    Odd data never raises: it is flagged on the calculation instead. Only a
    missing shift report or a store mismatch between the report and its
    snapshots is an error.
    """
    report = get_shift_report(db, shift_report_id=shift_report_id)
    if store_id is not None and report.store_id != store_id:
        raise ScratcherIntegrityError('Shift report belongs to a different store')

    start = find_shift_snapshot(db, shift_report_id=report.id, snapshot_type=ScratcherSnapshotType.START)
    end = find_shift_snapshot(db, shift_report_id=report.id, snapshot_type=ScratcherSnapshotType.END)
    for snapshot in (start, end):
        if snapshot and snapshot.store_id != report.store_id:
            raise ScratcherIntegrityError('Snapshot store does not match shift report store')

    start_items: list[ScratcherShiftSnapshotItem] = []
    end_items: list[ScratcherShiftSnapshotItem] = []
    if start:
        start_items = snapshot_items(db, snapshot_id=start.id)
    else:
        baseline = get_baseline(db, store_id=report.store_id)
        if baseline:
            start, start_items = baseline
    if end:
        end_items = snapshot_items(db, snapshot_id=end.id)

    flags: set[str] = set()
    if report.scr_amount is None:
        flags.add('missing_reported_value')
    if not start:
        flags.add('missing_start_snapshot')
    if not end:
        flags.add('missing_end_snapshot')

    slots = {slot.id: slot for slot in list_slots(db, store_id=report.store_id, include_inactive=True)}
    start_by_slot = {item.slot_id: item for item in start_items}
    end_by_slot = {item.slot_id: item for item in end_items}
    covered = {slot_id for slot_id, slot in slots.items() if slot.is_active}
    covered |= (set(start_by_slot) | set(end_by_slot)) & set(slots)
    if start and end:
        covered |= _slots_loaded_during(db, store_id=report.store_id, since=start.created_at, until=end.created_at)
        covered &= set(slots)
    ordered = sorted((slots[slot_id] for slot_id in covered), key=lambda slot: slot.slot_number)

    if is_blocked(sorted(flags)):
        breakdown = [
            BreakdownRow(
                slot_id=slot.id,
                slot_number=slot.slot_number,
                start_ticket=start_by_slot[slot.id].ticket_value if slot.id in start_by_slot else '',
                end_ticket=end_by_slot[slot.id].ticket_value if slot.id in end_by_slot else '',
                sold=0,
                value=ZERO,
            )
            for slot in ordered
        ]
        calc = _upsert(
            db,
            report=report,
            expected_tickets=0,
            expected_value=ZERO,
            variance=ZERO,
            breakdown=breakdown,
            flags=flags,
        )
        logger.info('Scratcher calculation for shift %s is blocked: %s', report.id, calc.flags)
        return calc

    breakdown = [_slot_row(db, slot, start_by_slot.get(slot.id), end_by_slot.get(slot.id), flags) for slot in ordered]
    expected_tickets = sum(row.sold for row in breakdown)
    expected_value = sum((row.value for row in breakdown), ZERO).quantize(MONEY)
    variance = compute_variance(report.scr_amount, expected_value)

    threshold = get_variance_threshold(db, store_id=report.store_id)
    if abs(variance) > threshold:
        flags.add('large_variance')

    calc = _upsert(
        db,
        report=report,
        expected_tickets=expected_tickets,
        expected_value=expected_value,
        variance=variance,
        breakdown=breakdown,
        flags=flags,
    )
    logger.info(
        'Recomputed scratcher calculation for shift %s: %s tickets, expected %s, variance %s, flags=%s',
        report.id,
        expected_tickets,
        expected_value,
        variance,
        calc.flags,
    )
    return calc


def get_calculation(db: Session, *, shift_report_id: str) -> ScratcherShiftCalculation | None:
    return db.execute(
        select(ScratcherShiftCalculation).where(ScratcherShiftCalculation.shift_report_id == shift_report_id)
    ).scalar_one_or_none()


def list_calculations(db: Session, *, store_id: int) -> list[ScratcherShiftCalculation]:
    return list(
        db.execute(
            select(ScratcherShiftCalculation)
            .where(ScratcherShiftCalculation.store_id == store_id)
            .order_by(ScratcherShiftCalculation.created_at.desc())
        ).scalars().all()
    )


def recalculate_for_pack(db: Session, *, pack_id: str) -> list[ScratcherShiftCalculation]:
    pack = _load_pack(db, pack_id)
    if not pack:
        raise ScratcherNotFoundError('Scratcher pack not found')
    report_ids = db.execute(
        select(ScratcherShiftSnapshot.shift_report_id)
        .join(ScratcherShiftSnapshotItem, ScratcherShiftSnapshotItem.snapshot_id == ScratcherShiftSnapshot.id)
        .join(ShiftReport, ShiftReport.id == ScratcherShiftSnapshot.shift_report_id)
        .where(
            ScratcherShiftSnapshotItem.pack_id == pack.id,
            ShiftReport.is_baseline.is_(False),
        )
        .distinct()
    ).scalars().all()
    return [
        compute_calculation(db, shift_report_id=report_id, store_id=pack.store_id)
        for report_id in sorted(report_ids)
    ]


def calculation_to_dict(calc: ScratcherShiftCalculation) -> dict:
    flags = list(calc.flags or [])
    blocked = is_blocked(flags)
    if blocked:
        status = 'BLOCKED'
    elif flags:
        status = 'FLAGGED'
    else:
        status = 'OK'
    return {
        'id': calc.id,
        'shift_report_id': calc.shift_report_id,
        'store_id': calc.store_id,
        'employee_principal_id': calc.employee_principal_id,
        'status': status,
        'is_blocked': blocked,
        'expected_total_tickets': None if blocked else calc.expected_total_tickets,
        'expected_total_value': None if blocked else calc.expected_total_value,
        'reported_scr_value': calc.reported_scr_value,
        'variance_value': None if blocked else calc.variance_value,
        'breakdown': [BreakdownRow.from_json(row).to_json() for row in calc.breakdown or []],
        'flags': flags,
        'created_at': calc.created_at,
        'updated_at': calc.updated_at,
    }


def get_shift_detail(db: Session, *, shift_report_id: str) -> dict:
    report = get_shift_report(db, shift_report_id=shift_report_id)
    calc = get_calculation(db, shift_report_id=report.id)
    # Catalog fixes (a slot's default product) only show up after a recompute.
    if calc and any(flag.startswith('missing_product_') for flag in calc.flags or []):
        calc = compute_calculation(db, shift_report_id=report.id, store_id=report.store_id)
    return {
        'shift_report': {
            'id': report.id,
            'store_id': report.store_id,
            'employee_principal_id': report.employee_principal_id,
            'employee_name': report.employee_name,
            'report_date': report.report_date,
            'scr_amount': report.scr_amount,
            'is_baseline': report.is_baseline,
        },
        'calculation': calculation_to_dict(calc) if calc else None,
        'snapshots': [
            snapshot_to_dict(snapshot, items)
            for snapshot, items in list_shift_snapshots(db, shift_report_id=report.id)
        ],
    }
