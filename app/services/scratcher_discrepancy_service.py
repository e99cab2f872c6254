from __future__ import annotations

import csv
from datetime import date
from io import StringIO

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ScratcherShiftCalculation, ShiftReport
from app.services.scratcher_reconciliation_service import calculation_to_dict, is_blocked
from app.services.scratcher_settings_service import get_variance_threshold
from app.services.scratcher_slot_service import ensure_store


def list_discrepancies(
    db: Session,
    *,
    store_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """Shifts a manager should review: flagged or over the store's variance threshold.

    Blocked calculations are always included and carry no money figures.
    """
    ensure_store(db, store_id)
    threshold = get_variance_threshold(db, store_id=store_id)

    query = (
        select(ScratcherShiftCalculation, ShiftReport)
        .join(ShiftReport, ShiftReport.id == ScratcherShiftCalculation.shift_report_id)
        .where(
            ScratcherShiftCalculation.store_id == store_id,
            ShiftReport.is_baseline.is_(False),
        )
    )
    if date_from is not None:
        query = query.where(ShiftReport.report_date >= date_from)
    if date_to is not None:
        query = query.where(ShiftReport.report_date <= date_to)
    query = query.order_by(ShiftReport.report_date.desc(), ScratcherShiftCalculation.created_at.desc())

    rows: list[dict] = []
    for calc, report in db.execute(query).all():
        flags = list(calc.flags or [])
        over_threshold = not is_blocked(flags) and abs(calc.variance_value) > threshold
        if not flags and not over_threshold:
            continue
        row = calculation_to_dict(calc)
        row.update(
            {
                'employee_name': report.employee_name,
                'report_date': report.report_date,
                'reported_scr_value': report.scr_amount,
                'over_threshold': over_threshold,
                'threshold': threshold,
            }
        )
        rows.append(row)
    return rows


def discrepancies_csv(rows: list[dict]) -> str:
    sio = StringIO()
    writer = csv.writer(sio)
    writer.writerow(
        ['Report Date', 'Employee', 'Status', 'Expected Tickets', 'Expected Value', 'Reported', 'Variance', 'Flags']
    )
    for row in rows:
        writer.writerow(
            [
                row['report_date'].isoformat() if row['report_date'] else '',
                row['employee_name'] or '',
                row['status'],
                '' if row['expected_total_tickets'] is None else row['expected_total_tickets'],
                '' if row['expected_total_value'] is None else row['expected_total_value'],
                '' if row['reported_scr_value'] is None else row['reported_scr_value'],
                '' if row['variance_value'] is None else row['variance_value'],
                ' '.join(row['flags']),
            ]
        )
    return sio.getvalue()
