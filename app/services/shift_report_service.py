from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ShiftReport
from app.services.scratcher_errors import ScratcherNotFoundError


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_shift_report(db: Session, *, shift_report_id: str) -> ShiftReport:
    report = db.execute(select(ShiftReport).where(ShiftReport.id == shift_report_id)).scalar_one_or_none()
    if not report:
        raise ScratcherNotFoundError('Shift report not found')
    return report


def ensure_shift_report_draft(
    db: Session,
    *,
    store_id: int,
    employee_principal_id: int,
    employee_name: str | None,
    report_date: date,
) -> ShiftReport:
    existing = db.execute(
        select(ShiftReport).where(
            ShiftReport.store_id == store_id,
            ShiftReport.employee_principal_id == employee_principal_id,
            ShiftReport.report_date == report_date,
            ShiftReport.is_baseline.is_(False),
        )
    ).scalars().first()
    if existing:
        return existing

    report = ShiftReport(
        store_id=store_id,
        employee_principal_id=employee_principal_id,
        employee_name=employee_name,
        report_date=report_date,
        scr_amount=None,
        is_baseline=False,
        created_at=_now(),
    )
    db.add(report)
    db.flush()
    return report


def create_baseline_shift_report(
    db: Session,
    *,
    store_id: int,
    created_by_principal_id: int,
    created_by_name: str | None,
) -> ShiftReport:
    now = _now()
    report = ShiftReport(
        store_id=store_id,
        employee_principal_id=created_by_principal_id,
        employee_name=created_by_name,
        report_date=now.date(),
        scr_amount=None,
        is_baseline=True,
        created_at=now,
    )
    db.add(report)
    db.flush()
    return report
