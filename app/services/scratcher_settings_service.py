from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import ScratcherStoreSetting
from app.services.scratcher_math_service import MONEY
from app.services.scratcher_slot_service import ensure_store


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_variance_threshold(db: Session, *, store_id: int) -> Decimal:
    setting = db.execute(
        select(ScratcherStoreSetting).where(ScratcherStoreSetting.store_id == store_id)
    ).scalar_one_or_none()
    if setting:
        return Decimal(setting.variance_threshold).quantize(MONEY)
    return Decimal(settings.scratcher_variance_threshold).quantize(MONEY)


def set_variance_threshold(
    db: Session,
    *,
    store_id: int,
    threshold: Decimal,
    principal_id: int,
) -> ScratcherStoreSetting:
    ensure_store(db, store_id)
    try:
        clean = Decimal(str(threshold)).quantize(MONEY)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError('Variance threshold must be a number') from exc
    if clean < 0:
        raise ValueError('Variance threshold cannot be negative')

    setting = db.execute(
        select(ScratcherStoreSetting).where(ScratcherStoreSetting.store_id == store_id)
    ).scalar_one_or_none()
    if not setting:
        setting = ScratcherStoreSetting(store_id=store_id, variance_threshold=clean)
        db.add(setting)
    setting.variance_threshold = clean
    setting.updated_by_principal_id = principal_id
    setting.updated_at = _now()
    db.flush()
    return setting
