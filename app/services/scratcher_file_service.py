from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ScratcherFile
from app.services.scratcher_errors import ScratcherNotFoundError


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def register_file(
    db: Session,
    *,
    label: str,
    storage_key: str,
    content_type: str | None,
    principal_id: int | None,
) -> ScratcherFile:
    clean_key = storage_key.strip()
    if not clean_key:
        raise ValueError('Storage key is required')
    record = ScratcherFile(
        label=label.strip() or 'Scratcher File',
        storage_key=clean_key,
        content_type=content_type,
        created_by_principal_id=principal_id,
        created_at=_now(),
    )
    db.add(record)
    db.flush()
    return record


def get_file(db: Session, *, file_id: str) -> ScratcherFile:
    record = db.execute(select(ScratcherFile).where(ScratcherFile.id == file_id)).scalar_one_or_none()
    if not record:
        raise ScratcherNotFoundError('File not found')
    return record


def file_to_dict(record: ScratcherFile) -> dict:
    return {
        'id': record.id,
        'label': record.label,
        'storage_key': record.storage_key,
        'content_type': record.content_type,
        'created_at': record.created_at,
    }
