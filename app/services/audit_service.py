from __future__ import annotations

from sqlalchemy.orm import Session

from app.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    store_id: int | None,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            action=action,
            store_id=store_id,
            ip=ip,
            meta=metadata or {},
        )
    )
