from __future__ import annotations

from sqlalchemy.orm import Session

from app.services.audit_service import log_audit


def send_store_system_message_stub(
    db: Session,
    *,
    actor_principal_id: int,
    store_id: int,
    ip: str | None,
    message: str,
) -> None:
    # Store chat lives outside this service; record what would have been posted.
    log_audit(
        db,
        actor_principal_id=actor_principal_id,
        action='STORE_CHAT_MESSAGE_STUB_SENT',
        store_id=store_id,
        ip=ip,
        metadata={'message': message, 'status': 'STUB_SENT'},
    )
