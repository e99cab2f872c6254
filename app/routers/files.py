from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.auth import Principal, Role, require_role
from app.db import get_db
from app.dependencies import get_client_ip, http_error
from app.schemas import FileBody
from app.services.audit_service import log_audit
from app.services.scratcher_file_service import file_to_dict, get_file, register_file

router = APIRouter(prefix='/api/scratchers', tags=['scratcher-files'])
any_access = require_role(Role.ADMIN, Role.MANAGER, Role.LEAD, Role.STORE)


@router.get('/files')
def resolve_file(
    id: str,
    principal: Principal = Depends(any_access),
    db: Session = Depends(get_db),
):
    try:
        record = get_file(db, file_id=id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return file_to_dict(record)


@router.post('/files')
def create_file(
    body: FileBody,
    request: Request,
    principal: Principal = Depends(any_access),
    db: Session = Depends(get_db),
):
    try:
        record = register_file(
            db,
            label=body.label,
            storage_key=body.storage_key,
            content_type=body.content_type,
            principal_id=principal.id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc

    log_audit(
        db,
        actor_principal_id=principal.id,
        action='SCRATCHER_FILE_REGISTERED',
        store_id=principal.store_id,
        ip=get_client_ip(request),
        metadata={'file_id': record.id, 'label': record.label},
    )
    db.commit()
    return file_to_dict(record)
