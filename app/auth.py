from dataclasses import dataclass, field
from enum import Enum

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.db import get_db
from app.models import Principal as PrincipalRecord
from app.models import PrincipalStoreAccess


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    LEAD = "LEAD"
    STORE = "STORE"


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    store_id: int | None
    active: bool
    display_name: str | None = None
    store_ids: set[int] = field(default_factory=set)


def load_principal(db: Session, principal_id: int) -> Principal | None:
    record = db.execute(select(PrincipalRecord).where(PrincipalRecord.id == principal_id)).scalar_one_or_none()
    if not record:
        return None
    granted = set(
        db.execute(
            select(PrincipalStoreAccess.store_id).where(PrincipalStoreAccess.principal_id == record.id)
        ).scalars().all()
    )
    if record.store_id is not None:
        granted.add(record.store_id)
    return Principal(
        id=record.id,
        username=record.username,
        role=Role(record.role.value),
        store_id=record.store_id,
        active=record.active,
        display_name=record.display_name,
        store_ids=granted,
    )


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    # Authentication happens upstream; it forwards the principal id in a header.
    raw = (request.headers.get(settings.identity_header) or "").strip()
    if not raw.isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    principal = load_principal(db, int(raw))
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    request.state.principal = principal
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def assert_store_scope(principal: Principal, target_store_id: int) -> None:
    if principal.role == Role.ADMIN:
        return
    if target_store_id not in principal.store_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
