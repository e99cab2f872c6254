from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import (
    Base,
    Principal,
    PrincipalRole,
    PrincipalStoreAccess,
    ScratcherProduct,
    ShiftReport,
    Store,
)
from app.services.scratcher_catalog_service import list_products
from app.services.scratcher_math_service import price_key


def make_session() -> Session:
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def add_store(db: Session, name: str = 'Downtown') -> Store:
    store = Store(name=name, active=True, created_at=datetime.now(tz=timezone.utc))
    db.add(store)
    db.flush()
    return store


def add_principal(
    db: Session,
    *,
    username: str,
    role: PrincipalRole,
    store_id: int | None = None,
    active: bool = True,
    granted_store_ids: tuple[int, ...] = (),
) -> Principal:
    principal = Principal(
        username=username,
        display_name=username.title(),
        role=role,
        store_id=store_id,
        active=active,
        created_at=datetime.now(tz=timezone.utc),
    )
    db.add(principal)
    db.flush()
    for granted in granted_store_ids:
        db.add(PrincipalStoreAccess(principal_id=principal.id, store_id=granted))
    db.flush()
    return principal


def add_report(
    db: Session,
    *,
    store_id: int,
    principal_id: int,
    scr_amount: Decimal | None,
    report_date: date = date(2026, 3, 2),
    employee_name: str = 'Jordan',
) -> ShiftReport:
    report = ShiftReport(
        store_id=store_id,
        employee_principal_id=principal_id,
        employee_name=employee_name,
        report_date=report_date,
        scr_amount=scr_amount,
        is_baseline=False,
        created_at=datetime.now(tz=timezone.utc),
    )
    db.add(report)
    db.flush()
    return report


def product_for(db: Session, price: str) -> ScratcherProduct:
    """Active catalog product at a standard price."""
    key = price_key(Decimal(price))
    for product in list_products(db):
        if product.is_active and price_key(product.price) == key:
            return product
    raise LookupError(price)

