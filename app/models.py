from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
IntPK = BigInteger().with_variant(Integer(), 'sqlite')


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    LEAD = 'LEAD'
    STORE = 'STORE'


class ScratcherPackStatus(str, Enum):
    ACTIVE = 'active'
    ENDED = 'ended'
    RETURNED = 'returned'


class ScratcherPackEventType(str, Enum):
    ACTIVATED = 'activated'
    ENDED = 'ended'
    RETURNED = 'returned'
    RETURN_RECEIPT = 'return_receipt'
    CORRECTION = 'correction'
    NOTE = 'note'


class ScratcherSnapshotType(str, Enum):
    START = 'start'
    END = 'end'


class Store(Base):
    __tablename__ = 'stores'

    id: Mapped[int] = mapped_column(IntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(IntPK, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PrincipalStoreAccess(Base):
    __tablename__ = 'principal_store_access'

    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id', ondelete='CASCADE'), primary_key=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), primary_key=True)


class ShiftReport(Base):
    __tablename__ = 'shift_reports'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id'), nullable=False)
    employee_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    employee_name: Mapped[str | None] = mapped_column(Text)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    scr_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    is_baseline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherFile(Base):
    __tablename__ = 'scratcher_files'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherProduct(Base):
    __tablename__ = 'scratcher_products'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherSlot(Base):
    __tablename__ = 'scratcher_slots'
    __table_args__ = (
        UniqueConstraint('store_id', 'slot_number', name='scratcher_slots_store_slot_number_key'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    slot_number: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    default_product_id: Mapped[str | None] = mapped_column(String(36), ForeignKey('scratcher_products.id'))
    # Back-reference only; packs are owned by the store.
    active_pack_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherPack(Base):
    __tablename__ = 'scratcher_packs'
    __table_args__ = (
        UniqueConstraint('slot_id', 'slot_sequence', name='scratcher_packs_slot_sequence_key'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    slot_id: Mapped[str] = mapped_column(String(36), ForeignKey('scratcher_slots.id'), nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey('scratcher_products.id'), nullable=False)
    pack_code: Mapped[str | None] = mapped_column(Text)
    ticket_price: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    slot_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    start_ticket: Mapped[str] = mapped_column(String(32), nullable=False)
    end_ticket: Mapped[str | None] = mapped_column(String(32))
    status: Mapped[ScratcherPackStatus] = mapped_column(
        SQLEnum(ScratcherPackStatus, name='scratcher_pack_status', values_callable=_enum_values),
        nullable=False,
        default=ScratcherPackStatus.ACTIVE,
    )
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    activated_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    activation_receipt_file_id: Mapped[str] = mapped_column(String(36), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))


class ScratcherPackEvent(Base):
    __tablename__ = 'scratcher_pack_events'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    pack_id: Mapped[str] = mapped_column(String(36), ForeignKey('scratcher_packs.id'), nullable=False)
    event_type: Mapped[ScratcherPackEventType] = mapped_column(
        SQLEnum(ScratcherPackEventType, name='scratcher_pack_event_type', values_callable=_enum_values),
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(Text)
    file_id: Mapped[str | None] = mapped_column(String(36))
    created_by_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherShiftSnapshot(Base):
    __tablename__ = 'scratcher_shift_snapshots'
    __table_args__ = (
        UniqueConstraint('shift_report_id', 'snapshot_type', name='scratcher_shift_snapshots_shift_type_key'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    shift_report_id: Mapped[str] = mapped_column(String(36), ForeignKey('shift_reports.id'), nullable=False)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    employee_principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    snapshot_type: Mapped[ScratcherSnapshotType] = mapped_column(
        SQLEnum(ScratcherSnapshotType, name='scratcher_snapshot_type', values_callable=_enum_values),
        nullable=False,
    )
    is_baseline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherShiftSnapshotItem(Base):
    __tablename__ = 'scratcher_shift_snapshot_items'
    __table_args__ = (
        UniqueConstraint('snapshot_id', 'slot_id', name='scratcher_shift_snapshot_items_snapshot_slot_key'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    snapshot_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('scratcher_shift_snapshots.id', ondelete='CASCADE'), nullable=False
    )
    slot_id: Mapped[str] = mapped_column(String(36), ForeignKey('scratcher_slots.id'), nullable=False)
    pack_id: Mapped[str | None] = mapped_column(String(36))
    ticket_value: Mapped[str] = mapped_column(String(32), nullable=False)
    photo_file_id: Mapped[str | None] = mapped_column(String(36))


class ScratcherShiftCalculation(Base):
    __tablename__ = 'scratcher_shift_calculations'

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    shift_report_id: Mapped[str] = mapped_column(String(36), ForeignKey('shift_reports.id'), nullable=False, unique=True)
    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), nullable=False)
    employee_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    expected_total_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expected_total_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    reported_scr_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    variance_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    breakdown: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    flags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ScratcherStoreSetting(Base):
    __tablename__ = 'scratcher_store_settings'

    store_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('stores.id', ondelete='CASCADE'), primary_key=True)
    variance_threshold: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    updated_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(IntPK, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    store_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('stores.id'))
    ip: Mapped[str | None] = mapped_column(Text)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
