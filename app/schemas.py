from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from app.services.scratcher_snapshot_service import SnapshotItemInput


class SnapshotItemBody(BaseModel):
    slot_id: str
    ticket_value: str | None = None
    photo_file_id: str | None = None

    def to_input(self) -> SnapshotItemInput:
        return SnapshotItemInput(
            slot_id=self.slot_id,
            ticket_value=self.ticket_value,
            photo_file_id=self.photo_file_id,
        )


class ActivatePackBody(BaseModel):
    slot_id: str
    product_id: str | None = None
    pack_code: str | None = None
    start_ticket: str | None = None
    receipt_file_id: str | None = None


class ReturnPackBody(BaseModel):
    receipt_file_id: str | None = None
    note: str | None = None


class PackEventBody(BaseModel):
    event_type: str
    note: str | None = None
    file_id: str | None = None


class EndSnapshotBody(BaseModel):
    shift_report_id: str | None = None
    report_date: date | None = None
    items: list[SnapshotItemBody] = Field(default_factory=list)


class StartSnapshotBody(BaseModel):
    shift_report_id: str
    items: list[SnapshotItemBody] = Field(default_factory=list)


class BaselineBody(BaseModel):
    store_id: int
    items: list[SnapshotItemBody] = Field(default_factory=list)


class SlotCreateBody(BaseModel):
    store_id: int
    slot_number: int | None = None
    label: str | None = None


class SlotUpdateBody(BaseModel):
    label: str | None = None
    is_active: bool | None = None
    default_product_id: str | None = None


class ProductBody(BaseModel):
    id: str | None = None
    name: str | None = None
    price: Decimal
    is_active: bool | None = None


class ThresholdBody(BaseModel):
    store_id: int
    variance_threshold: Decimal


class FileBody(BaseModel):
    label: str = 'Scratcher File'
    storage_key: str
    content_type: str | None = None
