from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

MONEY = Decimal('0.01')


@dataclass(frozen=True)
class PackSegment:
    """One pack's slice of a slot reading window, in activation order."""

    pack_id: str | None
    start_ticket: str
    end_ticket: str | None
    price: Decimal | None


@dataclass(frozen=True)
class SlotSale:
    sold: int
    value: Decimal
    flags: tuple[str, ...] = ()
    segment_sold: tuple[int, ...] = ()


@dataclass(frozen=True)
class BreakdownRow:
    slot_id: str
    slot_number: int | None
    start_ticket: str
    end_ticket: str
    sold: int
    value: Decimal
    product_id: str | None = None
    pack_ids: list[str] = field(default_factory=list)
    segment_sold: list[int] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            'slot_id': self.slot_id,
            'slot_number': self.slot_number,
            'start_ticket': self.start_ticket,
            'end_ticket': self.end_ticket,
            'sold': self.sold,
            'value': str(self.value),
            'product_id': self.product_id,
            'pack_ids': list(self.pack_ids),
            'segment_sold': list(self.segment_sold),
        }

    @classmethod
    def from_json(cls, raw: dict) -> 'BreakdownRow':
        return cls(
            slot_id=raw['slot_id'],
            slot_number=raw.get('slot_number'),
            start_ticket=raw.get('start_ticket', ''),
            end_ticket=raw.get('end_ticket', ''),
            sold=int(raw.get('sold', 0)),
            value=Decimal(str(raw.get('value', '0'))),
            product_id=raw.get('product_id'),
            pack_ids=list(raw.get('pack_ids') or []),
            segment_sold=list(raw.get('segment_sold') or []),
        )


def price_key(price: Decimal) -> str:
    normalized = Decimal(price).quantize(MONEY).normalize()
    return format(normalized, 'f')


def pack_size_for_price(price: Decimal, pack_sizes: dict[str, int]) -> int | None:
    size = pack_sizes.get(price_key(price))
    if size is None or size <= 0:
        return None
    return size


def parse_ticket_number(value: str | None) -> int | None:
    trimmed = (value or '').strip()
    # isdigit() alone admits superscripts and other digits int() rejects.
    if not trimmed or not (trimmed.isascii() and trimmed.isdigit()):
        return None
    return int(trimmed)


def compute_end_ticket(start_ticket: str, pack_size: int | None) -> str | None:
    if pack_size is None:
        return None
    trimmed = start_ticket.strip()
    start_value = parse_ticket_number(trimmed)
    if start_value is None:
        return None
    return str(start_value + pack_size - 1).zfill(len(trimmed))


def _line_value(sold: int, price: Decimal | None) -> Decimal:
    if price is None:
        return Decimal('0.00')
    return (Decimal(sold) * price).quantize(MONEY)


def compute_slot_sale(
    start_reading: str,
    end_reading: str,
    segments: list[PackSegment],
    *,
    jump_threshold: int,
) -> SlotSale:
    """Tickets sold in one slot between two readings.

    Readings are the next unsold ticket number showing on the roll, so tickets
    count upward from a pack's start ticket. ``segments`` runs from the pack
    that was showing at the start reading to the pack showing at the end
    reading. A single segment means no rollover.
    """
    start_value = parse_ticket_number(start_reading)
    end_value = parse_ticket_number(end_reading)
    if start_value is None or end_value is None:
        return SlotSale(sold=0, value=Decimal('0.00'), flags=('invalid_ticket',))

    flags: list[str] = []
    if len(segments) <= 1:
        price = segments[0].price if segments else None
        sold = end_value - start_value
        if sold < 0:
            return SlotSale(sold=0, value=Decimal('0.00'), flags=('negative_variance',), segment_sold=(0,))
        if sold > jump_threshold:
            flags.append('large_jump')
        return SlotSale(sold=sold, value=_line_value(sold, price), flags=tuple(flags), segment_sold=(sold,))

    flags.append('pack_rollover')
    segment_sold: list[int] = []
    value = Decimal('0.00')
    last = len(segments) - 1
    for idx, segment in enumerate(segments):
        pack_start = parse_ticket_number(segment.start_ticket)
        pack_end = parse_ticket_number(segment.end_ticket)
        if idx == 0:
            # From the start reading through the last ticket of the old pack.
            count = None if pack_end is None else pack_end - start_value + 1
        elif idx == last:
            count = None if pack_start is None else end_value - pack_start
        else:
            count = None if pack_start is None or pack_end is None else pack_end - pack_start + 1

        if count is None:
            flags.append('unknown_pack_size')
            count = 0
        elif count < 0:
            flags.append('negative_variance')
            count = 0
        segment_sold.append(count)
        value += _line_value(count, segment.price)

    sold = sum(segment_sold)
    if sold > jump_threshold * len(segments):
        flags.append('large_jump')
    return SlotSale(
        sold=sold,
        value=value.quantize(MONEY),
        flags=tuple(dict.fromkeys(flags)),
        segment_sold=tuple(segment_sold),
    )


def compute_variance(reported: Decimal | None, expected: Decimal) -> Decimal:
    # Positive: employee declared more than the ticket ranges account for.
    return ((reported or Decimal('0.00')) - expected).quantize(MONEY)
