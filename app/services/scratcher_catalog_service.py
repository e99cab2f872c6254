from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models import ScratcherProduct
from app.services.scratcher_errors import ScratcherNotFoundError
from app.services.scratcher_math_service import MONEY, pack_size_for_price, price_key


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _standard_prices() -> list[Decimal]:
    return sorted(Decimal(key) for key in settings.scratcher_pack_sizes)


def parse_price(raw: object) -> Decimal:
    try:
        price = Decimal(str(raw)).quantize(MONEY)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError('Price is required') from exc
    if price <= 0:
        raise ValueError('Price must be greater than zero')
    return price


def list_products(db: Session) -> list[ScratcherProduct]:
    """Return the catalog, keeping exactly one active product per standard price.

    Missing standard prices get a fresh product, and duplicate active products
    at the same price are deactivated (the first one by creation wins).
    """
    products = db.execute(
        select(ScratcherProduct).order_by(ScratcherProduct.price.asc(), ScratcherProduct.created_at.asc())
    ).scalars().all()

    seen_prices: set[str] = set()
    active_prices: set[str] = set()
    changed = False
    for product in products:
        if product.price is None or product.price <= 0:
            if product.is_active:
                product.is_active = False
                changed = True
            continue
        key = price_key(product.price)
        seen_prices.add(key)
        if not product.is_active:
            continue
        if key in active_prices:
            product.is_active = False
            changed = True
        else:
            active_prices.add(key)

    for price in _standard_prices():
        if price_key(price) in seen_prices:
            continue
        db.add(ScratcherProduct(name=None, price=price.quantize(MONEY), is_active=True, created_at=_now()))
        changed = True

    if changed:
        db.flush()
        products = db.execute(
            select(ScratcherProduct).order_by(ScratcherProduct.price.asc(), ScratcherProduct.created_at.asc())
        ).scalars().all()
    return list(products)


def get_product(db: Session, *, product_id: str) -> ScratcherProduct:
    product = db.execute(select(ScratcherProduct).where(ScratcherProduct.id == product_id)).scalar_one_or_none()
    if not product:
        raise ScratcherNotFoundError('Scratcher product not found')
    return product


def upsert_product(
    db: Session,
    *,
    product_id: str | None,
    name: str | None,
    price: Decimal,
    is_active: bool | None = None,
) -> ScratcherProduct:
    clean_price = parse_price(price)
    clean_name = (name or '').strip() or None

    if product_id:
        product = get_product(db, product_id=product_id)
        product.name = clean_name if name is not None else product.name
        # Packs freeze their own ticket price, so this never rewrites history.
        product.price = clean_price
        if is_active is not None:
            product.is_active = is_active
        db.flush()
        return product

    product = ScratcherProduct(
        name=clean_name,
        price=clean_price,
        is_active=True if is_active is None else is_active,
        created_at=_now(),
    )
    db.add(product)
    db.flush()
    return product


def product_to_dict(product: ScratcherProduct) -> dict:
    return {
        'id': product.id,
        'name': product.name,
        'price': product.price,
        'is_active': product.is_active,
        'pack_size': pack_size_for_price(product.price, settings.scratcher_pack_sizes),
    }
