# storefront/services/inventory_service.py
"""Stock ledger over ``product.quantity`` / ``product_variant.quantity``.

Reservations are a single conditional UPDATE (``... WHERE quantity >= :n``);
the row count tells us whether we won. Nothing here reads a quantity and
then writes it back, so concurrent checkouts for the last unit cannot both
succeed. Callers own the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import case, select, update
from sqlalchemy.orm.util import identity_key

from ..errors import InsufficientStock, NotFoundError
from ..extensions import db
from ..model import Product, ProductVariant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockUnit:
    product_id: int
    variant_id: int | None
    active: bool
    price: Decimal
    quantity: int
    low_stock_threshold: int
    name: str
    variant_name: str | None = None
    sku: str | None = None
    image_url: str | None = None


def get_stock_unit(product_id: int, variant_id: int | None = None) -> StockUnit:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError("product", product_id)

    if variant_id is None:
        return StockUnit(
            product_id=product.id,
            variant_id=None,
            active=bool(product.is_active),
            price=product.effective_price(),
            quantity=int(product.quantity or 0),
            low_stock_threshold=int(product.low_stock_threshold or 0),
            name=product.name,
            sku=product.sku,
            image_url=product.image_url,
        )

    variant = db.session.get(ProductVariant, variant_id)
    if not variant or variant.product_id != product.id:
        raise NotFoundError("variant", variant_id)
    return StockUnit(
        product_id=product.id,
        variant_id=variant.id,
        active=bool(product.is_active) and bool(variant.is_active),
        price=variant.final_price(),
        quantity=int(variant.quantity or 0),
        low_stock_threshold=int(product.low_stock_threshold or 0),
        name=product.name,
        variant_name=variant.name,
        sku=variant.sku or product.sku,
        image_url=variant.image_url or product.image_url,
    )


def _expire_loaded(model, pk, *attrs):
    # keep already-loaded instances from showing the pre-UPDATE quantity
    obj = db.session.identity_map.get(identity_key(model, pk))
    if obj is not None:
        db.session.expire(obj, list(attrs) or None)


def _current_quantity(product_id: int, variant_id: int | None) -> int:
    if variant_id is None:
        q = select(Product.quantity).where(Product.id == product_id)
    else:
        q = select(ProductVariant.quantity).where(ProductVariant.id == variant_id)
    return int(db.session.execute(q).scalar() or 0)


def reserve(product_id: int, variant_id: int | None, quantity: int, name: str | None = None):
    """Take ``quantity`` units off the shelf or raise InsufficientStock."""
    if quantity <= 0:
        raise ValueError("quantity must be >= 1")

    pt = Product.__table__
    if variant_id is None:
        stmt = (
            update(pt)
            .where(pt.c.id == product_id, pt.c.quantity >= quantity)
            .values(quantity=pt.c.quantity - quantity, sold_count=pt.c.sold_count + quantity)
        )
    else:
        vt = ProductVariant.__table__
        stmt = (
            update(vt)
            .where(vt.c.id == variant_id, vt.c.product_id == product_id, vt.c.quantity >= quantity)
            .values(quantity=vt.c.quantity - quantity)
        )

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        available = _current_quantity(product_id, variant_id)
        logger.info("Reserve refused for product %s (variant %s): want %s, have %s",
                    product_id, variant_id, quantity, available)
        raise InsufficientStock(product_id, variant_id, quantity, available, name=name)

    if variant_id is None:
        _expire_loaded(Product, product_id, "quantity", "sold_count")
    else:
        # sold figures are tracked per product
        db.session.execute(
            update(pt).where(pt.c.id == product_id).values(sold_count=pt.c.sold_count + quantity)
        )
        _expire_loaded(ProductVariant, variant_id, "quantity")
        _expire_loaded(Product, product_id, "sold_count")
    logger.info("Decreased stock for product %s (variant %s): -%s", product_id, variant_id, quantity)


def release(product_id: int, variant_id: int | None, quantity: int):
    """Put units back. Unconditional; used on cancellation and returns."""
    if quantity <= 0:
        return

    pt = Product.__table__
    unsold = case((pt.c.sold_count >= quantity, pt.c.sold_count - quantity), else_=0)
    if variant_id is None:
        stmt = update(pt).where(pt.c.id == product_id).values(
            quantity=pt.c.quantity + quantity, sold_count=unsold)
        result = db.session.execute(stmt)
        _expire_loaded(Product, product_id, "quantity", "sold_count")
    else:
        vt = ProductVariant.__table__
        result = db.session.execute(
            update(vt).where(vt.c.id == variant_id).values(quantity=vt.c.quantity + quantity)
        )
        db.session.execute(update(pt).where(pt.c.id == product_id).values(sold_count=unsold))
        _expire_loaded(ProductVariant, variant_id, "quantity")
        _expire_loaded(Product, product_id, "sold_count")

    if result.rowcount != 1:
        logger.warning("Release for missing stock unit: product %s variant %s qty %s",
                       product_id, variant_id, quantity)
        return
    logger.info("Increased stock for product %s (variant %s): +%s", product_id, variant_id, quantity)


def reserve_lines(lines):
    """Reserve every line in a stable (product, variant) order.

    Overlapping checkouts then lock rows in the same sequence. A failure
    leaves earlier reservations to the caller's rollback.
    """
    for line in sorted(lines, key=lambda l: (l.product_id, l.variant_id or 0)):
        reserve(line.product_id, line.variant_id, line.quantity, name=getattr(line, "name", None))


def low_stock_units():
    return (
        Product.query
        .filter(Product.is_active.is_(True))
        .filter(Product.quantity > 0)
        .filter(Product.quantity <= Product.low_stock_threshold)
        .order_by(Product.quantity.asc())
        .all()
    )
