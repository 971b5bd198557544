# storefront/services/cart_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from ..errors import InsufficientStock, NotFoundError, StorefrontError
from ..extensions import db
from ..model import Cart, CartItem, Product, ProductVariant
from ..utils.money import round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """What checkout sees of a cart line; prices are fixed when it is taken."""
    line_id: int
    product_id: int
    variant_id: int | None
    quantity: int
    unit_price: Decimal
    selected: bool
    name: str
    variant_name: str | None = None
    sku: str | None = None
    image_url: str | None = None

    @property
    def subtotal(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


@dataclass
class MergeResult:
    merged: list = field(default_factory=list)
    skipped: list = field(default_factory=list)


def _snapshot(item: CartItem) -> CartLine:
    variant = item.variant
    return CartLine(
        line_id=item.id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        quantity=int(item.quantity),
        unit_price=round_money(item.unit_price_dec()),
        selected=bool(item.is_selected),
        name=item.product.name,
        variant_name=variant.name if variant else None,
        sku=(variant.sku if variant and variant.sku else item.product.sku),
        image_url=(variant.image_url if variant and variant.image_url else item.product.image_url),
    )


# ---- cart provider (used by checkout) ---------------------------------------

def find_user_cart(user_id: int) -> Cart | None:
    return Cart.query.filter_by(user_id=user_id).first()


def get_selected_lines(user_id: int) -> list[CartLine]:
    cart = find_user_cart(user_id)
    if not cart:
        return []
    return [_snapshot(i) for i in cart.items if i.is_selected]


def remove_lines(user_id: int, line_ids) -> int:
    """Drop the given lines from the user's cart. Does not commit."""
    cart = find_user_cart(user_id)
    if not cart:
        return 0
    ids = set(line_ids)
    doomed = [i for i in cart.items if i.id in ids]
    for item in doomed:
        cart.items.remove(item)  # delete-orphan removes the row
    db.session.flush()
    return len(doomed)


# ---- cart CRUD ---------------------------------------------------------------

def get_or_create_cart(user_id: int | None = None, session_id: str | None = None) -> Cart:
    if user_id is None and not session_id:
        raise ValueError("a cart needs a user or a session id")
    if user_id is not None:
        cart = find_user_cart(user_id)
        if not cart:
            cart = Cart(user_id=user_id)
    else:
        cart = Cart.query.filter_by(session_id=session_id).first()
        if not cart:
            cart = Cart(session_id=session_id)
    if cart.id is None:
        db.session.add(cart)
        db.session.commit()
    return cart


def _resolve_sellable(product_id: int, variant_id: int | None):
    product = db.session.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFoundError("product", product_id)
    variant = None
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if not variant or variant.product_id != product.id or not variant.is_active:
            raise NotFoundError("variant", variant_id)
    elif product.variants:
        raise ValueError("variant_id is required for this product")
    return product, variant


def _find_item(cart: Cart, product_id: int, variant_id: int | None) -> CartItem | None:
    return next((i for i in cart.items
                 if i.product_id == product_id and i.variant_id == variant_id), None)


def _item(cart: Cart, item_id: int) -> CartItem:
    item = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("cart item", item_id)
    return item


def add_item(cart: Cart, product_id: int, variant_id: int | None = None, quantity: int = 1) -> CartItem:
    if quantity < 1:
        raise ValueError("quantity must be >= 1")
    product, variant = _resolve_sellable(product_id, variant_id)
    available = int((variant or product).quantity or 0)

    item = _find_item(cart, product.id, variant.id if variant else None)
    new_qty = quantity + (item.quantity if item else 0)
    if new_qty > available:
        raise InsufficientStock(product.id, variant.id if variant else None, new_qty, available,
                                name=product.name)

    if item:
        item.quantity = new_qty
        item.is_selected = True
    else:
        item = CartItem(product_id=product.id, variant_id=variant.id if variant else None,
                        quantity=new_qty, is_selected=True)
        cart.items.append(item)
    db.session.commit()
    return item


def update_item(cart: Cart, item_id: int, quantity: int | None = None, selected: bool | None = None) -> CartItem:
    item = _item(cart, item_id)
    if quantity is not None:
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        available = item.available_quantity()
        if quantity > available:
            raise InsufficientStock(item.product_id, item.variant_id, quantity, available,
                                    name=item.display_name())
        item.quantity = quantity
    if selected is not None:
        item.is_selected = bool(selected)
    db.session.commit()
    return item


def select_all(cart: Cart, selected: bool = True) -> Cart:
    for item in cart.items:
        item.is_selected = bool(selected)
    db.session.commit()
    return cart


def remove_item(cart: Cart, item_id: int):
    cart.items.remove(_item(cart, item_id))
    db.session.commit()


def clear(cart: Cart):
    # because of cascade="all, delete-orphan", clearing the list deletes rows
    cart.items.clear()
    db.session.commit()


def merge_guest_cart(session_id: str, user_id: int) -> MergeResult:
    """Move a guest cart into the user's cart after login.

    Lines that no longer validate (inactive product, not enough stock) are
    left out and reported in ``skipped`` instead of vanishing silently.
    """
    result = MergeResult()
    guest = Cart.query.filter_by(session_id=session_id).first()
    if not guest or not guest.items:
        return result

    user_cart = get_or_create_cart(user_id=user_id)

    for item in list(guest.items):
        product_id, variant_id, qty = item.product_id, item.variant_id, item.quantity
        entry = {"product_id": product_id, "variant_id": variant_id, "quantity": qty}
        # the line leaves the guest cart in the same commit that adds it to the user's
        guest.items.remove(item)
        try:
            add_item(user_cart, product_id, variant_id, qty)
        except (StorefrontError, ValueError) as e:
            db.session.rollback()
            logger.warning("Could not merge cart item %s/%s: %s", product_id, variant_id, e)
            result.skipped.append({**entry, "reason": str(e)})
            continue
        result.merged.append(entry)

    db.session.delete(guest)
    db.session.commit()

    logger.info("Merged guest cart %s into user cart %s (%s merged, %s skipped)",
                session_id, user_id, len(result.merged), len(result.skipped))
    return result
