# storefront/cart/routes.py
from __future__ import annotations
from flask import request, g

from ..errors import PermissionDenied
from ..services import cart_service
from ..utils.api import ok, err
from ..utils.decorators import login_optional, login_required
from . import bp


def _resolve_cart():
    """Logged-in users get their own cart; guests are keyed by X-Session-Id."""
    user = getattr(g, "user", None)
    if user:
        return cart_service.get_or_create_cart(user_id=user.id)
    sid = (request.headers.get("X-Session-Id") or "").strip()
    if not sid:
        raise PermissionDenied("login or send X-Session-Id to use a cart")
    return cart_service.get_or_create_cart(session_id=sid)


def _cart_response(msg, cart, status=200):
    resp = ok(msg, {"cart": cart.as_api()}, status=status)
    resp.headers["X-Cart-Id"] = cart.uuid
    return resp


def _int_or_none(value, name):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer") from None


# ---- endpoints -------------------------------------------------------------

@bp.get("")
@login_optional
def get_cart():
    return _cart_response("cart", _resolve_cart())


@bp.post("/items")
@login_optional
def add_item():
    """
    Body: { "product_id": int, "variant_id": int | null, "quantity": int }
    """
    cart = _resolve_cart()
    data = request.get_json(silent=True) or {}
    product_id = _int_or_none(data.get("product_id"), "product_id")
    if not product_id:
        return err("product_id is required", 422)
    qty = _int_or_none(data.get("quantity") or data.get("qty"), "quantity") or 1

    cart_service.add_item(cart, product_id, _int_or_none(data.get("variant_id"), "variant_id"), qty)
    return _cart_response("item added", cart, status=201)


@bp.patch("/items/<int:item_id>")
@login_optional
def update_item(item_id: int):
    """
    Body: { "quantity": int, "selected": bool } (either or both)
    """
    cart = _resolve_cart()
    data = request.get_json(silent=True) or {}
    if "quantity" not in data and "selected" not in data:
        return err("quantity or selected is required", 422)

    selected = data.get("selected")
    cart_service.update_item(
        cart, item_id,
        quantity=_int_or_none(data.get("quantity"), "quantity"),
        selected=None if selected is None else bool(selected),
    )
    return _cart_response("item updated", cart)


@bp.patch("/select")
@login_optional
def select_all():
    cart = _resolve_cart()
    data = request.get_json(silent=True) or {}
    cart_service.select_all(cart, bool(data.get("selected", True)))
    return _cart_response("selection updated", cart)


@bp.delete("/items/<int:item_id>")
@login_optional
def remove_item(item_id: int):
    cart = _resolve_cart()
    cart_service.remove_item(cart, item_id)
    return _cart_response("item removed", cart)


@bp.delete("/items")
@login_optional
def clear_cart_items():
    cart = _resolve_cart()
    cart_service.clear(cart)
    return _cart_response("all items removed", cart)


@bp.post("/merge")
@login_required
def merge_guest_cart():
    """Header: X-Session-Id of the guest cart to fold into the user's cart."""
    sid = (request.headers.get("X-Session-Id") or "").strip()
    if not sid:
        return err("X-Session-Id header is required", 422)

    result = cart_service.merge_guest_cart(sid, g.user.id)
    cart = cart_service.get_or_create_cart(user_id=g.user.id)
    resp = ok("cart merged", {
        "cart": cart.as_api(),
        "merged": result.merged,
        "skipped": result.skipped,
    })
    resp.headers["X-Cart-Id"] = cart.uuid
    return resp
