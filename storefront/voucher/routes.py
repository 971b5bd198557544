# storefront/voucher/routes.py
from __future__ import annotations
from decimal import InvalidOperation
from flask import request, g

from ..services import cart_service, voucher_service
from ..utils.api import ok, err
from ..utils.decorators import login_required, role_at_least
from ..utils.money import D, ZERO, round_money, to_number
from . import bp


def _cart_amount(user_id: int):
    return round_money(sum((l.subtotal for l in cart_service.get_selected_lines(user_id)), ZERO))


@bp.post("")
@role_at_least("manager")
def create_voucher():
    data = request.get_json(silent=True) or {}
    v = voucher_service.create_voucher_from_payload(data)
    return ok("Voucher created", {"voucher": v.as_api()}, status=201)


@bp.get("")
@role_at_least("manager")
def list_vouchers():
    active = request.args.get("active")
    if active is not None:
        active = active.lower() == "true"
    items = voucher_service.list_vouchers(active=active)
    return ok("ok", {"items": [v.as_api() for v in items]})


@bp.post("/check")
@login_required
def check_voucher():
    """
    Body: { "code": "SALE10", "order_amount": 100000 }
    Without order_amount the selected cart subtotal is used.
    """
    data = request.get_json(silent=True) or {}
    code = (data.get("code") or "").strip()
    if not code:
        return err("code is required", 422)

    if data.get("order_amount") is None:
        amount = _cart_amount(g.user.id)
    else:
        try:
            amount = round_money(D(data["order_amount"]))
        except InvalidOperation:
            return err("order_amount must be numeric", 422)
    voucher, discount = voucher_service.validate_for_checkout(code, g.user.id, amount)
    return ok("voucher valid", {
        "voucher": voucher.as_api(),
        "order_amount": to_number(amount),
        "discount_amount": to_number(discount),
    })


@bp.get("/available")
@login_required
def available_vouchers():
    amount = _cart_amount(g.user.id)
    items = voucher_service.find_vouchers_for_user(g.user.id, amount)
    return ok("ok", {
        "order_amount": to_number(amount),
        "items": [
            {**v.as_api(), "discount_amount": to_number(voucher_service.calculate_discount(v, amount))}
            for v in items
        ],
    })
