# storefront/checkout/routes.py
from flask import request, g

from ..services import order_service
from ..services.shipping_service import Destination
from ..utils.api import ok
from ..utils.decorators import login_required
from ..utils.money import to_number
from . import bp


@bp.post("")
@login_required
def checkout():
    """
    Body:
      {
        "receiver": {"name", "phone", "email", "address", "city", "district", "ward"},
        "payment_method": "COD" | "BANK_TRANSFER" | "MOMO" | "VNPAY" | "ZALOPAY",
        "voucher_code": "SALE10",
        "note": "..."
      }
    Only the cart lines marked selected are ordered.
    """
    payload = request.get_json(silent=True) or {}
    receiver = order_service.Receiver.from_payload(payload.get("receiver"))

    order = order_service.place_order(
        g.user.id,
        receiver,
        payload.get("payment_method"),
        voucher_code=payload.get("voucher_code"),
        note=payload.get("note"),
    )
    resp = ok("order created", {"order": order.summary()}, status=201)
    resp.headers["X-Order-Code"] = order.order_code
    return resp


@bp.post("/preview")
@login_required
def preview():
    """Body: {"city", "district", "voucher_code"} (all optional)."""
    payload = request.get_json(silent=True) or {}
    destination = None
    if payload.get("city"):
        destination = Destination(city=payload["city"], district=payload.get("district"),
                                  ward=payload.get("ward"))

    quote = order_service.preview_checkout(g.user.id, destination, payload.get("voucher_code"))
    return ok("checkout preview", {
        "lines": [
            {
                "line_id": l.line_id,
                "product_id": l.product_id,
                "variant_id": l.variant_id,
                "name": l.name,
                "variant_name": l.variant_name,
                "unit_price": to_number(l.unit_price),
                "quantity": l.quantity,
                "subtotal": to_number(l.subtotal),
            }
            for l in quote["lines"]
        ],
        "subtotal": to_number(quote["subtotal"]),
        "shipping_fee": to_number(quote["shipping_fee"]),
        "discount_amount": to_number(quote["discount_amount"]),
        "total_amount": to_number(quote["total_amount"]),
        "voucher_code": quote["voucher_code"],
        "voucher_error": quote["voucher_error"],
        "stock_issues": quote["stock_issues"],
    })
