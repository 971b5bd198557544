# storefront/order/routes.py
from flask import request, g, current_app

from ..services import order_service
from ..utils.api import ok, err
from ..utils.decorators import login_required, role_at_least, is_staff
from . import bp


def _page_args():
    try:
        page = max(int(request.args.get("page", 1)), 1)
        per = int(request.args.get("per_page", current_app.config.get("ORDERS_PER_PAGE", 20)))
    except ValueError:
        raise ValueError("page and per_page must be integers") from None
    return page, min(max(per, 1), 100)


@bp.get("")
@login_required
def list_orders():
    """
    Query params:
      - page, per_page
      - status=PENDING|CONFIRMED|...|RETURNED
      - user_id=<id>  (staff only; customers always see their own orders)
    """
    page, per = _page_args()
    user_id = g.user.id
    if is_staff(g.user):
        user_id = request.args.get("user_id", type=int)

    paged = order_service.list_orders(user_id=user_id, status=request.args.get("status"),
                                      page=page, per_page=per)
    return ok("orders", {
        "page": page,
        "per_page": per,
        "total": paged.total,
        "items": [o.as_api() for o in paged.items],
    })


@bp.get("/<string:order_code>")
@login_required
def get_order(order_code: str):
    order = order_service.get_order(order_code, g.user.id, is_staff=is_staff(g.user))
    return ok("order", {"order": order.as_api()})


@bp.post("/<int:order_id>/status")
@role_at_least("manager")
def update_status(order_id: int):
    """
    Body: { "status": "CONFIRMED", "note": "...", "admin_note": "..." }
    On a refused transition the unchanged order comes back with the error.
    """
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return err("status is required", 422)

    order = order_service.update_status(order_id, data["status"], g.user.id,
                                        note=data.get("note"), admin_note=data.get("admin_note"))
    return ok("order status updated", {"order": order.summary()})


@bp.post("/<int:order_id>/cancel")
@login_required
def cancel(order_id: int):
    data = request.get_json(silent=True) or {}
    order = order_service.cancel_order(order_id, g.user.id, reason=data.get("reason"),
                                       is_staff=is_staff(g.user))
    return ok("order cancelled", {"order": order.summary()})


@bp.post("/<int:order_id>/return-request")
@login_required
def return_request(order_id: int):
    data = request.get_json(silent=True) or {}
    if not (data.get("reason") or "").strip():
        return err("reason is required", 422)
    order = order_service.request_return(order_id, g.user.id, reason=data["reason"].strip())
    return ok("return requested", {"order": order.summary()})


@bp.post("/<int:order_id>/payment")
@role_at_least("manager")
def update_payment(order_id: int):
    """Body: { "is_paid": true, "transaction_id": "..." }"""
    data = request.get_json(silent=True) or {}
    if "is_paid" not in data:
        return err("is_paid is required", 422)
    order = order_service.update_payment_status(order_id, bool(data["is_paid"]), data.get("transaction_id"))
    return ok("payment updated", {"order": order.as_api()})
