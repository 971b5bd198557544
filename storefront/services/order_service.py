# storefront/services/order_service.py
"""Checkout and the order lifecycle.

``place_order`` turns the selected cart lines into an order in one
transaction: stock reservations, the order rows, the voucher redemption and
the cart cleanup commit together or not at all. Status changes go through
``update_status``, which locks the order row and consults the transition
table in ``model.order_status``. Notifications are sent only after commit.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from flask import current_app

from ..errors import (EmptyCartError, InsufficientStock, InvalidTransitionError,
                      InvalidVoucherError, NotFoundError, PermissionDenied)
from ..extensions import db
from ..model import Order, OrderItem, OrderStatusHistory, User
from ..model.order_status import (OrderStatus, PaymentMethod, RESTOCK_STATUSES,
                                  can_cancel, can_request_return, can_transition,
                                  parse_status, timestamp_field)
from ..utils.money import ZERO, clamp_zero, round_money
from ..utils.timeutil import utcnow
from . import cart_service, inventory_service, voucher_service
from .shipping_service import Destination

logger = logging.getLogger(__name__)

ORDER_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class Receiver:
    name: str
    phone: str
    address: str
    city: str
    district: str
    ward: str | None = None
    email: str | None = None

    REQUIRED = ("name", "phone", "address", "city", "district")

    @classmethod
    def from_payload(cls, data: dict) -> "Receiver":
        data = data or {}
        values = {k: (str(data.get(k) or "").strip() or None)
                  for k in ("name", "phone", "address", "city", "district", "ward", "email")}
        missing = [k for k in cls.REQUIRED if not values[k]]
        if missing:
            raise ValueError(f"receiver {', '.join(missing)} required")
        return cls(**values)

    def destination(self) -> Destination:
        return Destination(city=self.city, district=self.district, ward=self.ward, address=self.address)


def _shipping():
    return current_app.extensions["shipping"]


def _notifier():
    return current_app.extensions["notifier"]


def _notify(event: str, order: Order, *args):
    """Call the notifier after commit. Its failures are logged, never raised."""
    code = order.order_code
    try:
        getattr(_notifier(), event)(order, *args)
    except Exception:
        db.session.rollback()
        logger.exception("Notifier %s failed for order %s", event, code)


def parse_payment_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(str(value or PaymentMethod.COD.value).strip().upper())
    except ValueError:
        raise ValueError(f"unknown payment method: {value}") from None


def generate_order_code(now=None) -> str:
    """ORD + yymmddHHMM + 6 random digits, e.g. ORD2510191430482913."""
    stamp = (now or utcnow()).strftime("%y%m%d%H%M")
    for _ in range(ORDER_CODE_ATTEMPTS):
        code = "ORD%s%06d" % (stamp, secrets.randbelow(1000000))
        if not db.session.query(Order.id).filter_by(order_code=code).first():
            return code
    raise RuntimeError(f"no free order code for {stamp} after {ORDER_CODE_ATTEMPTS} attempts")


def compute_total(subtotal, shipping_fee, discount):
    return round_money(clamp_zero(subtotal + shipping_fee - discount))


def _ensure_sellable(lines):
    for line in lines:
        unit = inventory_service.get_stock_unit(line.product_id, line.variant_id)
        if not unit.active:
            raise InsufficientStock(line.product_id, line.variant_id, line.quantity, 0, name=line.name)


# ---- checkout ------------------------------------------------------------------

def place_order(user_id: int, receiver: Receiver, payment_method, voucher_code: str | None = None,
                note: str | None = None) -> Order:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("user", user_id)
    method = parse_payment_method(payment_method)
    voucher_code = (voucher_code or "").strip() or None

    lines = cart_service.get_selected_lines(user.id)
    if not lines:
        raise EmptyCartError()

    try:
        _ensure_sellable(lines)
        inventory_service.reserve_lines(lines)

        subtotal = round_money(sum((l.subtotal for l in lines), ZERO))
        shipping_fee = round_money(_shipping().quote(subtotal, receiver.destination()))

        voucher, discount = None, ZERO
        if voucher_code:
            voucher, discount = voucher_service.validate_for_checkout(voucher_code, user.id, subtotal)

        order = Order(
            order_code=generate_order_code(),
            user_id=user.id,
            status=OrderStatus.PENDING.value,
            receiver_name=receiver.name,
            receiver_phone=receiver.phone,
            receiver_email=receiver.email or user.email,
            shipping_address=receiver.address,
            city=receiver.city,
            district=receiver.district,
            ward=receiver.ward,
            payment_method=method.value,
            is_paid=False,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            discount_amount=discount,
            total_amount=compute_total(subtotal, shipping_fee, discount),
            voucher_id=voucher.id if voucher else None,
            voucher_code=voucher.code if voucher else None,
            note=note,
        )
        for line in lines:
            order.items.append(OrderItem(
                product_id=line.product_id,
                variant_id=line.variant_id,
                product_name=line.name,
                product_image=line.image_url,
                variant_name=line.variant_name,
                sku=line.sku,
                unit_price=line.unit_price,
                quantity=line.quantity,
                subtotal=line.subtotal,
            ))
        order.history.append(OrderStatusHistory(
            status=OrderStatus.PENDING.value, note="Order created", changed_by=user.id, created_at=utcnow()))
        db.session.add(order)
        db.session.flush()

        if voucher:
            voucher_service.redeem(voucher, user.id, order.id)

        cart_service.remove_lines(user.id, [l.line_id for l in lines])
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Created order: %s for user: %s (total %s)", order.order_code, user.id, order.total_amount)
    _notify("notify_order_created", order)
    return order


def preview_checkout(user_id: int, destination: Destination | None = None,
                     voucher_code: str | None = None) -> dict:
    """Totals checkout would charge right now, without writing anything."""
    lines = cart_service.get_selected_lines(user_id)
    subtotal = round_money(sum((l.subtotal for l in lines), ZERO))
    shipping_fee = round_money(_shipping().quote(subtotal, destination)) if lines else ZERO

    issues = []
    for line in lines:
        unit = inventory_service.get_stock_unit(line.product_id, line.variant_id)
        if not unit.active or unit.quantity < line.quantity:
            issues.append({
                "line_id": line.line_id,
                "product_id": line.product_id,
                "variant_id": line.variant_id,
                "requested": line.quantity,
                "available": unit.quantity if unit.active else 0,
            })

    discount, voucher_error, code = ZERO, None, (voucher_code or "").strip() or None
    if code:
        try:
            _, discount = voucher_service.validate_for_checkout(code, user_id, subtotal)
        except InvalidVoucherError as e:
            voucher_error = {"code": e.code, "reason": e.reason, "message": e.message}

    return {
        "lines": lines,
        "subtotal": subtotal,
        "shipping_fee": shipping_fee,
        "discount_amount": discount,
        "total_amount": compute_total(subtotal, shipping_fee, discount),
        "voucher_code": code,
        "voucher_error": voucher_error,
        "stock_issues": issues,
    }


# ---- state machine ---------------------------------------------------------------

def apply_timestamp(order: Order, status: OrderStatus, now) -> None:
    field = timestamp_field(status)
    if field and getattr(order, field) is None:
        setattr(order, field, now)


def release_stock_once(order: Order) -> bool:
    if order.stock_released:
        return False
    for item in order.items:
        inventory_service.release(item.product_id, item.variant_id, item.quantity)
    order.stock_released = True
    return True


def apply_transition(order: Order, new_status: OrderStatus, actor_id: int | None, note: str | None, now=None):
    """Side effects of entering ``new_status``; legality is checked by the caller."""
    now = now or utcnow()
    order.status = new_status.value
    apply_timestamp(order, new_status, now)

    if new_status in RESTOCK_STATUSES:
        release_stock_once(order)

    if (new_status == OrderStatus.COMPLETED
            and order.payment_method == PaymentMethod.COD.value and not order.is_paid):
        order.is_paid = True
        order.paid_at = now

    order.history.append(OrderStatusHistory(
        status=new_status.value, note=note, changed_by=actor_id, created_at=now))


def _lock_order(order_id: int) -> Order:
    order = (
        Order.query
        .filter(Order.id == order_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not order:
        raise NotFoundError("order", order_id)
    return order


def _transition(order_id: int, new_status, actor_id: int | None, note: str | None = None,
                guard=None, mutate=None) -> Order:
    new_status = parse_status(new_status)
    try:
        order = _lock_order(order_id)
        old_status = OrderStatus(order.status)
        if guard:
            guard(order)
        if not can_transition(old_status, new_status):
            raise InvalidTransitionError(old_status.value, new_status.value, order)
        if mutate:
            mutate(order)
        apply_transition(order, new_status, actor_id, note)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Updated order %s status: %s -> %s", order.order_code, old_status.value, new_status.value)
    _notify("notify_status_changed", order, old_status.value, new_status.value)
    return order


def update_status(order_id: int, new_status, actor_id: int | None, note: str | None = None,
                  admin_note: str | None = None) -> Order:
    def mutate(order):
        if admin_note:
            order.admin_note = admin_note
    return _transition(order_id, new_status, actor_id, note, mutate=mutate)


def confirm_order(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.CONFIRMED, actor_id, note or "Order confirmed")


def start_processing(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.PROCESSING, actor_id, note or "Order is being prepared")


def ship_order(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.SHIPPING, actor_id, note or "Order handed to carrier")


def deliver_order(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.DELIVERED, actor_id, note or "Order delivered")


def complete_order(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.COMPLETED, actor_id, note or "Order completed")


def cancel_order(order_id: int, actor_id: int, reason: str | None = None, is_staff: bool = False) -> Order:
    def guard(order):
        if not is_staff and order.user_id != actor_id:
            raise PermissionDenied("you cannot cancel this order")
        if not can_cancel(order.status):
            raise InvalidTransitionError(order.status, OrderStatus.CANCELLED.value, order)

    def mutate(order):
        order.cancel_reason = reason

    note = f"Order cancelled: {reason}" if reason else "Order cancelled"
    return _transition(order_id, OrderStatus.CANCELLED, actor_id, note, guard=guard, mutate=mutate)


def request_return(order_id: int, user_id: int, reason: str | None = None) -> Order:
    def guard(order):
        if order.user_id != user_id:
            raise PermissionDenied("you cannot request a return for this order")
        if not can_request_return(order.status):
            raise InvalidTransitionError(order.status, OrderStatus.RETURN_REQUESTED.value, order)

    def mutate(order):
        order.return_reason = reason

    note = f"Return requested: {reason}" if reason else "Return requested"
    return _transition(order_id, OrderStatus.RETURN_REQUESTED, user_id, note, guard=guard, mutate=mutate)


def approve_return(order_id, actor_id, note=None):
    return update_status(order_id, OrderStatus.RETURNED, actor_id, note or "Return approved")


def update_payment_status(order_id: int, is_paid: bool, transaction_id: str | None = None) -> Order:
    try:
        order = _lock_order(order_id)
        order.is_paid = bool(is_paid)
        if is_paid:
            order.paid_at = order.paid_at or utcnow()
            order.transaction_id = transaction_id or order.transaction_id
        else:
            order.paid_at = None
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Updated payment status for order %s: paid=%s", order.order_code, order.is_paid)
    return order


# ---- reads -------------------------------------------------------------------------

def load_order_with_lines(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("order", order_id)
    return order


def get_order(order_code: str, user_id: int | None, is_staff: bool = False) -> Order:
    q = Order.query.filter(Order.order_code == (order_code or "").strip().upper())
    if not is_staff:
        q = q.filter(Order.user_id == user_id)
    order = q.first()
    if not order:
        raise NotFoundError("order", order_code)
    return order


def list_orders(user_id: int | None = None, status=None, page: int = 1, per_page: int = 20):
    q = Order.query
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    return q.paginate(page=page, per_page=min(per_page, 100), error_out=False)
