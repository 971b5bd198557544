from ..extensions import db
from ..utils.money import to_number
from ..utils.timeutil import utcnow
from .order_status import OrderStatus, PaymentMethod, can_cancel, can_request_return, allowed_next


def _iso(dt):
    return dt.isoformat() if dt else None


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_code = db.Column(db.String(20), unique=True, nullable=False, index=True)  # e.g. "ORD2510191430482913"
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, default=OrderStatus.PENDING.value, index=True)

    # Receiver snapshot (copied, the user's address book may change later)
    receiver_name = db.Column(db.String(100), nullable=False)
    receiver_phone = db.Column(db.String(15), nullable=False)
    receiver_email = db.Column(db.String(100))
    shipping_address = db.Column(db.String(500), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    district = db.Column(db.String(100), nullable=False)
    ward = db.Column(db.String(100))

    # Payment
    payment_method = db.Column(db.String(20), nullable=False, default=PaymentMethod.COD.value)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime)
    transaction_id = db.Column(db.String(100))

    # Money snapshot
    subtotal = db.Column(db.Numeric(15, 0), nullable=False)
    shipping_fee = db.Column(db.Numeric(15, 0), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(15, 0), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 0), nullable=False)
    voucher_id = db.Column(db.Integer, db.ForeignKey("voucher.id"), nullable=True)
    voucher_code = db.Column(db.String(50))

    note = db.Column(db.String(500))
    admin_note = db.Column(db.String(500))
    cancel_reason = db.Column(db.String(500))
    return_reason = db.Column(db.String(500))

    # First time each status was reached
    confirmed_at = db.Column(db.DateTime)
    shipped_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    # set once the lines' stock has gone back to inventory
    stock_released = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )
    history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusHistory.id.asc()",
    )

    def full_address(self) -> str:
        parts = [self.shipping_address, self.ward, self.district, self.city]
        return ", ".join(p for p in parts if p)

    def total_item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def summary(self):
        return {
            "id": self.id,
            "order_code": self.order_code,
            "total_amount": to_number(self.total_amount),
            "status": self.status,
        }

    def as_api(self):
        return {
            **self.summary(),
            "user_id": self.user_id,
            "receiver": {
                "name": self.receiver_name,
                "phone": self.receiver_phone,
                "email": self.receiver_email,
                "address": self.shipping_address,
                "ward": self.ward,
                "district": self.district,
                "city": self.city,
                "full_address": self.full_address(),
            },
            "payment": {
                "method": self.payment_method,
                "is_paid": self.is_paid,
                "paid_at": _iso(self.paid_at),
                "transaction_id": self.transaction_id,
            },
            "money": {
                "subtotal": to_number(self.subtotal),
                "shipping_fee": to_number(self.shipping_fee),
                "discount_amount": to_number(self.discount_amount),
                "total_amount": to_number(self.total_amount),
                "voucher_code": self.voucher_code,
            },
            "note": self.note,
            "cancel_reason": self.cancel_reason,
            "return_reason": self.return_reason,
            "timestamps": {
                "created_at": _iso(self.created_at),
                "confirmed_at": _iso(self.confirmed_at),
                "shipped_at": _iso(self.shipped_at),
                "delivered_at": _iso(self.delivered_at),
                "completed_at": _iso(self.completed_at),
                "cancelled_at": _iso(self.cancelled_at),
            },
            "can_cancel": can_cancel(self.status),
            "can_request_return": can_request_return(self.status),
            "next_statuses": allowed_next(self.status),
            "items": [i.as_api() for i in self.items],
            "history": [h.as_api() for h in self.history],
        }


class OrderItem(db.Model):
    __tablename__ = "order_item"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # ids kept for restocking; the rest is a snapshot, never re-read from the catalog
    product_id = db.Column(db.Integer, nullable=False, index=True)
    variant_id = db.Column(db.Integer, nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.String(1024))
    variant_name = db.Column(db.String(255))
    sku = db.Column(db.String(64))

    unit_price = db.Column(db.Numeric(15, 0), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Numeric(15, 0), nullable=False)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "variant_name": self.variant_name,
            "sku": self.sku,
            "unit_price": to_number(self.unit_price),
            "quantity": self.quantity,
            "subtotal": to_number(self.subtotal),
        }


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False)
    note = db.Column(db.String(500))
    changed_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)  # None = system
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def as_api(self):
        return {
            "status": self.status,
            "note": self.note,
            "changed_by": self.changed_by,
            "created_at": _iso(self.created_at),
        }
