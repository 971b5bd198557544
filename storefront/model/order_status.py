# storefront/model/order_status.py
"""Order lifecycle as data.

``TRANSITIONS`` says which statuses may follow the current one and
``TIMESTAMP_FIELDS`` says which ``Order`` column records the first time a
status is reached. Both are consulted by the order service; nothing here
touches the database.
"""
import enum


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPING = "SHIPPING"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    RETURNED = "RETURNED"

    def __str__(self):
        return self.value


class PaymentMethod(str, enum.Enum):
    COD = "COD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOMO = "MOMO"
    VNPAY = "VNPAY"
    ZALOPAY = "ZALOPAY"

    def __str__(self):
        return self.value


S = OrderStatus

TRANSITIONS = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PROCESSING, S.SHIPPING, S.CANCELLED}),
    S.PROCESSING: frozenset({S.SHIPPING}),
    S.SHIPPING: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.COMPLETED, S.RETURN_REQUESTED}),
    S.COMPLETED: frozenset({S.RETURN_REQUESTED}),
    S.RETURN_REQUESTED: frozenset({S.RETURNED}),
    S.RETURNED: frozenset(),
    S.CANCELLED: frozenset(),
}

TIMESTAMP_FIELDS = {
    S.CONFIRMED: "confirmed_at",
    S.SHIPPING: "shipped_at",
    S.DELIVERED: "delivered_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
}

# entering these puts the order's stock back on the shelf
RESTOCK_STATUSES = frozenset({S.CANCELLED, S.RETURNED})

CANCELLABLE = frozenset({S.PENDING, S.CONFIRMED})
RETURNABLE = frozenset({S.DELIVERED, S.COMPLETED})


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        raise ValueError(f"unknown order status: {value}") from None


def can_transition(current, new) -> bool:
    return OrderStatus(new) in TRANSITIONS[OrderStatus(current)]


def allowed_next(current) -> list[str]:
    return sorted(s.value for s in TRANSITIONS[OrderStatus(current)])


def timestamp_field(status) -> str | None:
    return TIMESTAMP_FIELDS.get(OrderStatus(status))


def can_cancel(status) -> bool:
    return OrderStatus(status) in CANCELLABLE


def can_request_return(status) -> bool:
    return OrderStatus(status) in RETURNABLE
