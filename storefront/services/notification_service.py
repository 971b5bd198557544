# storefront/services/notification_service.py
import logging

from ..extensions import db
from ..model import Notification

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    "CONFIRMED": "Your order {code} has been confirmed.",
    "PROCESSING": "Your order {code} is being prepared.",
    "SHIPPING": "Your order {code} is on its way.",
    "DELIVERED": "Your order {code} has been delivered.",
    "COMPLETED": "Your order {code} is complete. Thank you!",
    "CANCELLED": "Your order {code} has been cancelled.",
    "RETURN_REQUESTED": "We received the return request for order {code}.",
    "RETURNED": "The return for order {code} has been processed.",
}


class NotificationSink:
    """In-app notifications about orders.

    Called after the order transaction has committed. Writes go in their own
    commit and failures are logged, never raised: the order is already real
    whether or not the customer hears about it.
    """

    def notify_order_created(self, order):
        self._safe_send(
            order,
            title="Order placed",
            message=f"Your order {order.order_code} has been placed successfully.",
        )

    def notify_status_changed(self, order, old_status, new_status):
        template = STATUS_MESSAGES.get(str(new_status), "Order {code} is now " + str(new_status))
        self._safe_send(order, title="Order update", message=template.format(code=order.order_code))

    # ---- internals ----
    def _safe_send(self, order, title, message):
        try:
            self.send(order.user_id, title, message, link=f"/orders/{order.order_code}")
        except Exception:
            db.session.rollback()
            logger.exception("Notification for order %s failed", getattr(order, "order_code", "?"))

    def send(self, user_id, title, message, link=None):
        db.session.add(Notification(user_id=user_id, type="ORDER", title=title, message=message, link=link))
        db.session.commit()
