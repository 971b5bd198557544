# storefront/errors.py
"""Typed errors raised by the order core and how they map onto API responses."""
import logging

from werkzeug.exceptions import HTTPException

from .utils.api import err

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Base class for expected, caller-recoverable errors."""

    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def payload(self) -> dict:
        return {}


class EmptyCartError(StorefrontError):
    """No selected cart lines at checkout."""

    http_status = 422

    def __init__(self, message: str = "no selected items in cart"):
        super().__init__(message)


class InsufficientStock(StorefrontError):
    """A line asks for more than the live stock (or the product is no longer sold)."""

    http_status = 409

    def __init__(self, product_id: int, variant_id: int | None, requested: int, available: int,
                 name: str | None = None):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        label = name or f"product {product_id}"
        super().__init__(f"not enough stock for {label}: requested {requested}, available {available}")

    def payload(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "requested": self.requested,
            "available": self.available,
        }


class InvalidVoucherError(StorefrontError):
    http_status = 422

    REASONS = {
        "not_found": "voucher code does not exist",
        "inactive": "voucher is not active",
        "not_started": "voucher is not yet valid",
        "expired": "voucher has expired",
        "exhausted": "voucher usage limit reached",
        "user_limit_reached": "you have already used this voucher",
        "below_minimum": "order amount is below the voucher minimum",
    }

    def __init__(self, code: str | None, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(f"voucher '{code}' invalid: {self.REASONS.get(reason, reason)}")

    def payload(self) -> dict:
        return {"code": self.code, "reason": self.reason}


class InvalidTransitionError(StorefrontError):
    """The state machine forbids the requested status change."""

    http_status = 409

    def __init__(self, current: str, requested: str, order=None):
        self.current = current
        self.requested = requested
        self.order = order
        super().__init__(f"cannot move order from {current} to {requested}")

    def payload(self) -> dict:
        data = {"current_status": self.current, "requested_status": self.requested}
        if self.order is not None:
            data["order"] = self.order.summary()
        return data


class NotFoundError(StorefrontError):
    http_status = 404

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")

    def payload(self) -> dict:
        return {"entity": self.entity, "key": self.key}


class PermissionDenied(StorefrontError):
    http_status = 403


def _json_error(message, status, data=None):
    return err(message, status, data)


def register_error_handlers(app):
    @app.errorhandler(StorefrontError)
    def handle_storefront_error(e):
        data = {"error": type(e).__name__, **e.payload()}
        return _json_error(e.message, e.http_status, data)

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return _json_error(str(e), 422, {"error": "ValidationError"})

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _json_error(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("unhandled error")
        return _json_error("internal error", 500)
