# storefront/model/cart.py
from __future__ import annotations
import uuid as _uuid
from decimal import Decimal
from sqlalchemy import CheckConstraint
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import round_money, to_number


class Cart(db.Model):
    __tablename__ = "cart"
    # a cart belongs to a user or to an anonymous session, never both
    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL AND session_id IS NOT NULL) OR (user_id IS NOT NULL AND session_id IS NULL)",
            name="ck_cart_single_owner",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, index=True, default=lambda: str(_uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True, unique=True, index=True)
    session_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()"
    )

    # --------- money helpers / totals ----------
    def selected_items(self) -> list[CartItem]:
        return [i for i in self.items if i.is_selected]

    def selected_subtotal_dec(self) -> Decimal:
        return round_money(sum((i.line_total_dec() for i in self.selected_items()), Decimal("0")))

    def as_api(self):
        return {
            "id": self.id,
            "uuid": self.uuid,
            "items": [i.as_api() for i in self.items],
            "totals": {
                "item_count": sum(i.quantity for i in self.items),
                "selected_count": sum(i.quantity for i in self.selected_items()),
                "selected_subtotal": to_number(self.selected_subtotal_dec()),
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_cart_item_quantity_positive"),)

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variant.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    is_selected = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    product = db.relationship("Product", lazy="joined")
    variant = db.relationship("ProductVariant", lazy="joined")

    # ---- price helpers ----
    def unit_price_dec(self) -> Decimal:
        if self.variant is not None:
            return self.variant.final_price()
        return self.product.effective_price()

    def line_total_dec(self) -> Decimal:
        return round_money(self.unit_price_dec() * Decimal(self.quantity))

    def available_quantity(self) -> int:
        if self.variant is not None:
            return int(self.variant.quantity or 0)
        return int(self.product.quantity or 0)

    def display_name(self) -> str:
        if self.variant is not None:
            return f"{self.product.name} - {self.variant.name}"
        return self.product.name

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "name": self.display_name(),
            "price": to_number(self.unit_price_dec()),
            "quantity": self.quantity,
            "selected": self.is_selected,
            "line_total": to_number(self.line_total_dec()),
            "available": self.available_quantity(),
            "image_url": (self.variant.image_url if self.variant and self.variant.image_url
                          else self.product.image_url),
        }
