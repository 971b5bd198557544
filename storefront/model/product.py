# storefront/model/product.py
from decimal import Decimal
from sqlalchemy import CheckConstraint
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import D


class Product(db.Model):
    __tablename__ = "product"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),)

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), unique=True, index=True)
    slug = db.Column(db.String(255), index=True)
    name = db.Column(db.String(255), nullable=False, index=True)

    price = db.Column(db.Numeric(15, 0), nullable=False, default=0)
    sale_price = db.Column(db.Numeric(15, 0), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, default=5)   # informational only
    sold_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, index=True)
    image_url = db.Column(db.String(1024))

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id.asc()",
    )

    def effective_price(self) -> Decimal:
        # sale price wins only when it actually undercuts the list price
        price = D(self.price)
        if self.sale_price is not None and D(self.sale_price) < price:
            return D(self.sale_price)
        return price


class ProductVariant(db.Model):
    __tablename__ = "product_variant"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_variant_quantity_non_negative"),)

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), unique=True, index=True)

    additional_price = db.Column(db.Numeric(15, 0), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    image_url = db.Column(db.String(1024))

    def final_price(self) -> Decimal:
        return self.product.effective_price() + D(self.additional_price)
