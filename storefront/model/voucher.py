# --- storefront/model/voucher.py ---

from sqlalchemy import CheckConstraint
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import to_number
from ..utils.timeutil import utcnow

PERCENTAGE = "PERCENTAGE"
FIXED = "FIXED"
DISCOUNT_TYPES = (PERCENTAGE, FIXED)


class Voucher(db.Model):
    __tablename__ = "voucher"
    __table_args__ = (
        CheckConstraint("usage_limit IS NULL OR used_count <= usage_limit", name="ck_voucher_usage_cap"),
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)  # stored upper-case
    name = db.Column(db.String(200))

    discount_type = db.Column(db.String(16), nullable=False, default=PERCENTAGE)
    discount_value = db.Column(db.Numeric(15, 0), nullable=False, default=0)
    max_discount = db.Column(db.Numeric(15, 0), nullable=True)      # caps percentage discounts
    min_order_amount = db.Column(db.Numeric(15, 0), nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)              # global cap, None = unlimited
    usage_limit_per_user = db.Column(db.Integer, nullable=False, default=1)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    usages = db.relationship("VoucherUsage", backref="voucher", lazy="dynamic")

    def remaining_usage(self):
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - (self.used_count or 0))

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "discount_type": self.discount_type,
            "discount_value": to_number(self.discount_value),
            "max_discount": to_number(self.max_discount),
            "min_order_amount": to_number(self.min_order_amount),
            "usage_limit": self.usage_limit,
            "usage_limit_per_user": self.usage_limit_per_user,
            "used_count": self.used_count,
            "remaining": self.remaining_usage(),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
        }


class VoucherUsage(db.Model):
    __tablename__ = "voucher_usage"

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("voucher.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    used_at = db.Column(db.DateTime, nullable=False, default=utcnow)
