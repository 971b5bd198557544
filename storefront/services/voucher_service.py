# storefront/services/voucher_service.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, or_, update

from ..errors import InvalidVoucherError
from ..extensions import db
from ..model import Voucher, VoucherUsage
from ..model.voucher import DISCOUNT_TYPES, PERCENTAGE
from ..utils.money import D, ZERO, round_money
from ..utils.timeutil import utcnow, parse_iso8601

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def find_by_code(code: str | None) -> Voucher | None:
    code = normalize_code(code)
    if not code:
        return None
    return Voucher.query.filter(func.upper(Voucher.code) == code).first()


# ---- rules -----------------------------------------------------------------

def invalid_reason(voucher: Voucher, now: datetime | None = None) -> str | None:
    """Why the voucher cannot be used right now, or None when it can."""
    now = now or utcnow()
    if not voucher.is_active:
        return "inactive"
    if voucher.start_date and now < voucher.start_date:
        return "not_started"
    if voucher.end_date and now > voucher.end_date:
        return "expired"
    if voucher.usage_limit is not None and (voucher.used_count or 0) >= voucher.usage_limit:
        return "exhausted"
    return None


def is_valid(voucher: Voucher, now: datetime | None = None) -> bool:
    return invalid_reason(voucher, now) is None


def usage_count(voucher: Voucher, user_id: int) -> int:
    return (
        db.session.query(func.count(VoucherUsage.id))
        .filter(VoucherUsage.voucher_id == voucher.id, VoucherUsage.user_id == user_id)
        .scalar()
    ) or 0


def eligible_for_user(voucher: Voucher, user_id: int) -> bool:
    return usage_count(voucher, user_id) < (voucher.usage_limit_per_user or 1)


def calculate_discount(voucher: Voucher, order_amount, now: datetime | None = None) -> Decimal:
    """Discount in whole currency units, always within [0, order_amount]."""
    amount = D(order_amount)
    if amount <= ZERO or not is_valid(voucher, now):
        return ZERO
    if voucher.min_order_amount is not None and amount < D(voucher.min_order_amount):
        return ZERO

    value = D(voucher.discount_value)
    if voucher.discount_type == PERCENTAGE:
        discount = amount * value / Decimal(100)
        if voucher.max_discount is not None and discount > D(voucher.max_discount):
            discount = D(voucher.max_discount)
    else:
        discount = value

    discount = round_money(discount)
    if discount > amount:
        discount = amount
    if discount < ZERO:
        discount = ZERO
    return discount


def validate_for_checkout(code: str, user_id: int, order_amount, now: datetime | None = None):
    """Resolve ``code`` for this user and amount.

    Returns ``(voucher, discount)`` or raises InvalidVoucherError naming the
    first rule that failed. Shared by the checkout preview and by checkout
    itself so the quoted discount is the charged one.
    """
    now = now or utcnow()
    voucher = find_by_code(code)
    if voucher is None:
        raise InvalidVoucherError(normalize_code(code), "not_found")

    reason = invalid_reason(voucher, now)
    if reason:
        raise InvalidVoucherError(voucher.code, reason)
    if not eligible_for_user(voucher, user_id):
        raise InvalidVoucherError(voucher.code, "user_limit_reached")
    if voucher.min_order_amount is not None and D(order_amount) < D(voucher.min_order_amount):
        raise InvalidVoucherError(voucher.code, "below_minimum")

    return voucher, calculate_discount(voucher, order_amount, now)


def redeem(voucher: Voucher, user_id: int, order_id: int | None) -> VoucherUsage:
    """Count one use of ``voucher`` by ``user_id`` for ``order_id``.

    Must run inside the transaction that creates the order.
    """
    # serialize redemptions of the same voucher before the per-user count
    db.session.query(Voucher.id).filter(Voucher.id == voucher.id).with_for_update().one()

    vt = Voucher.__table__
    result = db.session.execute(
        update(vt)
        .where(vt.c.id == voucher.id)
        .where(or_(vt.c.usage_limit.is_(None), vt.c.used_count < vt.c.usage_limit))
        .values(used_count=vt.c.used_count + 1)
    )
    if result.rowcount != 1:
        raise InvalidVoucherError(voucher.code, "exhausted")

    if usage_count(voucher, user_id) >= (voucher.usage_limit_per_user or 1):
        raise InvalidVoucherError(voucher.code, "user_limit_reached")

    usage = VoucherUsage(voucher_id=voucher.id, user_id=user_id, order_id=order_id, used_at=utcnow())
    db.session.add(usage)
    db.session.flush()
    db.session.expire(voucher, ["used_count"])

    logger.info("Applied voucher %s for user %s on order %s", voucher.code, user_id, order_id)
    return usage


# ---- admin / listing -------------------------------------------------------

def _optional_money(data: dict, key: str):
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        value = D(value)
    except InvalidOperation:
        raise ValueError(f"{key} must be numeric") from None
    if value < 0:
        raise ValueError(f"{key} must be >= 0")
    return round_money(value)


def _optional_int(data: dict, key: str, default=None):
    value = data.get(key, default)
    if value in (None, ""):
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer") from None
    if value < 0:
        raise ValueError(f"{key} must be >= 0")
    return value


def create_voucher_from_payload(data: dict) -> Voucher:
    code = normalize_code(data.get("code"))
    dtype = (data.get("discount_type") or PERCENTAGE).strip().upper()

    if not code:
        raise ValueError("code is required")
    if dtype not in DISCOUNT_TYPES:
        raise ValueError("discount_type must be 'PERCENTAGE' or 'FIXED'")

    value = _optional_money(data, "discount_value")
    if value is None or value <= 0:
        raise ValueError("discount_value must be > 0")
    if dtype == PERCENTAGE and value > 100:
        raise ValueError("percentage discount must be <= 100")

    if find_by_code(code):
        raise ValueError("voucher code already exists")

    starts_at = parse_iso8601(data.get("start_date"))
    ends_at = parse_iso8601(data.get("end_date"))
    if data.get("start_date") and not starts_at:
        raise ValueError("invalid datetime format for start_date")
    if data.get("end_date") and not ends_at:
        raise ValueError("invalid datetime format for end_date")
    if starts_at and ends_at and ends_at < starts_at:
        raise ValueError("end_date must be after start_date")

    per_user = _optional_int(data, "usage_limit_per_user", 1)
    if per_user < 1:
        raise ValueError("usage_limit_per_user must be >= 1")

    v = Voucher(
        code=code,
        name=data.get("name"),
        discount_type=dtype,
        discount_value=value,
        max_discount=_optional_money(data, "max_discount"),
        min_order_amount=_optional_money(data, "min_order_amount"),
        usage_limit=_optional_int(data, "usage_limit"),
        usage_limit_per_user=per_user,
        start_date=starts_at,
        end_date=ends_at,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(v)
    db.session.commit()
    logger.info("Created voucher: %s", code)
    return v


def list_vouchers(active: bool | None = None):
    q = Voucher.query
    if active is not None:
        q = q.filter(Voucher.is_active.is_(active))
    return q.order_by(Voucher.id.desc()).all()


def find_vouchers_for_user(user_id: int, order_amount, now: datetime | None = None):
    """Vouchers this user could apply to ``order_amount`` right now."""
    now = now or utcnow()
    out = []
    for v in list_vouchers(active=True):
        if not is_valid(v, now) or not eligible_for_user(v, user_id):
            continue
        if v.min_order_amount is not None and D(order_amount) < D(v.min_order_amount):
            continue
        out.append(v)
    return out


def deactivate_expired(now: datetime | None = None) -> int:
    now = now or utcnow()
    count = (
        Voucher.query
        .filter(Voucher.is_active.is_(True), Voucher.end_date.isnot(None), Voucher.end_date < now)
        .update({Voucher.is_active: False}, synchronize_session=False)
    )
    db.session.commit()
    logger.info("Deactivated %s expired vouchers", count)
    return count
