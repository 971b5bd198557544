"""Tests for place_order and preview_checkout."""

import re
from datetime import datetime
from decimal import Decimal

import pytest

from storefront.errors import EmptyCartError, InsufficientStock, InvalidVoucherError, NotFoundError
from storefront.extensions import db
from storefront.model import CartItem, Notification, Order, Voucher, VoucherUsage
from storefront.services import order_service
from storefront.services.notification_service import NotificationSink
from storefront.services.order_service import Receiver


class FailingSink(NotificationSink):
    def send(self, user_id, title, message, link=None):
        raise RuntimeError("mail server down")


class RaisingNotifier:
    """A notifier that does not guard itself."""

    def notify_order_created(self, order):
        raise RuntimeError("smtp down")

    def notify_status_changed(self, order, old_status, new_status):
        raise RuntimeError("smtp down")


class TestPlaceOrder:
    def test_voucher_checkout(self, user, make_product, make_voucher, add_to_cart, free_shipping,
                              receiver, stock):
        p = make_product(price=50000, quantity=10)
        add_to_cart(user, p, 2)
        v = make_voucher(code="SALE10", discount_value=10)

        order = order_service.place_order(user.id, receiver, "COD", voucher_code="sale10")

        assert order.status == "PENDING"
        assert order.order_code.startswith("ORD")
        assert order.subtotal == 100000
        assert order.shipping_fee == 0
        assert order.discount_amount == 10000
        assert order.total_amount == 90000
        assert order.voucher_code == "SALE10"
        assert order.is_paid is False
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [(p.id, 2, 50000)]
        assert [h.status for h in order.history] == ["PENDING"]

        assert stock(p.id) == 8
        assert db.session.get(Voucher, v.id).used_count == 1
        assert VoucherUsage.query.filter_by(user_id=user.id, order_id=order.id).count() == 1
        assert CartItem.query.count() == 0

    def test_total_arithmetic_with_shipping(self, user, make_product, add_to_cart, receiver):
        a = make_product(price=120000, quantity=5)
        b = make_product(price=45500, quantity=5)
        add_to_cart(user, a, 1)
        add_to_cart(user, b, 3)

        order = order_service.place_order(user.id, receiver, "BANK_TRANSFER")

        assert order.subtotal == 120000 + 3 * 45500
        assert order.shipping_fee == 30000
        assert order.discount_amount == 0
        assert order.total_amount == order.subtotal + order.shipping_fee
        assert order.payment_method == "BANK_TRANSFER"

    def test_free_shipping_over_threshold(self, user, make_product, add_to_cart, receiver):
        p = make_product(price=250000, quantity=5)
        add_to_cart(user, p, 2)
        order = order_service.place_order(user.id, receiver, "COD")
        assert order.shipping_fee == 0
        assert order.total_amount == 500000

    def test_only_selected_lines_are_ordered(self, user, make_product, add_to_cart, receiver, stock):
        a = make_product(quantity=5)
        b = make_product(quantity=5)
        add_to_cart(user, a, 1)
        kept = add_to_cart(user, b, 1, selected=False)
        kept_id = kept.id

        order = order_service.place_order(user.id, receiver, "COD")

        assert [i.product_id for i in order.items] == [a.id]
        assert stock(b.id) == 5
        assert [i.id for i in CartItem.query.all()] == [kept_id]

    def test_variant_line(self, user, make_product, add_to_cart, receiver, stock):
        p = make_product(price=200000, quantity=0, variants=[
            {"name": "White", "additional_price": 50000, "quantity": 4},
        ])
        v = p.variants[0]
        add_to_cart(user, p, 2, variant=v)

        order = order_service.place_order(user.id, receiver, "COD")

        item = order.items[0]
        assert item.variant_name == "White"
        assert item.unit_price == 250000
        assert order.subtotal == 500000
        assert stock(p.id, v.id) == 2

    def test_empty_cart(self, user, receiver):
        with pytest.raises(EmptyCartError):
            order_service.place_order(user.id, receiver, "COD")

    def test_nothing_selected_counts_as_empty(self, user, make_product, add_to_cart, receiver):
        add_to_cart(user, make_product(), 1, selected=False)
        with pytest.raises(EmptyCartError):
            order_service.place_order(user.id, receiver, "COD")

    def test_unknown_user(self, app, receiver):
        with pytest.raises(NotFoundError):
            order_service.place_order(999, receiver, "COD")

    def test_unknown_payment_method(self, user, make_product, add_to_cart, receiver):
        add_to_cart(user, make_product(), 1)
        with pytest.raises(ValueError, match="unknown payment method"):
            order_service.place_order(user.id, receiver, "BITCOIN")

    def test_insufficient_stock_rolls_everything_back(self, user, make_product, add_to_cart,
                                                      receiver, stock):
        a = make_product(quantity=5)
        b = make_product(quantity=1)
        add_to_cart(user, a, 2)
        add_to_cart(user, b, 2)

        with pytest.raises(InsufficientStock) as exc:
            order_service.place_order(user.id, receiver, "COD")

        assert exc.value.product_id == b.id
        assert exc.value.available == 1
        assert stock(a.id) == 5
        assert stock(b.id) == 1
        assert Order.query.count() == 0
        assert CartItem.query.count() == 2

    def test_inactive_product_is_not_sold(self, user, make_product, add_to_cart, receiver, stock):
        p = make_product(quantity=5)
        add_to_cart(user, p, 1)
        p.is_active = False
        db.session.commit()

        with pytest.raises(InsufficientStock) as exc:
            order_service.place_order(user.id, receiver, "COD")
        assert exc.value.available == 0
        assert stock(p.id) == 5

    def test_used_up_voucher_rolls_back_stock(self, user, make_product, make_voucher, add_to_cart,
                                              receiver, stock):
        p = make_product(price=50000, quantity=10)
        add_to_cart(user, p, 2)
        v = make_voucher(code="SALE10", usage_limit_per_user=1)
        db.session.add(VoucherUsage(voucher_id=v.id, user_id=user.id))
        db.session.commit()

        with pytest.raises(InvalidVoucherError) as exc:
            order_service.place_order(user.id, receiver, "COD", voucher_code="SALE10")

        assert exc.value.reason == "user_limit_reached"
        assert stock(p.id) == 10
        assert Order.query.count() == 0
        assert CartItem.query.count() == 1
        assert db.session.get(Voucher, v.id).used_count == 0

    def test_exhausted_voucher(self, user, make_product, make_voucher, add_to_cart, receiver, stock):
        p = make_product(quantity=10)
        add_to_cart(user, p, 1)
        make_voucher(code="LAST", usage_limit=1, used_count=1)

        with pytest.raises(InvalidVoucherError) as exc:
            order_service.place_order(user.id, receiver, "COD", voucher_code="LAST")
        assert exc.value.reason == "exhausted"
        assert stock(p.id) == 10

    def test_notification_after_commit(self, user, make_product, add_to_cart, receiver):
        add_to_cart(user, make_product(), 1)
        order = order_service.place_order(user.id, receiver, "COD")
        note = Notification.query.filter_by(user_id=user.id).one()
        assert order.order_code in note.message

    def test_failing_notifier_keeps_the_order(self, app, user, make_product, add_to_cart, receiver,
                                              stock, caplog):
        app.extensions["notifier"] = FailingSink()
        p = make_product(quantity=3)
        add_to_cart(user, p, 1)

        order = order_service.place_order(user.id, receiver, "COD")

        assert db.session.get(Order, order.id).status == "PENDING"
        assert stock(p.id) == 2
        assert Notification.query.count() == 0
        assert "Notification for order" in caplog.text

    def test_raising_notifier_does_not_reach_the_caller(self, app, user, make_product, add_to_cart,
                                                       receiver, stock, caplog):
        app.extensions["notifier"] = RaisingNotifier()
        p = make_product(quantity=3)
        add_to_cart(user, p, 1)

        order = order_service.place_order(user.id, receiver, "COD")

        assert Order.query.count() == 1
        assert order.status == "PENDING"
        assert stock(p.id) == 2
        assert "Notifier notify_order_created failed" in caplog.text

    def test_order_codes_are_unique(self, user, make_product, add_to_cart, receiver):
        p = make_product(quantity=10)
        codes = set()
        for _ in range(3):
            add_to_cart(user, p, 1)
            codes.add(order_service.place_order(user.id, receiver, "COD").order_code)
        assert len(codes) == 3


class TestOrderCode:
    def test_format(self, app):
        code = order_service.generate_order_code(datetime(2025, 10, 19, 14, 30))
        assert re.fullmatch(r"ORD2510191430\d{6}", code)

    def test_gives_up_when_every_draw_is_taken(self, user, make_product, add_to_cart, receiver,
                                               monkeypatch):
        add_to_cart(user, make_product(), 1)
        taken = order_service.place_order(user.id, receiver, "COD").order_code
        minute = datetime.strptime(taken[3:13], "%y%m%d%H%M")
        monkeypatch.setattr(order_service.secrets, "randbelow", lambda n: int(taken[-6:]))

        with pytest.raises(RuntimeError, match="no free order code"):
            order_service.generate_order_code(minute)

    def test_retries_past_a_taken_code(self, user, make_product, add_to_cart, receiver, monkeypatch):
        add_to_cart(user, make_product(), 1)
        taken = order_service.place_order(user.id, receiver, "COD").order_code
        minute = datetime.strptime(taken[3:13], "%y%m%d%H%M")
        free = 8 if taken.endswith("000007") else 7
        draws = iter([int(taken[-6:]), free])
        monkeypatch.setattr(order_service.secrets, "randbelow", lambda n: next(draws))

        assert order_service.generate_order_code(minute) == "%s%06d" % (taken[:13], free)


class TestPreview:
    def test_preview_matches_checkout(self, user, make_product, make_voucher, add_to_cart, receiver):
        p = make_product(price=33333, quantity=10)
        add_to_cart(user, p, 3)
        make_voucher(code="P15", discount_value=15)

        quote = order_service.preview_checkout(user.id, receiver.destination(), "P15")
        order = order_service.place_order(user.id, receiver, "COD", voucher_code="P15")

        assert quote["subtotal"] == order.subtotal == Decimal("99999")
        assert quote["discount_amount"] == order.discount_amount == Decimal("15000")
        assert quote["shipping_fee"] == order.shipping_fee
        assert quote["total_amount"] == order.total_amount

    def test_preview_writes_nothing(self, user, make_product, add_to_cart, stock):
        p = make_product(quantity=4)
        add_to_cart(user, p, 2)
        order_service.preview_checkout(user.id)
        assert stock(p.id) == 4
        assert Order.query.count() == 0

    def test_preview_reports_problems(self, user, make_product, add_to_cart):
        p = make_product(quantity=1)
        add_to_cart(user, p, 3)

        quote = order_service.preview_checkout(user.id, voucher_code="MISSING")

        assert quote["stock_issues"] == [{
            "line_id": quote["lines"][0].line_id,
            "product_id": p.id,
            "variant_id": None,
            "requested": 3,
            "available": 1,
        }]
        assert quote["voucher_error"]["reason"] == "not_found"
        assert quote["discount_amount"] == 0

    def test_empty_preview(self, user):
        quote = order_service.preview_checkout(user.id)
        assert quote["lines"] == []
        assert quote["total_amount"] == 0


class TestReceiver:
    def test_missing_fields(self):
        with pytest.raises(ValueError, match="receiver phone, city required"):
            Receiver.from_payload({"name": "A", "address": "x", "district": "d"})

    def test_blank_optional_fields_become_none(self):
        r = Receiver.from_payload({"name": "A", "phone": "1", "address": "x", "city": "c",
                                   "district": "d", "ward": "  "})
        assert r.ward is None
