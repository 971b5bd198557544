"""Tests for the stock ledger."""

import pytest
from sqlalchemy import text

from storefront.errors import InsufficientStock, NotFoundError
from storefront.extensions import db
from storefront.model import Product
from storefront.services import inventory_service
from storefront.services.cart_service import CartLine


class TestGetStockUnit:
    def test_plain_product(self, make_product):
        p = make_product(price=120000, sale_price=100000, quantity=7)
        unit = inventory_service.get_stock_unit(p.id)
        assert unit.variant_id is None
        assert unit.quantity == 7
        assert unit.price == 100000
        assert unit.active is True

    def test_variant_price_adds_to_effective_price(self, make_product):
        p = make_product(price=200000, quantity=0, variants=[
            {"name": "White", "additional_price": 50000, "quantity": 4},
        ])
        v = p.variants[0]
        unit = inventory_service.get_stock_unit(p.id, v.id)
        assert unit.quantity == 4
        assert unit.price == 250000
        assert unit.variant_name == "White"

    def test_unknown_product(self, app):
        with pytest.raises(NotFoundError):
            inventory_service.get_stock_unit(9999)

    def test_variant_of_another_product(self, make_product):
        a = make_product(variants=[{"name": "A", "quantity": 1}])
        b = make_product()
        with pytest.raises(NotFoundError):
            inventory_service.get_stock_unit(b.id, a.variants[0].id)


class TestReserve:
    def test_reserve_decrements_and_counts_sold(self, make_product, stock):
        p = make_product(quantity=5)
        inventory_service.reserve(p.id, None, 2)
        db.session.commit()
        assert stock(p.id) == 3
        assert db.session.get(Product, p.id).sold_count == 2

    def test_reserve_more_than_available_raises(self, make_product, stock):
        p = make_product(quantity=2)
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve(p.id, None, 3)
        assert exc.value.requested == 3
        assert exc.value.available == 2
        db.session.rollback()
        assert stock(p.id) == 2

    def test_reserve_exact_quantity_empties_shelf(self, make_product, stock):
        p = make_product(quantity=2)
        inventory_service.reserve(p.id, None, 2)
        db.session.commit()
        assert stock(p.id) == 0
        with pytest.raises(InsufficientStock):
            inventory_service.reserve(p.id, None, 1)

    def test_rejects_non_positive_quantity(self, make_product):
        p = make_product()
        with pytest.raises(ValueError):
            inventory_service.reserve(p.id, None, 0)

    def test_stale_loaded_product_does_not_oversell(self, make_product):
        p = make_product(quantity=5)
        assert p.quantity == 5
        # another writer takes most of the stock behind the session's back
        db.session.execute(text("UPDATE product SET quantity = 1 WHERE id = :id"), {"id": p.id})

        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve(p.id, None, 2)
        assert exc.value.available == 1

        inventory_service.reserve(p.id, None, 1)
        assert p.quantity == 0

    def test_variant_reserve_touches_variant_only(self, make_product, stock):
        p = make_product(quantity=9, variants=[{"name": "Black", "quantity": 3}])
        v = p.variants[0]
        inventory_service.reserve(p.id, v.id, 2)
        db.session.commit()
        assert stock(p.id, v.id) == 1
        assert stock(p.id) == 9
        assert db.session.get(Product, p.id).sold_count == 2


class TestRelease:
    def test_release_restores_stock(self, make_product, stock):
        p = make_product(quantity=5)
        inventory_service.reserve(p.id, None, 3)
        inventory_service.release(p.id, None, 3)
        db.session.commit()
        assert stock(p.id) == 5
        assert db.session.get(Product, p.id).sold_count == 0

    def test_sold_count_never_goes_negative(self, make_product):
        p = make_product(quantity=1)
        inventory_service.release(p.id, None, 4)
        db.session.commit()
        db.session.expire_all()
        p = db.session.get(Product, p.id)
        assert p.quantity == 5
        assert p.sold_count == 0

    def test_release_of_missing_unit_is_logged_not_raised(self, app, caplog):
        inventory_service.release(4242, None, 1)
        assert "missing stock unit" in caplog.text


class TestReserveLines:
    def _line(self, product, qty, line_id=1):
        return CartLine(line_id=line_id, product_id=product.id, variant_id=None, quantity=qty,
                        unit_price=product.price, selected=True, name=product.name)

    def test_partial_failure_is_undone_by_rollback(self, make_product, stock):
        a = make_product(quantity=5)
        b = make_product(quantity=1)
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve_lines([self._line(b, 2, 2), self._line(a, 2, 1)])
        assert exc.value.product_id == b.id
        db.session.rollback()
        assert stock(a.id) == 5
        assert stock(b.id) == 1


class TestLowStock:
    def test_lists_units_at_or_below_threshold(self, make_product):
        low = make_product(quantity=2)
        make_product(quantity=50)
        make_product(quantity=0)
        units = inventory_service.low_stock_units()
        assert [u.id for u in units] == [low.id]
