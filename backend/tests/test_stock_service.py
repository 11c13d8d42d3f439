from decimal import Decimal

import pytest

from bizledger.extensions import db
from bizledger.errors import BusinessRuleError, InsufficientStockError, ValidationError
from bizledger.models import Product, ProductActivity
from bizledger.services import stock_service


def _activity(product_id):
    return (
        ProductActivity.query.filter_by(product_id=product_id)
        .order_by(ProductActivity.id.asc())
        .all()
    )


def test_low_and_critical_stock_predicates():
    product = Product(stock_current=3, min_stock=5, reorder_threshold=10)
    assert product.is_low_stock() is True
    assert product.is_critical_stock() is True

    product.stock_current = 8
    assert product.is_low_stock() is True
    assert product.is_critical_stock() is False


def test_initial_stock_is_logged(product):
    rows = _activity(product.id)
    assert product.stock_current == 50
    assert product.sku == "FLT-001"
    assert len(rows) == 1
    assert rows[0].type == "stock_in"
    assert (rows[0].stock_before, rows[0].stock_after) == (0, 50)
    assert rows[0].reason == "Initial stock"


def test_stock_out_beyond_available_fails_without_side_effects(product):
    with pytest.raises(InsufficientStockError):
        stock_service.apply_stock_movement(
            product_id=product.id, quantity=51, movement_type="stock_out", actor="tester",
        )

    refreshed = stock_service.get_product(product.id)
    assert refreshed.stock_current == 50
    assert len(_activity(product.id)) == 1


def test_adjustment_sets_absolute_level(product):
    updated = stock_service.apply_stock_movement(
        product_id=product.id, quantity=7, movement_type="adjustment", actor="tester", reason="count",
    )
    assert updated.stock_current == 7
    last = _activity(product.id)[-1]
    assert (last.type, last.quantity, last.stock_before, last.stock_after) == ("adjustment", 7, 50, 7)


def test_stock_equals_last_activity_after_movements(product):
    for quantity, movement in ((5, "stock_out"), (12, "stock_in"), (20, "adjustment"), (3, "stock_out")):
        stock_service.apply_stock_movement(
            product_id=product.id, quantity=quantity, movement_type=movement, actor="tester",
        )

    refreshed = stock_service.get_product(product.id)
    rows = _activity(product.id)
    assert refreshed.stock_current == 17
    assert rows[-1].stock_after == refreshed.stock_current
    for previous, current in zip(rows, rows[1:]):
        assert current.stock_before == previous.stock_after


def test_stock_in_updates_last_restocked(product):
    updated = stock_service.apply_stock_movement(
        product_id=product.id, quantity=1, movement_type="stock_in", actor="tester",
    )
    assert updated.last_restocked is not None


def test_unknown_movement_type_rejected(product):
    with pytest.raises(ValidationError):
        stock_service.apply_stock_movement(
            product_id=product.id, quantity=1, movement_type="teleport", actor="tester",
        )


def test_update_product_stock_change_becomes_adjustment(product):
    updated = stock_service.update_product(
        product_id=product.id,
        patch={"stock_current": 42, "selling_price": Decimal("110.00")},
        actor="tester",
    )
    assert updated.stock_current == 42
    assert updated.selling_price == Decimal("110.00")
    last = _activity(product.id)[-1]
    assert last.type == "adjustment"
    assert last.reason == "Stock level updated"


def test_duplicate_sku_rejected(product):
    with pytest.raises(BusinessRuleError):
        stock_service.create_product(
            patch={
                "sku": "FLT-001",
                "name": "Another",
                "category": "Filters",
                "cost_price": Decimal("1.00"),
                "selling_price": Decimal("2.00"),
            },
            actor="tester",
        )


def test_delete_refused_while_stock_remains(product):
    with pytest.raises(BusinessRuleError):
        stock_service.delete_product(product_id=product.id)


def test_delete_product_without_stock(product):
    product_id = product.id
    stock_service.apply_stock_movement(
        product_id=product.id, quantity=0, movement_type="adjustment", actor="tester",
    )
    stock_service.delete_product(product_id=product_id)
    assert db.session.get(Product, product_id) is None
    assert _activity(product_id) == []


def test_archive_hides_product_from_active_list(product, second_product):
    stock_service.set_archived(product_id=product.id, archived=True)

    active = stock_service.list_products(page=1, limit=20)
    archived = stock_service.list_products(page=1, limit=20, status="archived")

    assert [p["id"] for p in active["items"]] == [second_product.id]
    assert [p["id"] for p in archived["items"]] == [product.id]


def test_low_stock_report(product, second_product):
    report = stock_service.low_stock_report()
    ids = [p["id"] for p in report["lowStockProducts"]]
    assert ids == [second_product.id]
    assert report["stats"] == {"lowStockCount": 1, "criticalCount": 1}


def test_categories_and_brands(product, second_product):
    result = stock_service.list_categories()
    assert result["categories"] == ["Brakes", "Filters"]
    assert result["brands"] == ["Bosch"]
