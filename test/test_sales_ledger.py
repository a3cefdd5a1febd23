from pathlib import Path

import pytest
from conftest import seed_catalog

from rincon.domain.errors import InsufficientStockError, NotFoundError, ValidationError
from rincon.domain.models import CommitResult, Totals
from rincon.domain.pricing import calculate_totals
from rincon.repositories.sqlite_repo import SqliteRepository
from rincon.services.customer_service import CustomerService
from rincon.services.inventory_service import InventoryService
from rincon.services.sales_service import SalesService


def _setup(tmp_path: Path, repo_cls=SqliteRepository):
    repo = repo_cls(tmp_path / "ledger.db")
    repo.init_db()
    pid_1kg, pid_425 = seed_catalog(repo)
    return repo, SalesService(repo), pid_1kg, pid_425


def test_commit_decrements_stock_and_freezes_totals(tmp_path: Path):
    repo, sales, pid_1kg, pid_425 = _setup(tmp_path)

    result = sales.create_sale(
        [{"product_id": pid_1kg, "qty": 2}, {"product_id": pid_425, "qty": 1}],
        channel="Box",
        affiliate=True,
        manual_discount_pct=10,
        customer_name="  Box Norte ",
        notes="retira el viernes",
    )

    assert result.stock_adjusted is True
    assert result.failed_product_ids == ()
    assert repo.get_product_by_id(pid_1kg).stock == 8
    assert repo.get_product_by_id(pid_425).stock == 19

    sale = sales.get_sale(result.sale_id)
    assert sale.customer_name == "Box Norte"
    assert sale.notes == "retira el viernes"
    assert sale.affiliate is True
    assert sale.bundle_applied is True
    assert [(it.size, it.qty, it.unit_price, it.unit_cost) for it in sale.items] == [
        ("1 kg", 2, 9990, 4228),
        ("425 g", 1, 5490, 2066),
    ]
    assert sale.totals == Totals(gross=25470, discount=7253, net=18217, cost=10522, margin=7695, margin_pct=42.2)
    assert sale.totals == calculate_totals(sale.items, sale.manual_discount_pct, sale.bundle_applied, sale.affiliate)


def test_rejects_insufficient_stock_without_writing_anything(tmp_path: Path):
    repo, sales, pid_1kg, pid_425 = _setup(tmp_path)

    with pytest.raises(InsufficientStockError, match="Not enough stock for Mantequilla de Maní Natural 1 kg. Available: 10"):
        sales.create_sale([{"product_id": pid_425, "qty": 1}, {"product_id": pid_1kg, "qty": 11}])

    assert repo.get_product_by_id(pid_1kg).stock == 10
    assert repo.get_product_by_id(pid_425).stock == 20
    assert sales.list_sales() == []


def test_repeated_lines_are_checked_against_stock_together(tmp_path: Path):
    repo, sales, pid_1kg, _ = _setup(tmp_path)

    with pytest.raises(InsufficientStockError):
        sales.create_sale([{"product_id": pid_1kg, "qty": 6}, {"product_id": pid_1kg, "qty": 6}])

    assert repo.get_product_by_id(pid_1kg).stock == 10


def test_stock_is_read_at_commit_time(tmp_path: Path):
    repo, sales, pid_1kg, _ = _setup(tmp_path)
    InventoryService(repo).update_product(pid_1kg, stock=1)

    with pytest.raises(InsufficientStockError, match="Available: 1"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 2}])


def test_rejects_empty_cart_bad_qty_and_unknown_channel(tmp_path: Path):
    _, sales, pid_1kg, _ = _setup(tmp_path)

    with pytest.raises(ValidationError, match="Cart is empty"):
        sales.create_sale([])
    with pytest.raises(ValidationError, match="Qty must be >= 1"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 0}])
    with pytest.raises(ValidationError, match="Unknown sales channel"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 1}], channel="Telegram")
    with pytest.raises(ValidationError, match="Unit price must be >= 0"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 1, "unit_price": -1}])


def test_inactive_or_missing_products_cannot_be_sold(tmp_path: Path):
    repo, sales, pid_1kg, _ = _setup(tmp_path)
    InventoryService(repo).set_active(pid_1kg, False)

    with pytest.raises(NotFoundError, match="Product not found"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 1}])
    with pytest.raises(NotFoundError):
        sales.create_sale([{"product_id": "missing", "qty": 1}])


def test_cart_unit_price_overrides_catalog_price(tmp_path: Path):
    _, sales, pid_1kg, _ = _setup(tmp_path)

    result = sales.create_sale([{"product_id": pid_1kg, "qty": 1, "unit_price": 9000}])

    sale = sales.get_sale(result.sale_id)
    assert sale.items[0].unit_price == 9000
    assert sale.totals.gross == 9000


def test_catalog_changes_do_not_touch_recorded_sales(tmp_path: Path):
    repo, sales, pid_1kg, _ = _setup(tmp_path)
    result = sales.create_sale([{"product_id": pid_1kg, "qty": 1}], apply_bundle=False)
    before = sales.get_sale(result.sale_id)

    InventoryService(repo).update_product(pid_1kg, price=20000, cost=9000, name="Renamed")

    after = sales.get_sale(result.sale_id)
    assert after == before
    assert after.items[0].name == "Mantequilla de Maní Natural"
    assert after.totals.gross == 9990


def test_affiliate_discount_only_applies_on_box_channel(tmp_path: Path):
    _, sales, pid_1kg, _ = _setup(tmp_path)

    result = sales.create_sale([{"product_id": pid_1kg, "qty": 1}], channel="IG", affiliate=True)

    sale = sales.get_sale(result.sale_id)
    assert sale.affiliate is False
    assert sale.totals.discount == 0
    assert sale.totals.net == 9990


def test_manual_discount_is_stored_clamped(tmp_path: Path):
    _, sales, pid_1kg, _ = _setup(tmp_path)

    result = sales.create_sale([{"product_id": pid_1kg, "qty": 1}], manual_discount_pct=150)

    sale = sales.get_sale(result.sale_id)
    assert sale.manual_discount_pct == 100
    assert sale.totals.net == 0
    assert sale.totals.margin == 0
    assert sale.totals.margin_pct == 0


def test_customer_name_is_snapshotted_from_directory(tmp_path: Path):
    repo, sales, pid_1kg, _ = _setup(tmp_path)
    customers = CustomerService(repo)
    cid = customers.add_customer("Café Central", "Cafetería/Box", "@cafecentral")

    result = sales.create_sale([{"product_id": pid_1kg, "qty": 1}], channel="Cafetería", customer_id=cid, customer_name="ignored")
    customers.delete_customer(cid)

    sale = sales.get_sale(result.sale_id)
    assert sale.customer_id == cid
    assert sale.customer_name == "Café Central"

    with pytest.raises(NotFoundError, match="Customer not found"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 1}], customer_id=cid)


def test_delete_sale_keeps_stock_as_is(tmp_path: Path):
    repo, sales, pid_1kg, pid_425 = _setup(tmp_path)
    result = sales.create_sale([{"product_id": pid_1kg, "qty": 2}, {"product_id": pid_425, "qty": 3}])

    sales.delete_sale(result.sale_id)

    assert sales.list_sales() == []
    assert repo.get_product_by_id(pid_1kg).stock == 8
    assert repo.get_product_by_id(pid_425).stock == 17
    with pytest.raises(NotFoundError, match="Sale not found"):
        sales.delete_sale(result.sale_id)


def test_list_sales_is_most_recent_first(tmp_path: Path):
    _, sales, pid_1kg, pid_425 = _setup(tmp_path)

    first = sales.create_sale([{"product_id": pid_1kg, "qty": 1}])
    second = sales.create_sale([{"product_id": pid_425, "qty": 1}])

    assert [s.id for s in sales.list_sales()] == [second.sale_id, first.sale_id]


def test_sale_rolls_back_when_a_decrement_fails(tmp_path: Path):
    class FailingRepo(SqliteRepository):
        calls = 0

        def _decrement_stock(self, cur, product_id, qty):
            FailingRepo.calls += 1
            if FailingRepo.calls == 2:
                raise RuntimeError("boom")
            super()._decrement_stock(cur, product_id, qty)

    repo, sales, pid_1kg, pid_425 = _setup(tmp_path, FailingRepo)

    with pytest.raises(RuntimeError, match="boom"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 2}, {"product_id": pid_425, "qty": 1}])

    assert repo.get_product_by_id(pid_1kg).stock == 10
    assert repo.get_product_by_id(pid_425).stock == 20
    assert repo.list_sales() == []


def test_unadjusted_stock_is_reported_and_can_be_flagged(tmp_path: Path, caplog):
    repo, _, pid_1kg, _ = _setup(tmp_path)

    class StockFailingUnitOfWork:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return None

        def commit_sale(self, candidate):
            from dataclasses import replace

            sale = replace(candidate, id="s-1", datetime="2024-05-01 10:00:00")
            conn = repo._conn()
            repo._insert_sale(conn.cursor(), sale)
            conn.commit()
            conn.close()
            return CommitResult(sale_id="s-1", stock_adjusted=False, failed_product_ids=(pid_1kg,))

    sales = SalesService(repo, uow_factory=StockFailingUnitOfWork)

    with caplog.at_level("ERROR", logger="rincon.sales"):
        result = sales.create_sale([{"product_id": pid_1kg, "qty": 1}])

    assert result.stock_adjusted is False
    assert "sale_stock_not_adjusted sale_id=s-1" in caplog.text
    assert repo.get_product_by_id(pid_1kg).stock == 10

    sales.flag_stock_reconciliation("s-1")
    assert sales.get_sale("s-1").stock_pending is True
    with pytest.raises(NotFoundError):
        sales.flag_stock_reconciliation("missing")


@pytest.mark.parametrize("price", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_cart_prices_are_rejected_before_pricing(tmp_path: Path, price):
    repo, sales, pid_1kg, _ = _setup(tmp_path)

    with pytest.raises(ValidationError, match="Unit price must be >= 0"):
        sales.create_sale([{"product_id": pid_1kg, "qty": 1, "unit_price": price}])

    assert sales.list_sales() == []
    assert repo.get_product_by_id(pid_1kg).stock == 10
