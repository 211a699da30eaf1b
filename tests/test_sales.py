from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest import mock

import pytest

from stockledger import settings
from stockledger.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from stockledger.ledgers.sales import SalesLedger
from stockledger.schemas import SaleStatus, StockItem
from stockledger.utils import ledger_date


# -------------------------
# Lifecycle
# -------------------------

def test_open_creates_pending_sale(sales):
    sale = sales.open()
    assert sale.status == SaleStatus.PENDING
    assert sale.lines == []
    assert sale.sale_id in sales


def test_finalize_decrements_stock(sales, catalog):
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 3, Decimal("5.00"))
    done = sales.finalize(sale.sale_id)

    assert catalog.quantity("SKU1") == 7
    assert done.status == SaleStatus.COMPLETED
    assert done.total_amount == Decimal("15.00")


def test_finalize_insufficient_stock_touches_nothing(sales, catalog):
    catalog.apply_delta("SKU1", -3)
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU2"), 1)
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 20, Decimal("5.00"))

    with pytest.raises(InsufficientStockError) as excinfo:
        sales.finalize(sale.sale_id)

    assert excinfo.value.sku == "SKU1"
    assert excinfo.value.required == 20
    assert excinfo.value.available == 7
    assert catalog.quantity("SKU1") == 7
    assert catalog.quantity("SKU2") == 4
    assert sales.by_id(sale.sale_id).status == SaleStatus.PENDING


def test_finalize_aggregates_lines_for_same_sku(sales, catalog):
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU2"), 3)
    sales.add_line(sale.sale_id, catalog.get("SKU2"), 3)
    with pytest.raises(InsufficientStockError):
        sales.finalize(sale.sale_id)
    assert catalog.quantity("SKU2") == 4


def test_finalize_unknown_sku(sales, catalog):
    sale = sales.open()
    sales.add_line(sale.sale_id, StockItem(sku="GHOST", name="Ghost", price="1.00"), 1)
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 1)
    with pytest.raises(NotFoundError):
        sales.finalize(sale.sale_id)
    assert catalog.quantity("SKU1") == 10


def test_finalize_empty_sale(sales):
    sale = sales.open()
    with pytest.raises(ValidationError):
        sales.finalize(sale.sale_id)


def test_cancel_leaves_stock(sales, catalog):
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 2)
    cancelled = sales.cancel(sale.sale_id)
    assert cancelled.status == SaleStatus.CANCELLED
    assert catalog.quantity("SKU1") == 10


def test_terminal_sales_reject_changes(sales, catalog, completed_sale):
    sale_id = completed_sale.sale_id
    with pytest.raises(InvalidStateError):
        sales.add_line(sale_id, catalog.get("SKU1"), 1)
    with pytest.raises(InvalidStateError):
        sales.edit_line(sale_id, 0, quantity=1)
    with pytest.raises(InvalidStateError):
        sales.remove_line(sale_id, 0)
    with pytest.raises(InvalidStateError):
        sales.finalize(sale_id)
    with pytest.raises(InvalidStateError):
        sales.cancel(sale_id)


def test_unknown_sale(sales, catalog):
    with pytest.raises(NotFoundError):
        sales.add_line("SALE-NOPE", catalog.get("SKU1"), 1)


# -------------------------
# Lines and totals
# -------------------------

def test_add_line_defaults_to_catalog_price(sales, catalog):
    sale = sales.open()
    updated = sales.add_line(sale.sale_id, catalog.get("SKU2"), 2)
    assert updated.lines[0].price == Decimal("12.50")
    assert updated.lines[0].name == "Gadget, large"
    assert updated.total_amount == Decimal("25.00")


@pytest.mark.parametrize("quantity, price", [(0, "1.00"), (-2, "1.00"), (1, "-0.01")])
def test_add_line_rejects_bad_values(sales, catalog, quantity, price):
    sale = sales.open()
    with pytest.raises(ValidationError):
        sales.add_line(sale.sale_id, catalog.get("SKU1"), quantity, Decimal(price))
    assert sales.by_id(sale.sale_id).lines == []


def test_add_line_does_not_check_stock(sales, catalog):
    sale = sales.open()
    updated = sales.add_line(sale.sale_id, catalog.get("SKU2"), 500)
    assert updated.lines[0].quantity == 500


def test_edit_and_remove_line_keep_total_in_step(sales, catalog):
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 2)
    sales.add_line(sale.sale_id, catalog.get("SKU2"), 1)

    edited = sales.edit_line(sale.sale_id, 0, quantity=4, price=Decimal("4.25"))
    assert edited.lines[0].quantity == 4
    assert edited.total_amount == Decimal("29.50")
    assert edited.total_amount == sum(line.subtotal for line in edited.lines)

    removed = sales.remove_line(sale.sale_id, 1)
    assert [line.sku for line in removed.lines] == ["SKU1"]
    assert removed.total_amount == Decimal("17.00")

    with pytest.raises(NotFoundError):
        sales.remove_line(sale.sale_id, 5)
    with pytest.raises(ValidationError):
        sales.edit_line(sale.sale_id, 0, quantity=0)
    assert sales.by_id(sale.sale_id).lines[0].quantity == 4


def test_returned_sale_is_a_snapshot(sales, catalog):
    sale = sales.open()
    snapshot = sales.add_line(sale.sale_id, catalog.get("SKU1"), 2)
    snapshot.lines.clear()
    assert len(sales.by_id(sale.sale_id).lines) == 1


# -------------------------
# Queries
# -------------------------

def test_completed_in_date_range(sales, completed_sale):
    today = ledger_date(completed_sale.date)
    sales.open()

    found = sales.completed_in_date_range(today, today)
    assert [s.sale_id for s in found] == [completed_sale.sale_id]
    assert sales.completed_on(today - timedelta(days=1)) == []
    assert len(sales.completed_in_date_range(today - timedelta(days=3), today + timedelta(days=3))) == 1

    with pytest.raises(ValidationError):
        sales.completed_in_date_range(today, today - timedelta(days=1))


def test_date_range_uses_ledger_timezone(monkeypatch, store, catalog, data_dir):
    (data_dir / "sales.csv").write_text(
        "SaleID,SaleDate,TotalAmount,Status\nS-1,2025-01-02T03:00:00Z,5.00,Completed\n",
        encoding="utf-8",
    )
    (data_dir / "sale_items.csv").write_text(
        "SaleID,ItemSKU,ItemName,QuantitySold,PriceAtSale\nS-1,SKU1,Widget,1,5.00\n",
        encoding="utf-8",
    )
    ledger = SalesLedger(store, catalog)
    ledger.load()

    assert len(ledger.completed_on(date(2025, 1, 2))) == 1
    monkeypatch.setattr(settings, "LEDGER_TIMEZONE", "America/Los_Angeles")
    assert len(ledger.completed_on(date(2025, 1, 1))) == 1
    assert ledger.completed_on(date(2025, 1, 2)) == []


# -------------------------
# Persistence
# -------------------------

def test_round_trip_drops_pending(sales, store, catalog, completed_sale):
    pending = sales.open()
    sales.add_line(pending.sale_id, catalog.get("SKU1"), 1)
    cancelled = sales.open()
    sales.add_line(cancelled.sale_id, catalog.get("SKU2"), 1)
    sales.cancel(cancelled.sale_id)

    sales.save()
    reloaded = SalesLedger(store, catalog)
    reloaded.load()

    assert pending.sale_id not in reloaded
    assert reloaded.by_id(completed_sale.sale_id) == sales.by_id(completed_sale.sale_id)
    assert reloaded.by_id(cancelled.sale_id).status == SaleStatus.CANCELLED
    assert len(reloaded) == 2


def test_load_drops_orphans_and_reports_stale_totals(store, catalog, data_dir, caplog):
    (data_dir / "sales.csv").write_text(
        "SaleID,SaleDate,TotalAmount,Status\n"
        "S-1,Wed Jan 01 10:00:00 UTC 2025,99.00,Completed\n"
        "S-2,2025-01-01T11:00:00Z,0.00,Pending\n"
        "S-3,not a date,1.00,Completed\n",
        encoding="utf-8",
    )
    (data_dir / "sale_items.csv").write_text(
        "SaleID,ItemSKU,ItemName,QuantitySold,PriceAtSale\n"
        "S-1,SKU1,Widget,2,5.00\n"
        "S-1,SKU2,\"Gadget, large\",1,12.50\n"
        "S-9,SKU1,Widget,1,5.00\n"
        "S-2,SKU1,Widget,1,5.00\n",
        encoding="utf-8",
    )
    ledger = SalesLedger(store, catalog)
    ledger.load()

    assert len(ledger) == 1
    sale = ledger.by_id("S-1")
    assert sale.date == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert sale.total_amount == Decimal("22.50")
    assert [line.sku for line in sale.lines] == ["SKU1", "SKU2"]
    assert "stale" in caplog.text
    assert "unknown sale S-9" in caplog.text


def test_load_matches_status_case_insensitively(store, catalog, data_dir):
    (data_dir / "sales.csv").write_text(
        "SaleID,SaleDate,TotalAmount,Status\n"
        "S-1,2025-01-01T10:00:00Z,5.00,completed\n"
        "S-2,2025-01-01T11:00:00Z,5.00, CANCELLED \n"
        "S-3,2025-01-01T12:00:00Z,5.00,pending\n"
        "S-4,2025-01-01T13:00:00Z,5.00,Refunded\n",
        encoding="utf-8",
    )
    (data_dir / "sale_items.csv").write_text(
        "SaleID,ItemSKU,ItemName,QuantitySold,PriceAtSale\n"
        "S-1,SKU1,Widget,1,5.00\n"
        "S-2,SKU1,Widget,1,5.00\n",
        encoding="utf-8",
    )
    ledger = SalesLedger(store, catalog)
    ledger.load()

    assert ledger.by_id("S-1").status == SaleStatus.COMPLETED
    assert ledger.by_id("S-2").status == SaleStatus.CANCELLED
    assert "S-3" not in ledger
    assert "S-4" not in ledger


def test_load_continues_when_store_fails(store, catalog, caplog):
    ledger = SalesLedger(store, catalog)
    with mock.patch.object(store, "read_records", side_effect=PersistenceError("disk error")):
        ledger.load()

    assert len(ledger) == 0
    assert "disk error. Continuing with what could be loaded" in caplog.text
