# tests/conftest.py
# ---------------------------------------------------------------------
# Every test gets its own temporary data directory, so nothing touches
# the real DATA_DIR. Fixtures wire the catalogs and ledgers together the
# same way main.py does.
# ---------------------------------------------------------------------

from decimal import Decimal

import pytest

from stockledger.ledgers.orders import PurchaseOrderLedger
from stockledger.ledgers.returns import ReturnsLedger
from stockledger.ledgers.sales import SalesLedger
from stockledger.schemas import StockItem, Supplier
from stockledger.stock import StockCatalog
from stockledger.store import FlatRecordStore
from stockledger.suppliers import SupplierDirectory


# ---------- Store ----------
@pytest.fixture()
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture()
def store(data_dir):
    return FlatRecordStore(data_dir)


# ---------- Catalogs ----------
@pytest.fixture()
def catalog(store):
    """Catalog seeded with SKU1 (10 @ 5.00) and SKU2 (4 @ 12.50)."""
    cat = StockCatalog(store)
    cat.create(
        StockItem(
            sku="SKU1", name="Widget", category="Parts", quantity=10,
            price=Decimal("5.00"), supplier_id="S1",
        )
    )
    cat.create(
        StockItem(
            sku="SKU2", name="Gadget, large", category="Tools", quantity=4,
            price=Decimal("12.50"), supplier_id="S1",
        )
    )
    return cat


@pytest.fixture()
def suppliers(store):
    directory = SupplierDirectory(store)
    directory.create(Supplier(supplier_id="S1", name="Acme", contact_info="acme@example.com"))
    return directory


# ---------- Ledgers ----------
@pytest.fixture()
def sales(store, catalog):
    return SalesLedger(store, catalog)


@pytest.fixture()
def orders(store, catalog, suppliers):
    return PurchaseOrderLedger(store, catalog, suppliers, strict_lines=False)


@pytest.fixture()
def returns(store, catalog, sales):
    return ReturnsLedger(store, catalog, sales, strict_quantities=False)


# ---------- Handy documents ----------
@pytest.fixture()
def completed_sale(sales, catalog):
    """A completed sale of 3 x SKU1 and 2 x SKU2. Leaves SKU1=7, SKU2=2."""
    sale = sales.open()
    sales.add_line(sale.sale_id, catalog.get("SKU1"), 3)
    sales.add_line(sale.sale_id, catalog.get("SKU2"), 2)
    return sales.finalize(sale.sale_id)


@pytest.fixture()
def placed_order(orders, catalog):
    """A placed order for 10 x SKU1 at 3.00."""
    order = orders.create("S1")
    orders.add_line(order.order_id, catalog.get("SKU1"), 10, Decimal("3.00"))
    return orders.place(order.order_id)
