import pandas as pd

from stockledger import settings
from stockledger.ledgers.orders import PurchaseOrderLedger
from stockledger.ledgers.returns import ReturnsLedger
from stockledger.ledgers.sales import SalesLedger
from stockledger.logger import setup_logger
from stockledger.schemas import OrderStatus, ReturnStatus, SaleStatus, StockItem
from stockledger.stock import StockCatalog
from stockledger.store import FlatRecordStore, model_columns, model_row
from stockledger.suppliers import SupplierDirectory
from stockledger.utils import ledger_date, utc_now

logger = setup_logger()


def run_process():
    """Loads every catalog and ledger from DATA_DIR and logs a status summary."""
    logger.info("--- Stock Ledger Status ---")
    logger.info(f"Data directory: {settings.DATA_DIR}")

    # --- 1. Load, leaves first ---
    store = FlatRecordStore()
    catalog = StockCatalog(store)
    suppliers = SupplierDirectory(store)
    catalog.load()
    suppliers.load()

    sales = SalesLedger(store, catalog)
    orders = PurchaseOrderLedger(store, catalog, suppliers)
    sales.load()
    orders.load()

    # Returns look up their original sale, so sales must be loaded first.
    returns = ReturnsLedger(store, catalog, sales)
    returns.load()

    # --- 2. Inventory ---
    logger.info("\n-- Inventory --")
    logger.info(f"Items: {len(catalog)}")
    logger.info(f"Suppliers: {len(suppliers.all())}")
    logger.info(f"Total inventory value: {catalog.total_value():.2f}")

    low = catalog.low_stock(settings.LOW_STOCK_THRESHOLD)
    if low:
        df = pd.DataFrame([model_row(item) for item in low], columns=model_columns(StockItem))
        logger.warning(f"⚠️ {len(low)} item(s) at or below {settings.LOW_STOCK_THRESHOLD} units:")
        logger.info(df[["SKU", "Name", "Quantity", "SupplierID"]].to_string(index=False))
    else:
        logger.info("✅ No low stock items.")

    # --- 3. Documents ---
    logger.info("\n-- Documents --")
    today = ledger_date(utc_now())
    todays_sales = sales.completed_on(today)
    takings = sum((s.total_amount for s in todays_sales), 0)
    logger.info(f"Completed sales: {len(sales.by_status(SaleStatus.COMPLETED))}")
    logger.info(f"Sales today ({today.isoformat()}): {len(todays_sales)}, total {takings:.2f}")

    open_statuses = (OrderStatus.PENDING, OrderStatus.PLACED, OrderStatus.PARTIALLY_RECEIVED)
    for status in open_statuses:
        logger.info(f"Orders {status.value}: {len(orders.by_status(status))}")

    for status in (ReturnStatus.PENDING, ReturnStatus.APPROVED):
        logger.info(f"Returns {status.value}: {len(returns.by_status(status))}")

    logger.info("\n--- Process Finished Successfully ---")


if __name__ == "__main__":
    run_process()
