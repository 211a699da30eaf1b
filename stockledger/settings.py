import os
from pathlib import Path
from dotenv import load_dotenv

# --- Base Directory ---
BASE_DIR = Path(__file__).resolve().parent.parent

# --- Load Environment Variables ---
load_dotenv(BASE_DIR / ".env")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Path Configuration ---
DATA_DIR = BASE_DIR / os.getenv("DATA_DIR", "data")
LOG_DIR = BASE_DIR / os.getenv("LOG_DIR", "logs")

# --- Filename Configuration ---
ITEMS_FILE = os.getenv("ITEMS_FILE", "items.csv")
SUPPLIERS_FILE = os.getenv("SUPPLIERS_FILE", "suppliers.csv")
SALES_FILE = os.getenv("SALES_FILE", "sales.csv")
SALE_ITEMS_FILE = os.getenv("SALE_ITEMS_FILE", "sale_items.csv")
ORDERS_FILE = os.getenv("ORDERS_FILE", "orders.csv")
ORDER_ITEMS_FILE = os.getenv("ORDER_ITEMS_FILE", "order_items.csv")
RETURNS_FILE = os.getenv("RETURNS_FILE", "sales_returns.csv")
RETURN_ITEMS_FILE = os.getenv("RETURN_ITEMS_FILE", "sales_return_items.csv")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Shared Business Logic ---
# Calendar-date bucketing for date-range queries always happens in this zone.
LEDGER_TIMEZONE = os.getenv("LEDGER_TIMEZONE", "UTC")

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))

# Lenient by default: duplicates and over-returns are only logged.
STRICT_ORDER_LINES = _env_flag("STRICT_ORDER_LINES")
STRICT_RETURN_QUANTITIES = _env_flag("STRICT_RETURN_QUANTITIES")
