import logging
from decimal import Decimal
from typing import Optional

import pydantic

from . import settings
from .errors import DuplicateKeyError, NotFoundError, PersistenceError, ValidationError
from .schemas import ZERO, StockItem
from .store import FlatRecordStore, model_columns, model_row, row_mapping
from .utils import round_money

logger = logging.getLogger(__name__)


class StockCatalog:
    """
    SKU -> StockItem mapping. Every quantity change in the system funnels
    through `apply_delta`; every read hands out a copy.
    """

    filename = settings.ITEMS_FILE
    columns = model_columns(StockItem)

    def __init__(self, store: FlatRecordStore):
        self.store = store
        self._items: dict[str, StockItem] = {}

    # --- Reads ---
    def get(self, sku: str) -> Optional[StockItem]:
        item = self._items.get(sku)
        return item.model_copy() if item is not None else None

    def all(self) -> list[StockItem]:
        return [item.model_copy() for item in self._items.values()]

    def __contains__(self, sku: str) -> bool:
        return sku in self._items

    def __len__(self) -> int:
        return len(self._items)

    def quantity(self, sku: str) -> int:
        """Current quantity on hand. Raises NotFoundError for an unknown sku."""
        item = self._items.get(sku)
        if item is None:
            raise NotFoundError(f"SKU {sku} not found.")
        return item.quantity

    def search(self, text: str) -> list[StockItem]:
        """Case-insensitive substring match on sku, name and category. Empty text matches all."""
        if text is None or not text.strip():
            return self.all()
        needle = text.strip().lower()
        return [
            item.model_copy()
            for item in self._items.values()
            if needle in item.sku.lower()
            or needle in item.name.lower()
            or needle in item.category.lower()
        ]

    def low_stock(self, threshold: int) -> list[StockItem]:
        """Items whose quantity is at or below `threshold` (negative thresholds count as 0)."""
        if threshold < 0:
            logger.warning(f"Low stock threshold cannot be negative ({threshold}). Using 0.")
            threshold = 0
        return [item.model_copy() for item in self._items.values() if item.quantity <= threshold]

    def total_value(self) -> Decimal:
        return round_money(sum((item.price * item.quantity for item in self._items.values()), ZERO))

    # --- Mutations ---
    def create(self, item: StockItem) -> StockItem:
        if item.sku in self._items:
            raise DuplicateKeyError(f"Item with SKU {item.sku} already exists.")
        self._items[item.sku] = item.model_copy()
        logger.info(f"Item {item.name} (SKU: {item.sku}) added to inventory.")
        return item.model_copy()

    def update(self, item: StockItem) -> StockItem:
        """Replaces the record for an existing sku (the sku itself cannot change)."""
        if item.sku not in self._items:
            raise NotFoundError(f"Item with SKU {item.sku} not found. Cannot update.")
        self._items[item.sku] = item.model_copy()
        logger.info(f"Item (SKU: {item.sku}) updated.")
        return item.model_copy()

    def remove(self, sku: str) -> StockItem:
        item = self._items.pop(sku, None)
        if item is None:
            raise NotFoundError(f"Item with SKU {sku} not found. Nothing removed.")
        logger.info(f"Item {item.name} (SKU: {sku}) removed from inventory.")
        return item

    def apply_delta(self, sku: str, delta: int) -> bool:
        """
        Adds `delta` (signed) to the quantity of `sku`.
        A delta that would leave the quantity negative is dropped entirely and
        False is returned. Raises NotFoundError for an unknown sku.
        """
        item = self._items.get(sku)
        if item is None:
            raise NotFoundError(f"SKU {sku} not found.")
        new_quantity = item.quantity + delta
        if new_quantity < 0:
            logger.error(
                f"Not enough stock for SKU {sku} to decrease by {abs(delta)}. "
                f"Current quantity is {item.quantity}. Quantity not changed."
            )
            return False
        item.quantity = new_quantity
        logger.debug(f"SKU {sku}: {delta:+d} -> {new_quantity}")
        return True

    # --- Persistence ---
    def load(self):
        items: dict[str, StockItem] = {}
        try:
            rows = self.store.read_records(self.filename, self.columns)
        except PersistenceError as e:
            logger.warning(f"⚠️ {e}. Starting with an empty inventory.")
            rows = []

        for row in rows:
            try:
                item = StockItem.model_validate(row_mapping(self.columns, row))
            except pydantic.ValidationError as e:
                logger.warning(f"Skipping invalid item row {row}: {e}")
                continue
            if item.sku in items:
                logger.warning(f"Duplicate SKU {item.sku} in {self.filename}. Keeping the first.")
                continue
            items[item.sku] = item

        self._items = items
        logger.info(f"{len(items)} items loaded from {self.filename}.")

    def save(self):
        rows = [model_row(item) for item in self._items.values()]
        self.store.write_records(self.filename, self.columns, rows)
        logger.info(f"{len(rows)} items saved to {self.filename}.")


def new_item(**values) -> StockItem:
    """Builds a StockItem from field names, raising the ledger ValidationError on bad input."""
    try:
        return StockItem(**values)
    except pydantic.ValidationError as e:
        raise ValidationError(str(e)) from e
