import logging
from typing import Optional

import pydantic

from . import settings
from .errors import DuplicateKeyError, NotFoundError, PersistenceError
from .schemas import Supplier
from .store import FlatRecordStore, model_columns, model_row, row_mapping

logger = logging.getLogger(__name__)


class SupplierDirectory:
    """supplier_id -> Supplier. Purchase orders reference suppliers by id only."""

    filename = settings.SUPPLIERS_FILE
    columns = model_columns(Supplier)

    def __init__(self, store: FlatRecordStore):
        self.store = store
        self._suppliers: dict[str, Supplier] = {}

    def get(self, supplier_id: str) -> Optional[Supplier]:
        supplier = self._suppliers.get(supplier_id)
        return supplier.model_copy() if supplier is not None else None

    def all(self) -> list[Supplier]:
        return [s.model_copy() for s in self._suppliers.values()]

    def __contains__(self, supplier_id: str) -> bool:
        return supplier_id in self._suppliers

    def search(self, text: str) -> list[Supplier]:
        if text is None or not text.strip():
            return self.all()
        needle = text.strip().lower()
        return [
            s.model_copy()
            for s in self._suppliers.values()
            if needle in s.supplier_id.lower() or needle in s.name.lower()
        ]

    def create(self, supplier: Supplier) -> Supplier:
        if supplier.supplier_id in self._suppliers:
            raise DuplicateKeyError(f"Supplier with ID {supplier.supplier_id} already exists.")
        self._suppliers[supplier.supplier_id] = supplier.model_copy()
        logger.info(f"Supplier {supplier.name} (ID: {supplier.supplier_id}) added.")
        return supplier.model_copy()

    def update(self, supplier: Supplier) -> Supplier:
        if supplier.supplier_id not in self._suppliers:
            raise NotFoundError(f"Supplier {supplier.supplier_id} not found.")
        self._suppliers[supplier.supplier_id] = supplier.model_copy()
        return supplier.model_copy()

    def remove(self, supplier_id: str) -> Supplier:
        supplier = self._suppliers.pop(supplier_id, None)
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found.")
        logger.info(f"Supplier {supplier.name} (ID: {supplier_id}) removed.")
        return supplier

    def load(self):
        suppliers: dict[str, Supplier] = {}
        try:
            rows = self.store.read_records(self.filename, self.columns)
        except PersistenceError as e:
            logger.warning(f"⚠️ {e}. Starting with an empty supplier list.")
            rows = []

        for row in rows:
            try:
                supplier = Supplier.model_validate(row_mapping(self.columns, row))
            except pydantic.ValidationError as e:
                logger.warning(f"Skipping malformed supplier row {row}: {e}")
                continue
            suppliers.setdefault(supplier.supplier_id, supplier)

        self._suppliers = suppliers
        logger.info(f"{len(suppliers)} suppliers loaded from {self.filename}.")

    def save(self):
        rows = [model_row(s) for s in self._suppliers.values()]
        self.store.write_records(self.filename, self.columns, rows)
        logger.info(f"{len(rows)} suppliers saved to {self.filename}.")
