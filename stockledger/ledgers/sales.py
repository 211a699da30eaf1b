import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from stockledger import settings
from stockledger.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stockledger.ledger import DocumentLedger, build_line
from stockledger.schemas import Sale, SaleLine, SaleStatus, StockItem
from stockledger.stock import StockCatalog
from stockledger.store import FlatRecordStore, Row, to_field
from stockledger.utils import ledger_date, parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class SalesLedger(DocumentLedger[Sale]):
    """
    Sales move Pending -> Completed (stock decremented) or Pending -> Cancelled.
    Only Completed and Cancelled sales are written to disk; a Pending sale
    lives for the current session only.
    """

    document_name = "sale"
    id_prefix = "SALE"
    header_file = settings.SALES_FILE
    line_file = settings.SALE_ITEMS_FILE
    header_columns = ["SaleID", "SaleDate", "TotalAmount", "Status"]
    line_model = SaleLine

    def __init__(self, store: FlatRecordStore, catalog: StockCatalog):
        super().__init__(store)
        self.catalog = catalog

    # --- Hooks ---
    def _document_id(self, document: Sale) -> str:
        return document.sale_id

    def _parse_header(self, row: Row) -> Optional[tuple[Sale, str]]:
        sale_id, sale_date, total, status = row
        sale = Sale(sale_id=sale_id, date=parse_timestamp(sale_date), status=status)
        if sale.status == SaleStatus.PENDING:
            logger.info(f"Ignoring stored Pending sale {sale_id}.")
            return None
        return sale, total

    def _header_row(self, document: Sale) -> Row:
        return [
            document.sale_id,
            to_field(document.date),
            to_field(document.total_amount),
            to_field(document.status),
        ]

    def _document_total(self, document: Sale) -> Decimal:
        return document.total_amount

    def _is_persistable(self, document: Sale) -> bool:
        return document.status != SaleStatus.PENDING

    def _require_pending(self, sale_id: str, action: str) -> Sale:
        sale = self._require(sale_id)
        if sale.status != SaleStatus.PENDING:
            raise InvalidStateError(f"Cannot {action} sale {sale_id}: status is {sale.status.value}.")
        return sale

    # --- Lifecycle ---
    def open(self) -> Sale:
        sale = Sale(sale_id=self._new_id(), date=utc_now())
        logger.info(f"Sale {sale.sale_id} opened.")
        return self._register(sale)

    def add_line(
        self,
        sale_id: str,
        item: StockItem,
        quantity: int,
        price: Optional[Decimal] = None,
    ) -> Sale:
        """
        Appends a line built from a catalog snapshot. `price` defaults to the
        snapshot's price. Stock is not checked here; `finalize` does that.
        """
        sale = self._require_pending(sale_id, "add a line to")
        line = build_line(
            SaleLine,
            sku=item.sku,
            name=item.name,
            quantity=quantity,
            price=item.price if price is None else price,
        )
        sale.lines.append(line)
        logger.debug(f"Sale {sale_id}: added {quantity} x {item.sku}")
        return sale.model_copy(deep=True)

    def edit_line(
        self,
        sale_id: str,
        index: int,
        quantity: Optional[int] = None,
        price: Optional[Decimal] = None,
    ) -> Sale:
        sale = self._require_pending(sale_id, "edit a line of")
        line = self._line_at(sale, index)
        sale.lines[index] = build_line(
            SaleLine,
            sku=line.sku,
            name=line.name,
            quantity=line.quantity if quantity is None else quantity,
            price=line.price if price is None else price,
        )
        return sale.model_copy(deep=True)

    def remove_line(self, sale_id: str, index: int) -> Sale:
        sale = self._require_pending(sale_id, "remove a line from")
        self._line_at(sale, index)
        removed = sale.lines.pop(index)
        logger.debug(f"Sale {sale_id}: removed line {index} ({removed.sku})")
        return sale.model_copy(deep=True)

    def _commit_plan(self, sale: Sale) -> dict[str, int]:
        """
        Validates the whole sale against current stock and returns the
        quantity to take per sku. Raises before anything is mutated.
        """
        plan: dict[str, int] = {}
        for line in sale.lines:
            plan[line.sku] = plan.get(line.sku, 0) + line.quantity

        for sku, required in plan.items():
            try:
                available = self.catalog.quantity(sku)
            except NotFoundError:
                raise NotFoundError(f"Sale {sale.sale_id} references unknown SKU {sku}.") from None
            if available < required:
                raise InsufficientStockError(sku, required, available)
        return plan

    def finalize(self, sale_id: str) -> Sale:
        """
        Completes a Pending sale and takes its quantities out of stock.
        Either every line is taken or nothing is: on InsufficientStockError
        (or an unknown sku) stock and status are left as they were.
        """
        sale = self._require_pending(sale_id, "finalize")
        if not sale.lines:
            raise ValidationError(f"Sale {sale_id} has no lines to finalize.")

        plan = self._commit_plan(sale)
        for sku, quantity in plan.items():
            self.catalog.apply_delta(sku, -quantity)

        sale.status = SaleStatus.COMPLETED
        sale.date = utc_now()
        logger.info(f"Sale {sale_id} completed. Total: {sale.total_amount:.2f}")
        return sale.model_copy(deep=True)

    def cancel(self, sale_id: str) -> Sale:
        sale = self._require_pending(sale_id, "cancel")
        sale.status = SaleStatus.CANCELLED
        logger.info(f"Sale {sale_id} cancelled.")
        return sale.model_copy(deep=True)

    # --- Queries ---
    def by_status(self, status: SaleStatus) -> list[Sale]:
        return [s.model_copy(deep=True) for s in self._documents.values() if s.status == status]

    def completed_in_date_range(self, start: date, end: date) -> list[Sale]:
        """
        Completed sales whose date, as a calendar day in LEDGER_TIMEZONE,
        falls within [start, end].
        """
        if end < start:
            raise ValidationError(f"End date {end} is before start date {start}.")
        return [
            s.model_copy(deep=True)
            for s in self._documents.values()
            if s.status == SaleStatus.COMPLETED and start <= ledger_date(s.date) <= end
        ]

    def completed_on(self, day: date) -> list[Sale]:
        return self.completed_in_date_range(day, day)
