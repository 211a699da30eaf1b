import logging
from decimal import Decimal
from typing import Optional

from stockledger import settings
from stockledger.errors import InvalidStateError, NotFoundError, ValidationError
from stockledger.ledger import DocumentLedger, build_line
from stockledger.ledgers.sales import SalesLedger
from stockledger.schemas import (
    ReturnCondition,
    ReturnLine,
    ReturnStatus,
    SaleStatus,
    SalesReturn,
)
from stockledger.stock import StockCatalog
from stockledger.store import FlatRecordStore, Row, to_field
from stockledger.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


class ReturnsLedger(DocumentLedger[SalesReturn]):
    """
    Customer returns against a completed sale.
    Pending -> Approved -> Completed, or Pending -> Rejected.
    Stock only moves in `process_inventory`, and only for resellable lines.
    """

    document_name = "return"
    id_prefix = "RET"
    header_file = settings.RETURNS_FILE
    line_file = settings.RETURN_ITEMS_FILE
    header_columns = [
        "returnID",
        "originalSaleID",
        "returnDate",
        "totalRefundAmount",
        "status",
        "customerNotes",
    ]
    line_model = ReturnLine

    def __init__(
        self,
        store: FlatRecordStore,
        catalog: StockCatalog,
        sales: SalesLedger,
        strict_quantities: Optional[bool] = None,
    ):
        super().__init__(store)
        self.catalog = catalog
        self.sales = sales
        self.strict_quantities = (
            settings.STRICT_RETURN_QUANTITIES if strict_quantities is None else strict_quantities
        )

    # --- Hooks ---
    def _document_id(self, document: SalesReturn) -> str:
        return document.return_id

    def _parse_header(self, row: Row) -> Optional[tuple[SalesReturn, str]]:
        return_id, sale_id, return_date, total, status, notes = row
        sales_return = SalesReturn(
            return_id=return_id,
            original_sale_id=sale_id,
            return_date=parse_timestamp(return_date),
            status=status,
            customer_notes=notes,
        )
        return sales_return, total

    def _header_row(self, document: SalesReturn) -> Row:
        return [
            document.return_id,
            document.original_sale_id,
            to_field(document.return_date),
            to_field(document.total_refund),
            to_field(document.status),
            document.customer_notes,
        ]

    def _document_total(self, document: SalesReturn) -> Decimal:
        return document.total_refund

    def _require_status(self, return_id: str, allowed: ReturnStatus, action: str) -> SalesReturn:
        sales_return = self._require(return_id)
        if sales_return.status != allowed:
            raise InvalidStateError(
                f"Cannot {action} return {return_id}: status is {sales_return.status.value}."
            )
        return sales_return

    def _sold_quantity(self, sale_id: str, sku: str) -> int:
        sale = self.sales.by_id(sale_id)
        if sale is None:
            return 0
        return sum(line.quantity for line in sale.lines if line.sku == sku)

    def _returned_quantity(self, sale_id: str, sku: str) -> int:
        """Units of `sku` already on non-rejected returns for `sale_id`."""
        return sum(
            line.quantity
            for r in self._documents.values()
            if r.original_sale_id == sale_id and r.status != ReturnStatus.REJECTED
            for line in r.lines
            if line.sku == sku
        )

    def _check_returnable(self, sales_return: SalesReturn, sku: str, quantity: int):
        sold = self._sold_quantity(sales_return.original_sale_id, sku)
        returned = self._returned_quantity(sales_return.original_sale_id, sku)
        if returned + quantity <= sold:
            return
        if sold == 0:
            problem = f"SKU {sku} was not sold in sale {sales_return.original_sale_id}"
        else:
            problem = (
                f"returning {returned + quantity} of SKU {sku} exceeds the {sold} sold "
                f"in sale {sales_return.original_sale_id}"
            )
        if self.strict_quantities:
            raise ValidationError(f"Return {sales_return.return_id}: {problem}.")
        logger.warning(f"⚠️ Return {sales_return.return_id}: {problem}.")

    # --- Lifecycle ---
    def open(self, original_sale_id: str, customer_notes: str = "") -> SalesReturn:
        sale = self.sales.by_id(original_sale_id)
        if sale is None or sale.status != SaleStatus.COMPLETED:
            raise NotFoundError(f"Completed sale {original_sale_id} not found.")
        sales_return = SalesReturn(
            return_id=self._new_id(),
            original_sale_id=original_sale_id,
            return_date=utc_now(),
            customer_notes=customer_notes or "",
        )
        logger.info(f"Return {sales_return.return_id} opened for sale {original_sale_id}.")
        return self._register(sales_return)

    def add_line(
        self,
        return_id: str,
        sku: str,
        quantity: int,
        unit_price: Optional[Decimal] = None,
        condition: ReturnCondition | str = ReturnCondition.RESELLABLE,
        reason: str = "",
        name: Optional[str] = None,
    ) -> SalesReturn:
        """
        Adds a returned sku. Name and unit price default to those on the
        original sale's line for the same sku.
        """
        sales_return = self._require_status(return_id, ReturnStatus.PENDING, "add a line to")

        sale = self.sales.by_id(sales_return.original_sale_id)
        sold_line = next((line for line in sale.lines if line.sku == sku), None) if sale else None
        if unit_price is None:
            if sold_line is None:
                raise ValidationError(
                    f"No price for SKU {sku}: it is not on sale {sales_return.original_sale_id}."
                )
            unit_price = sold_line.price
        if name is None:
            name = sold_line.name if sold_line else ""

        line = build_line(
            ReturnLine,
            sku=sku,
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            condition=condition,
            reason=reason,
        )
        self._check_returnable(sales_return, line.sku, line.quantity)
        sales_return.lines.append(line)
        return sales_return.model_copy(deep=True)

    def update_line(
        self,
        return_id: str,
        index: int,
        quantity: Optional[int] = None,
        condition: Optional[ReturnCondition | str] = None,
        reason: Optional[str] = None,
    ) -> SalesReturn:
        """Changes the quantity, condition or reason of a line; None keeps the current value."""
        sales_return = self._require_status(return_id, ReturnStatus.PENDING, "change a line of")
        current = self._line_at(sales_return, index)
        line = build_line(
            ReturnLine,
            sku=current.sku,
            name=current.name,
            quantity=current.quantity if quantity is None else quantity,
            unit_price=current.unit_price,
            condition=current.condition if condition is None else condition,
            reason=current.reason if reason is None else reason,
        )
        # The current line is already counted as returned.
        if line.quantity > current.quantity:
            self._check_returnable(sales_return, line.sku, line.quantity - current.quantity)
        sales_return.lines[index] = line
        return sales_return.model_copy(deep=True)

    def remove_line(self, return_id: str, index: int) -> SalesReturn:
        sales_return = self._require_status(return_id, ReturnStatus.PENDING, "remove a line from")
        self._line_at(sales_return, index)
        sales_return.lines.pop(index)
        return sales_return.model_copy(deep=True)

    def set_notes(self, return_id: str, notes: str) -> SalesReturn:
        sales_return = self._require(return_id)
        sales_return.customer_notes = notes or ""
        return sales_return.model_copy(deep=True)

    def approve(self, return_id: str) -> SalesReturn:
        sales_return = self._require_status(return_id, ReturnStatus.PENDING, "approve")
        if not sales_return.lines:
            raise ValidationError(f"Return {return_id} has no lines to approve.")
        sales_return.status = ReturnStatus.APPROVED
        logger.info(f"Return {return_id} approved. Refund: {sales_return.total_refund:.2f}")
        return sales_return.model_copy(deep=True)

    def reject(self, return_id: str) -> SalesReturn:
        sales_return = self._require_status(return_id, ReturnStatus.PENDING, "reject")
        sales_return.status = ReturnStatus.REJECTED
        logger.info(f"Return {return_id} rejected.")
        return sales_return.model_copy(deep=True)

    def process_inventory(self, return_id: str) -> bool:
        """
        Puts resellable units back into stock and completes the return.
        Damaged and defective units are logged, not restocked. A line whose
        sku is missing from the catalog is logged and skipped; the return is
        completed anyway. Returns True when every line was processed cleanly.
        """
        sales_return = self._require_status(return_id, ReturnStatus.APPROVED, "process")

        all_ok = True
        for line in sales_return.lines:
            if line.sku not in self.catalog:
                logger.error(
                    f"Return {return_id}: SKU {line.sku} not found in the catalog. "
                    f"{line.quantity} unit(s) not processed."
                )
                all_ok = False
                continue
            if line.condition == ReturnCondition.RESELLABLE:
                self.catalog.apply_delta(line.sku, line.quantity)
                logger.info(f"Return {return_id}: restocked {line.quantity} x {line.sku}.")
            else:
                logger.info(
                    f"Return {return_id}: {line.quantity} x {line.sku} is "
                    f"{line.condition.value.lower()}. Not restocked."
                )

        sales_return.status = ReturnStatus.COMPLETED
        logger.info(f"Return {return_id} completed.")
        return all_ok

    # --- Queries ---
    def by_status(self, status: ReturnStatus) -> list[SalesReturn]:
        return [r.model_copy(deep=True) for r in self._documents.values() if r.status == status]

    def for_sale(self, original_sale_id: str) -> list[SalesReturn]:
        return [
            r.model_copy(deep=True)
            for r in self._documents.values()
            if r.original_sale_id == original_sale_id
        ]
