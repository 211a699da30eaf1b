import logging
from decimal import Decimal
from typing import Optional

from stockledger import settings
from stockledger.errors import (
    DuplicateKeyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stockledger.ledger import DocumentLedger, build_line
from stockledger.schemas import Order, OrderLine, OrderStatus, StockItem
from stockledger.stock import StockCatalog
from stockledger.store import FlatRecordStore, Row, model_columns, row_mapping, to_field
from stockledger.suppliers import SupplierDirectory
from stockledger.utils import parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Statuses from which an order may still be cancelled / still accept receipts.
CANCELLABLE = (OrderStatus.PENDING, OrderStatus.PLACED)
RECEIVABLE = (OrderStatus.PLACED, OrderStatus.PARTIALLY_RECEIVED)


class PurchaseOrderLedger(DocumentLedger[Order]):
    """
    Purchase orders restock the catalog as goods arrive.

    Pending   -> lines may be added, changed or removed
    Placed    -> sent to the supplier; receipts accepted
    Partially Received / Received -> derived from line receipt state
    Cancelled -> terminal, only from Pending or Placed
    """

    document_name = "order"
    id_prefix = "PO"
    header_file = settings.ORDERS_FILE
    line_file = settings.ORDER_ITEMS_FILE
    header_columns = ["orderID", "supplierID", "orderDate", "status", "totalCost"]
    line_model = OrderLine

    def __init__(
        self,
        store: FlatRecordStore,
        catalog: StockCatalog,
        suppliers: SupplierDirectory,
        strict_lines: Optional[bool] = None,
    ):
        super().__init__(store)
        self.catalog = catalog
        self.suppliers = suppliers
        self.strict_lines = settings.STRICT_ORDER_LINES if strict_lines is None else strict_lines

    # --- Hooks ---
    def _document_id(self, document: Order) -> str:
        return document.order_id

    def _parse_header(self, row: Row) -> Optional[tuple[Order, str]]:
        order_id, supplier_id, order_date, status, total = row
        order = Order(
            order_id=order_id,
            supplier_id=supplier_id,
            order_date=parse_timestamp(order_date),
            status=status,
        )
        if order.supplier_id not in self.suppliers:
            logger.warning(f"Order {order_id} refers to unknown supplier {order.supplier_id}.")
        return order, total

    def _parse_line(self, row: Row) -> OrderLine:
        values = row_mapping(model_columns(OrderLine), row)
        ordered = int(values["orderedQuantity"])
        received = int(values["receivedQuantity"] or 0)
        if received < 0 or received > ordered:
            logger.warning(
                f"Received quantity {received} for SKU {values['itemSKU']} is outside "
                f"[0, {ordered}]. Resetting to 0."
            )
            values["receivedQuantity"] = "0"
        return OrderLine.model_validate(values)

    def _header_row(self, document: Order) -> Row:
        return [
            document.order_id,
            document.supplier_id,
            to_field(document.order_date),
            to_field(document.status),
            to_field(document.total_cost),
        ]

    def _document_total(self, document: Order) -> Decimal:
        return document.total_cost

    def _require_status(self, order_id: str, allowed, action: str) -> Order:
        order = self._require(order_id)
        if order.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} order {order_id}: status is {order.status.value}."
            )
        return order

    # --- Lifecycle ---
    def create(self, supplier_id: str) -> Order:
        if supplier_id not in self.suppliers:
            raise NotFoundError(f"Supplier {supplier_id} not found.")
        order = Order(order_id=self._new_id(), supplier_id=supplier_id, order_date=utc_now())
        logger.info(f"Order {order.order_id} created for supplier {supplier_id}.")
        return self._register(order)

    def add_line(
        self,
        order_id: str,
        item: StockItem,
        quantity: int,
        purchase_price: Decimal,
    ) -> Order:
        order = self._require_status(order_id, (OrderStatus.PENDING,), "add a line to")
        line = build_line(
            OrderLine,
            sku=item.sku,
            name=item.name,
            ordered_quantity=quantity,
            purchase_price=purchase_price,
        )
        if any(existing.sku == line.sku for existing in order.lines):
            if self.strict_lines:
                raise DuplicateKeyError(f"Order {order_id} already has a line for SKU {line.sku}.")
            logger.warning(f"⚠️ Order {order_id} already has a line for SKU {line.sku}. Adding another.")
        order.lines.append(line)
        return order.model_copy(deep=True)

    def update_line(
        self,
        order_id: str,
        index: int,
        quantity: Optional[int] = None,
        purchase_price: Optional[Decimal] = None,
    ) -> Order:
        order = self._require_status(order_id, (OrderStatus.PENDING,), "change a line of")
        line = self._line_at(order, index)
        order.lines[index] = build_line(
            OrderLine,
            sku=line.sku,
            name=line.name,
            ordered_quantity=line.ordered_quantity if quantity is None else quantity,
            purchase_price=line.purchase_price if purchase_price is None else purchase_price,
        )
        return order.model_copy(deep=True)

    def remove_line(self, order_id: str, index: int) -> Order:
        order = self._require_status(order_id, (OrderStatus.PENDING,), "remove a line from")
        self._line_at(order, index)
        order.lines.pop(index)
        return order.model_copy(deep=True)

    def place(self, order_id: str) -> Order:
        order = self._require_status(order_id, (OrderStatus.PENDING,), "place")
        if not order.lines:
            raise ValidationError(f"Order {order_id} has no lines to place.")
        order.status = OrderStatus.PLACED
        logger.info(f"Order {order_id} placed with supplier {order.supplier_id}.")
        return order.model_copy(deep=True)

    def receive(self, order_id: str, index: int, quantity: int) -> int:
        """
        Records `quantity` units arriving for one line and adds them to stock.
        Anything beyond what is still outstanding is discarded with a warning.
        Returns the quantity actually accepted.
        """
        order = self._require_status(order_id, RECEIVABLE, "receive goods for")
        if quantity <= 0:
            raise ValidationError(f"Received quantity must be positive, got {quantity}.")
        line = self._line_at(order, index)

        accepted = min(quantity, line.remaining)
        if accepted < quantity:
            logger.warning(
                f"⚠️ Order {order_id}, SKU {line.sku}: received {quantity} but only "
                f"{line.remaining} outstanding. Accepting {accepted}."
            )
        if accepted == 0:
            return 0

        order.lines[index] = line.model_copy(
            update={"received_quantity": line.received_quantity + accepted}
        )
        if line.sku in self.catalog:
            self.catalog.apply_delta(line.sku, accepted)
        else:
            logger.error(
                f"SKU {line.sku} from order {order_id} is not in the catalog. "
                f"Receipt of {accepted} recorded, stock not updated."
            )

        previous = order.status
        order.status = order.receipt_status()
        if order.status != previous:
            logger.info(f"Order {order_id}: {previous.value} -> {order.status.value}")
        return accepted

    def cancel(self, order_id: str) -> Order:
        order = self._require_status(order_id, CANCELLABLE, "cancel")
        order.status = OrderStatus.CANCELLED
        logger.info(f"Order {order_id} cancelled.")
        return order.model_copy(deep=True)

    # --- Queries ---
    def by_status(self, status: OrderStatus) -> list[Order]:
        return [o.model_copy(deep=True) for o in self._documents.values() if o.status == status]

    def for_supplier(self, supplier_id: str) -> list[Order]:
        return [
            o.model_copy(deep=True) for o in self._documents.values() if o.supplier_id == supplier_id
        ]
