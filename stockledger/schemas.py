import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .utils import round_money

logger = logging.getLogger(__name__)

# Non-negative amount, always held with two decimals.
Money = Annotated[Decimal, Field(ge=0), AfterValidator(round_money)]

ZERO = Decimal("0.00")


def _match_enum(enum_cls, value):
    """Case-insensitive lookup of an enum member by value. Returns None if no match."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        wanted = value.strip().lower()
        for member in enum_cls:
            if member.value.lower() == wanted:
                return member
    return None


class StockStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class SaleStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PLACED = "Placed"
    PARTIALLY_RECEIVED = "Partially Received"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"


class ReturnStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class ReturnCondition(str, Enum):
    RESELLABLE = "Resellable"
    DAMAGED = "Damaged"
    DEFECTIVE = "Defective"


# --- Catalog records ---


class StockItem(BaseModel):
    """
    Defines the data contract for a single row of items.csv.
    The aliases are the flat-file column names, so the field order here is
    also the column order of the file.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    sku: str = Field(..., min_length=1, alias="SKU")
    name: str = Field(..., min_length=1, alias="Name")
    category: str = Field(default="", alias="Category")
    quantity: int = Field(default=0, ge=0, alias="Quantity")
    price: Money = Field(default=ZERO, alias="Price")
    supplier_id: str = Field(default="", alias="SupplierID")
    status: StockStatus = Field(default=StockStatus.ACTIVE, alias="Status")

    @field_validator("sku", "name", mode="before")
    @classmethod
    def _strip_key_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        status = _match_enum(StockStatus, value)
        if status is None:
            logger.warning(f"Unrecognized item status '{value}'. Defaulting to Inactive.")
            return StockStatus.INACTIVE
        return status

    @property
    def value(self) -> Decimal:
        return round_money(self.price * self.quantity)


class Supplier(BaseModel):
    """A supplier record; orders refer to it by supplier_id only."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    supplier_id: str = Field(..., min_length=1, alias="supplierID")
    name: str = Field(..., min_length=1, alias="name")
    contact_info: str = Field(default="", alias="contactInfo")

    @field_validator("supplier_id", "name", mode="before")
    @classmethod
    def _strip_key_text(cls, value):
        return value.strip() if isinstance(value, str) else value


# --- Line items ---
# Lines are frozen: ledgers swap in a new line instead of editing one in place.


class SaleLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sku: str = Field(..., min_length=1, alias="ItemSKU")
    name: str = Field(default="", alias="ItemName")
    quantity: int = Field(..., gt=0, alias="QuantitySold")
    price: Money = Field(..., alias="PriceAtSale")

    @property
    def subtotal(self) -> Decimal:
        return round_money(self.price * self.quantity)


class OrderLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sku: str = Field(..., min_length=1, alias="itemSKU")
    name: str = Field(default="", alias="itemName")
    ordered_quantity: int = Field(..., gt=0, alias="orderedQuantity")
    received_quantity: int = Field(default=0, ge=0, alias="receivedQuantity")
    purchase_price: Money = Field(..., alias="purchasePrice")

    @model_validator(mode="after")
    def _received_within_ordered(self):
        if self.received_quantity > self.ordered_quantity:
            raise ValueError(
                f"received quantity {self.received_quantity} exceeds ordered "
                f"quantity {self.ordered_quantity} for SKU {self.sku}"
            )
        return self

    @property
    def remaining(self) -> int:
        return self.ordered_quantity - self.received_quantity

    @property
    def is_fully_received(self) -> bool:
        return self.received_quantity >= self.ordered_quantity

    @property
    def subtotal(self) -> Decimal:
        return round_money(self.purchase_price * self.ordered_quantity)

    @property
    def received_subtotal(self) -> Decimal:
        return round_money(self.purchase_price * self.received_quantity)


class ReturnLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sku: str = Field(..., min_length=1, alias="itemSKU")
    name: str = Field(default="", alias="itemName")
    quantity: int = Field(..., gt=0, alias="returnedQuantity")
    unit_price: Money = Field(..., alias="unitPriceAtSale")
    condition: ReturnCondition = Field(default=ReturnCondition.RESELLABLE, alias="condition")
    reason: str = Field(default="", alias="reason")

    @field_validator("condition", mode="before")
    @classmethod
    def _coerce_condition(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return ReturnCondition.RESELLABLE
        condition = _match_enum(ReturnCondition, value)
        if condition is None:
            raise ValueError(f"unknown return condition '{value}'")
        return condition

    @field_validator("reason", mode="before")
    @classmethod
    def _strip_reason(cls, value):
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @property
    def subtotal(self) -> Decimal:
        return round_money(self.unit_price * self.quantity)


# --- Documents ---
# Totals are properties over the lines; they are never stored on the model.


def _sum_subtotals(lines) -> Decimal:
    return round_money(sum((line.subtotal for line in lines), ZERO))


class Sale(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    sale_id: str = Field(..., min_length=1)
    date: datetime
    status: SaleStatus = SaleStatus.PENDING
    lines: list[SaleLine] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _match_status(cls, value):
        return _match_enum(SaleStatus, value) or value

    @property
    def total_amount(self) -> Decimal:
        return _sum_subtotals(self.lines)


class Order(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    order_id: str = Field(..., min_length=1)
    supplier_id: str = Field(..., min_length=1)
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING
    lines: list[OrderLine] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _match_status(cls, value):
        return _match_enum(OrderStatus, value) or value

    @property
    def total_cost(self) -> Decimal:
        return _sum_subtotals(self.lines)

    @property
    def received_cost(self) -> Decimal:
        return round_money(sum((line.received_subtotal for line in self.lines), ZERO))

    def receipt_status(self) -> OrderStatus:
        """
        Status implied by the receipt state of the lines:
        Received when every line is fully received (and there is at least one line),
        Partially Received when anything has arrived, otherwise the current status.
        """
        if self.lines and all(line.is_fully_received for line in self.lines):
            return OrderStatus.RECEIVED
        if any(line.received_quantity > 0 for line in self.lines):
            return OrderStatus.PARTIALLY_RECEIVED
        return self.status


class SalesReturn(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    return_id: str = Field(..., min_length=1)
    original_sale_id: str = Field(..., min_length=1)
    return_date: datetime
    status: ReturnStatus = ReturnStatus.PENDING
    lines: list[ReturnLine] = Field(default_factory=list)
    customer_notes: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _match_status(cls, value):
        return _match_enum(ReturnStatus, value) or value

    @property
    def total_refund(self) -> Decimal:
        return _sum_subtotals(self.lines)
