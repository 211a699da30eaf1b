"""Error taxonomy shared by the catalogs, the ledgers and the flat-file store."""


class LedgerError(Exception):
    """Base class for every error surfaced to callers of the ledger engine."""


class NotFoundError(LedgerError):
    """A sku, supplier id or document id does not exist."""


class DuplicateKeyError(LedgerError):
    """A create call collided with an existing key."""


class InvalidStateError(LedgerError):
    """The document is not in a lifecycle state that allows the operation."""


class InsufficientStockError(LedgerError):
    """Raised by sale finalization when stock cannot cover a line."""

    def __init__(self, sku: str, required: int, available: int):
        self.sku = sku
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient stock for SKU {sku}: required {required}, available {available}"
        )


class ValidationError(LedgerError, ValueError):
    """Non-positive quantity, negative price, empty required field and the like."""


class PersistenceError(LedgerError):
    """Reading or writing a flat file failed."""
