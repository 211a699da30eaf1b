import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Optional, Sequence, TypeVar

import pydantic
from pydantic import BaseModel

from .errors import NotFoundError, PersistenceError, ValidationError
from .store import FlatRecordStore, Row, model_columns, model_row, row_mapping
from .utils import generate_document_id, round_money

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", bound=BaseModel)


def build_line(line_cls: type[BaseModel], **values) -> Any:
    """Constructs a line model, translating pydantic failures into ValidationError."""
    try:
        return line_cls(**values)
    except pydantic.ValidationError as e:
        raise ValidationError(str(e)) from e


class DocumentLedger(ABC, Generic[DocT]):
    """
    Abstract base class for header + line-item document ledgers (sales,
    purchase orders, sales returns).

    Documents live in memory keyed by id. Persistence follows a fixed protocol:
    Load  -> read header file, parse headers, read line file, join lines to
             headers by id (orphans are dropped), check stored totals.
    Save  -> serialize persistable documents, commit both files together.

    Callers always get deep copies; every mutation goes through a ledger method
    that takes the document id.
    """

    # Set by subclasses.
    document_name: str = "document"
    id_prefix: str = "DOC"
    header_file: str
    line_file: str
    header_columns: list[str]
    line_model: type[BaseModel]

    def __init__(self, store: FlatRecordStore):
        self.store = store
        self._documents: dict[str, DocT] = {}

    @property
    def line_columns(self) -> list[str]:
        return [self.header_columns[0]] + model_columns(self.line_model)

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------
    @abstractmethod
    def _document_id(self, document: DocT) -> str:
        pass

    @abstractmethod
    def _parse_header(self, row: Row) -> Optional[tuple[DocT, str]]:
        """
        Builds a document (with no lines) from a header row.
        Returns (document, persisted_total_text), or None to skip the row.
        May raise ValueError / pydantic.ValidationError for malformed rows.
        """
        pass

    @abstractmethod
    def _header_row(self, document: DocT) -> Row:
        pass

    @abstractmethod
    def _document_total(self, document: DocT) -> Decimal:
        pass

    def _parse_line(self, row: Row) -> BaseModel:
        """Builds a line model from the line-item fields (join key already removed)."""
        return self.line_model.model_validate(row_mapping(model_columns(self.line_model), row))

    def _is_persistable(self, document: DocT) -> bool:
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def by_id(self, document_id: str) -> Optional[DocT]:
        document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document is not None else None

    def all(self) -> list[DocT]:
        return [d.model_copy(deep=True) for d in self._documents.values()]

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: str) -> bool:
        return document_id in self._documents

    def _require(self, document_id: str) -> DocT:
        document = self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"{self.document_name.capitalize()} {document_id} not found.")
        return document

    def _register(self, document: DocT) -> DocT:
        self._documents[self._document_id(document)] = document
        return document.model_copy(deep=True)

    def _new_id(self) -> str:
        document_id = generate_document_id(self.id_prefix)
        while document_id in self._documents:
            document_id = generate_document_id(self.id_prefix)
        return document_id

    @staticmethod
    def _line_at(document: DocT, index: int):
        if not 0 <= index < len(document.lines):
            raise NotFoundError(
                f"Line {index} does not exist (document has {len(document.lines)} line(s))."
            )
        return document.lines[index]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _read(self, filename: str, columns: Sequence[str]) -> list[Row]:
        try:
            return self.store.read_records(filename, columns)
        except PersistenceError as e:
            logger.warning(f"⚠️ {e}. Continuing with what could be loaded.")
            return []

    def load(self):
        """Replaces the in-memory documents with the contents of the flat files."""
        documents: dict[str, DocT] = {}
        persisted_totals: dict[str, str] = {}

        # --- 1. Headers ---
        for row in self._read(self.header_file, self.header_columns):
            try:
                parsed = self._parse_header(row)
            except (ValueError, pydantic.ValidationError) as e:
                logger.warning(f"Skipping invalid row in {self.header_file}: {row} ({e})")
                continue
            if parsed is None:
                continue
            document, persisted_total = parsed
            doc_id = self._document_id(document)
            if doc_id in documents:
                logger.warning(f"Duplicate {self.document_name} id {doc_id} in {self.header_file}. Keeping the first.")
                continue
            documents[doc_id] = document
            persisted_totals[doc_id] = persisted_total

        # --- 2. Line items, joined by id ---
        for row in self._read(self.line_file, self.line_columns):
            doc_id, fields = row[0], row[1:]
            document = documents.get(doc_id)
            if document is None:
                logger.warning(
                    f"Dropping line item for unknown {self.document_name} {doc_id} in {self.line_file}: {fields}"
                )
                continue
            try:
                document.lines.append(self._parse_line(fields))
            except (ValueError, pydantic.ValidationError) as e:
                logger.warning(f"Skipping invalid row in {self.line_file}: {row} ({e})")

        # --- 3. Totals are recomputed; a disagreeing stored value is only reported ---
        for doc_id, document in documents.items():
            stored = persisted_totals.get(doc_id, "")
            try:
                stale = round_money(Decimal(stored)) != self._document_total(document)
            except (InvalidOperation, ValueError):
                stale = True
            if stale:
                logger.warning(
                    f"Stored total '{stored}' for {self.document_name} {doc_id} is stale. "
                    f"Using recomputed {self._document_total(document):.2f}."
                )

        self._documents = documents
        logger.info(f"{len(documents)} {self.document_name}s loaded from {self.header_file}.")

    def save(self):
        """Rewrites the header and line-item files. Raises PersistenceError on failure."""
        to_save = [d for d in self._documents.values() if self._is_persistable(d)]
        skipped = len(self._documents) - len(to_save)
        if skipped:
            logger.info(f"Not saving {skipped} {self.document_name}(s) still in progress.")

        header_rows = [self._header_row(d) for d in to_save]
        line_rows = [
            [self._document_id(d)] + model_row(line)
            for d in to_save
            for line in d.lines
        ]
        self.store.write_many(
            [
                (self.header_file, self.header_columns, header_rows),
                (self.line_file, self.line_columns, line_rows),
            ]
        )
        logger.info(f"{len(to_save)} {self.document_name}s saved to {self.header_file}.")
