"""
Flat-file persistence shared by every catalog and ledger.

Each file is a CSV with a fixed header line. Reads load the whole file into
memory; writes rewrite whole files. Files that belong together (a document
header file and its line-item file) are committed as a unit: everything is
written to temporary files first, then moved over the originals.
"""

import csv
import io
import logging
import os
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd
from pydantic import BaseModel

from . import settings
from .errors import PersistenceError
from .utils import format_money, format_timestamp

logger = logging.getLogger(__name__)

Row = list[str]


def to_field(value) -> str:
    """Converts a Python value into its persisted text form."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return format_money(value)
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def model_columns(model_cls: type[BaseModel]) -> list[str]:
    """The flat-file column names of a model: its field aliases, in field order."""
    return [info.alias or name for name, info in model_cls.model_fields.items()]


def model_row(model: BaseModel) -> Row:
    """A model as a row of text fields, ordered like `model_columns`."""
    dumped = model.model_dump(by_alias=True)
    return [to_field(dumped[column]) for column in model_columns(type(model))]


def row_mapping(columns: Sequence[str], row: Sequence[str]) -> dict[str, str]:
    """Pairs a positional row with column names, ready for `model_validate`."""
    return dict(zip(columns, row))


def _text_or_none(value):
    # Keeps fields as raw text; padding for short rows is not text.
    return value if isinstance(value, str) else None


def unterminated_quote_line(text: str) -> int | None:
    """
    Index of the physical line where a quoted field opens and never closes,
    or None when every quoted field is closed. A quote in the middle of an
    unquoted field is literal text, as the csv reader treats it.

    A quoted field that spans lines and is closed by a quote followed by
    anything but a delimiter was closed by the opening quote of a later
    field, so it counts as unterminated too.
    """
    if '"' not in text:
        return None
    inside = False
    at_field_start = True
    opened = 0
    i = 0
    while i < len(text):
        char = text[i]
        if inside:
            if char == '"':
                if text[i + 1 : i + 2] == '"':
                    i += 1
                else:
                    inside = False
                    following = text[i + 1 : i + 2]
                    if following not in ("", ",", "\r", "\n") and "\n" in text[opened:i]:
                        return text.count("\n", 0, opened)
        elif char == '"' and at_field_start:
            inside = True
            opened = i
        at_field_start = not inside and char in ",\r\n"
        i += 1
    return text.count("\n", 0, opened) if inside else None


class FlatRecordStore:
    """Reads and writes header-verified CSV files inside one data directory."""

    def __init__(self, data_dir: Path | str | None = None):
        self.data_dir = Path(data_dir) if data_dir is not None else settings.DATA_DIR

    def path(self, filename: str) -> Path:
        return self.data_dir / filename

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def _read_text(self, path: Path) -> str:
        """
        Loads the file as text, with an encoding fallback:
        1. UTF-8 with BOM support ('utf-8-sig').
        2. Latin-1, which can decode any byte.
        """
        raw = path.read_bytes()
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.info(f"UTF-8 decoding failed for {path.name}. Retrying with 'latin-1'.")
            return raw.decode("latin-1")

    def _drop_unterminated_quotes(self, text: str, name: str) -> str:
        # An unclosed quote would swallow the rest of the file into one field.
        bad_line = unterminated_quote_line(text)
        while bad_line is not None:
            lines = text.split("\n")
            logger.warning(
                f"⚠️ Unterminated quote on line {bad_line + 1} of {name}. "
                f"Skipping that line: {lines[bad_line].rstrip()}"
            )
            text = "\n".join(lines[:bad_line] + lines[bad_line + 1 :])
            bad_line = unterminated_quote_line(text)
        return text

    def _read_frame(self, text: str, name: str, width: int) -> pd.DataFrame:
        def clip_wide_row(bad: list[str]) -> list[str]:
            logger.warning(f"Row in {name} has {len(bad)} fields. Ignoring fields past {width}.")
            return bad[:width]

        return pd.read_csv(
            io.StringIO(text),
            header=None,
            names=list(range(width)),
            converters={i: _text_or_none for i in range(width)},
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=clip_wide_row,
        )

    def read_records(self, filename: str, columns: Sequence[str]) -> list[Row]:
        """
        Returns the data rows of `filename` as lists of strings, one per column.

        The first line must be the header. A header that does not match
        `columns` (case-insensitive) is logged, and the rows are still read
        positionally. Comment rows ('#'), blank rows and rows with fewer
        fields than `columns` are skipped; fields past the last column are
        dropped with a warning. A line that opens a quote and never closes
        it is skipped with a warning. A missing or empty file yields [].
        Raises PersistenceError when the file cannot be read or parsed.
        """
        path = self.path(filename)
        if not path.exists():
            logger.info(f"{path.name} not found in {self.data_dir}. Starting empty.")
            return []

        try:
            text = self._drop_unterminated_quotes(self._read_text(path), path.name)
            # Wide enough for the header and for the longest physical line,
            # so no row is cut short while parsing.
            width = max(
                [len(columns)] + [line.count(",") + 1 for line in text.splitlines()]
            )
            frame = self._read_frame(text, path.name, width)
        except pd.errors.EmptyDataError:
            logger.warning(f"{path.name} is empty.")
            return []
        except (OSError, pd.errors.ParserError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

        if frame.empty:
            logger.warning(f"{path.name} is empty.")
            return []

        # Missing trailing fields come back as None or NaN.
        frame = frame.astype(object)
        records = frame.where(frame.notna(), None).values.tolist()

        actual_header = ",".join(v for v in records[0] if v is not None).strip()
        expected_header = ",".join(columns)
        if actual_header.lower() != expected_header.lower():
            logger.warning(
                f"Header mismatch in {path.name}. Expected '{expected_header}', "
                f"got '{actual_header}'. Attempting to parse anyway."
            )

        rows: list[Row] = []
        for values in records[1:]:
            fields = [v for v in values if v is not None]
            if not fields or not any(f.strip() for f in fields):
                continue
            if fields[0].startswith("#"):
                continue
            if len(fields) < len(columns):
                logger.warning(
                    f"Skipping row in {path.name}: expected {len(columns)} fields, "
                    f"got {len(fields)}: {fields}"
                )
                continue
            extra = fields[len(columns) :]
            if any(f.strip() for f in extra):
                logger.warning(
                    f"Row in {path.name} has {len(fields)} fields. "
                    f"Ignoring extra values {extra} after '{fields[0]}'."
                )
            rows.append(fields[: len(columns)])
        return rows

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def write_records(self, filename: str, columns: Sequence[str], rows: Iterable[Sequence[str]]):
        """Rewrites a single file with `columns` as header followed by `rows`."""
        self.write_many([(filename, columns, rows)])

    def write_many(self, files: Sequence[tuple[str, Sequence[str], Iterable[Sequence[str]]]]):
        """
        Rewrites several files as one commit. Each entry is
        (filename, columns, rows). Nothing is replaced unless every file was
        written successfully; on failure PersistenceError is raised and the
        previous files are left untouched.
        """
        staged: list[tuple[Path, Path]] = []
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            for filename, columns, rows in files:
                target = self.path(filename)
                temp = target.with_name(target.name + ".tmp")
                staged.append((temp, target))
                df = pd.DataFrame([list(r) for r in rows], columns=list(columns), dtype=object)
                df.to_csv(
                    temp,
                    index=False,
                    quoting=csv.QUOTE_MINIMAL,
                    lineterminator="\n",
                    encoding="utf-8",
                )
            for temp, target in staged:
                os.replace(temp, target)
        except OSError as e:
            for temp, _ in staged:
                temp.unlink(missing_ok=True)
            raise PersistenceError(f"Could not write to {self.data_dir}: {e}") from e

        for _, target in staged:
            logger.debug(f"Saved {target}")
