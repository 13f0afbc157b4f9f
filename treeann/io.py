"""Loading of phylogenetic trees and sample metadata tables."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd
from Bio import Phylo
from Bio.Phylo.BaseTree import Tree
from Bio.Phylo.NewickIO import NewickError

if TYPE_CHECKING:
    from .join import AnnotatedTree

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = (".xlsx", ".xlsm")
DELIMITERS = {".tsv": "\t", ".txt": "\t", ".csv": ","}


class InputFileError(FileNotFoundError):
    """An input file does not exist or is not a regular file."""


class TreeFormatError(ValueError):
    """A tree file could not be parsed into a single usable tree."""


class MetadataFormatError(ValueError):
    """A metadata table is unreadable or lacks a required column."""


@dataclass
class MetadataTable:
    """Ordered metadata records with string-valued named columns."""

    columns: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(set(self.columns)) != len(self.columns):
            raise MetadataFormatError(f"Duplicate column names in {self.columns}")

    @property
    def n_rows(self) -> int:
        return len(self.rows)

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def column(self, name: str) -> list[str]:
        """Return all values of one column in row order."""
        if name not in self.columns:
            raise MetadataFormatError(
                f"Column {name!r} not found; available columns: {', '.join(self.columns)}"
            )
        return [row.get(name, "") for row in self.rows]

    def index_by(self, key: str) -> tuple[dict[str, dict[str, str]], list[str]]:
        """Index rows by the value of ``key``.

        The first row carrying a key value wins. Returns the index and the
        list of key values seen more than once, in first-seen order.
        Rows with an empty key value are skipped.
        """
        self.column(key)
        index: dict[str, dict[str, str]] = {}
        duplicates: list[str] = []
        for row in self.rows:
            value = row.get(key, "")
            if not value:
                continue
            if value in index:
                if value not in duplicates:
                    duplicates.append(value)
                continue
            index[value] = row
        return index, duplicates


def _check_exists(path: Path, what: str) -> None:
    if not path.is_file():
        raise InputFileError(f"{what} file not found: {path}")


def _cell_to_str(value: object) -> str:
    """Render a spreadsheet cell as text; integral floats lose their '.0'."""
    if value is None:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
    if value is pd.NaT:
        return ""
    return str(value).strip()


def load_tree(path: str | Path, fmt: str = "newick") -> Tree:
    """Read exactly one tree from ``path``.

    Tip names are stripped of surrounding whitespace. Raises
    ``InputFileError`` for a missing file and ``TreeFormatError`` when the
    file holds no tree, several trees, malformed topology, or unnamed tips.
    """
    path = Path(path)
    _check_exists(path, "Tree")
    if not path.read_text().strip():
        raise TreeFormatError(f"Tree file is empty: {path}")

    try:
        trees = list(Phylo.parse(str(path), fmt))
    except (NewickError, ValueError) as exc:
        raise TreeFormatError(f"Malformed tree in {path}: {exc}") from exc
    if len(trees) != 1:
        raise TreeFormatError(f"Expected one tree in {path}, found {len(trees)}")
    tree = trees[0]

    terminals = tree.get_terminals()
    unnamed = 0
    for clade in terminals:
        if clade.name is None or not str(clade.name).strip():
            unnamed += 1
            continue
        clade.name = str(clade.name).strip()
    if unnamed:
        raise TreeFormatError(f"{unnamed} of {len(terminals)} tips in {path} have no name")

    logger.info("Loaded tree from %s with %d tips", path, len(terminals))
    return tree


def _read_delimited(path: Path, delimiter: str) -> MetadataTable:
    # utf-8-sig drops the byte order mark Excel puts on exported CSV
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f, delimiter=delimiter)
        if reader.fieldnames is None:
            raise MetadataFormatError(f"Metadata file has no header row: {path}")
        columns = [c.strip() for c in reader.fieldnames]
        rows: list[dict[str, str]] = []
        for raw in reader:
            row = {
                col: (raw.get(orig) or "").strip()
                for col, orig in zip(columns, reader.fieldnames)
            }
            if not any(row.values()):
                continue
            rows.append(row)
    return MetadataTable(columns=columns, rows=rows)


def _read_excel(path: Path, sheet: str | int | None) -> MetadataTable:
    try:
        df = pd.read_excel(path, sheet_name=0 if sheet is None else sheet)
    except ValueError as exc:
        raise MetadataFormatError(f"Cannot read sheet {sheet!r} of {path}: {exc}") from exc
    columns = [str(c).strip() for c in df.columns]
    rows: list[dict[str, str]] = []
    for record in df.itertuples(index=False, name=None):
        row = {col: _cell_to_str(v) for col, v in zip(columns, record)}
        if not any(row.values()):
            continue
        rows.append(row)
    return MetadataTable(columns=columns, rows=rows)


def load_metadata(path: str | Path, sheet: str | int | None = None) -> MetadataTable:
    """Load a metadata table from an xlsx workbook, TSV or CSV file.

    Format is chosen by file extension. ``sheet`` selects a worksheet for
    Excel input (first sheet by default) and is ignored otherwise.
    All values are returned as stripped strings.
    """
    path = Path(path)
    _check_exists(path, "Metadata")
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        table = _read_excel(path, sheet)
    elif suffix in DELIMITERS:
        table = _read_delimited(path, DELIMITERS[suffix])
    else:
        raise MetadataFormatError(
            f"Unsupported metadata format {suffix!r} for {path}; "
            f"use one of {', '.join(EXCEL_SUFFIXES + tuple(DELIMITERS))}"
        )
    logger.info(
        "Loaded metadata from %s: %d rows, %d columns",
        path, table.n_rows, len(table.columns),
    )
    return table


def write_annotation_table(annotated: AnnotatedTree, path: str | Path) -> None:
    """Write the joined tip annotations as CSV, one row per tip in tree order."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = annotated.export_columns()
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in annotated.to_rows():
            writer.writerow(row)
