"""Joining tree tips to metadata records by identifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from Bio.Phylo.BaseTree import Tree

from .io import MetadataFormatError, MetadataTable

logger = logging.getLogger(__name__)

DEFAULT_KEY = "biosample_id"
EXPORT_FIELDS = ("tip", "matched")


class UnmatchedTipError(ValueError):
    """Raised in strict mode when tips have no metadata record."""

    def __init__(self, tips: list[str]) -> None:
        self.tips = list(tips)
        shown = ", ".join(self.tips[:10])
        more = f" (+{len(self.tips) - 10} more)" if len(self.tips) > 10 else ""
        super().__init__(f"{len(self.tips)} tips have no metadata record: {shown}{more}")


@dataclass
class JoinReport:
    """Problems found while joining tips to metadata.

    Unmatched tips are in tree order and unused record keys are sorted, so
    the report does not depend on metadata row order.
    """

    n_tips: int
    unmatched_tips: list[str] = field(default_factory=list)
    unused_records: list[str] = field(default_factory=list)
    duplicate_keys: list[str] = field(default_factory=list)

    @property
    def n_matched(self) -> int:
        return self.n_tips - len(self.unmatched_tips)

    @property
    def is_complete(self) -> bool:
        """True when every tip matched and no key was duplicated."""
        return not self.unmatched_tips and not self.duplicate_keys


@dataclass
class AnnotatedTree:
    """A tree whose tips carry the attributes of their metadata record.

    ``attributes`` maps each matched tip name to a dict of column -> value.
    Tips without a record are absent from it.
    """

    tree: Tree
    key: str
    columns: list[str]
    tips: list[str]
    attributes: dict[str, dict[str, str]]
    report: JoinReport

    def is_matched(self, tip: str) -> bool:
        return tip in self.attributes

    def get(self, tip: str, column: str, default: str = "") -> str:
        if column == self.key:
            return tip if self.is_matched(tip) else default
        return self.attributes.get(tip, {}).get(column, default)

    def check_column(self, column: str) -> None:
        if column not in self.columns:
            raise MetadataFormatError(
                f"Column {column!r} not in metadata; available columns: {', '.join(self.columns)}"
            )

    def values(self, column: str) -> list[str]:
        """Values of ``column`` per tip in tree order; "" for unmatched tips."""
        self.check_column(column)
        return [self.get(tip, column) for tip in self.tips]

    def tips_where(self, column: str, value: str) -> list[str]:
        """Tips whose ``column`` equals ``value``, in tree order."""
        return [tip for tip, v in zip(self.tips, self.values(column)) if v == value]

    def with_tree(self, tree: Tree) -> AnnotatedTree:
        """Carry the annotations over to a re-rooted, flipped or collapsed tree.

        Tips keep their attributes by name. Tips new to ``tree`` (such as a
        collapsed clade) stay unannotated; the join report is kept as is.
        """
        tips = [clade.name for clade in tree.get_terminals()]
        attributes = {t: self.attributes[t] for t in tips if t in self.attributes}
        return replace(self, tree=tree, tips=tips, attributes=attributes)

    def _export_names(self) -> dict[str, str]:
        # Metadata columns named like a fixed export field get a prefix.
        return {
            col: f"metadata_{col}" if col in EXPORT_FIELDS else col
            for col in self.columns
            if col != self.key
        }

    def export_columns(self) -> list[str]:
        """Header of ``to_rows``: the fixed fields, then attribute columns."""
        return list(EXPORT_FIELDS) + list(self._export_names().values())

    def to_rows(self) -> list[dict[str, str]]:
        """Flat rows for export: tip, matched flag, then attribute columns.

        Attribute columns called ``tip`` or ``matched`` are exported as
        ``metadata_tip`` and ``metadata_matched``.
        """
        names = self._export_names()
        rows = []
        for tip in self.tips:
            row = {"tip": tip, "matched": "yes" if self.is_matched(tip) else "no"}
            for col, name in names.items():
                row[name] = self.get(tip, col)
            rows.append(row)
        return rows


def annotate_tree(
    tree: Tree,
    metadata: MetadataTable,
    key: str = DEFAULT_KEY,
    strict: bool = False,
) -> AnnotatedTree:
    """Attach metadata records to tree tips where tip name == record[key].

    Matching is exact string equality. When several records share a key
    value the first one in table order is used and the key is reported as a
    duplicate. Tips with no record get no attributes; with ``strict`` they
    raise ``UnmatchedTipError`` instead. Neither input is modified.
    """
    if not metadata.has_column(key):
        raise MetadataFormatError(
            f"Join column {key!r} not in metadata columns: {', '.join(metadata.columns)}"
        )
    index, duplicates = metadata.index_by(key)

    tips = [clade.name for clade in tree.get_terminals()]
    attributes: dict[str, dict[str, str]] = {}
    unmatched: list[str] = []
    for tip in tips:
        record = index.get(tip)
        if record is None:
            unmatched.append(tip)
        else:
            attributes[tip] = {c: v for c, v in record.items() if c != key}

    tip_set = set(tips)
    unused = sorted(k for k in index if k not in tip_set)
    report = JoinReport(
        n_tips=len(tips),
        unmatched_tips=unmatched,
        unused_records=unused,
        duplicate_keys=duplicates,
    )

    for dup in duplicates:
        logger.warning("Duplicate %s %r in metadata; using the first record", key, dup)
    if unmatched:
        logger.warning(
            "%d of %d tips have no metadata record: %s",
            len(unmatched), len(tips), ", ".join(unmatched),
        )
        if strict:
            raise UnmatchedTipError(unmatched)
    if unused:
        logger.info("%d metadata records match no tip: %s", len(unused), ", ".join(unused))
    logger.info("Joined metadata on %r: %d/%d tips matched", key, report.n_matched, len(tips))

    return AnnotatedTree(
        tree=tree,
        key=key,
        columns=list(metadata.columns),
        tips=tips,
        attributes=attributes,
        report=report,
    )
