"""Synthetic trees and metadata for treeann tests."""

from __future__ import annotations

import csv
from io import StringIO
from pathlib import Path

from Bio import Phylo
from Bio.Phylo.BaseTree import Tree

from treeann.io import MetadataTable

# Tips 1-5 are SRA1..SRA5; the root is node 6, (SRA1,SRA2) is 7,
# (SRA3,(SRA4,SRA5)) is 8 and (SRA4,SRA5) is 9.
SMALL_NEWICK = (
    "((SRA1:0.001,SRA2:0.002):0.0005,"
    "(SRA3:0.001,(SRA4:0.0015,SRA5:0.001):0.0007):0.0003);"
)

WORKSHOP_COLUMNS = ["biosample_id", "sample_id", "tdh/trh", "matrix", "st", "serovar", "wg_cluster"]
WORKSHOP_ROWS = [
    ["SRA1", "VP-01", "+/+", "oyster", "36", "O4:K12", "1"],
    ["SRA2", "VP-02", "+/-", "stool", "36", "O4:K12", "1"],
    ["SRA3", "VP-03", "-/-", "water", "3", "O3:K6", "2"],
    ["SRA4", "VP-04", "+/+", "oyster", "3", "O3:K6", "2"],
    ["SRA5", "VP-05", "-/-", "water", "631", "O4:KUT", "2"],
]


def make_tree(newick: str = SMALL_NEWICK) -> Tree:
    return Phylo.read(StringIO(newick), "newick")


def make_metadata(
    rows: list[dict[str, str]],
    columns: list[str] | None = None,
) -> MetadataTable:
    if columns is None:
        columns = []
        for row in rows:
            for col in row:
                if col not in columns:
                    columns.append(col)
    return MetadataTable(columns=columns, rows=[dict(r) for r in rows])


def generate_workshop_dataset(newick: str = SMALL_NEWICK) -> tuple[Tree, MetadataTable]:
    """Tree and metadata shaped like the Vibrio workshop data."""
    rows = [dict(zip(WORKSHOP_COLUMNS, r)) for r in WORKSHOP_ROWS]
    return make_tree(newick), MetadataTable(columns=list(WORKSHOP_COLUMNS), rows=rows)


def write_workshop_files(directory: Path, suffix: str = ".tsv") -> tuple[Path, Path]:
    """Write the workshop tree and metadata; returns (tree_path, metadata_path)."""
    tree_path = directory / "msa.fasta.tree"
    tree_path.write_text(SMALL_NEWICK + "\n")
    meta_path = directory / f"metadata{suffix}"
    if suffix in (".xlsx", ".xlsm"):
        import pandas as pd

        pd.DataFrame(WORKSHOP_ROWS, columns=WORKSHOP_COLUMNS).to_excel(meta_path, index=False)
    else:
        delimiter = "," if suffix == ".csv" else "\t"
        with open(meta_path, "w", newline="") as f:
            writer = csv.writer(f, delimiter=delimiter)
            writer.writerow(WORKSHOP_COLUMNS)
            writer.writerows(WORKSHOP_ROWS)
    return tree_path, meta_path
