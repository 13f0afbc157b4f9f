"""Tests for treeann.join module."""

import logging

import pytest

from treeann.io import MetadataFormatError, MetadataTable
from treeann.join import UnmatchedTipError, annotate_tree
from treeann.nodes import collapse, number_nodes
from treeann.tests.fixtures import generate_workshop_dataset, make_metadata, make_tree

THREE_TIPS = "(SRA1:0.1,(SRA2:0.1,SRA3:0.2):0.1);"


@pytest.fixture
def three_tip_tree():
    return make_tree(THREE_TIPS)


class TestAnnotateTree:
    def test_partial_match(self, three_tip_tree):
        meta = make_metadata([
            {"biosample_id": "SRA1", "sample_id": "A"},
            {"biosample_id": "SRA2", "sample_id": "B"},
        ])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.get("SRA1", "sample_id") == "A"
        assert annotated.get("SRA2", "sample_id") == "B"
        assert not annotated.is_matched("SRA3")
        assert "SRA3" not in annotated.attributes
        assert annotated.report.unmatched_tips == ["SRA3"]
        assert annotated.report.n_matched == 2
        assert not annotated.report.is_complete

    def test_unmatched_tip_logged(self, three_tip_tree, caplog):
        meta = make_metadata([{"biosample_id": "SRA1", "sample_id": "A"}])
        with caplog.at_level(logging.WARNING, logger="treeann.join"):
            annotate_tree(three_tip_tree, meta)
        assert "SRA2, SRA3" in caplog.text

    def test_matched_tip_carries_exactly_its_record(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta)
        assert annotated.attributes["SRA3"] == {
            "sample_id": "VP-03",
            "tdh/trh": "-/-",
            "matrix": "water",
            "st": "3",
            "serovar": "O3:K6",
            "wg_cluster": "2",
        }
        assert annotated.report.is_complete

    def test_duplicate_key_first_wins(self, three_tip_tree, caplog):
        meta = make_metadata([
            {"biosample_id": "SRA1", "sample_id": "A"},
            {"biosample_id": "SRA1", "sample_id": "Z"},
        ])
        with caplog.at_level(logging.WARNING, logger="treeann.join"):
            annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.get("SRA1", "sample_id") == "A"
        assert annotated.report.duplicate_keys == ["SRA1"]
        assert "Duplicate" in caplog.text

    def test_strict_raises_with_all_unmatched_tips(self, three_tip_tree):
        meta = make_metadata([{"biosample_id": "SRA1", "sample_id": "A"}])
        with pytest.raises(UnmatchedTipError) as excinfo:
            annotate_tree(three_tip_tree, meta, strict=True)
        assert excinfo.value.tips == ["SRA2", "SRA3"]
        assert "2 tips" in str(excinfo.value)

    def test_strict_passes_when_complete(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta, strict=True)
        assert annotated.report.n_matched == 5

    def test_unused_records(self, three_tip_tree):
        meta = make_metadata([
            {"biosample_id": "SRA1", "sample_id": "A"},
            {"biosample_id": "SRA9", "sample_id": "X"},
        ])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.report.unused_records == ["SRA9"]

    def test_exact_match_only(self, three_tip_tree):
        meta = make_metadata([
            {"biosample_id": "sra1", "sample_id": "A"},
            {"biosample_id": "SRA2 ", "sample_id": "B"},
        ])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.report.unmatched_tips == ["SRA1", "SRA2", "SRA3"]

    def test_missing_key_column(self, three_tip_tree):
        meta = make_metadata([{"id": "SRA1"}])
        with pytest.raises(MetadataFormatError, match="biosample_id"):
            annotate_tree(three_tip_tree, meta)

    def test_custom_key(self, three_tip_tree):
        meta = make_metadata([{"accession": "SRA2", "host": "oyster"}])
        annotated = annotate_tree(three_tip_tree, meta, key="accession")
        assert annotated.get("SRA2", "host") == "oyster"

    def test_idempotent(self):
        tree, meta = generate_workshop_dataset()
        first = annotate_tree(tree, meta)
        second = annotate_tree(tree, meta)
        assert first.attributes == second.attributes
        assert first.report == second.report

    def test_order_independent(self):
        tree, meta = generate_workshop_dataset()
        extra = [
            {"biosample_id": "SRA9", "sample_id": "VP-09"},
            {"biosample_id": "SRA7", "sample_id": "VP-07"},
        ]
        meta = MetadataTable(columns=meta.columns, rows=meta.rows + extra)
        reversed_meta = MetadataTable(columns=meta.columns, rows=list(reversed(meta.rows)))
        forward = annotate_tree(tree, meta)
        backward = annotate_tree(tree, reversed_meta)
        assert forward.attributes == backward.attributes
        assert forward.report == backward.report
        assert forward.report.unused_records == ["SRA7", "SRA9"]

    def test_inputs_not_modified(self):
        tree, meta = generate_workshop_dataset()
        rows_before = [dict(r) for r in meta.rows]
        annotate_tree(tree, meta)
        assert meta.rows == rows_before
        assert [t.name for t in tree.get_terminals()] == ["SRA1", "SRA2", "SRA3", "SRA4", "SRA5"]


class TestAnnotatedTree:
    def test_values_in_tree_order(self, three_tip_tree):
        meta = make_metadata([
            {"biosample_id": "SRA3", "matrix": "water"},
            {"biosample_id": "SRA1", "matrix": "oyster"},
        ])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.values("matrix") == ["oyster", "", "water"]

    def test_values_of_key_column(self, three_tip_tree):
        meta = make_metadata([{"biosample_id": "SRA1", "matrix": "oyster"}])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.values("biosample_id") == ["SRA1", "", ""]

    def test_values_unknown_column(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta)
        with pytest.raises(MetadataFormatError):
            annotated.values("country")

    def test_tips_where(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta)
        assert annotated.tips_where("wg_cluster", "2") == ["SRA3", "SRA4", "SRA5"]

    def test_with_tree_after_collapse(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta)
        number_nodes(tree)
        carried = annotated.with_tree(collapse(tree, 9))
        assert carried.tips == ["SRA1", "SRA2", "SRA3", "SRA4 (+1)"]
        assert carried.get("SRA3", "matrix") == "water"
        assert not carried.is_matched("SRA4 (+1)")
        assert carried.report is annotated.report

    def test_to_rows(self, three_tip_tree):
        meta = make_metadata([{"biosample_id": "SRA1", "sample_id": "A"}])
        rows = annotate_tree(three_tip_tree, meta).to_rows()
        assert rows[0] == {"tip": "SRA1", "matched": "yes", "sample_id": "A"}
        assert rows[2] == {"tip": "SRA3", "matched": "no", "sample_id": ""}

    def test_to_rows_renames_colliding_columns(self, three_tip_tree):
        meta = make_metadata([{"biosample_id": "SRA1", "tip": "left", "matched": "partial"}])
        annotated = annotate_tree(three_tip_tree, meta)
        assert annotated.export_columns() == ["tip", "matched", "metadata_tip", "metadata_matched"]
        rows = annotated.to_rows()
        assert rows[0] == {"tip": "SRA1", "matched": "yes", "metadata_tip": "left", "metadata_matched": "partial"}
        assert rows[1] == {"tip": "SRA2", "matched": "no", "metadata_tip": "", "metadata_matched": ""}

    def test_check_column(self):
        tree, meta = generate_workshop_dataset()
        annotated = annotate_tree(tree, meta)
        annotated.check_column("wg_cluster")
        with pytest.raises(MetadataFormatError, match="available columns"):
            annotated.check_column("wg_clustr")
