"""Tests for treeann.layout module."""

import math

import pytest

from treeann.layout import compute_layout
from treeann.nodes import find_node
from treeann.tests.fixtures import make_tree


class TestRectangular:
    def test_tip_slots(self):
        tree = make_tree()
        lay = compute_layout(tree)
        assert [lay.y[t] for t in tree.get_terminals()] == [1.0, 2.0, 3.0, 4.0, 5.0]
        assert lay.span == 5.0

    def test_x_is_root_distance(self):
        tree = make_tree()
        lay = compute_layout(tree)
        assert lay.x[tree.root] == 0.0
        assert lay.x[find_node(tree, 5)] == pytest.approx(0.0003 + 0.0007 + 0.001)
        assert lay.max_x == pytest.approx(0.0003 + 0.0007 + 0.0015)

    def test_internal_between_children(self):
        tree = make_tree()
        lay = compute_layout(tree)
        assert lay.y[find_node(tree, 7)] == 1.5
        assert lay.y[find_node(tree, 9)] == 4.5
        assert lay.y[find_node(tree, 8)] == pytest.approx((3.0 + 4.5) / 2)

    def test_display_is_identity(self):
        tree = make_tree()
        lay = compute_layout(tree, layout="roundrect")
        clade = find_node(tree, 3)
        assert lay.xy(clade) == (lay.x[clade], lay.y[clade])

    def test_unknown_layout(self):
        with pytest.raises(ValueError, match="Unknown layout"):
            compute_layout(make_tree(), layout="slanted")


class TestCladogram:
    def test_tips_aligned(self):
        tree = make_tree()
        lay = compute_layout(tree, branch_length=False)
        assert {lay.x[t] for t in tree.get_terminals()} == {3.0}
        assert lay.x[tree.root] == 0.0
        assert lay.x[find_node(tree, 7)] == 2.0
        assert lay.x[find_node(tree, 9)] == 2.0
        assert lay.x[find_node(tree, 8)] == 1.0

    def test_no_branch_lengths_falls_back(self):
        tree = make_tree("((A,B),C);")
        lay = compute_layout(tree)
        assert {lay.x[t] for t in tree.get_terminals()} == {2.0}


class TestCircular:
    def test_radius_is_x(self):
        tree = make_tree()
        lay = compute_layout(tree, layout="circular")
        for tip in tree.get_terminals():
            px, py = lay.xy(tip)
            assert math.hypot(px, py) == pytest.approx(lay.x[tip])

    def test_tips_spread_around_circle(self):
        tree = make_tree()
        lay = compute_layout(tree, layout="circular")
        angles = [lay.angle(lay.y[t]) for t in tree.get_terminals()]
        assert angles[0] == pytest.approx(2 * math.pi * 0.5 / 5)
        assert all(b > a for a, b in zip(angles, angles[1:]))
        assert angles[-1] < 2 * math.pi

    def test_arc_endpoints(self):
        lay = compute_layout(make_tree(), layout="circular")
        pts = lay.arc(2.0, 1.0, 3.0, n=5)
        assert pts.shape == (5, 2)
        assert tuple(pts[0]) == pytest.approx(lay.to_display(2.0, 1.0))
        assert tuple(pts[-1]) == pytest.approx(lay.to_display(2.0, 3.0))


class TestTipWeights:
    def test_scaled_tips_take_more_space(self):
        tree = make_tree()
        lay = compute_layout(tree, tip_weights={"SRA4": 3.0, "SRA5": 3.0})
        ys = [lay.y[t] for t in tree.get_terminals()]
        assert ys == [1.0, 2.0, 3.0, 5.0, 8.0]
        assert lay.span == 9.0

    def test_y_extent(self):
        tree = make_tree()
        lay = compute_layout(tree, tip_weights={"SRA4": 3.0, "SRA5": 3.0})
        assert lay.y_extent(find_node(tree, 9)) == (3.5, 9.5)
        assert lay.y_extent(find_node(tree, 7)) == (0.5, 2.5)
