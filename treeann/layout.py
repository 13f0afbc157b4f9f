"""Node coordinates for drawing a tree.

x is distance from the root (or edge count for cladograms), y is the tip
slot: tips sit at 1, 2, ..., N from bottom to top and internal nodes sit
midway between their first and last child. Circular layouts map y to an
angle and x to a radius.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from Bio.Phylo.BaseTree import Clade, Tree

LAYOUTS = ("rectangular", "roundrect", "circular")


@dataclass
class TreeLayout:
    """Coordinates of every clade of a tree under one layout."""

    layout: str
    x: dict[Clade, float]
    y: dict[Clade, float]
    tips: list[Clade]
    span: float
    half_widths: dict[Clade, float] = field(default_factory=dict)

    @property
    def is_circular(self) -> bool:
        return self.layout == "circular"

    @property
    def max_x(self) -> float:
        return max(self.x.values()) if self.x else 0.0

    def angle(self, y: float) -> float:
        """Angle in radians for slot position ``y`` (circular layout)."""
        return 2 * math.pi * (y - 0.5) / self.span

    def to_display(self, x: float, y: float) -> tuple[float, float]:
        if not self.is_circular:
            return x, y
        theta = self.angle(y)
        return x * math.cos(theta), x * math.sin(theta)

    def xy(self, clade: Clade) -> tuple[float, float]:
        return self.to_display(self.x[clade], self.y[clade])

    def y_extent(self, clade: Clade) -> tuple[float, float]:
        """Lowest and highest slot edge covered by the clade's tips."""
        tips = clade.get_terminals()
        low = min(self.y[t] - self.half_widths.get(t, 0.5) for t in tips)
        high = max(self.y[t] + self.half_widths.get(t, 0.5) for t in tips)
        return low, high

    def max_tip_x(self, clade: Clade) -> float:
        return max(self.x[t] for t in clade.get_terminals())

    def arc(self, radius: float, y0: float, y1: float, n: int = 50) -> np.ndarray:
        """Points along a circular arc between two slot positions."""
        thetas = np.linspace(self.angle(y0), self.angle(y1), n)
        return np.column_stack([radius * np.cos(thetas), radius * np.sin(thetas)])


def _x_phylogram(tree: Tree) -> dict[Clade, float]:
    x: dict[Clade, float] = {tree.root: 0.0}
    for clade in tree.find_clades(order="preorder"):
        for child in clade.clades:
            x[child] = x[clade] + (child.branch_length or 0.0)
    return x


def _x_cladogram(tree: Tree) -> dict[Clade, float]:
    # Tips aligned at the deepest level; parents one step left of their
    # leftmost child.
    depth = max(len(tree.get_path(t)) for t in tree.get_terminals())
    x: dict[Clade, float] = {}
    for clade in tree.find_clades(order="postorder"):
        if clade.is_terminal():
            x[clade] = float(depth)
        else:
            x[clade] = min(x[c] for c in clade.clades) - 1.0
    offset = x[tree.root]
    return {c: v - offset for c, v in x.items()}


def compute_layout(
    tree: Tree,
    layout: str = "rectangular",
    branch_length: bool = True,
    tip_weights: dict[str, float] | None = None,
) -> TreeLayout:
    """Compute drawing coordinates for ``tree``.

    ``branch_length=False`` draws a cladogram with aligned tips.
    ``tip_weights`` maps tip names to the vertical space they take
    (default 1.0 each).
    """
    if layout not in LAYOUTS:
        raise ValueError(f"Unknown layout {layout!r}; choose from {', '.join(LAYOUTS)}")

    if branch_length:
        x = _x_phylogram(tree)
        if not any(x.values()):
            x = _x_cladogram(tree)
    else:
        x = _x_cladogram(tree)

    weights = tip_weights or {}
    tips = tree.get_terminals()
    y: dict[Clade, float] = {}
    half_widths: dict[Clade, float] = {}
    cursor = 0.5
    for tip in tips:
        w = weights.get(tip.name, 1.0)
        y[tip] = cursor + w / 2
        half_widths[tip] = w / 2
        cursor += w
    for clade in tree.find_clades(order="postorder"):
        if not clade.is_terminal():
            y[clade] = (y[clade.clades[0]] + y[clade.clades[-1]]) / 2

    return TreeLayout(
        layout=layout,
        x=x,
        y=y,
        tips=tips,
        span=cursor - 0.5,
        half_widths=half_widths,
    )
