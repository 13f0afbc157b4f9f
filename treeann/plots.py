"""Annotated tree figures.

``TreeFigure`` draws the branches of an annotated tree and adds layers on
top: tip labels, tip points coloured and shaped by metadata, node numbers,
clade highlights and clade bar labels. Layer methods return the figure so
calls can be chained, and ``save`` writes the image.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import Sequence

import matplotlib
matplotlib.use("Agg")
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection
from matplotlib.lines import Line2D
from matplotlib.markers import MarkerStyle
from matplotlib.patches import Rectangle, Wedge
import numpy as np
import seaborn as sns
from Bio.Phylo.BaseTree import Clade

from .join import AnnotatedTree
from .layout import TreeLayout, compute_layout
from .nodes import find_node, node_number, number_nodes, parent_of

logger = logging.getLogger(__name__)

PALETTE = sns.color_palette("Set2")
DPI = 300
NA_LABEL = "NA"
NA_COLOR = "grey"
MARKER_CYCLE = ["o", "^", "s", "D", "v", "P", "X", "*"]

# ggplot2 point shapes (pch) with a filled matplotlib equivalent
PCH_MARKERS = {
    "3": "+", "4": "x", "8": "*",
    "15": "s", "16": "o", "17": "^", "18": "D", "19": "o", "20": ".",
}


def _setup_style() -> None:
    sns.set_theme(style="white", palette="Set2")
    plt.rcParams.update({"figure.dpi": DPI, "savefig.dpi": DPI, "font.size": 10})


def resolve_color(name: str) -> str:
    """Translate a colour name to one matplotlib accepts.

    Understands R's ``greyNN``/``grayNN`` levels and numbered X11 variants
    such as ``coral1`` on top of everything matplotlib already knows.
    """
    if mcolors.is_color_like(name):
        return name
    m = re.fullmatch(r"gr[ae]y(\d{1,3})", name)
    if m and int(m.group(1)) <= 100:
        return str(int(m.group(1)) / 100)
    base = re.sub(r"[1-4]$", "", name)
    if base != name and mcolors.is_color_like(base):
        return base
    raise ValueError(f"Unknown colour {name!r}")


def resolve_marker(name: str) -> str:
    """Translate a ggplot2 shape number or matplotlib marker code."""
    if name in PCH_MARKERS:
        return PCH_MARKERS[name]
    try:
        MarkerStyle(name)
    except ValueError:
        raise ValueError(f"Unknown point shape {name!r}") from None
    return name


def _category_key(value: str) -> tuple:
    if value == NA_LABEL:
        return (2, 0.0, value)
    try:
        return (0, float(value), value)
    except ValueError:
        return (1, 0.0, value)


def _categories(values: Sequence[str]) -> list[str]:
    return sorted(set(values), key=_category_key)


def _text_rotation(theta: float) -> tuple[float, str]:
    """Rotation and alignment that keep circular labels upright."""
    deg = math.degrees(theta) % 360
    if 90 < deg < 270:
        return deg - 180, "right"
    return deg, "left"


class TreeFigure:
    """Matplotlib rendering of an ``AnnotatedTree``."""

    def __init__(
        self,
        annotated: AnnotatedTree,
        layout: str = "rectangular",
        branch_length: bool = True,
        tip_weights: dict[str, float] | None = None,
        figsize: tuple[float, float] | None = None,
        line_width: float = 1.0,
        line_color: str = "black",
    ) -> None:
        _setup_style()
        self.annotated = annotated
        self.tree = annotated.tree
        number_nodes(self.tree)
        self.layout: TreeLayout = compute_layout(
            self.tree, layout=layout, branch_length=branch_length, tip_weights=tip_weights,
        )
        n_tips = len(self.layout.tips)
        if figsize is None:
            if self.layout.is_circular:
                figsize = (9, 9)
            else:
                figsize = (8, max(4, min(50, n_tips * 0.35)))
        self.fig, self.ax = plt.subplots(figsize=figsize)
        self._legends: list[tuple[str, list[Line2D]]] = []
        self._draw_branches(line_width, resolve_color(line_color))
        self._style_axes(branch_length)

    # ------------------------------------------------------------------
    # Branches and axes
    # ------------------------------------------------------------------

    def _edge(self, parent: Clade, child: Clade) -> np.ndarray:
        lay = self.layout
        xp, yp = lay.x[parent], lay.y[parent]
        xc, yc = lay.x[child], lay.y[child]
        if lay.layout == "circular":
            arc = lay.arc(xp, yp, yc, n=max(2, int(abs(yc - yp) * 8)))
            return np.vstack([arc, lay.to_display(xc, yc)])
        if lay.layout == "roundrect" and yc != yp and xc > xp:
            ry = 0.4 * (yc - yp)
            rx = 0.4 * (xc - xp)
            t = np.linspace(0.0, 1.0, 10)[:, None]
            p0 = np.array([xp, yc - ry])
            p1 = np.array([xp, yc])
            p2 = np.array([xp + rx, yc])
            curve = (1 - t) ** 2 * p0 + 2 * (1 - t) * t * p1 + t ** 2 * p2
            return np.vstack([[xp, yp], curve, [xc, yc]])
        return np.array([[xp, yp], [xp, yc], [xc, yc]])

    def _draw_branches(self, line_width: float, line_color: str) -> None:
        segments = []
        for clade in self.tree.find_clades(order="preorder"):
            for child in clade.clades:
                segments.append(self._edge(clade, child))
        lines = LineCollection(
            segments, colors=line_color, linewidths=line_width, capstyle="round", zorder=2,
        )
        self.ax.add_collection(lines)
        self.ax.autoscale_view()
        logger.debug("Drew %d branches (%s layout)", len(segments), self.layout.layout)

    def _style_axes(self, branch_length: bool) -> None:
        ax = self.ax
        if self.layout.is_circular:
            ax.set_aspect("equal")
            ax.axis("off")
            return
        ax.set_yticks([])
        ax.set_ylim(0.5 - 0.3, self.layout.span + 0.5 + 0.3)
        if branch_length:
            sns.despine(ax=ax, left=True)
            ax.set_xlabel("Branch length")
        else:
            ax.axis("off")

    def _resolve_nodes(self, node: int | Sequence[int]) -> list[Clade]:
        numbers = [node] if isinstance(node, int) else list(node)
        return [find_node(self.tree, n) for n in numbers]

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def tip_labels(
        self,
        column: str | None = None,
        offset: float = 0.0,
        size: float = 9,
        color: str = "black",
    ) -> TreeFigure:
        """Label tips with their name or a metadata column.

        Tips without a value for ``column`` fall back to their name.
        """
        if column is not None:
            self.annotated.check_column(column)
        color = resolve_color(color)
        for clade in self.layout.tips:
            text = clade.name
            if column is not None:
                text = self.annotated.get(clade.name, column) or clade.name
            x = self.layout.x[clade] + offset
            y = self.layout.y[clade]
            if self.layout.is_circular:
                rotation, ha = _text_rotation(self.layout.angle(y))
                px, py = self.layout.to_display(x, y)
                self.ax.text(
                    px, py, f" {text} ", fontsize=size, color=color,
                    rotation=rotation, rotation_mode="anchor", ha=ha, va="center",
                )
            else:
                self.ax.text(x, y, f" {text}", fontsize=size, color=color, ha="left", va="center")
        logger.debug("Added tip labels from %s", column or "tip names")
        return self

    def tip_points(
        self,
        color_by: str | None = None,
        shape_by: str | None = None,
        color_map: dict[str, str] | None = None,
        shape_map: dict[str, str] | None = None,
        color: str = "black",
        shape: str = "o",
        size: float = 40,
        alpha: float = 0.7,
        color_title: str | None = None,
        shape_title: str | None = None,
        palette: Sequence[str] | None = None,
    ) -> TreeFigure:
        """Draw a point on every tip, optionally coloured and shaped by columns.

        Categories missing from ``color_map``/``shape_map`` take the next
        palette colour or marker. Tips without a value fall in the "NA"
        category. ``palette`` replaces the default colours handed out to
        unmapped categories, in category order. Each mapped column gets its
        own legend.
        """
        for column in (color_by, shape_by):
            if column is not None:
                self.annotated.check_column(column)
        tips = self.layout.tips
        n = len(tips)

        if color_by is not None:
            color_values = [self.annotated.get(t.name, color_by) or NA_LABEL for t in tips]
            color_lookup = self._color_lookup(_categories(color_values), color_map or {}, palette)
            colors = [color_lookup[v] for v in color_values]
            self._add_legend(color_title or color_by, [
                Line2D([], [], marker="o", linestyle="", color=c, alpha=alpha, label=v)
                for v, c in color_lookup.items()
            ])
        else:
            colors = [resolve_color(color)] * n

        if shape_by is not None:
            shape_values = [self.annotated.get(t.name, shape_by) or NA_LABEL for t in tips]
            shape_lookup = self._shape_lookup(_categories(shape_values), shape_map or {})
            markers = [shape_lookup[v] for v in shape_values]
            self._add_legend(shape_title or shape_by, [
                Line2D([], [], marker=m, linestyle="", color="dimgrey", label=v)
                for v, m in shape_lookup.items()
            ])
        else:
            markers = [resolve_marker(shape)] * n

        coords = np.array([self.layout.xy(t) for t in tips])
        for marker in dict.fromkeys(markers):
            idx = [i for i, m in enumerate(markers) if m == marker]
            self.ax.scatter(
                coords[idx, 0], coords[idx, 1],
                c=mcolors.to_rgba_array([colors[i] for i in idx]), marker=marker, s=size, alpha=alpha,
                linewidths=0, zorder=3,
            )
        logger.debug("Added tip points (color=%s, shape=%s)", color_by, shape_by)
        return self

    def _color_lookup(
        self,
        categories: list[str],
        color_map: dict[str, str],
        palette: Sequence[str] | None = None,
    ) -> dict[str, str]:
        lookup: dict[str, str] = {}
        colors = [resolve_color(c) for c in palette] if palette else [mcolors.to_hex(c) for c in PALETTE]
        free = iter([colors[i % len(colors)] for i in range(len(categories))])
        for cat in categories:
            if cat in color_map:
                lookup[cat] = resolve_color(color_map[cat])
            elif cat == NA_LABEL:
                lookup[cat] = NA_COLOR
            else:
                lookup[cat] = next(free)
        return lookup

    def _shape_lookup(self, categories: list[str], shape_map: dict[str, str]) -> dict[str, str]:
        lookup: dict[str, str] = {}
        used = {resolve_marker(m) for m in shape_map.values()}
        free = (m for m in MARKER_CYCLE * (len(categories) // len(MARKER_CYCLE) + 1) if m not in used)
        for cat in categories:
            if cat in shape_map:
                lookup[cat] = resolve_marker(shape_map[cat])
            else:
                lookup[cat] = next(free, "o")
        return lookup

    def _add_legend(self, title: str, handles: list[Line2D]) -> None:
        self._legends = [(t, h) for t, h in self._legends if t != title]
        self._legends.append((title, handles))

    def node_labels(self, size: float = 8, color: str = "firebrick") -> TreeFigure:
        """Write the node number next to every internal node."""
        color = resolve_color(color)
        for clade in self.tree.get_nonterminals():
            x, y = self.layout.xy(clade)
            self.ax.text(
                x, y, f" {node_number(self.tree, clade)}",
                fontsize=size, color=color, ha="left", va="center", zorder=4,
            )
        return self

    def highlight(
        self,
        node: int | Sequence[int] | None = None,
        where: tuple[str, str] | None = None,
        fill: str = "pink",
        alpha: float = 0.4,
        extend: float = 0.0,
    ) -> TreeFigure:
        """Shade the area behind one or more clades or tips.

        Clades are given by node number(s). ``where=(column, value)`` shades
        every tip with that value instead; neighbouring matching tips share
        one patch, and tips without the value are never covered.
        """
        if (node is None) == (where is None):
            raise ValueError("Give exactly one of node or where")
        if where is not None:
            column, value = where
            groups = self._matching_runs(column, value)
            if not groups:
                raise ValueError(f"No tips with {column} == {value!r}")
        else:
            groups = [[clade] for clade in self._resolve_nodes(node)]

        fill = resolve_color(fill)
        for group in groups:
            x0 = min(self._branch_midpoint(c) for c in group)
            x1 = max(self.layout.max_tip_x(c) for c in group) + extend
            y0 = self.layout.y_extent(group[0])[0]
            y1 = self.layout.y_extent(group[-1])[1]
            if self.layout.is_circular:
                patch = Wedge(
                    (0.0, 0.0), x1,
                    math.degrees(self.layout.angle(y0)), math.degrees(self.layout.angle(y1)),
                    width=x1 - x0, facecolor=fill, alpha=alpha, edgecolor="none", zorder=1,
                )
            else:
                patch = Rectangle(
                    (x0, y0), x1 - x0, y1 - y0,
                    facecolor=fill, alpha=alpha, edgecolor="none", zorder=1,
                )
            self.ax.add_patch(patch)
        logger.debug("Highlighted %d region(s) in %s", len(groups), fill)
        return self

    def _branch_midpoint(self, clade: Clade) -> float:
        parent = parent_of(self.tree, clade)
        x_node = self.layout.x[clade]
        return (x_node + self.layout.x[parent]) / 2 if parent is not None else x_node

    def _matching_runs(self, column: str, value: str) -> list[list[Clade]]:
        """Tips with ``column == value`` grouped into runs of neighbouring slots."""
        matching = set(self.annotated.tips_where(column, value))
        runs: list[list[Clade]] = []
        previous = False
        for clade in self.layout.tips:
            match = clade.name in matching
            if match:
                if previous:
                    runs[-1].append(clade)
                else:
                    runs.append([clade])
            previous = match
        return runs

    def clade_label(
        self,
        node: int,
        label: str,
        offset: float = 0.0,
        offset_text: float = 0.0,
        bar_size: float = 1.5,
        bar_color: str = "grey",
        text_color: str = "grey",
        font_size: float = 10,
    ) -> TreeFigure:
        """Draw a bar beside the tips of clade ``node`` and label it."""
        clade = find_node(self.tree, node)
        tip_ys = [self.layout.y[t] for t in clade.get_terminals()]
        y0, y1 = min(tip_ys), max(tip_ys)
        x_bar = self.layout.max_tip_x(clade) + offset
        x_text = x_bar + offset_text
        y_mid = (y0 + y1) / 2
        bar_color = resolve_color(bar_color)
        text_color = resolve_color(text_color)
        lw = bar_size * 2

        if self.layout.is_circular:
            pts = self.layout.arc(x_bar, y0, y1)
            self.ax.plot(pts[:, 0], pts[:, 1], color=bar_color, linewidth=lw, solid_capstyle="butt")
            rotation, ha = _text_rotation(self.layout.angle(y_mid))
            px, py = self.layout.to_display(x_text, y_mid)
            self.ax.text(
                px, py, f" {label} ", color=text_color, fontsize=font_size,
                rotation=rotation, rotation_mode="anchor", ha=ha, va="center",
            )
        else:
            self.ax.plot([x_bar, x_bar], [y0, y1], color=bar_color, linewidth=lw, solid_capstyle="butt")
            self.ax.text(
                x_text, y_mid, f" {label}", color=text_color, fontsize=font_size,
                ha="left", va="center",
            )
        logger.debug("Labelled node %d as %r", node, label)
        return self

    def view_clade(self, node: int, pad: float = 0.05) -> TreeFigure:
        """Zoom the axes onto clade ``node``."""
        clade = find_node(self.tree, node)
        members = list(clade.find_clades())
        if self.layout.is_circular:
            pts = np.array([self.layout.xy(c) for c in members])
            (xmin, ymin), (xmax, ymax) = pts.min(axis=0), pts.max(axis=0)
        else:
            xmin = self.layout.x[clade]
            xmax = self.layout.max_tip_x(clade)
            ymin, ymax = self.layout.y_extent(clade)
        dx = (xmax - xmin) * pad or pad
        dy = (ymax - ymin) * pad or pad
        self.ax.set_xlim(xmin - dx, xmax + dx)
        self.ax.set_ylim(ymin - dy, ymax + dy)
        return self

    def title(self, text: str, size: float = 14) -> TreeFigure:
        self.ax.set_title(text, fontsize=size)
        return self

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _draw_legends(self) -> None:
        top = 1.0
        for i, (title, handles) in enumerate(self._legends):
            legend = self.ax.legend(
                handles=handles, title=title, loc="upper left",
                bbox_to_anchor=(1.02, top), frameon=True, edgecolor="black",
                fontsize=10, title_fontsize=11,
            )
            if i < len(self._legends) - 1:
                self.ax.add_artist(legend)
            top -= 0.08 * (len(handles) + 2) * (8 / self.fig.get_figheight())

    def save(self, output: str | Path, dpi: int = DPI) -> Path:
        """Write the figure to ``output`` and close it."""
        out = Path(output)
        out.parent.mkdir(parents=True, exist_ok=True)
        self._draw_legends()
        self.fig.tight_layout()
        self.fig.savefig(out, dpi=dpi, bbox_inches="tight")
        plt.close(self.fig)
        logger.info("Wrote tree figure to %s (%d dpi)", out, dpi)
        return out
