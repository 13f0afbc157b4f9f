"""Node numbering and structural manipulation of trees.

Nodes are numbered the way ape and ggtree number them: tips ``1..N`` in
tree order, then internal nodes ``N+1..`` in preorder, so the root is
``N+1``. Numbers are stored on the clades, which keeps them stable when a
tree is flipped, scaled or collapsed; only re-rooting renumbers.
"""

from __future__ import annotations

import copy
import logging
from typing import Iterable

import numpy as np
from Bio.Phylo.BaseTree import Clade, Tree

logger = logging.getLogger(__name__)

NODE_ATTR = "node_number"


class NodeNotFoundError(KeyError):
    """No clade carries the requested node number."""

    def __init__(self, number: int, n_nodes: int) -> None:
        self.number = number
        super().__init__(f"Node {number} not found (tree has nodes 1..{n_nodes})")

    def __str__(self) -> str:
        return self.args[0]


def _all_clades(tree: Tree) -> list[Clade]:
    return list(tree.find_clades(order="preorder"))


def number_nodes(tree: Tree, renumber: bool = False) -> dict[int, Clade]:
    """Return node number -> clade, assigning numbers if needed.

    Existing numbers are kept unless ``renumber`` is set or some clade
    lacks a number.
    """
    clades = _all_clades(tree)
    if not renumber and all(getattr(c, NODE_ATTR, None) is not None for c in clades):
        return {getattr(c, NODE_ATTR): c for c in clades}

    tips = tree.get_terminals()
    internals = [c for c in clades if not c.is_terminal()]
    numbering: dict[int, Clade] = {}
    for i, clade in enumerate(tips + internals, start=1):
        setattr(clade, NODE_ATTR, i)
        numbering[i] = clade
    return numbering


def find_node(tree: Tree, number: int) -> Clade:
    numbering = number_nodes(tree)
    try:
        return numbering[number]
    except KeyError:
        raise NodeNotFoundError(number, max(numbering)) from None


def node_number(tree: Tree, clade: Clade) -> int:
    number_nodes(tree)
    return getattr(clade, NODE_ATTR)


def parent_of(tree: Tree, clade: Clade) -> Clade | None:
    if clade is tree.root:
        return None
    path = tree.get_path(clade)
    return path[-2] if len(path) > 1 else tree.root


def mrca_of(tree: Tree, tip_names: Iterable[str]) -> Clade:
    """Most recent common ancestor of the named tips."""
    names = list(tip_names)
    if not names:
        raise ValueError("Need at least one tip to find a common ancestor")
    return tree.common_ancestor(*names)


def midpoint_root(tree: Tree) -> Tree:
    """Copy of ``tree`` rooted halfway along its longest tip-to-tip path."""
    rooted = copy.deepcopy(tree)
    rooted.root_at_midpoint()
    for clade in _all_clades(rooted):
        if hasattr(clade, NODE_ATTR):
            delattr(clade, NODE_ATTR)
    number_nodes(rooted, renumber=True)
    logger.debug("Re-rooted tree at midpoint")
    return rooted


def flip(tree: Tree, a: int, b: int) -> Tree:
    """Copy of ``tree`` with sister clades ``a`` and ``b`` swapped."""
    flipped = copy.deepcopy(tree)
    number_nodes(flipped)
    clade_a = find_node(flipped, a)
    clade_b = find_node(flipped, b)
    parent = parent_of(flipped, clade_a)
    if parent is None or parent is not parent_of(flipped, clade_b):
        raise ValueError(f"Nodes {a} and {b} are not sister clades")
    i = parent.clades.index(clade_a)
    j = parent.clades.index(clade_b)
    parent.clades[i], parent.clades[j] = clade_b, clade_a
    logger.debug("Flipped nodes %d and %d", a, b)
    return flipped


def collapse(tree: Tree, node: int) -> Tree:
    """Copy of ``tree`` with clade ``node`` replaced by a single tip.

    The new tip is named after the clade's first tip plus the number of
    tips hidden, and reaches the mean depth of the collapsed tips.
    """
    collapsed = copy.deepcopy(tree)
    number_nodes(collapsed)
    clade = find_node(collapsed, node)
    if clade.is_terminal():
        return collapsed
    tips = clade.get_terminals()
    mean_depth = float(np.mean([clade.distance(t) for t in tips]))
    clade.name = f"{tips[0].name} (+{len(tips) - 1})"
    clade.branch_length = (clade.branch_length or 0.0) + mean_depth
    clade.clades = []
    logger.debug("Collapsed node %d (%d tips)", node, len(tips))
    return collapsed


def scale_clade(
    tree: Tree,
    node: int,
    scale: float,
    weights: dict[str, float] | None = None,
) -> dict[str, float]:
    """Vertical spacing weights with tips under ``node`` scaled by ``scale``.

    Returns a new tip name -> weight mapping; tips absent from ``weights``
    start at 1.0.
    """
    if scale <= 0:
        raise ValueError(f"Scale must be positive, got {scale}")
    result = {t.name: 1.0 for t in tree.get_terminals()}
    if weights:
        result.update(weights)
    for tip in find_node(tree, node).get_terminals():
        result[tip.name] *= scale
    return result
