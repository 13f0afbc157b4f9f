"""treeann: annotate and render phylogenetic trees with sample metadata.

Loads a Newick tree and a metadata spreadsheet, joins metadata rows to tree
tips by an identifier column, and draws annotated tree figures.
"""

__version__ = "0.1.0"
