"""Click CLI for treeann: phylogenetic tree annotation and rendering."""

from __future__ import annotations

import functools
import logging

import click

from . import __version__
from .io import load_metadata, load_tree, write_annotation_table
from .join import DEFAULT_KEY, annotate_tree
from .layout import LAYOUTS

logger = logging.getLogger("treeann")

# Colours and shapes of the workshop's "Example 1" figure
EXAMPLE_COLORS = {"+/+": "deepskyblue1", "+/-": "mediumturquoise", "-/-": "coral1"}
EXAMPLE_SHAPES = {"oyster": "16", "stool": "17", "water": "15"}
EXERCISE_PALETTE = ("pink", "blue", "green", "orange", "purple")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _reports_errors(func):
    """Turn library errors into click errors instead of tracebacks."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OSError, ValueError, KeyError) as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


# ---------------------------------------------------------------------------
# option parsing
# ---------------------------------------------------------------------------


def _split_once(value: str, sep: str, param_hint: str) -> tuple[str, str]:
    left, found, right = value.rpartition(sep) if sep == ":" else value.partition(sep)
    if not found or not left or not right:
        raise click.BadParameter(f"expected LEFT{sep}RIGHT, got {value!r}", param_hint=param_hint)
    return left, right


def _node_list(text: str, param_hint: str) -> list[int]:
    try:
        return [int(n) for n in text.split(",")]
    except ValueError:
        raise click.BadParameter(f"node numbers must be integers, got {text!r}", param_hint=param_hint) from None


def _parse_mapping(ctx, param, values) -> dict[str, str]:
    return dict(_split_once(v, "=", param.opts[0]) for v in values)


def _parse_flips(ctx, param, values) -> list[tuple[int, int]]:
    flips = []
    for v in values:
        nodes = _node_list(v, "--flip")
        if len(nodes) != 2:
            raise click.BadParameter(f"expected two nodes A,B, got {v!r}", param_hint="--flip")
        flips.append((nodes[0], nodes[1]))
    return flips


def _parse_scales(ctx, param, values) -> list[tuple[int, float]]:
    scales = []
    for v in values:
        node, scale = _split_once(v, ":", "--scale-clade")
        try:
            scales.append((_node_list(node, "--scale-clade")[0], float(scale)))
        except ValueError:
            raise click.BadParameter(f"scale must be a number, got {scale!r}", param_hint="--scale-clade") from None
    return scales


def _parse_highlights(ctx, param, values) -> list[tuple[list[int], str]]:
    result = []
    for v in values:
        nodes, colour = _split_once(v, ":", "--highlight")
        result.append((_node_list(nodes, "--highlight"), colour))
    return result


def _parse_highlights_by(ctx, param, values) -> list[tuple[str, str, str]]:
    result = []
    for v in values:
        condition, colour = _split_once(v, ":", "--highlight-by")
        column, value = _split_once(condition, "=", "--highlight-by")
        result.append((column, value, colour))
    return result


def _parse_clade_labels(ctx, param, values) -> list[tuple[int, str]]:
    result = []
    for v in values:
        node, _, text = v.partition(":")
        if not text:
            raise click.BadParameter(f"expected NODE:TEXT, got {v!r}", param_hint="--clade-label")
        result.append((_node_list(node, "--clade-label")[0], text))
    return result


def _prepare(
    tree_path: str,
    metadata_path: str,
    key: str,
    sheet: str | None,
    strict: bool,
    midpoint: bool = False,
    flips: list[tuple[int, int]] | None = None,
    collapse_nodes: tuple[int, ...] = (),
):
    """Load, join, then re-root, flip and collapse in that order."""
    from .nodes import collapse, flip, midpoint_root, number_nodes

    tree = load_tree(tree_path)
    meta = load_metadata(metadata_path, sheet=sheet)
    annotated = annotate_tree(tree, meta, key=key, strict=strict)

    number_nodes(tree)
    if midpoint:
        tree = midpoint_root(tree)
    for a, b in flips or []:
        tree = flip(tree, a, b)
    for node in collapse_nodes:
        tree = collapse(tree, node)
    logger.debug("Prepared tree with %d tips for drawing", len(tree.get_terminals()))
    return annotated.with_tree(tree)


tree_option = click.option("--tree", "-t", required=True, type=click.Path(exists=True, dir_okay=False), help="Newick tree file")
metadata_option = click.option("--metadata", "-m", required=True, type=click.Path(exists=True, dir_okay=False), help="Metadata table (xlsx, tsv or csv)")
key_option = click.option("--key", "-k", default=DEFAULT_KEY, show_default=True, help="Metadata column matching tip names")
sheet_option = click.option("--sheet", default=None, help="Worksheet name for Excel metadata (default: first sheet)")
dpi_option = click.option("--dpi", default=300, show_default=True, type=int, help="Output resolution")


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """treeann: annotate phylogenetic trees with sample metadata."""
    _setup_logging(verbose)


@main.command()
@tree_option
@metadata_option
@key_option
@sheet_option
@click.option("--strict", is_flag=True, help="Exit with an error when any tip has no metadata")
@click.option("--table", default=None, type=click.Path(dir_okay=False), help="Write the joined annotation table as CSV")
@click.pass_context
@_reports_errors
def check(ctx: click.Context, tree: str, metadata: str, key: str, sheet: str | None, strict: bool, table: str | None) -> None:
    """Check that every tree tip has exactly one metadata record."""
    annotated = annotate_tree(load_tree(tree), load_metadata(metadata, sheet=sheet), key=key)
    report = annotated.report

    click.echo(f"Tips matched: {report.n_matched}/{report.n_tips}")
    if report.unmatched_tips:
        click.echo(f"Tips without metadata ({len(report.unmatched_tips)}): {', '.join(report.unmatched_tips)}")
    if report.duplicate_keys:
        click.echo(f"Duplicate {key} values ({len(report.duplicate_keys)}): {', '.join(report.duplicate_keys)}")
    if report.unused_records:
        click.echo(f"Records not in tree ({len(report.unused_records)}): {', '.join(report.unused_records)}")

    if table:
        write_annotation_table(annotated, table)
        click.echo(f"Annotation table written to {table}")

    if strict and report.unmatched_tips:
        ctx.exit(1)


@main.command()
@tree_option
@click.option("--midpoint-root", is_flag=True, help="Root at the midpoint before numbering")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False), help="Also draw the tree with node numbers")
@dpi_option
@_reports_errors
def nodes(tree: str, midpoint_root: bool, output: str | None, dpi: int) -> None:
    """List node numbers for use with --flip, --highlight and friends."""
    from .io import MetadataTable
    from .nodes import midpoint_root as reroot
    from .nodes import number_nodes

    phylo = load_tree(tree)
    if midpoint_root:
        phylo = reroot(phylo)
    for number, clade in sorted(number_nodes(phylo).items()):
        if clade.is_terminal():
            click.echo(f"{number}\ttip\t{clade.name}")
        else:
            tips = clade.get_terminals()
            click.echo(f"{number}\tinternal\t{tips[0].name}..{tips[-1].name} ({len(tips)} tips)")

    if output:
        from .plots import TreeFigure

        names = MetadataTable(
            columns=[DEFAULT_KEY],
            rows=[{DEFAULT_KEY: t.name} for t in phylo.get_terminals()],
        )
        annotated = annotate_tree(phylo, names)
        TreeFigure(annotated).tip_labels().node_labels().save(output, dpi=dpi)
        click.echo(f"Node plot written to {output}")


@main.command()
@tree_option
@metadata_option
@key_option
@sheet_option
@click.option("--output", "-o", required=True, type=click.Path(dir_okay=False), help="Output image (png, jpeg, pdf, svg)")
@click.option("--layout", type=click.Choice(LAYOUTS), default="rectangular", show_default=True, help="Tree layout")
@click.option("--no-branch-length", is_flag=True, help="Draw a cladogram ignoring branch lengths")
@click.option("--midpoint-root", is_flag=True, help="Root the tree at its midpoint")
@click.option("--flip", "flips", multiple=True, callback=_parse_flips, help="Swap two sister clades, A,B (repeatable)")
@click.option("--collapse", "collapse_nodes", multiple=True, type=int, help="Collapse a clade to one tip (repeatable)")
@click.option("--scale-clade", "scales", multiple=True, callback=_parse_scales, help="Scale a clade's vertical space, NODE:FACTOR")
@click.option("--label-column", default=None, help="Metadata column for tip labels (default: tip names)")
@click.option("--no-labels", is_flag=True, help="Do not draw tip labels")
@click.option("--label-offset", default=0.0, type=float, help="Horizontal offset of tip labels")
@click.option("--extra-label", default=None, help="Second label column drawn further right")
@click.option("--extra-label-offset", default=None, type=float, help="Offset of the second label column")
@click.option("--color-by", default=None, help="Metadata column colouring tip points")
@click.option("--shape-by", default=None, help="Metadata column setting tip point shapes")
@click.option("--color", "colors", multiple=True, callback=_parse_mapping, help="Colour for a value, VALUE=COLOUR")
@click.option("--shape", "shapes", multiple=True, callback=_parse_mapping, help="Shape for a value, VALUE=MARKER")
@click.option("--point-size", default=60.0, type=float, help="Tip point size")
@click.option("--highlight", "highlights", multiple=True, callback=_parse_highlights, help="Shade clades, N[,N...]:COLOUR")
@click.option("--highlight-by", "highlights_by", multiple=True, callback=_parse_highlights_by, help="Shade the clade of tips with COLUMN=VALUE:COLOUR")
@click.option("--clade-label", "clade_labels", multiple=True, callback=_parse_clade_labels, help="Bar label beside a clade, NODE:TEXT")
@click.option("--clade-label-offset", default=0.0, type=float, help="Distance of clade bars from the clade's tips")
@click.option("--view-clade", default=None, type=int, help="Zoom onto one clade")
@click.option("--node-numbers", is_flag=True, help="Show internal node numbers")
@click.option("--title", default=None, help="Figure title")
@click.option("--strict", is_flag=True, help="Fail when any tip has no metadata")
@dpi_option
@_reports_errors
def render(
    tree: str, metadata: str, key: str, sheet: str | None, output: str, layout: str,
    no_branch_length: bool, midpoint_root: bool, flips: list[tuple[int, int]],
    collapse_nodes: tuple[int, ...], scales: list[tuple[int, float]], label_column: str | None,
    no_labels: bool, label_offset: float, extra_label: str | None, extra_label_offset: float | None,
    color_by: str | None, shape_by: str | None, colors: dict[str, str], shapes: dict[str, str],
    point_size: float, highlights: list[tuple[list[int], str]],
    highlights_by: list[tuple[str, str, str]], clade_labels: list[tuple[int, str]],
    clade_label_offset: float, view_clade: int | None, node_numbers: bool, title: str | None,
    strict: bool, dpi: int,
) -> None:
    """Draw an annotated tree and save it as an image."""
    from .nodes import scale_clade
    from .plots import TreeFigure

    annotated = _prepare(tree, metadata, key, sheet, strict, midpoint_root, flips, collapse_nodes)

    weights = None
    for node, factor in scales:
        weights = scale_clade(annotated.tree, node, factor, weights)

    fig = TreeFigure(annotated, layout=layout, branch_length=not no_branch_length, tip_weights=weights)
    for nodes_, colour in highlights:
        fig.highlight(node=nodes_, fill=colour)
    for column, value, colour in highlights_by:
        fig.highlight(where=(column, value), fill=colour)
    if not no_labels:
        fig.tip_labels(column=label_column, offset=label_offset)
    if extra_label:
        offset = extra_label_offset
        if offset is None:
            offset = label_offset + fig.layout.max_x * 0.25
        fig.tip_labels(column=extra_label, offset=offset, color="grey44")
    if color_by or shape_by:
        fig.tip_points(
            color_by=color_by, shape_by=shape_by, color_map=colors, shape_map=shapes,
            size=point_size,
        )
    for node, text in clade_labels:
        fig.clade_label(node, text, offset=clade_label_offset)
    if node_numbers:
        fig.node_labels()
    if view_clade is not None:
        fig.view_clade(view_clade)
    if title:
        fig.title(title)
    fig.save(output, dpi=dpi)
    click.echo(f"Tree figure written to {output}")


@main.command()
@tree_option
@metadata_option
@key_option
@sheet_option
@click.option("--output", "-o", default="output/example1.jpeg", show_default=True, type=click.Path(dir_okay=False), help="Output image")
@click.option("--variant", type=click.Choice(["example1", "exercise1"]), default="example1", show_default=True, help="Which workshop figure to draw")
@click.option("--flip", "flips", multiple=True, default=("25,17",), show_default=True, callback=_parse_flips, help="Sister clades to swap, A,B")
@click.option("--clade-node", default=17, show_default=True, type=int, help="Clade given the bar label (example1)")
@click.option("--clade-text", default="ST36", show_default=True, help="Text of the clade bar label (example1)")
@dpi_option
@_reports_errors
def example(
    tree: str, metadata: str, key: str, sheet: str | None, output: str, variant: str,
    flips: list[tuple[int, int]], clade_node: int, clade_text: str, dpi: int,
) -> None:
    """Draw the workshop example figures from the Vibrio dataset."""
    from .plots import TreeFigure

    annotated = _prepare(tree, metadata, key, sheet, strict=False, flips=flips)
    fig = TreeFigure(annotated)

    if variant == "example1":
        fig.tip_labels(offset=0.0001)
        fig.tip_points(
            color_by="tdh/trh", shape_by="matrix",
            color_map=EXAMPLE_COLORS, shape_map=EXAMPLE_SHAPES,
            size=80, alpha=0.7, shape_title="Sample matrix",
        )
        fig.clade_label(
            clade_node, clade_text, offset=0.0008, offset_text=0.0001,
            bar_size=1.5, bar_color="grey44", text_color="grey44",
        )
    else:
        fig.tip_labels(column="serovar", offset=0.0001, size=12)
        fig.tip_points(
            color_by="st", shape="18", size=80, alpha=0.5,
            palette=EXERCISE_PALETTE, color_title="Sequence Type",
        )

    fig.save(output, dpi=dpi)
    click.echo(f"{variant} figure written to {output}")
