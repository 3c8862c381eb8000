"""Deterministic 2-D layouts for the note graph.

Every algorithm takes the nodes to arrange, the (undirected) edges between
them and a :class:`LayoutOptions`, and returns top-left positions keyed by
node id:

* ``grid``            – ``ceil(sqrt(n))`` columns, ragged column widths and
  row heights sized to their largest member.
* ``hierarchical``    – layered (Sugiyama-style) layout; layers come from a
  breadth-first pass starting at root-like nodes, and the order inside each
  layer is improved with barycenter sweeps.
* ``cluster-color``   – one column per card colour, palette order.
* ``cluster-tag``     – one column per first tag, alphabetical.
* ``cluster-folder``  – one column per folder, alphabetical.
* ``radial``          – breadth-first rings around the best-connected node.
* ``force``           – seeded spring layout snapped onto a grid of free
  cells, so cards never overlap.

Pinned nodes keep their input position and are ignored by the algorithms.
The spring simulation behind ``force`` is seeded from the options, so every
algorithm is deterministic: identical input (including node order) gives
identical output.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Hashable, Literal, Sequence

import networkx as nx

logger = logging.getLogger(__name__)

Position = tuple[float, float]
LayoutAlgorithm = Literal[
    "grid", "hierarchical", "cluster-color", "cluster-tag", "cluster-folder", "radial", "force"
]

#: Card colours in palette order; uncoloured cards always come last
COLOR_PALETTE = (
    "#ffcdd2",  # red
    "#ffe0b2",  # orange
    "#fff9c4",  # yellow
    "#c8e6c9",  # green
    "#bbdefb",  # blue
    "#e1bee7",  # purple
    "#f8bbd9",  # pink
    "#cfd8dc",  # grey
)


@dataclass
class LayoutNode:
    id: str
    x: float = 0.0
    y: float = 0.0
    width: float = 240.0
    height: float = 140.0
    pinned: bool = False
    title: str = ""
    tags: Sequence[str] = field(default_factory=tuple)
    folder: str = ""
    color: str | None = None
    degree: int = 0
    #: Forces the node into the first layer of the hierarchical layout
    root: bool = False


@dataclass(frozen=True)
class LayoutEdge:
    source: str
    target: str


@dataclass
class LayoutOptions:
    padding: float = 50.0
    #: Space between nodes in the same row, column or layer
    gap: float = 40.0
    #: Vertical space between hierarchical layers
    layer_gap: float = 80.0
    #: Horizontal space between cluster columns
    column_gap: float = 80.0
    header_height: float = 30.0
    min_width: float = 0.0
    min_height: float = 0.0
    crossing_iterations: int = 8
    #: Crossing minimisation is skipped above this many nodes
    max_crossing_nodes: int = 500
    #: Spring layout seed and iteration count (``force``)
    seed: int = 42
    force_iterations: int = 50


def _size(node: LayoutNode, options: LayoutOptions) -> tuple[float, float]:
    return max(node.width, options.min_width), max(node.height, options.min_height)


def _offsets(extents: Sequence[float], start: float, gap: float) -> list[float]:
    offsets: list[float] = []
    current = start
    for extent in extents:
        offsets.append(current)
        current += extent + gap
    return offsets


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------


def grid_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    if not nodes:
        return {}
    cols = max(1, math.ceil(math.sqrt(len(nodes))))
    rows = math.ceil(len(nodes) / cols)
    col_widths = [0.0] * cols
    row_heights = [0.0] * rows
    for i, node in enumerate(nodes):
        width, height = _size(node, options)
        col_widths[i % cols] = max(col_widths[i % cols], width)
        row_heights[i // cols] = max(row_heights[i // cols], height)

    col_x = _offsets(col_widths, options.padding, options.gap)
    row_y = _offsets(row_heights, options.padding, options.gap)
    return {node.id: (col_x[i % cols], row_y[i // cols]) for i, node in enumerate(nodes)}


# ---------------------------------------------------------------------------
# Hierarchical
# ---------------------------------------------------------------------------


def _assign_layers(nodes: Sequence[LayoutNode], graph: nx.DiGraph) -> list[list[str]]:
    """Breadth-first layering from root-like nodes.

    Nodes not reachable from any root (cycles) are seeded from the unassigned
    node with the most outgoing edges, earliest input position first.
    """
    order = {node.id: i for i, node in enumerate(nodes)}
    level: dict[str, int] = {}

    def bfs(sources: list[str]) -> None:
        queue = deque(sources)
        for source in sources:
            level[source] = 0
        while queue:
            current = queue.popleft()
            for target in sorted(graph.successors(current), key=order.__getitem__):
                if target not in level:
                    level[target] = level[current] + 1
                    queue.append(target)

    roots = [node.id for node in nodes if node.root or graph.in_degree(node.id) == 0]
    bfs(roots)
    while len(level) < len(nodes):
        pending = [node.id for node in nodes if node.id not in level]
        seed = max(pending, key=lambda node_id: (graph.out_degree(node_id), -order[node_id]))
        bfs([seed])

    layers: list[list[str]] = [[] for _ in range(max(level.values()) + 1)]
    for node in nodes:
        layers[level[node.id]].append(node.id)
    return layers


def _layer_crossings(upper: Sequence[str], lower: Sequence[str], adjacency: nx.Graph) -> int:
    upper_pos = {node_id: i for i, node_id in enumerate(upper)}
    lower_pos = {node_id: i for i, node_id in enumerate(lower)}
    segments = sorted(
        (upper_pos[u], lower_pos[v])
        for u in upper
        for v in adjacency.neighbors(u)
        if v in lower_pos
    )
    crossings = 0
    for i, (u1, l1) in enumerate(segments):
        for u2, l2 in segments[i + 1 :]:
            if u1 < u2 and l1 > l2:
                crossings += 1
    return crossings


def _local_crossings(layers: list[list[str]], i: int, adjacency: nx.Graph) -> int:
    total = 0
    if i > 0:
        total += _layer_crossings(layers[i - 1], layers[i], adjacency)
    if i + 1 < len(layers):
        total += _layer_crossings(layers[i], layers[i + 1], adjacency)
    return total


def _barycenter_order(layer: Sequence[str], reference: Sequence[str], adjacency: nx.Graph) -> list[str]:
    ref_pos = {node_id: i for i, node_id in enumerate(reference)}

    def key(item: tuple[int, str]) -> tuple[float, int]:
        index, node_id = item
        neighbours = [ref_pos[n] for n in adjacency.neighbors(node_id) if n in ref_pos]
        # unconnected nodes keep their current slot
        barycenter = sum(neighbours) / len(neighbours) if neighbours else float(index)
        return barycenter, index

    return [node_id for _, node_id in sorted(enumerate(layer), key=key)]


def _minimize_crossings(layers: list[list[str]], adjacency: nx.Graph, iterations: int) -> list[list[str]]:
    """Down/up barycenter sweeps; a reordering is kept only if it removes crossings."""
    result = [list(layer) for layer in layers]

    def try_reorder(i: int, ref: int) -> bool:
        candidate = _barycenter_order(result[i], result[ref], adjacency)
        if candidate == result[i]:
            return False
        before = _local_crossings(result, i, adjacency)
        previous, result[i] = result[i], candidate
        if _local_crossings(result, i, adjacency) < before:
            return True
        result[i] = previous
        return False

    for _ in range(iterations):
        improved = False
        for i in range(1, len(result)):
            improved |= try_reorder(i, i - 1)
        for i in range(len(result) - 2, -1, -1):
            improved |= try_reorder(i, i + 1)
        if not improved:
            break
    return result


def hierarchical_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    if not nodes:
        return {}
    by_id = {node.id: node for node in nodes}
    graph = nx.DiGraph()
    graph.add_nodes_from(by_id)
    for edge in edges:
        if edge.source in by_id and edge.target in by_id and edge.source != edge.target:
            graph.add_edge(edge.source, edge.target)

    layers = _assign_layers(nodes, graph)
    if len(nodes) <= options.max_crossing_nodes:
        layers = _minimize_crossings(layers, graph.to_undirected(as_view=True), options.crossing_iterations)
    else:
        logger.info("Skipping crossing minimisation for %d nodes", len(nodes))

    sizes = {node_id: _size(node, options) for node_id, node in by_id.items()}
    row_widths = [
        sum(sizes[n][0] for n in layer) + options.gap * (len(layer) - 1) for layer in layers
    ]
    row_heights = [max(sizes[n][1] for n in layer) for layer in layers]
    row_y = _offsets(row_heights, options.padding, options.layer_gap)
    widest = max(row_widths)

    positions: dict[str, Position] = {}
    for layer, row_width, y in zip(layers, row_widths, row_y):
        x = options.padding + (widest - row_width) / 2
        for node_id in layer:
            positions[node_id] = (x, y)
            x += sizes[node_id][0] + options.gap
    return positions


# ---------------------------------------------------------------------------
# Attribute clusters
# ---------------------------------------------------------------------------


def _cluster_layout(
    nodes: Sequence[LayoutNode],
    options: LayoutOptions,
    group_of: Callable[[LayoutNode], Hashable],
    group_order: Callable[[Hashable], tuple],
) -> dict[str, Position]:
    """Stack each group's members in a column; columns follow *group_order*."""
    groups: dict[Hashable, list[LayoutNode]] = {}
    for node in nodes:
        groups.setdefault(group_of(node), []).append(node)

    positions: dict[str, Position] = {}
    x = options.padding
    for key in sorted(groups, key=group_order):
        members = sorted(groups[key], key=lambda n: (n.title.casefold(), n.title, n.id))
        y = options.padding + options.header_height
        column_width = 0.0
        for node in members:
            width, height = _size(node, options)
            positions[node.id] = (x, y)
            y += height + options.gap
            column_width = max(column_width, width)
        x += column_width + options.column_gap
    return positions


def _color_key(node: LayoutNode) -> str | None:
    return node.color.strip().lower() if node.color and node.color.strip() else None


def _color_order(color: Hashable) -> tuple:
    if color is None:
        return (len(COLOR_PALETTE) + 1, "")
    if color in COLOR_PALETTE:
        return (COLOR_PALETTE.index(color), "")
    return (len(COLOR_PALETTE), color)


def _tag_key(node: LayoutNode) -> str | None:
    return node.tags[0] if node.tags else None


def _name_order(name: Hashable) -> tuple:
    """Alphabetical, with the empty/missing group last."""
    if not name:
        return (1, "", "")
    return (0, str(name).casefold(), str(name))


def color_cluster_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    return _cluster_layout(nodes, options, _color_key, _color_order)


def tag_cluster_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    return _cluster_layout(nodes, options, _tag_key, _name_order)


def folder_cluster_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    return _cluster_layout(nodes, options, lambda n: n.folder.strip("/"), _name_order)


# ---------------------------------------------------------------------------
# Radial and force
# ---------------------------------------------------------------------------


def _undirected(nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge]) -> nx.Graph:
    graph = nx.Graph()
    graph.add_nodes_from(node.id for node in nodes)
    for edge in edges:
        if edge.source != edge.target and edge.source in graph and edge.target in graph:
            graph.add_edge(edge.source, edge.target)
    return graph


def _from_centres(
    nodes: Sequence[LayoutNode], centres: dict[str, Position], options: LayoutOptions
) -> dict[str, Position]:
    """Convert centre points to top-left corners, shifted to start at the padding."""
    sizes = {node.id: _size(node, options) for node in nodes}
    corners = {
        node_id: (x - sizes[node_id][0] / 2, y - sizes[node_id][1] / 2)
        for node_id, (x, y) in centres.items()
    }
    dx = options.padding - min(x for x, _ in corners.values())
    dy = options.padding - min(y for _, y in corners.values())
    return {node_id: (x + dx, y + dy) for node_id, (x, y) in corners.items()}


def radial_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    """Breadth-first rings around the node with the most links.

    Ring *k* holds the nodes *k* hops from the centre, in input order; nodes
    in other components share one outer ring. Ring radii grow by at least one
    card diagonal and are wide enough that neighbours on a ring never touch.
    """
    if not nodes:
        return {}
    order = {node.id: i for i, node in enumerate(nodes)}
    graph = _undirected(nodes, edges)
    centre = max(order, key=lambda node_id: (graph.degree(node_id), -order[node_id]))
    depth = nx.single_source_shortest_path_length(graph, centre)
    outer = max(depth.values()) + 1

    rings: dict[int, list[str]] = {}
    for node in nodes:
        rings.setdefault(depth.get(node.id, outer), []).append(node.id)

    sizes = [_size(node, options) for node in nodes]
    spacing = math.hypot(max(w for w, _ in sizes), max(h for _, h in sizes)) + options.gap
    centres: dict[str, Position] = {centre: (0.0, 0.0)}
    radius = 0.0
    for ring in sorted(rings):
        if ring == 0:
            continue
        members = rings[ring]
        # chord between neighbours is at least 4r/n for n >= 2
        radius = max(radius + spacing, len(members) * spacing / 4)
        for i, node_id in enumerate(members):
            angle = 2 * math.pi * i / len(members) - math.pi / 2
            centres[node_id] = (radius * math.cos(angle), radius * math.sin(angle))
    return _from_centres(nodes, centres, options)


def _nearest_free(target: Position, taken: set[tuple[int, int]]) -> tuple[int, int]:
    x, y = target
    base = (round(x), round(y))
    if base not in taken:
        return base
    reach = 1
    while True:
        free = [
            (base[0] + dx, base[1] + dy)
            for dx in range(-reach, reach + 1)
            for dy in range(-reach, reach + 1)
            if max(abs(dx), abs(dy)) == reach and (base[0] + dx, base[1] + dy) not in taken
        ]
        if free:
            return min(free, key=lambda c: ((c[0] - x) ** 2 + (c[1] - y) ** 2, c[1], c[0]))
        reach += 1


def force_layout(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], options: LayoutOptions
) -> dict[str, Position]:
    """Seeded spring layout, then each node takes the nearest free grid cell.

    Cells are one card plus the gap in each direction, so the overlap pass
    always terminates with no two cards touching.
    """
    if not nodes:
        return {}
    graph = _undirected(nodes, edges)
    raw = nx.spring_layout(
        graph,
        seed=options.seed,
        iterations=options.force_iterations,
        scale=math.sqrt(len(nodes)),
    )

    taken: set[tuple[int, int]] = set()
    cells: dict[str, tuple[int, int]] = {}
    for node in nodes:
        x, y = (float(v) for v in raw[node.id])
        cells[node.id] = _nearest_free((x, y), taken)
        taken.add(cells[node.id])

    sizes = [_size(node, options) for node in nodes]
    cell_w = max(w for w, _ in sizes) + options.gap
    cell_h = max(h for _, h in sizes) + options.gap
    min_col = min(col for col, _ in taken)
    min_row = min(row for _, row in taken)
    return {
        node_id: (
            options.padding + (col - min_col) * cell_w,
            options.padding + (row - min_row) * cell_h,
        )
        for node_id, (col, row) in cells.items()
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

ALGORITHMS: dict[str, Callable[..., dict[str, Position]]] = {
    "grid": grid_layout,
    "hierarchical": hierarchical_layout,
    "cluster-color": color_cluster_layout,
    "cluster-tag": tag_cluster_layout,
    "cluster-folder": folder_cluster_layout,
    "radial": radial_layout,
    "force": force_layout,
}


def compute_layout(
    algorithm: LayoutAlgorithm | str,
    nodes: Sequence[LayoutNode],
    edges: Sequence[LayoutEdge] = (),
    options: LayoutOptions | None = None,
) -> dict[str, Position]:
    """Return a position for every node in *nodes*, pinned ones unchanged."""
    try:
        algorithm_fn = ALGORITHMS[algorithm]
    except KeyError:
        raise ValueError(
            f"Unknown layout algorithm {algorithm!r}; expected one of {', '.join(ALGORITHMS)}"
        ) from None
    options = options or LayoutOptions()

    # a repeated id keeps its first slot and its last geometry
    movable = list({node.id: node for node in nodes if not node.pinned}.values())
    computed = algorithm_fn(movable, edges, options)
    return {
        node.id: (node.x, node.y) if node.pinned else computed[node.id]
        for node in nodes
    }
