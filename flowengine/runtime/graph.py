"""Structural checks and traversal helpers for flow graphs."""

from collections import Counter

from flowengine.errors import ConfigError
from flowengine.models.flow_graph import BRANCHES, FlowGraph, FlowNode, NodeKind


def find_entry(graph: FlowGraph, entry_id: str) -> FlowNode | None:
    """Return the endpoint node whose id matches the owning endpoint."""
    for node in graph.nodes:
        if node.kind == NodeKind.endpoint and node.id == entry_id:
            return node
    return None


def children_of(node_id: str, graph: FlowGraph, branch: str | None = None) -> list[FlowNode]:
    """Outgoing targets of a node in edge order.

    When ``branch`` is given only edges tagged with that selector are
    followed; otherwise every outgoing edge is.
    """
    children = []
    for edge in graph.edges:
        if edge.source != node_id:
            continue
        if branch is not None and edge.branch != branch:
            continue
        target = graph.get_node(edge.target)
        if target is not None:
            children.append(target)
    return children


def _find_cycle(graph: FlowGraph) -> list[str] | None:
    """Return one cycle as a list of node ids, or None for a DAG."""
    adjacency: dict[str, list[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)

    visited: set[str] = set()
    path: list[str] = []
    on_path: set[str] = set()

    def dfs(node_id: str) -> list[str] | None:
        visited.add(node_id)
        path.append(node_id)
        on_path.add(node_id)
        for neighbor in adjacency[node_id]:
            if neighbor in on_path:
                return path[path.index(neighbor):] + [neighbor]
            if neighbor not in visited:
                cycle = dfs(neighbor)
                if cycle:
                    return cycle
        path.pop()
        on_path.remove(node_id)
        return None

    for node_id in adjacency:
        if node_id not in visited:
            cycle = dfs(node_id)
            if cycle:
                return cycle
    return None


def validate(graph: FlowGraph, entry_id: str) -> None:
    """Check the structural invariants of a flow graph.

    Raises:
        ConfigError: listing every problem found.
    """
    problems: list[str] = []

    id_counts = Counter(node.id for node in graph.nodes)
    duplicates = sorted(node_id for node_id, count in id_counts.items() if count > 1)
    if duplicates:
        problems.append(f"duplicate node ids: {', '.join(duplicates)}")

    endpoint_nodes = [node for node in graph.nodes if node.kind == NodeKind.endpoint]
    if len(endpoint_nodes) != 1:
        problems.append(f"expected exactly one endpoint node, found {len(endpoint_nodes)}")
    if find_entry(graph, entry_id) is None:
        problems.append(f"no entry node with id {entry_id}")

    node_ids = set(id_counts)
    for edge in graph.edges:
        if edge.source not in node_ids:
            problems.append(f"edge {edge.id} has unknown source {edge.source}")
        if edge.target not in node_ids:
            problems.append(f"edge {edge.id} has unknown target {edge.target}")
        if edge.target == entry_id:
            problems.append(f"edge {edge.id} points into the entry node")

    for node in graph.nodes:
        outgoing = [edge for edge in graph.edges if edge.source == node.id]
        if node.kind == NodeKind.response and outgoing:
            problems.append(f"response node {node.id} has outgoing edges")
        elif node.kind == NodeKind.conditional:
            if len(outgoing) > 2:
                problems.append(f"conditional node {node.id} has more than two outgoing edges")
            tags = [edge.branch for edge in outgoing]
            for edge in outgoing:
                if edge.branch not in BRANCHES:
                    problems.append(
                        f"edge {edge.id} leaving conditional node {node.id} "
                        f"has invalid branch {edge.branch!r}"
                    )
            repeated = sorted({tag for tag in tags if tag in BRANCHES and tags.count(tag) > 1})
            if repeated:
                problems.append(
                    f"conditional node {node.id} repeats branch {', '.join(repeated)}"
                )
        else:
            tagged = [edge for edge in outgoing if edge.branch is not None]
            for edge in tagged:
                problems.append(
                    f"edge {edge.id} carries branch {edge.branch!r} but "
                    f"{node.id} is not a conditional node"
                )
            if len(outgoing) > 1:
                problems.append(f"node {node.id} fans out to {len(outgoing)} nodes")

    cycle = _find_cycle(graph)
    if cycle:
        problems.append(f"cycle detected: {' -> '.join(cycle)}")

    if problems:
        raise ConfigError(f"invalid flow graph: {problems[0]}", problems)
