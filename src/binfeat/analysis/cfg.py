"""Control-flow-graph metrics: dominance, back-edges, loop nesting.

Dominators are computed with the iterative algorithm of Cooper, Harvey and
Kennedy over a reverse post-order of the blocks reachable from the entry.
DFS visits successors in ascending address order, so every ordering (and
therefore the output) is deterministic.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import networkx as nx

from binfeat.extraction.binary_artifact import EDGE_KINDS, FunctionArtifact, format_address
from binfeat.utils.logging import get_logger

log = get_logger(__name__)

UNREACHABLE_DEPTH = -1


@dataclass(frozen=True)
class CFGMetrics:
    graph_level: dict[str, Any]
    node_level: list[dict[str, Any]] = field(default_factory=list)
    edge_level: list[dict[str, Any]] = field(default_factory=list)


def entry_block(function: FunctionArtifact) -> int | None:
    """Start address of the block containing the function entry point.

    Falls back to the lowest-addressed block when the entry lies outside
    every block (thunks and some relocatable objects).
    """
    if not function.blocks:
        return None
    for block in function.blocks:
        if block.contains(function.address) or block.start == function.address:
            return block.start
    return min(block.start for block in function.blocks)


def _successor_map(function: FunctionArtifact) -> dict[int, list[int]]:
    succs: dict[int, set[int]] = {block.start: set() for block in function.blocks}
    for edge in function.edges:
        succs[edge.source].add(edge.target)
    return {addr: sorted(targets) for addr, targets in succs.items()}


def _predecessor_map(succs: dict[int, list[int]]) -> dict[int, list[int]]:
    preds: dict[int, list[int]] = {addr: [] for addr in succs}
    for src in sorted(succs):
        for dst in succs[src]:
            preds[dst].append(src)
    return preds


def reverse_postorder(entry: int, succs: dict[int, list[int]]) -> list[int]:
    """Iterative DFS from ``entry``; successors visited by ascending address."""
    visited = {entry}
    postorder: list[int] = []
    stack: list[tuple[int, int]] = [(entry, 0)]
    while stack:
        node, index = stack[-1]
        children = succs.get(node, [])
        if index < len(children):
            stack[-1] = (node, index + 1)
            child = children[index]
            if child not in visited:
                visited.add(child)
                stack.append((child, 0))
        else:
            stack.pop()
            postorder.append(node)
    postorder.reverse()
    return postorder


def immediate_dominators(entry: int, succs: dict[int, list[int]]) -> dict[int, int]:
    """Map every block reachable from ``entry`` to its immediate dominator.

    The entry maps to itself. Unreachable blocks are absent.
    """
    rpo = reverse_postorder(entry, succs)
    order = {node: i for i, node in enumerate(rpo)}
    preds = _predecessor_map(succs)

    idom: dict[int, int] = {entry: entry}

    def intersect(a: int, b: int) -> int:
        while a != b:
            while order[a] > order[b]:
                a = idom[a]
            while order[b] > order[a]:
                b = idom[b]
        return a

    changed = True
    while changed:
        changed = False
        for node in rpo[1:]:
            processed = [p for p in preds[node] if p in idom]
            if not processed:
                continue
            new_idom = processed[0]
            for pred in processed[1:]:
                new_idom = intersect(pred, new_idom)
            if idom.get(node) != new_idom:
                idom[node] = new_idom
                changed = True
    return idom


def dominator_depths(entry: int, idom: dict[int, int], rpo: list[int]) -> dict[int, int]:
    depth = {entry: 0}
    for node in rpo:
        if node != entry:
            depth[node] = depth[idom[node]] + 1
    return depth


def dominates(a: int, b: int, idom: dict[int, int]) -> bool:
    """True if block ``a`` dominates block ``b`` (both must be reachable)."""
    if a not in idom or b not in idom:
        return False
    node = b
    while True:
        if node == a:
            return True
        parent = idom[node]
        if parent == node:
            return False
        node = parent


def natural_loops(back_edges: list[tuple[int, int]], preds: dict[int, list[int]]) -> dict[int, set[int]]:
    """Loop header -> body, merging loops that share a header."""
    loops: dict[int, set[int]] = defaultdict(set)
    for source, header in back_edges:
        body = {header, source}
        stack = [source] if source != header else []
        while stack:
            node = stack.pop()
            for pred in preds[node]:
                if pred not in body:
                    body.add(pred)
                    stack.append(pred)
        loops[header] |= body
    return dict(loops)


def _scc_count(succs: dict[int, list[int]]) -> int:
    graph = nx.DiGraph()
    graph.add_nodes_from(succs)
    graph.add_edges_from((src, dst) for src, dsts in succs.items() for dst in dsts)
    return sum(
        1
        for component in nx.strongly_connected_components(graph)
        if len(component) > 1 or any(graph.has_edge(n, n) for n in component)
    )


def empty_cfg_metrics() -> CFGMetrics:
    """Zero-valued metrics for functions without usable CFG data."""
    graph_level: dict[str, Any] = {
        "num_basic_blocks": 0,
        "num_edges": 0,
        "cyclomatic_complexity": 0,
        "loop_count": 0,
        "loop_depth": 0,
        "num_back_edges": 0,
        **{f"num_{kind}_edges": 0 for kind in EDGE_KINDS},
        "num_exit_blocks": 0,
        "num_unreachable_blocks": 0,
        "strongly_connected_components": 0,
        "average_block_size": 0.0,
        "branch_density": 0.0,
        "entry_block": None,
        "immediate_dominators": {},
    }
    return CFGMetrics(graph_level=graph_level)


def analyze_cfg(function: FunctionArtifact, precision: int = 6) -> CFGMetrics:
    """Compute graph-, node- and edge-level metrics for one function."""
    entry = entry_block(function)
    if entry is None:
        return empty_cfg_metrics()

    succs = _successor_map(function)
    preds = _predecessor_map(succs)
    rpo = reverse_postorder(entry, succs)
    idom = immediate_dominators(entry, succs)
    depth = dominator_depths(entry, idom, rpo)

    back_flags = [
        edge.source in idom and dominates(edge.target, edge.source, idom) for edge in function.edges
    ]
    back_edges = sorted(
        {(edge.source, edge.target) for edge, is_back in zip(function.edges, back_flags) if is_back}
    )
    reachable_preds = {node: [p for p in ps if p in idom] for node, ps in preds.items()}
    loops = natural_loops(back_edges, reachable_preds)
    loop_membership = {
        block.start: sum(1 for body in loops.values() if block.start in body) for block in function.blocks
    }

    in_degree: dict[int, int] = defaultdict(int)
    out_degree: dict[int, int] = defaultdict(int)
    kind_counts = {kind: 0 for kind in EDGE_KINDS}
    for edge in function.edges:
        out_degree[edge.source] += 1
        in_degree[edge.target] += 1
        kind_counts[edge.kind] += 1

    node_level = [
        {
            "address": format_address(block.start),
            "in_degree": in_degree[block.start],
            "out_degree": out_degree[block.start],
            "instruction_count": len(block.instructions),
            "byte_size": block.byte_size,
            "dominator_depth": depth.get(block.start, UNREACHABLE_DEPTH),
            "loop_depth": loop_membership[block.start],
        }
        for block in function.blocks
    ]
    edge_level = [
        {
            "source": format_address(edge.source),
            "target": format_address(edge.target),
            "kind": edge.kind,
            "is_back_edge": is_back,
        }
        for edge, is_back in zip(function.edges, back_flags)
    ]

    num_blocks = len(function.blocks)
    num_edges = len(function.edges)
    graph_level: dict[str, Any] = {
        "num_basic_blocks": num_blocks,
        "num_edges": num_edges,
        "cyclomatic_complexity": max(1, num_edges - num_blocks + 2),
        "loop_count": len(loops),
        "loop_depth": max(loop_membership.values(), default=0),
        "num_back_edges": len(back_edges),
        **{f"num_{kind}_edges": count for kind, count in kind_counts.items()},
        "num_exit_blocks": sum(1 for block in function.blocks if out_degree[block.start] == 0),
        "num_unreachable_blocks": num_blocks - len(idom),
        "strongly_connected_components": _scc_count(succs),
        "average_block_size": round(len(function.instructions) / num_blocks, precision),
        "branch_density": round(kind_counts["conditional"] / num_blocks, precision),
        "entry_block": format_address(entry),
        "immediate_dominators": {
            format_address(node): format_address(idom[node]) for node in sorted(idom)
        },
    }

    if graph_level["num_unreachable_blocks"]:
        log.debug(
            "unreachable_blocks",
            function=function.name,
            count=graph_level["num_unreachable_blocks"],
        )
    return CFGMetrics(graph_level=graph_level, node_level=node_level, edge_level=edge_level)
