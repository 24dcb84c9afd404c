"""Dependency graph for grid cells.

An edge X -> Y means Y's formula reads X. Edges that would close a cycle are
never inserted, so the graph stays acyclic and always has a topological order.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from gridcalc.formula import (
    ErrorCode,
    FormulaError,
    InvalidRefError,
    Node,
    cell_tokens,
    dump_tree,
    parse_cell_key,
    parse_formula,
)
from gridcalc.models import Cell
from gridcalc.values import Value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridBounds:
    """Valid column identifiers plus a row count."""
    columns: frozenset[str]
    rows: int

    @classmethod
    def from_columns(cls, columns: Iterable[str], rows: int) -> GridBounds:
        return cls(frozenset(c.upper() for c in columns), rows)

    def contains(self, key: str) -> bool:
        try:
            col, row = parse_cell_key(key)
        except InvalidRefError:
            return False
        return col in self.columns and 1 <= row <= self.rows


@dataclass
class GraphNode:
    key: str
    cell: Optional[Cell] = None  # None for nodes synthesized from a reference
    tree: Optional[Node] = None
    error: Optional[ErrorCode] = None
    result: Optional[Value] = None

    @property
    def is_formula(self) -> bool:
        return self.cell is not None and bool(self.cell.formula)


class DependencyGraph:
    """Arena of nodes plus forward/reverse adjacency lists.

    dependents:   cell key -> keys whose formulas read it
    dependencies: cell key -> keys its formula reads
    """

    __slots__ = ("nodes", "dependents", "dependencies")

    def __init__(self) -> None:
        self.nodes: Dict[str, GraphNode] = {}
        self.dependents: Dict[str, List[str]] = {}
        self.dependencies: Dict[str, List[str]] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, key: str) -> bool:
        return key in self.nodes

    def ensure_node(self, key: str) -> GraphNode:
        node = self.nodes.get(key)
        if node is None:
            node = GraphNode(key)
            self.nodes[key] = node
            self.dependents[key] = []
            self.dependencies[key] = []
        return node

    def has_edge(self, source: str, target: str) -> bool:
        return target in self.dependents.get(source, ())

    def add_edge(self, source: str, target: str) -> None:
        if source not in self.nodes or target not in self.nodes:
            raise KeyError(f"Both endpoints must exist: {source} -> {target}")
        if self.has_edge(source, target):
            return
        self.dependents[source].append(target)
        self.dependencies[target].append(source)

    def find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Return [start, ..., goal] following dependents edges, or None (DFS)."""
        if start not in self.nodes or goal not in self.nodes:
            return None
        if start == goal:
            return [start]
        parents: Dict[str, str] = {}
        visited = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for nxt in self.dependents[current]:
                if nxt in visited:
                    continue
                parents[nxt] = current
                if nxt == goal:
                    path = [goal]
                    while path[-1] != start:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path
                visited.add(nxt)
                stack.append(nxt)
        return None

    def cycle_path(self, source: str, target: str) -> Optional[List[str]]:
        """Path target -> ... -> source that edge (source -> target) would close.

        A self-reference is a cycle of length one.
        """
        if source == target:
            return [target]
        return self.find_path(target, source)

    def will_create_cycle(self, source: str, target: str) -> bool:
        return self.cycle_path(source, target) is not None

    def topological_order(self) -> List[str]:
        """All node keys in dependency order (Kahn's algorithm).

        Ties are broken by node insertion order.
        """
        in_degree = {key: len(deps) for key, deps in self.dependencies.items()}
        queue = deque(key for key in self.nodes if in_degree[key] == 0)
        order: List[str] = []
        while queue:
            key = queue.popleft()
            order.append(key)
            for dep in self.dependents[key]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)
        if len(order) != len(self.nodes):
            stuck = [key for key in self.nodes if in_degree[key] > 0]
            raise RuntimeError(f"Dependency graph contains a cycle involving: {stuck}")
        return order


def build_graph(
    cells: Mapping[str, Cell],
    bounds: GridBounds,
    *,
    max_depth: Optional[int] = None,
    debug_trees: bool = False,
) -> DependencyGraph:
    """Parse every formula and wire up its references.

    Cell keys are upper-cased, so `a1` and `A1` name the same node. Cells whose formula cannot be parsed get #ERROR!; references that would
    close a cycle or fall outside *bounds* get #REF!. Nothing is evaluated.
    """
    graph = DependencyGraph()

    for raw_key, cell in cells.items():
        # node keys are upper-case, like the references that point at them
        key = raw_key.upper()
        node = graph.ensure_node(key)
        if node.cell is not None:
            logger.warning("Cell %s repeats key %s; keeping the first", raw_key, key)
            continue
        node.cell = cell
        if not cell.formula:
            continue

        try:
            node.tree = parse_formula(cell.formula, max_depth)
        except FormulaError as e:
            node.error = e.code
            logger.debug("Cell %s: cannot parse %r (%s)", key, cell.formula, e)
            continue
        if debug_trees:
            logger.debug("Syntax tree for %s:\n%s", key, dump_tree(node.tree, cell.formula))

        for token in cell_tokens(node.tree):
            ref = token.text.upper()
            path = graph.cycle_path(ref, key)
            if path is not None:
                # every formula on the loop is unevaluable
                for member in path:
                    graph.nodes[member].error = ErrorCode.REF
                logger.info("Cell %s: reference to %s would create a cycle (%s)",
                            key, ref, " -> ".join(path + [key]))
            elif bounds.contains(ref):
                graph.ensure_node(ref)
                graph.add_edge(ref, key)
            else:
                node.error = ErrorCode.REF
                logger.info("Cell %s: reference %s is outside the grid", key, ref)

    return graph
