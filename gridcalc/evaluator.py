"""Formula interpreter and table evaluation pipeline.

Formulas are evaluated bottom-up over their syntax trees into typed values;
no formula text is ever compiled or executed as Python.
"""

from __future__ import annotations

import logging
import math
import operator
from typing import Callable, Dict, Optional

from gridcalc.formula import (
    DivisionByZeroError,
    ErrorCode,
    FormulaError,
    InvalidRefError,
    Node,
    NodeKind,
    UnsupportedNameError,
    ValueTypeError,
)
from gridcalc.graph import DependencyGraph, GridBounds, build_graph
from gridcalc.models import Cell, TableData
from gridcalc.values import ZERO, Value

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Value]


# ── Operators ─────────────────────────────────────────────────────

def _arithmetic(op: Callable[[float, float], float]):
    def _apply(left: Value, right: Value) -> Value:
        return Value.number(op(left.as_number(), right.as_number()))
    return _apply


def _ordering(op: Callable[[float, float], bool]):
    def _apply(left: Value, right: Value) -> Value:
        return Value.boolean(op(left.as_number(), right.as_number()))
    return _apply


def _divide(left: Value, right: Value) -> Value:
    divisor = right.as_number()
    if divisor == 0:
        raise DivisionByZeroError("Division by zero")
    return Value.number(left.as_number() / divisor)


def _power(left: Value, right: Value) -> Value:
    base, exponent = left.as_number(), right.as_number()
    if base == 0 and exponent < 0:
        raise DivisionByZeroError("Zero raised to a negative power")
    try:
        return Value.number(math.pow(base, exponent))
    except (OverflowError, ValueError) as e:
        raise ValueTypeError(f"Cannot raise {base} to {exponent}: {e}") from e


def _concat(left: Value, right: Value) -> Value:
    return Value.text(left.as_text() + right.as_text())


_BINARY: Dict[NodeKind, Callable[[Value, Value], Value]] = {
    NodeKind.PLUSOP: _arithmetic(operator.add),
    NodeKind.MINOP: _arithmetic(operator.sub),
    NodeKind.MULOP: _arithmetic(operator.mul),
    NodeKind.DIVOP: _divide,
    NodeKind.EXPOP: _power,
    NodeKind.CONCATOP: _concat,
    NodeKind.EQOP: lambda left, right: Value.boolean(left.equals(right)),
    NodeKind.NEQOP: lambda left, right: Value.boolean(not left.equals(right)),
    NodeKind.GTOP: _ordering(operator.gt),
    NodeKind.LTOP: _ordering(operator.lt),
    NodeKind.GTEOP: _ordering(operator.ge),
    NodeKind.LTEOP: _ordering(operator.le),
}


# ── Node handlers ─────────────────────────────────────────────────

def _eval_program(node: Node, lookup: Lookup) -> Value:
    # children[0] is the leading '=' marker
    return _interpret(node.children[1], lookup)


def _eval_group(node: Node, lookup: Lookup) -> Value:
    return _interpret(node.children[1], lookup)


def _eval_number(node: Node, lookup: Lookup) -> Value:
    return Value.number(float(node.text))


def _eval_bool(node: Node, lookup: Lookup) -> Value:
    return Value.boolean(node.text.upper() == 'TRUE')


def _eval_text(node: Node, lookup: Lookup) -> Value:
    return Value.text(node.text[1:-1].replace('""', '"'))


def _eval_name(node: Node, lookup: Lookup) -> Value:
    raise UnsupportedNameError(f"Unsupported name: {node.text}")


def _eval_cell(node: Node, lookup: Lookup) -> Value:
    return lookup(node.text.upper())


def _eval_percent(node: Node, lookup: Lookup) -> Value:
    return Value.number(_interpret(node.children[0], lookup).as_number() * 0.01)


def _eval_binary(node: Node, lookup: Lookup) -> Value:
    # fold the left spine in a loop; chains like 1+2+...+n are left-deep
    spine = []
    while node.kind in _BINARY and len(node.children) == 2:
        spine.append(node)
        node = node.children[0]
    if not spine:
        # a childless Eqop is the program marker and never evaluated directly
        raise RuntimeError(f"{node.kind.value} node at {node.start} has no operands")
    result = _interpret(node, lookup)
    for op_node in reversed(spine):
        right = _interpret(op_node.children[1], lookup)
        result = _BINARY[op_node.kind](result, right)
    return result


def _eval_marker(node: Node, lookup: Lookup) -> Value:
    raise RuntimeError(f"{node.kind.value} node at {node.start} is not evaluable")


_HANDLERS: Dict[NodeKind, Callable[[Node, Lookup], Value]] = {
    NodeKind.PROGRAM: _eval_program,
    NodeKind.GROUP: _eval_group,
    NodeKind.NUMBER: _eval_number,
    NodeKind.BOOL_TOKEN: _eval_bool,
    NodeKind.TEXT_TOKEN: _eval_text,
    NodeKind.NAME_TOKEN: _eval_name,
    NodeKind.CELL_TOKEN: _eval_cell,
    NodeKind.PERCENTOP: _eval_percent,
    NodeKind.OPEN_PAREN: _eval_marker,
    NodeKind.CLOSE_PAREN: _eval_marker,
    **{kind: _eval_binary for kind in _BINARY},
}


def _interpret(node: Node, lookup: Lookup) -> Value:
    return _HANDLERS[node.kind](node, lookup)


def evaluate_formula(tree: Node, lookup: Lookup) -> Value:
    """Evaluate a parsed formula. Formula errors come back as error values."""
    try:
        return _interpret(tree, lookup)
    except FormulaError as e:
        return Value.error(e.code)


# ── Graph evaluation ──────────────────────────────────────────────

def _read_cell(graph: DependencyGraph, key: str) -> Value:
    """Value of an already-evaluated cell as seen by formulas that reference it.

    Absent, blank and errored cells all read as zero.
    """
    node = graph.nodes.get(key)
    if node is None:
        raise InvalidRefError(f"Unknown cell: {key}")
    if node.error is not None:
        return ZERO
    if node.result is not None:
        return node.result
    if node.cell is None or node.is_formula:
        return ZERO
    return Value.from_literal(node.cell.value) or ZERO


def evaluate_graph(graph: DependencyGraph) -> int:
    """Evaluate every formula node in topological order.

    Nodes already flagged by the builder are skipped. Returns the number of
    formula cells that ended with an error.
    """
    errors = 0

    def lookup(ref: str) -> Value:
        return _read_cell(graph, ref)

    for key in graph.topological_order():
        node = graph.nodes[key]
        if not node.is_formula:
            continue
        if node.tree is None or node.error is not None:
            errors += 1
            continue
        result = evaluate_formula(node.tree, lookup)
        if result.is_error:
            node.error = result.data
            node.result = None
            errors += 1
            logger.debug("Cell %s: %s evaluates to %s", key, node.cell.formula, result.data.value)
        else:
            node.result = result
            node.error = None
    return errors


def from_graph(graph: DependencyGraph, table: TableData) -> TableData:
    """Copy evaluated results back into a table of the same shape.

    Only keys present in *table* are written, under their original spelling;
    literal cells are returned as-is.
    """
    data: Dict[str, Cell] = {}
    for key, cell in table.data.items():
        node = graph.nodes[key.upper()]
        if not cell.formula:
            data[key] = cell
        elif node.cell is not cell:
            # shadowed by an earlier key with different case
            data[key] = Cell(value=None, formula=cell.formula, error=ErrorCode.REF.value)
        elif node.error is not None:
            data[key] = Cell(value=None, formula=cell.formula, error=node.error.value)
        else:
            data[key] = Cell(value=node.result.as_text(), formula=cell.formula, error=None)
    return TableData(rows=table.rows, columns=table.columns, data=data)


def evaluate_table(
    table: TableData,
    *,
    max_depth: Optional[int] = None,
    debug_trees: bool = False,
) -> TableData:
    """Build, evaluate and flatten one table snapshot."""
    bounds = GridBounds.from_columns(table.columns.keys(), table.rows)
    graph = build_graph(table.data, bounds, max_depth=max_depth, debug_trees=debug_trees)
    errors = evaluate_graph(graph)
    formulas = sum(1 for cell in table.data.values() if cell.formula)
    logger.info("Evaluated %d cells (%d formulas, %d errors)", len(table.data), formulas, errors)
    return from_graph(graph, table)
