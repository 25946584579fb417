"""
Graph Evaluator

Evaluates the const / expr / pmf nodes of a model over its time grid.

Node kinds:
    const : inline ``values`` (NaN-padded or truncated to the bin count),
            or a ``file:`` source read through the CSV reader
    pmf   : constant series at the distribution's expected value
    expr  : arithmetic over other nodes, parsed with ``ast``

Expression language:
    + - * /, unary minus, numeric literals, node references,
    MIN(a, b), MAX(a, b), SHIFT(x, k), CLAMP(x, lo, hi)

Nodes are evaluated in dependency order (networkx topological sort);
cycles raise ModelParseError. Division by zero yields NaN.

Usage:
    evaluator = GraphEvaluator(model, model_directory)
    series = evaluator.evaluate()       # {node_id: numpy.ndarray}
"""

from __future__ import annotations

import ast
import logging
import math
from typing import Dict, List, Optional, Set, Union

import networkx as nx
import numpy as np

from flowstate.core.exceptions import ModelParseError
from flowstate.datasources.csv_reader import read_time_series
from flowstate.datasources.uri_resolver import is_file_uri, resolve_file_path
from .model_parser import ModelDefinition, NodeDefinition

logger = logging.getLogger(__name__)

PMF_TOLERANCE = 1e-6

_FUNCTIONS = {"MIN": 2, "MAX": 2, "SHIFT": 2, "CLAMP": 3}

Operand = Union[np.ndarray, float]


# ---------------------------------------------------------------------------
# Expression parsing (pure functions)
# ---------------------------------------------------------------------------

def parse_expression(text: str, node_id: str) -> ast.Expression:
    """Parse and validate an expression; raises ModelParseError."""
    if not text or not str(text).strip():
        raise ModelParseError(f"Node {node_id}: expr node requires an expression")
    try:
        tree = ast.parse(str(text).strip(), mode="eval")
    except SyntaxError as e:
        raise ModelParseError(f"Node {node_id}: invalid expression '{text}': {e.msg}")
    _validate(tree.body, node_id)
    return tree


def expression_references(tree: ast.Expression) -> Set[str]:
    """Node ids referenced by an expression (function names excluded)."""
    called = {
        n.func.id for n in ast.walk(tree)
        if isinstance(n, ast.Call) and isinstance(n.func, ast.Name)
    }
    return {
        n.id for n in ast.walk(tree)
        if isinstance(n, ast.Name) and n.id not in called
    }


def _validate(node: ast.AST, node_id: str) -> None:
    if isinstance(node, ast.BinOp):
        if not isinstance(node.op, (ast.Add, ast.Sub, ast.Mult, ast.Div)):
            raise ModelParseError(f"Node {node_id}: unsupported operator {type(node.op).__name__}")
        _validate(node.left, node_id)
        _validate(node.right, node_id)
    elif isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, (ast.USub, ast.UAdd)):
            raise ModelParseError(f"Node {node_id}: unsupported operator {type(node.op).__name__}")
        _validate(node.operand, node_id)
    elif isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
            raise ModelParseError(f"Node {node_id}: unsupported function in expression")
        name = node.func.id
        if node.keywords or len(node.args) != _FUNCTIONS[name]:
            raise ModelParseError(f"Node {node_id}: {name} expects {_FUNCTIONS[name]} arguments")
        if name == "SHIFT" and not _is_int_literal(node.args[1]):
            raise ModelParseError(f"Node {node_id}: SHIFT lag must be a non-negative integer")
        for arg in node.args:
            _validate(arg, node_id)
    elif isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise ModelParseError(f"Node {node_id}: unsupported literal {node.value!r}")
    elif not isinstance(node, ast.Name):
        raise ModelParseError(f"Node {node_id}: unsupported syntax {type(node).__name__}")


def _is_int_literal(node: ast.AST) -> bool:
    return (
        isinstance(node, ast.Constant)
        and isinstance(node.value, int)
        and not isinstance(node.value, bool)
        and node.value >= 0
    )


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class GraphEvaluator:
    """
    Evaluates every model node over the grid.

    Only the ``nodes`` section of the model is evaluated; topology nodes
    reference these results by id.
    """

    def __init__(self, model: ModelDefinition, model_directory: Optional[str] = None):
        if model.grid is None:
            raise ModelParseError("Model must have a grid definition")
        self.model = model
        self.model_directory = model_directory
        self.bins = model.grid.bins

    def evaluate(self) -> Dict[str, np.ndarray]:
        definitions = {}
        expressions: Dict[str, ast.Expression] = {}
        G = nx.DiGraph()

        for definition in self.model.nodes:
            if definition.id in definitions:
                raise ModelParseError(f"Duplicate node id '{definition.id}'")
            definitions[definition.id] = definition
            G.add_node(definition.id)

        for definition in self.model.nodes:
            if definition.kind != "expr":
                continue
            tree = parse_expression(definition.expr, definition.id)
            expressions[definition.id] = tree
            for ref in expression_references(tree):
                if ref not in definitions:
                    raise ModelParseError(f"Node {definition.id}: unknown reference '{ref}'")
                G.add_edge(ref, definition.id)

        try:
            order: List[str] = list(nx.topological_sort(G))
        except nx.NetworkXUnfeasible:
            cycle = nx.find_cycle(G)
            raise ModelParseError(
                f"Model contains a cycle: {' -> '.join(u for u, _ in cycle)}"
            )

        results: Dict[str, np.ndarray] = {}
        for node_id in order:
            definition = definitions[node_id]
            if definition.kind == "const":
                results[node_id] = self._evaluate_const(definition)
            elif definition.kind == "pmf":
                results[node_id] = self._evaluate_pmf(definition)
            elif definition.kind == "expr":
                results[node_id] = self._as_series(
                    self._eval(expressions[node_id].body, results, node_id)
                )
            else:
                raise ModelParseError(f"Node {node_id}: unknown node kind '{definition.kind}'")

        logger.debug(f"Evaluated {len(results)} model nodes over {self.bins} bins")
        return results

    # ------------------------------------------------------------------
    # Node kinds
    # ------------------------------------------------------------------

    def _evaluate_const(self, definition: NodeDefinition) -> np.ndarray:
        if definition.values is not None:
            return pad_series(definition.values, self.bins)
        if definition.source and is_file_uri(definition.source):
            path = resolve_file_path(definition.source, self.model_directory)
            return np.asarray(read_time_series(path, self.bins), dtype=float)
        raise ModelParseError(f"Node {definition.id}: const node requires values or a file: source")

    def _evaluate_pmf(self, definition: NodeDefinition) -> np.ndarray:
        if not definition.pmf:
            raise ModelParseError(f"Node {definition.id}: pmf node requires a distribution")
        total = sum(definition.pmf.values())
        if abs(total - 1.0) > PMF_TOLERANCE:
            raise ModelParseError(
                f"Node {definition.id}: PMF probabilities must sum to 1 (got {total:.6f})"
            )
        expected = sum(value * p for value, p in definition.pmf.items())
        return np.full(self.bins, expected, dtype=float)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _eval(self, node: ast.AST, results: Dict[str, np.ndarray], node_id: str) -> Operand:
        if isinstance(node, ast.Constant):
            return float(node.value)
        if isinstance(node, ast.Name):
            return results[node.id]
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand, results, node_id)
            return -operand if isinstance(node.op, ast.USub) else operand
        if isinstance(node, ast.BinOp):
            left = self._eval(node.left, results, node_id)
            right = self._eval(node.right, results, node_id)
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            return _divide(left, right)

        name = node.func.id
        args = node.args
        if name == "SHIFT":
            return self._shift(self._eval(args[0], results, node_id), args[1].value)
        values = [self._eval(arg, results, node_id) for arg in args]
        if name == "MIN":
            return np.minimum(values[0], values[1])
        if name == "MAX":
            return np.maximum(values[0], values[1])
        return np.minimum(np.maximum(values[0], values[1]), values[2])

    def _shift(self, operand: Operand, lag: int) -> np.ndarray:
        series = self._as_series(operand)
        if lag == 0:
            return series
        shifted = np.zeros(self.bins, dtype=float)
        if lag < self.bins:
            shifted[lag:] = series[: self.bins - lag]
        return shifted

    def _as_series(self, operand: Operand) -> np.ndarray:
        return np.broadcast_to(np.asarray(operand, dtype=float), (self.bins,)).copy()


def _divide(left: Operand, right: Operand) -> Operand:
    with np.errstate(divide="ignore", invalid="ignore"):
        quotient = np.divide(left, right)
        return np.where(np.asarray(right) == 0, np.nan, quotient)


def pad_series(values: List[float], bins: int) -> np.ndarray:
    """Values truncated or NaN-padded to ``bins``."""
    series = np.full(bins, math.nan, dtype=float)
    count = min(len(values), bins)
    if count:
        series[:count] = np.asarray(values[:count], dtype=float)
    return series
