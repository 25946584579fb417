"""
Model documents: YAML parsing and const/expr/pmf evaluation.
"""
from .model_parser import (
    GridDefinition,
    NodeDefinition,
    ModelDefinition,
    ModelMetadata,
    parse_model,
    parse_metadata,
    parse_topology,
)
from .evaluator import GraphEvaluator, pad_series

__all__ = [
    "GridDefinition",
    "NodeDefinition",
    "ModelDefinition",
    "ModelMetadata",
    "parse_model",
    "parse_metadata",
    "parse_topology",
    "GraphEvaluator",
    "pad_series",
]
