"""
Core Value Objects, Numeric Policy and Error Taxonomy
"""
from .models import (
    NodeKind,
    NodeSemantics,
    Node,
    Edge,
    Topology,
    Window,
    NodeData,
    SEMANTIC_FIELDS,
    RETRY_DEPENDENCY_FIELDS,
    split_node_ref,
)
from .numeric import (
    EPSILON,
    normalize,
    normalize_series,
    value_at,
    is_finite,
    has_finite_samples,
)
from .exceptions import (
    StateQueryError,
    InvalidRequestError,
    NotFoundError,
    ConflictError,
    PreconditionFailedError,
    PayloadTooLargeError,
    UnprocessableEntityError,
    InternalError,
    ModelParseError,
    CsvFormatError,
    ManifestMetadataError,
)

__all__ = [
    "NodeKind",
    "NodeSemantics",
    "Node",
    "Edge",
    "Topology",
    "Window",
    "NodeData",
    "SEMANTIC_FIELDS",
    "RETRY_DEPENDENCY_FIELDS",
    "split_node_ref",
    "EPSILON",
    "normalize",
    "normalize_series",
    "value_at",
    "is_finite",
    "has_finite_samples",
    "StateQueryError",
    "InvalidRequestError",
    "NotFoundError",
    "ConflictError",
    "PreconditionFailedError",
    "PayloadTooLargeError",
    "UnprocessableEntityError",
    "InternalError",
    "ModelParseError",
    "CsvFormatError",
    "ManifestMetadataError",
]
