"""
Semantic Loader

Loads the ``file:``-backed series a topology node references. Node-id
references are left unresolved (None); the run context loader fills them
from the run's recorded series.
"""

from __future__ import annotations
import logging
import re
from typing import List, Optional

from flowstate.core.models import Node, NodeData
from .csv_reader import read_time_series
from .uri_resolver import is_file_uri, resolve_file_path

logger = logging.getLogger(__name__)

_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


class SemanticLoader:
    """
    Reads per-node series from ``file:`` references relative to a model directory.

    Example:
        >>> loader = SemanticLoader("/runs/run_1/model")
        >>> data = loader.load_node_data(node, bins=12)
    """

    def __init__(self, model_directory: Optional[str]):
        self.model_directory = model_directory

    def load_node_data(self, node: Node, bins: int) -> NodeData:
        """
        Raises:
            FileNotFoundError: a referenced CSV file does not exist.
            ValueError: a reference uses an unsupported URI scheme.
        """
        if bins <= 0:
            raise ValueError(f"bins must be positive (got {bins})")

        data = NodeData(node_id=node.id)
        for attr, _label, ref in node.semantics.references():
            setattr(data, attr, self._load_series(ref, bins))

        if node.semantics.retry_kernel is not None:
            data.retry_kernel = list(node.semantics.retry_kernel)

        return data

    def _load_series(self, ref: str, bins: int) -> Optional[List[float]]:
        if is_file_uri(ref):
            path = resolve_file_path(ref, self.model_directory)
            logger.debug(f"Reading series {ref} from {path}")
            return read_time_series(path, bins)

        if _SCHEME_PATTERN.match(ref):
            raise ValueError(f"Unsupported URI scheme for '{ref}'. Only file: URIs are supported.")

        return None
