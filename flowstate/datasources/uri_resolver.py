"""
Resolve ``file:`` series references to filesystem paths.
"""

from __future__ import annotations
import os
from typing import Optional

FILE_SCHEME = "file:"


def is_file_uri(uri: Optional[str]) -> bool:
    return bool(uri) and uri.strip().lower().startswith(FILE_SCHEME)


def resolve_file_path(uri: str, model_directory: Optional[str]) -> str:
    """
    Resolve a ``file:`` URI. Relative paths resolve against the model directory;
    ``file://`` and ``file:`` prefixes are both accepted.
    """
    if not uri or not uri.strip():
        raise ValueError("URI must be provided")

    uri = uri.strip()
    if not is_file_uri(uri):
        raise ValueError(f"Unsupported URI scheme for '{uri}'. Only file: URIs are supported.")

    path = uri[len(FILE_SCHEME):]
    if path.startswith("//"):
        path = path[2:]

    if os.path.isabs(path):
        return path

    if not model_directory:
        raise ValueError("Relative file URIs require a model directory for resolution.")

    return os.path.normpath(os.path.join(model_directory, path))
