"""
Series data sources: CSV files and ``file:`` references.
"""
from .csv_reader import read_time_series
from .uri_resolver import is_file_uri, resolve_file_path
from .semantic_loader import SemanticLoader

__all__ = [
    "read_time_series",
    "is_file_uri",
    "resolve_file_path",
    "SemanticLoader",
]
