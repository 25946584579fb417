"""
Run Manifest Reader

Reads the canonical model artifacts of a run (model.yaml + metadata.json)
and extracts the metadata the state engine needs: mode, template identity,
schema, provenance hash and telemetry sources.
"""

from __future__ import annotations
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from flowstate.core.exceptions import ManifestMetadataError

logger = logging.getLogger(__name__)

_FILE_REF_PATTERN = re.compile(r"file:[^\s\"']+")

_TOPOLOGY_SOURCE_KEYS = (
    "arrivals", "served", "errors", "externalDemand", "queue", "queueDepth", "capacity",
)


@dataclass
class RunSchemaMetadata:
    id: str
    version: str
    hash: str


@dataclass
class RunStorageDescriptor:
    model_path: str
    metadata_path: Optional[str] = None
    provenance_path: Optional[str] = None


@dataclass
class RunManifestMetadata:
    template_id: str
    template_title: str
    template_version: str
    mode: str
    schema: RunSchemaMetadata
    provenance_hash: str
    storage: RunStorageDescriptor
    telemetry_sources: List[str] = field(default_factory=list)
    node_sources: Dict[str, str] = field(default_factory=dict)


class RunManifestReader:
    """Reads metadata for time-travel runs from a model directory."""

    def read(self, model_directory: str) -> RunManifestMetadata:
        """
        Raises:
            FileNotFoundError: the directory or its model document is missing.
            ManifestMetadataError: metadata.json is missing or incomplete.
        """
        if not model_directory or not model_directory.strip():
            raise ValueError("Model directory must be provided.")

        if not os.path.isdir(model_directory):
            raise FileNotFoundError(f"Model directory '{model_directory}' was not found.")

        model_path = _model_document_path(model_directory)

        metadata_path = os.path.join(model_directory, "metadata.json")
        if not os.path.isfile(metadata_path):
            raise ManifestMetadataError(f"metadata.json not found alongside model at '{model_directory}'.")

        with open(model_path, "r", encoding="utf-8") as f:
            yaml_content = f.read()
        model_doc = yaml.safe_load(yaml_content) or {}
        if not isinstance(model_doc, dict):
            raise ManifestMetadataError(f"Model document at '{model_path}' is not a mapping.")

        with open(metadata_path, "r", encoding="utf-8") as f:
            try:
                metadata_doc = json.load(f)
            except json.JSONDecodeError as e:
                raise ManifestMetadataError(f"metadata.json at '{metadata_path}' is empty or invalid: {e}")
        if not isinstance(metadata_doc, dict):
            raise ManifestMetadataError(f"metadata.json at '{metadata_path}' is empty or invalid.")

        model_metadata = model_doc.get("metadata") or {}
        provenance = model_doc.get("provenance") or {}

        provenance_hash = metadata_doc.get("modelHash") or _hash_file(model_path)

        schema_version = metadata_doc.get("schemaVersion") or model_doc.get("schemaVersion") or 0
        if int(schema_version) <= 0:
            raise ManifestMetadataError("Schema version must be present in metadata.json or model.yaml.")

        template_id = metadata_doc.get("templateId") or model_metadata.get("id")
        if not template_id:
            raise ManifestMetadataError("TemplateId missing from metadata.json and model.yaml metadata block.")

        mode = (
            metadata_doc.get("mode")
            or model_doc.get("mode")
            or provenance.get("mode")
            or "simulation"
        ).lower()

        telemetry_sources, node_sources = _extract_telemetry_sources(model_doc)
        for source in _FILE_REF_PATTERN.findall(yaml_content):
            if source not in telemetry_sources:
                telemetry_sources.append(source)

        provenance_path = os.path.join(model_directory, "provenance.json")

        return RunManifestMetadata(
            template_id=template_id,
            template_title=metadata_doc.get("templateTitle") or model_metadata.get("title") or template_id,
            template_version=metadata_doc.get("templateVersion") or model_metadata.get("version") or "0.0.0",
            mode=mode,
            schema=RunSchemaMetadata(
                id=f"time-travel/v{int(schema_version)}",
                version=str(int(schema_version)),
                hash=provenance_hash,
            ),
            provenance_hash=provenance_hash,
            telemetry_sources=telemetry_sources,
            node_sources=node_sources,
            storage=RunStorageDescriptor(
                model_path=model_path,
                metadata_path=metadata_path,
                provenance_path=provenance_path if os.path.isfile(provenance_path) else None,
            ),
        )


def _model_document_path(model_directory: str) -> str:
    for name in ("model.yaml", "spec.yaml"):
        candidate = os.path.join(model_directory, name)
        if os.path.isfile(candidate):
            return candidate
    raise FileNotFoundError(f"Canonical model.yaml is required for time-travel runs ({model_directory}).")


def _hash_file(path: str) -> str:
    sha = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha.update(chunk)
    return f"sha256:{sha.hexdigest()}"


def _extract_telemetry_sources(model_doc: Dict[str, Any]) -> Tuple[List[str], Dict[str, str]]:
    telemetry: List[str] = []
    node_sources: Dict[str, str] = {}

    def add(value: Any) -> None:
        if not isinstance(value, str):
            return
        trimmed = value.strip()
        if trimmed.lower().startswith("file:") and trimmed not in telemetry:
            telemetry.append(trimmed)

    for node in model_doc.get("nodes") or []:
        if not isinstance(node, dict):
            continue
        source = node.get("source")
        node_id = node.get("id")
        if isinstance(source, str) and source.strip().lower().startswith("file://") and node_id:
            node_sources[str(node_id)] = source.strip()
            add(source)

    topology = model_doc.get("topology") or {}
    for topo_node in topology.get("nodes") or []:
        semantics = (topo_node or {}).get("semantics") or {}
        for key in _TOPOLOGY_SOURCE_KEYS:
            add(semantics.get(key))

    return telemetry, node_sources
