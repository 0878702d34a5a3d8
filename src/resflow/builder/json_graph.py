"""
json_graph.py

Workflow document serialization for resflow graphs.

A workflow document is the persisted form of the editor graph:

    {
      "nodes": [{"id", "type": "toolNode", "position": {"x", "y"},
                 "data": {"id", "label", "toolType", "config", "status"}}],
      "edges": [{"id", "source", "target"}],
      "savedAt": "<ISO timestamp>"
    }

Execution state is never persisted: statuses are written as ``pending`` and
outputs and session ids are dropped. Loading validates the whole document
(schema, tool types, duplicate ids, dangling edges) before returning
anything, so a rejected document never reaches the caller's graph.

File writes are atomic (temp file in the target directory, then move).
"""

import datetime
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from resflow.builder.constants import TOOL_NODE_TYPE, NodeStatus, ToolType
from resflow.builder.types import Edge, GraphSnapshot, Node, Position, config_for
from resflow.exceptions import SerializationError, WorkflowDocumentError
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

# --- Document Schema ---


class _DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeData(_DocumentModel):
    id: str
    label: str = ""
    tool_type: ToolType
    config: Dict[str, Any] = Field(default_factory=dict)
    status: NodeStatus = NodeStatus.PENDING


class DocumentNode(_DocumentModel):
    id: str
    type: str = TOOL_NODE_TYPE
    position: Position = Field(default_factory=Position)
    data: NodeData


class DocumentEdge(_DocumentModel):
    id: str
    source: str
    target: str


class WorkflowDocument(_DocumentModel):
    nodes: List[DocumentNode]
    edges: List[DocumentEdge]
    saved_at: Optional[str] = None


# --- Graph -> Document ---


def snapshot_to_document(snapshot: GraphSnapshot, saved_at: Optional[str] = None) -> Dict[str, Any]:
    """Build the persisted document for ``snapshot``."""
    nodes = [
        DocumentNode(
            id=node.id,
            position=node.position,
            data=NodeData(
                id=node.id,
                label=node.label,
                tool_type=node.tool_type,
                config=node.config.to_payload(),
                status=NodeStatus.PENDING,
            ),
        )
        for node in snapshot.nodes
    ]
    edges = [DocumentEdge(id=edge.id, source=edge.source, target=edge.target) for edge in snapshot.edges]
    document = WorkflowDocument(
        nodes=nodes,
        edges=edges,
        saved_at=saved_at or datetime.datetime.now(datetime.timezone.utc).isoformat(),
    )
    return document.model_dump(mode="json", by_alias=True)


# --- Document -> Graph ---


def document_to_graph(data: Any) -> Tuple[List[Node], List[Edge]]:
    """
    Validate a document and convert it into nodes and edges.

    Raises:
        WorkflowDocumentError: If the document is malformed, references an
            unknown tool type, repeats an id or has an edge to a missing node.
    """
    if not isinstance(data, dict):
        raise WorkflowDocumentError("Workflow document must be a JSON object.")
    for key in ("nodes", "edges"):
        if key not in data:
            raise WorkflowDocumentError(f"Missing required key '{key}' in workflow document.")
    try:
        document = WorkflowDocument.model_validate(data)
    except PydanticValidationError as e:
        raise WorkflowDocumentError(
            f"Invalid workflow document: {e.error_count()} validation error(s)",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    nodes: List[Node] = []
    seen = set()
    for entry in document.nodes:
        if entry.id in seen:
            raise WorkflowDocumentError(f"Duplicate node id '{entry.id}'", details={"node_id": entry.id})
        seen.add(entry.id)
        try:
            config = config_for(entry.data.tool_type, entry.data.config)
        except PydanticValidationError as e:
            raise WorkflowDocumentError(
                f"Invalid config for node '{entry.id}'",
                details={"node_id": entry.id, "errors": e.errors(include_url=False, include_context=False)},
            ) from e
        nodes.append(Node(
            id=entry.id,
            tool_type=entry.data.tool_type,
            label=entry.data.label or entry.data.tool_type.value,
            config=config,
            position=entry.position,
        ))

    edges: List[Edge] = []
    edge_ids = set()
    for entry in document.edges:
        if entry.id in edge_ids:
            raise WorkflowDocumentError(f"Duplicate edge id '{entry.id}'", details={"edge_id": entry.id})
        edge_ids.add(entry.id)
        for endpoint in (entry.source, entry.target):
            if endpoint not in seen:
                raise WorkflowDocumentError(
                    f"Edge '{entry.id}' references missing node '{endpoint}'",
                    details={"edge_id": entry.id, "node_id": endpoint},
                )
        edges.append(Edge(id=entry.id, source=entry.source, target=entry.target))
    return nodes, edges


# --- Text and File I/O ---


def serialize_document(document: Dict[str, Any]) -> str:
    try:
        return json.dumps(document, indent=2)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize workflow document: {e}") from e


def deserialize_document(text: str) -> Tuple[List[Node], List[Edge]]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise WorkflowDocumentError(f"Invalid JSON: {e}") from e
    return document_to_graph(data)


def save_document_to_file(document: Dict[str, Any], file_path: Union[str, os.PathLike]) -> None:
    """
    Atomically write a workflow document to ``file_path``.

    Raises:
        SerializationError: If the document cannot be encoded or written.
    """
    payload = serialize_document(document)
    file_path = os.fspath(file_path)
    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)
    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile("w", dir=directory, delete=False, encoding="utf-8", suffix=".tmp") as tmp:
            tmp.write(payload)
            tmp_name = tmp.name
        shutil.move(tmp_name, file_path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise SerializationError(f"Failed to write workflow document to {file_path}: {e}") from e
    logger.debug("saved workflow document to %s", file_path)


def load_document_from_file(file_path: Union[str, os.PathLike]) -> Tuple[List[Node], List[Edge]]:
    """
    Read and validate a workflow document.

    Raises:
        SerializationError: If the file cannot be read.
        WorkflowDocumentError: If its contents are not a valid document.
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise SerializationError(f"Failed to read workflow document from {file_path}: {e}") from e
    return deserialize_document(text)
