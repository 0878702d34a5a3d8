"""
Centralized type definitions for the resflow workflow runtime.

This module provides the shared, strongly-typed structures for:
- Per-tool configuration variants (a tagged union keyed by ToolType)
- Nodes, edges and immutable graph snapshots
- Execution records produced by the scheduler

It is imported by the GraphStore, the Adapter Registry, the Scheduler, the
ClipboardManager, the document codec and the HTTP/CLI surfaces.

Config variants accept both the camelCase keys persisted in workflow
documents (``yearFrom``, ``reviewTopicScope``) and the snake_case field
names. Unknown keys are preserved so documents round-trip without loss.
"""

from typing import (
    Any,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypedDict,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, model_validator
from pydantic.alias_generators import to_camel
from typing_extensions import NotRequired

from resflow.builder.constants import NodeStatus, ToolType

# --- Core Type Aliases ---
NodeID = str
EdgeID = str
ExecutionID = str
YearValue = Union[int, str]


# --- Tool Configuration Variants ---

def _first_filled(*values: Optional[str]) -> str:
    """First value with non-whitespace content, returned verbatim."""
    for value in values:
        if value and value.strip():
            return value
    return ""


class ToolConfig(BaseModel):
    """Base for every per-tool configuration variant."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    model: Optional[str] = None

    def literal_input(self) -> str:
        """The literal input used when no predecessor output is available."""
        return ""

    def to_payload(self) -> Dict[str, Any]:
        """Config as persisted: camelCase keys, unset values omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SearchConfig(ToolConfig):
    query: Optional[str] = None
    prompt: Optional[str] = None
    limit: Optional[int] = None
    year_from: Optional[YearValue] = None
    year_to: Optional[YearValue] = None

    def literal_input(self) -> str:
        return _first_filled(self.query, self.prompt)


class ClaimExtractConfig(ToolConfig):
    prompt: Optional[str] = None

    def literal_input(self) -> str:
        return _first_filled(self.prompt)


class ContradictionCheckConfig(ToolConfig):
    prompt: Optional[str] = None

    def literal_input(self) -> str:
        return _first_filled(self.prompt)


class ReviewConfig(ToolConfig):
    topic: Optional[str] = Field(None, alias="reviewTopicScope")
    review_type: Optional[str] = None
    depth: Optional[str] = Field(None, alias="reviewDepthLength")
    tone: Optional[str] = Field(None, alias="reviewTone")
    year_from: Optional[YearValue] = None
    year_to: Optional[YearValue] = None

    def literal_input(self) -> str:
        return _first_filled(self.topic)


class ReferenceFormatConfig(ToolConfig):
    references_input: Optional[str] = None
    citation_style: Optional[str] = None

    def literal_input(self) -> str:
        return _first_filled(self.references_input)


class ExportConfig(ToolConfig):
    export_file_name: Optional[str] = None
    prompt: Optional[str] = None

    default_file_name: ClassVar[str] = "export.txt"

    def literal_input(self) -> str:
        return _first_filled(self.prompt)

    def file_name(self) -> str:
        return self.export_file_name or self.default_file_name


class ExportTextConfig(ExportConfig):
    default_file_name: ClassVar[str] = "export.txt"


class ExportDocumentConfig(ExportConfig):
    default_file_name: ClassVar[str] = "export.doc"


CONFIG_TYPES: Dict[ToolType, Type[ToolConfig]] = {
    ToolType.SEARCH: SearchConfig,
    ToolType.CLAIM_EXTRACT: ClaimExtractConfig,
    ToolType.CONTRADICTION_CHECK: ContradictionCheckConfig,
    ToolType.REVIEW: ReviewConfig,
    ToolType.REFERENCE_FORMAT: ReferenceFormatConfig,
    ToolType.EXPORT_TEXT: ExportTextConfig,
    ToolType.EXPORT_DOCUMENT: ExportDocumentConfig,
}


def _alias_keys(config_cls: Type[ToolConfig], data: Mapping[str, Any]) -> Dict[str, Any]:
    # Normalize field names to their aliases so merges never see both spellings.
    aliases = {
        name: (field.alias or name)
        for name, field in config_cls.model_fields.items()
    }
    return {aliases.get(key, key): value for key, value in data.items()}


def config_for(tool_type: ToolType, data: Union[Mapping[str, Any], ToolConfig, None] = None) -> ToolConfig:
    """Build the config variant for ``tool_type`` from a mapping or another config."""
    config_cls = CONFIG_TYPES[ToolType(tool_type)]
    if isinstance(data, config_cls):
        return data
    if isinstance(data, ToolConfig):
        data = data.to_payload()
    return config_cls.model_validate(_alias_keys(config_cls, data or {}))


def merge_config(tool_type: ToolType, config: ToolConfig, changes: Mapping[str, Any]) -> ToolConfig:
    """Return a new config with ``changes`` applied on top of ``config``."""
    config_cls = CONFIG_TYPES[ToolType(tool_type)]
    merged = {**config.to_payload(), **_alias_keys(config_cls, changes)}
    return config_cls.model_validate(merged)


# --- Nodes and Edges ---

class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0

    def shifted(self, dx: float, dy: float) -> "Position":
        return Position(x=self.x + dx, y=self.y + dy)


class Node(BaseModel):
    """A single tool instance in the workflow graph."""

    model_config = ConfigDict(frozen=True)

    id: NodeID
    tool_type: ToolType
    label: str = ""
    config: SerializeAsAny[ToolConfig]
    status: NodeStatus = NodeStatus.PENDING
    output: Optional[Any] = None
    session_id: Optional[str] = None
    position: Position = Field(default_factory=Position)

    @model_validator(mode="before")
    @classmethod
    def _coerce_config(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tool_type" in data:
            data = dict(data)
            tool_type = ToolType(data["tool_type"])
            data["config"] = config_for(tool_type, data.get("config"))
            if not data.get("label"):
                data["label"] = tool_type.value
        return data

    def with_changes(self, **changes: Any) -> "Node":
        return self.model_copy(update=changes)


class Edge(BaseModel):
    """A directed dependency: ``target`` consumes ``source``'s output."""

    model_config = ConfigDict(frozen=True)

    id: EdgeID
    source: NodeID
    target: NodeID


# --- Graph Snapshot ---

class GraphSnapshot(BaseModel):
    """
    Immutable view of the graph at one point in time.

    Produced by every GraphStore mutation and consumed by the scheduler,
    the clipboard and the document codec.
    """

    model_config = ConfigDict(frozen=True)

    nodes: Tuple[Node, ...] = ()
    edges: Tuple[Edge, ...] = ()
    version: int = 0

    def node(self, node_id: NodeID) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> List[NodeID]:
        return [node.id for node in self.nodes]

    def incoming(self, node_id: NodeID) -> List[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def outgoing(self, node_id: NodeID) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def predecessors(self, node_id: NodeID) -> List[Node]:
        """Predecessor nodes in edge-insertion order."""
        preds: List[Node] = []
        for edge in self.incoming(node_id):
            pred = self.node(edge.source)
            if pred is not None:
                preds.append(pred)
        return preds

    def children(self, node_id: NodeID) -> List[NodeID]:
        return [edge.target for edge in self.outgoing(node_id)]

    def in_degree(self, node_id: NodeID) -> int:
        return len(self.incoming(node_id))

    def is_empty(self) -> bool:
        return not self.nodes


# --- Execution Record ---

class WorkflowExecutionRecord(TypedDict):
    execution_id: ExecutionID
    start_time: str
    end_time: Optional[str]
    status: str  # 'running' | 'completed' | 'stopped'
    node_statuses: Dict[NodeID, str]
    errors: NotRequired[Dict[NodeID, str]]
