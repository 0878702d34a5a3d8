"""
resflow Workflow Manager

The single owner of one editable, runnable workflow.

A WorkflowManager holds exactly one GraphStore and wires the components that
act on it: the Scheduler (runs), the ClipboardManager and CommandDispatcher
(editing) and a FileStorage slot for the last saved document. Callers (the
HTTP surface, the CLI, embedding applications) go through this facade rather
than sharing references to the graph.

Features:
- Node/edge editing with typed configs and cascade deletes.
- Preset workflows, clearing, and appending externally generated workflows.
- Workflow documents: export/load, a local storage slot, and files.
- Run control (run / start / wait / stop) and execution history.
"""

import json
import os
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from resflow.builder.adapters import AdapterRegistry
from resflow.builder.clipboard import ClipboardManager
from resflow.builder.commands import CommandDispatcher, EditCommand
from resflow.builder.constants import ToolType
from resflow.builder.graph_store import GraphStore, GraphUpdateCallback, new_tool_node
from resflow.builder.graph_validator import GraphValidator
from resflow.builder.json_graph import (
    document_to_graph,
    load_document_from_file,
    save_document_to_file,
    snapshot_to_document,
)
from resflow.builder.presets import get_preset
from resflow.builder.types import (
    Edge,
    EdgeID,
    ExecutionID,
    GraphSnapshot,
    Node,
    NodeID,
    Position,
    WorkflowExecutionRecord,
)
from resflow.exceptions import ConflictError, NotFoundError, SerializationError, ValidationError
from resflow.execution_engine.invoker import HttpToolInvoker, ToolInvoker
from resflow.execution_engine.scheduler import Scheduler, SchedulerCallback
from resflow.settings import Settings, get_settings
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

LOCAL_SLOT = "plaintextai_workflow"


# --- Persistent Storage ---

class FileStorage:
    """
    File-based key/value storage for workflow documents.
    Thread-safe, atomic writes.
    """

    def __init__(self, base_dir: str = "./.resflow_storage") -> None:
        self._base_dir = base_dir
        self._lock = threading.Lock()

    def _path(self, name: str) -> str:
        return os.path.join(self._base_dir, f"{name}.json")

    def save(self, name: str, data: Any) -> None:
        with self._lock:
            os.makedirs(self._base_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._base_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, default=str, indent=2)
                os.replace(tmp_path, self._path(name))
            except OSError as e:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise SerializationError(f"Failed to store '{name}': {e}") from e

    def load(self, name: str) -> Any:
        try:
            with self._lock:
                with open(self._path(name), "r", encoding="utf-8") as f:
                    return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise SerializationError(f"Stored '{name}' is not valid JSON: {e}") from e

    def delete(self, name: str) -> bool:
        with self._lock:
            try:
                os.remove(self._path(name))
                return True
            except FileNotFoundError:
                return False


class WorkflowManager:
    """
    Facade over one workflow graph and the components acting on it.

    Usage:
        manager = WorkflowManager()
        manager.apply_preset("basic-research")
        manager.update_config("basic_src", {"query": "graph neural networks"})
        record = await manager.run()
    """

    def __init__(
        self,
        invoker: Optional[ToolInvoker] = None,
        storage: Optional[FileStorage] = None,
        registry: Optional[AdapterRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = GraphStore()
        self.invoker: ToolInvoker = invoker or HttpToolInvoker(settings=self.settings)
        self.scheduler = Scheduler(self.store, self.invoker, registry=registry, settings=self.settings)
        self.clipboard = ClipboardManager(self.store, settings=self.settings)
        self.commands = CommandDispatcher(self.clipboard)
        self._storage = storage or FileStorage(self.settings.storage_dir)

    # --- Inspection ---

    def snapshot(self) -> GraphSnapshot:
        return self.store.snapshot()

    def get_node(self, node_id: NodeID) -> Node:
        node = self.store.get_node(node_id)
        if node is None:
            raise NotFoundError(f"Node '{node_id}' not found", details={"node_id": node_id})
        return node

    def validation_warnings(self) -> List[str]:
        return GraphValidator(self.snapshot()).warnings()

    def subscribe(self, callback: GraphUpdateCallback) -> Callable[[], None]:
        return self.store.subscribe(callback)

    def on_event(self, callback: SchedulerCallback) -> None:
        self.scheduler.on_event(callback)

    # --- Editing ---

    def add_tool_node(
        self,
        tool_type: Union[ToolType, str],
        position: Optional[Union[Position, Dict[str, float]]] = None,
        config: Optional[Dict[str, Any]] = None,
        label: Optional[str] = None,
    ) -> Node:
        try:
            tool_type = ToolType(tool_type)
        except ValueError as e:
            raise ValidationError(
                f"Unknown tool type: {tool_type!r}",
                details={"allowed": [t.value for t in ToolType]},
            ) from e
        if position is not None and not isinstance(position, Position):
            position = Position.model_validate(position)
        node = new_tool_node(self.store, tool_type, position=position, config=config, label=label)
        self.store.add_node(node)
        logger.info("Added %s node %s", tool_type.value, node.id)
        return node

    def connect(self, source: NodeID, target: NodeID) -> Edge:
        """
        Connect ``source`` to ``target``. Connecting an already connected pair
        returns the existing edge.

        Raises:
            NotFoundError: If either endpoint does not exist.
            ValidationError: For a self-connection.
        """
        for endpoint in (source, target):
            if not self.store.has_node(endpoint):
                raise NotFoundError(f"Node '{endpoint}' not found", details={"node_id": endpoint})
        if source == target:
            raise ValidationError("A node cannot be connected to itself.", details={"node_id": source})
        for edge in self.snapshot().outgoing(source):
            if edge.target == target:
                return edge
        return self.store.add_edge(Edge(id=self.store.new_edge_id(), source=source, target=target))

    def update_config(self, node_id: NodeID, changes: Dict[str, Any]) -> Optional[Node]:
        return self.store.patch_node(node_id, config=changes)

    def move_node(self, node_id: NodeID, position: Union[Position, Dict[str, float]]) -> Optional[Node]:
        return self.store.patch_node(node_id, position=position)

    def delete_node(self, node_id: NodeID) -> List[Edge]:
        return self.store.remove_node(node_id)

    def delete_edge(self, edge_id: EdgeID) -> Optional[Edge]:
        return self.store.remove_edge(edge_id)

    def dispatch(self, command: Union[EditCommand, str], text_entry_focused: bool = False) -> bool:
        return self.commands.dispatch(command, text_entry_focused=text_entry_focused)

    # --- Whole-graph operations ---

    def apply_preset(self, name: str) -> GraphSnapshot:
        """Replace the graph with a preset workflow. A running workflow is stopped first."""
        nodes, edges = get_preset(name)
        self.stop()
        self.store.replace(nodes, edges)
        self.clipboard.clear_selection()
        logger.info("Applied preset %s", name)
        return self.snapshot()

    def clear_workflow(self) -> None:
        self.stop()
        self.store.clear()
        self.clipboard.clear_selection()

    def append_workflow(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> List[NodeID]:
        """
        Add an externally generated workflow next to the current graph. Ids
        that collide with existing ones are re-minted and edges re-pointed.
        Returns the ids of the appended nodes.
        """
        remap: Dict[NodeID, NodeID] = {}
        appended: List[Node] = []
        taken = set(self.snapshot().node_ids())
        for node in nodes:
            new_id = node.id
            if new_id in taken or new_id in remap.values():
                new_id = self.store.new_node_id(node.id)
            remap[node.id] = new_id
            appended.append(node.with_changes(id=new_id))
        appended_edges: List[Edge] = []
        for edge in edges:
            if edge.source not in remap or edge.target not in remap:
                raise NotFoundError(
                    f"Edge '{edge.id}' references a node outside the appended workflow",
                    details={"edge_id": edge.id},
                )
            edge_id = edge.id
            if self.store.get_edge(edge_id) is not None or any(e.id == edge_id for e in appended_edges):
                edge_id = self.store.new_edge_id()
            appended_edges.append(Edge(id=edge_id, source=remap[edge.source], target=remap[edge.target]))
        self.store.insert(appended, appended_edges)
        return [node.id for node in appended]

    # --- Documents ---

    def export_document(self) -> Dict[str, Any]:
        return snapshot_to_document(self.snapshot())

    def load_document(self, data: Any) -> GraphSnapshot:
        """
        Replace the graph with a workflow document.

        Raises:
            ConflictError: While a workflow is running.
            WorkflowDocumentError: If the document is invalid; the current
                graph is left untouched.
        """
        if self.scheduler.is_running:
            raise ConflictError("Cannot load a workflow while one is running.")
        nodes, edges = document_to_graph(data)
        self.store.replace(nodes, edges)
        self.clipboard.clear_selection()
        return self.snapshot()

    def save_local(self) -> Dict[str, Any]:
        document = self.export_document()
        self._storage.save(LOCAL_SLOT, document)
        logger.info("Saved workflow (%d nodes) to local storage", len(document["nodes"]))
        return document

    def load_local(self) -> bool:
        """Load the locally saved workflow. Returns False when nothing is saved."""
        data = self._storage.load(LOCAL_SLOT)
        if data is None:
            logger.info("No saved workflow found")
            return False
        self.load_document(data)
        return True

    def save_to_file(self, path: Union[str, os.PathLike]) -> None:
        save_document_to_file(self.export_document(), path)

    def load_from_file(self, path: Union[str, os.PathLike]) -> GraphSnapshot:
        if self.scheduler.is_running:
            raise ConflictError("Cannot load a workflow while one is running.")
        nodes, edges = load_document_from_file(path)
        self.store.replace(nodes, edges)
        self.clipboard.clear_selection()
        return self.snapshot()

    # --- Execution ---

    def start(self) -> ExecutionID:
        return self.scheduler.start()

    async def run(self) -> WorkflowExecutionRecord:
        return await self.scheduler.run()

    async def run_node(self, node_id: NodeID) -> Node:
        """Run a single node from its predecessors' current outputs."""
        node = await self.scheduler.run_node(node_id)
        if node is None:
            raise NotFoundError(f"Node '{node_id}' was deleted while running", details={"node_id": node_id})
        return node

    async def wait(self) -> Optional[WorkflowExecutionRecord]:
        return await self.scheduler.wait()

    def stop(self) -> Optional[WorkflowExecutionRecord]:
        return self.scheduler.stop()

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    def status(self) -> Dict[str, Any]:
        snapshot = self.snapshot()
        return {
            "state": self.scheduler.state,
            "nodes": {node.id: node.status.value for node in snapshot.nodes},
            "last_run": self.scheduler.last_record,
        }

    def execution_history(self, limit: Optional[int] = None) -> List[WorkflowExecutionRecord]:
        return self.scheduler.history(limit)

    async def aclose(self) -> None:
        self.stop()
        close = getattr(self.invoker, "aclose", None)
        if close is not None:
            await close()
