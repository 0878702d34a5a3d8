"""
GraphStore: the authoritative owner of the workflow graph.

All graph mutation goes through this class (single-writer discipline). Every
mutation is total over the current snapshot: it either applies completely or
raises before anything changes, and operations on ids that no longer exist
are no-ops because the editor may race edits against already-deleted nodes.

Each mutation publishes a new immutable GraphSnapshot and notifies
subscribers, so the scheduler, the clipboard and any UI layer always observe
a consistent graph.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from resflow.builder.constants import NodeStatus, ToolType
from resflow.builder.types import (
    Edge,
    EdgeID,
    GraphSnapshot,
    Node,
    NodeID,
    Position,
    merge_config,
)
from resflow.exceptions import ConflictError, NotFoundError, ValidationError
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

# Event callback type: (event_type, payload)
GraphUpdateCallback = Callable[[str, Dict[str, Any]], None]

_PATCHABLE_FIELDS = frozenset({"status", "output", "config", "session_id", "position", "label"})


class GraphStore:
    """
    Owns the node and edge collections and performs consistency-preserving
    mutations on them.
    """

    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()) -> None:
        self._nodes: Dict[NodeID, Node] = {}
        self._edges: Dict[EdgeID, Edge] = {}
        self._config_locks: Set[NodeID] = set()
        self._subscribers: List[GraphUpdateCallback] = []
        self._version = 0
        self._counter = 0
        self._snapshot = GraphSnapshot()
        if nodes or edges:
            self.replace(list(nodes), list(edges))

    # --- Read access ---

    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._version

    def get_node(self, node_id: NodeID) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: EdgeID) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def has_node(self, node_id: NodeID) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # --- Subscriptions ---

    def subscribe(self, callback: GraphUpdateCallback) -> Callable[[], None]:
        """Register a callback for mutation events. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # --- Id minting ---

    def new_node_id(self, prefix: str) -> NodeID:
        """Mint ``<prefix>_<n>``, skipping ids already in the graph."""
        prefix = "".join(prefix.split()) or "node"
        while True:
            self._counter += 1
            candidate = f"{prefix}_{self._counter}"
            if candidate not in self._nodes:
                return candidate

    def new_edge_id(self) -> EdgeID:
        while True:
            self._counter += 1
            candidate = f"e_{self._counter}"
            if candidate not in self._edges:
                return candidate

    # --- Node mutations ---

    def add_node(self, node: Node) -> Node:
        self.insert([node], [])
        return node

    def remove_node(self, node_id: NodeID) -> List[Edge]:
        """Remove a node and every incident edge. Returns the removed edges."""
        return self.remove_nodes([node_id])

    def remove_nodes(self, node_ids: Iterable[NodeID]) -> List[Edge]:
        ids = [nid for nid in dict.fromkeys(node_ids) if nid in self._nodes]
        if not ids:
            logger.debug("remove_nodes: no matching nodes, nothing to do")
            return []
        doomed = set(ids)
        removed_edges = [
            edge for edge in self._edges.values()
            if edge.source in doomed or edge.target in doomed
        ]
        for edge in removed_edges:
            del self._edges[edge.id]
        for nid in ids:
            del self._nodes[nid]
            self._config_locks.discard(nid)
        self._commit("nodes_removed", {
            "node_ids": ids,
            "edge_ids": [edge.id for edge in removed_edges],
        })
        return removed_edges

    def patch_node(self, node_id: NodeID, **fields: Any) -> Optional[Node]:
        """
        Apply a partial update to a node.

        Recognized fields: status, output, config (a mapping of changes merged
        into the node's config), session_id, position, label. ``tool_type`` is
        immutable and is ignored. Returns the updated node, or None when the
        node does not exist.
        """
        node = self._nodes.get(node_id)
        if node is None:
            logger.debug("patch_node: node %s not found, ignoring", node_id)
            return None
        if "tool_type" in fields:
            logger.warning("patch_node: tool_type of %s is immutable, ignoring", node_id)
            fields.pop("tool_type")
        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown node fields: {sorted(unknown)}",
                details={"node_id": node_id},
            )

        changes: Dict[str, Any] = {}
        if "config" in fields:
            if node_id in self._config_locks:
                raise ConflictError(
                    f"Node '{node_id}' is executing; its config cannot change now.",
                    details={"node_id": node_id},
                )
            changes["config"] = merge_config(node.tool_type, node.config, fields["config"] or {})
        if "status" in fields:
            changes["status"] = NodeStatus(fields["status"])
        if "position" in fields:
            pos = fields["position"]
            changes["position"] = pos if isinstance(pos, Position) else Position.model_validate(pos)
        for key in ("output", "session_id", "label"):
            if key in fields:
                changes[key] = fields[key]

        updated = node.with_changes(**changes)
        self._nodes[node_id] = updated
        self._commit("node_updated", {"node_id": node_id, "fields": sorted(changes)})
        return updated

    def set_status(self, node_ids: Iterable[NodeID], status: NodeStatus) -> None:
        """Set the status of many nodes in one mutation."""
        status = NodeStatus(status)
        touched = []
        for nid in node_ids:
            node = self._nodes.get(nid)
            if node is not None and node.status != status:
                self._nodes[nid] = node.with_changes(status=status)
                touched.append(nid)
        if touched:
            self._commit("status_updated", {"node_ids": touched, "status": status.value})

    # --- Edge mutations ---

    def add_edge(self, edge: Edge) -> Optional[Edge]:
        """
        Add one edge. An edge whose endpoint no longer exists is ignored and
        None is returned; a duplicate edge id is still a ConflictError.
        """
        for endpoint in (edge.source, edge.target):
            if endpoint not in self._nodes:
                logger.debug("add_edge: node %s not found, ignoring edge %s", endpoint, edge.id)
                return None
        self.insert([], [edge])
        return edge

    def remove_edge(self, edge_id: EdgeID) -> Optional[Edge]:
        removed = self.remove_edges([edge_id])
        return removed[0] if removed else None

    def remove_edges(self, edge_ids: Iterable[EdgeID]) -> List[Edge]:
        removed = [self._edges.pop(eid) for eid in dict.fromkeys(edge_ids) if eid in self._edges]
        if removed:
            self._commit("edges_removed", {"edge_ids": [edge.id for edge in removed]})
        return removed

    # --- Bulk operations ---

    def insert(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> None:
        """
        Insert nodes and edges together. Everything is validated first, so a
        rejected batch leaves the graph untouched.
        """
        new_node_ids: Set[NodeID] = set()
        for node in nodes:
            if node.id in self._nodes or node.id in new_node_ids:
                raise ConflictError(f"Node with id '{node.id}' already exists", details={"node_id": node.id})
            new_node_ids.add(node.id)
        new_edge_ids: Set[EdgeID] = set()
        for edge in edges:
            if edge.id in self._edges or edge.id in new_edge_ids:
                raise ConflictError(f"Edge with id '{edge.id}' already exists", details={"edge_id": edge.id})
            for endpoint in (edge.source, edge.target):
                if endpoint not in self._nodes and endpoint not in new_node_ids:
                    raise NotFoundError(
                        f"Edge '{edge.id}' references missing node '{endpoint}'",
                        details={"edge_id": edge.id, "node_id": endpoint},
                    )
            new_edge_ids.add(edge.id)
        if not nodes and not edges:
            return
        for node in nodes:
            self._nodes[node.id] = node
        for edge in edges:
            self._edges[edge.id] = edge
        self._commit("inserted", {
            "node_ids": [node.id for node in nodes],
            "edge_ids": [edge.id for edge in edges],
        })

    def replace(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> None:
        """Replace the whole graph. Validated before the current graph is dropped."""
        staging = GraphStore()
        staging.insert(nodes, edges)
        self._nodes = dict(staging._nodes)
        self._edges = dict(staging._edges)
        self._config_locks.clear()
        self._commit("replaced", {"node_count": len(self._nodes), "edge_count": len(self._edges)})

    def clear(self) -> None:
        if not self._nodes and not self._edges:
            return
        self._nodes.clear()
        self._edges.clear()
        self._config_locks.clear()
        self._commit("cleared", {})

    # --- Config locking (used by the scheduler while a node's tool call is in flight) ---

    def lock_config(self, node_id: NodeID) -> None:
        if node_id in self._nodes:
            self._config_locks.add(node_id)

    def unlock_config(self, node_id: NodeID) -> None:
        self._config_locks.discard(node_id)

    def is_config_locked(self, node_id: NodeID) -> bool:
        return node_id in self._config_locks

    # --- Internals ---

    def _commit(self, event_type: str, payload: Dict[str, Any]) -> None:
        self._version += 1
        self._snapshot = GraphSnapshot(
            nodes=tuple(self._nodes.values()),
            edges=tuple(self._edges.values()),
            version=self._version,
        )
        logger.debug("graph %s (version %d): %s", event_type, self._version, payload)
        for callback in list(self._subscribers):
            try:
                callback(event_type, {**payload, "version": self._version})
            except Exception as e:
                logger.error("GraphStore subscriber error: %s", e)


def new_tool_node(
    store: GraphStore,
    tool_type: ToolType,
    position: Optional[Position] = None,
    config: Optional[Dict[str, Any]] = None,
    label: Optional[str] = None,
) -> Node:
    """Create a node with a fresh id derived from the tool label (not inserted)."""
    tool_type = ToolType(tool_type)
    return Node(
        id=store.new_node_id(tool_type.value),
        tool_type=tool_type,
        label=label or tool_type.value,
        config=config or {},
        position=position or Position(),
    )
