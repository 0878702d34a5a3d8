"""
ClipboardManager: copy / cut / paste with one level of undo and redo.

Operates on the current selection: a set of node ids plus the edges whose
endpoints are both selected. All graph changes go through the GraphStore, so
clipboard edits are ordinary mutations and work whether or not a run is in
progress.
"""

from typing import Iterable, List, Optional, Set, Tuple

from resflow.builder.constants import NodeStatus, is_terminal
from resflow.builder.graph_store import GraphStore
from resflow.builder.types import Edge, Node, NodeID
from resflow.settings import Settings, get_settings
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

PASTE = "paste"
CUT = "cut"


class ClipboardAction:
    """A recorded, reversible edit: the nodes and edges it added or removed."""

    def __init__(self, kind: str, nodes: List[Node], edges: List[Edge]) -> None:
        self.kind = kind
        self.nodes = nodes
        self.edges = edges

    def node_ids(self) -> List[NodeID]:
        return [node.id for node in self.nodes]

    def __repr__(self) -> str:
        return f"ClipboardAction({self.kind!r}, nodes={self.node_ids()})"


class ClipboardManager:
    def __init__(self, store: GraphStore, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self.store = store
        self.offset_x = settings.paste_offset_x
        self.offset_y = settings.paste_offset_y
        self._selection: Set[NodeID] = set()
        self._buffer: Tuple[List[Node], List[Edge]] = ([], [])
        self._undo: Optional[ClipboardAction] = None
        self._redo: Optional[ClipboardAction] = None

    # --- Selection ---

    @property
    def selection(self) -> List[NodeID]:
        """Selected node ids that still exist, in graph order."""
        return [nid for nid in self.store.snapshot().node_ids() if nid in self._selection]

    def select(self, node_ids: Iterable[NodeID]) -> None:
        self._selection = {nid for nid in node_ids if self.store.has_node(nid)}

    def select_all(self) -> None:
        self._selection = set(self.store.snapshot().node_ids())

    def clear_selection(self) -> None:
        self._selection = set()

    def selected_edges(self) -> List[Edge]:
        selected = set(self.selection)
        return [
            edge for edge in self.store.snapshot().edges
            if edge.source in selected and edge.target in selected
        ]

    # --- Buffer ---

    @property
    def buffer(self) -> Tuple[List[Node], List[Edge]]:
        return list(self._buffer[0]), list(self._buffer[1])

    def has_buffer(self) -> bool:
        return bool(self._buffer[0])

    @property
    def can_undo(self) -> bool:
        return self._undo is not None

    @property
    def can_redo(self) -> bool:
        return self._redo is not None

    # --- Operations ---

    def copy(self) -> int:
        """Buffer the selected subgraph. Returns the number of nodes copied."""
        snapshot = self.store.snapshot()
        nodes = [node for node in snapshot.nodes if node.id in self._selection]
        if not nodes:
            logger.debug("copy: empty selection, buffer unchanged")
            return 0
        self._buffer = (nodes, self.selected_edges())
        logger.debug("copied %d nodes, %d edges", len(nodes), len(self._buffer[1]))
        return len(nodes)

    def cut(self) -> int:
        """Copy the selection, then remove it (with its incident edges)."""
        count = self.copy()
        if not count:
            return 0
        nodes = list(self._buffer[0])
        removed_edges = self.store.remove_nodes([node.id for node in nodes])
        self._record(ClipboardAction(CUT, nodes, removed_edges))
        self._selection = set()
        return count

    def paste(self) -> List[NodeID]:
        """
        Insert a fresh copy of the buffer and select it. Every pasted node gets
        a new ``<oldId>_<n>`` id, a shifted position, ``pending`` status and no
        output; buffered edges are re-pointed at the new ids.
        """
        buffered_nodes, buffered_edges = self._buffer
        if not buffered_nodes:
            logger.debug("paste: clipboard is empty")
            return []

        remap = {}
        pasted_nodes: List[Node] = []
        for node in buffered_nodes:
            new_id = self.store.new_node_id(node.id)
            remap[node.id] = new_id
            pasted_nodes.append(node.with_changes(
                id=new_id,
                position=node.position.shifted(self.offset_x, self.offset_y),
                status=NodeStatus.PENDING,
                output=None,
                session_id=None,
            ))
        pasted_edges = [
            Edge(id=self.store.new_edge_id(), source=remap[edge.source], target=remap[edge.target])
            for edge in buffered_edges
            if edge.source in remap and edge.target in remap
        ]
        self.store.insert(pasted_nodes, pasted_edges)
        self._record(ClipboardAction(PASTE, pasted_nodes, pasted_edges))
        self._selection = set(remap.values())
        logger.info("pasted %d nodes, %d edges", len(pasted_nodes), len(pasted_edges))
        return list(remap.values())

    def delete_selection(self) -> int:
        """Remove the selected nodes with cascade. Not recorded for undo."""
        ids = self.selection
        self.store.remove_nodes(ids)
        self._selection = set()
        return len(ids)

    def undo(self) -> bool:
        action = self._undo
        if action is None:
            return False
        self._reverse(action)
        self._undo, self._redo = None, action
        logger.debug("undo %r", action)
        return True

    def redo(self) -> bool:
        action = self._redo
        if action is None:
            return False
        self._apply(action)
        self._redo, self._undo = None, action
        logger.debug("redo %r", action)
        return True

    # --- Internals ---

    def _record(self, action: ClipboardAction) -> None:
        self._undo = action
        self._redo = None

    def _reverse(self, action: ClipboardAction) -> None:
        if action.kind == PASTE:
            self.store.remove_nodes(action.node_ids())
            self._selection = set()
        else:
            self._restore(action)

    def _apply(self, action: ClipboardAction) -> None:
        if action.kind == PASTE:
            self._restore(action)
        else:
            self.store.remove_nodes(action.node_ids())
            self._selection = set()

    def _restore(self, action: ClipboardAction) -> None:
        # Ids taken since the action was recorded are skipped, as are edges
        # whose other endpoint no longer exists. Restored nodes are never
        # running; a node cut mid-run comes back pending.
        nodes = [
            node if is_terminal(node.status) else node.with_changes(status=NodeStatus.PENDING)
            for node in action.nodes
            if not self.store.has_node(node.id)
        ]
        present = set(self.store.snapshot().node_ids()) | {node.id for node in nodes}
        edges = [
            edge for edge in action.edges
            if self.store.get_edge(edge.id) is None
            and edge.source in present and edge.target in present
        ]
        self.store.insert(nodes, edges)
        self._selection = {node.id for node in nodes}
