from typing import Dict, List, Optional, Set

from resflow.builder.types import GraphSnapshot, NodeID
from resflow.exceptions import TopologyError


def root_nodes(snapshot: GraphSnapshot) -> List[NodeID]:
    """Nodes with no incoming edge, in node order."""
    targets = {edge.target for edge in snapshot.edges}
    return [node.id for node in snapshot.nodes if node.id not in targets]


def find_cycle(snapshot: GraphSnapshot) -> Optional[List[NodeID]]:
    """
    Return the node path of one cycle (first node repeated at the end), or
    None when the graph is acyclic.
    """
    adjacency: Dict[NodeID, List[NodeID]] = {node.id: [] for node in snapshot.nodes}
    for edge in snapshot.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)

    visited: Set[NodeID] = set()
    rec_stack: List[NodeID] = []
    on_stack: Set[NodeID] = set()

    def visit(node_id: NodeID) -> Optional[List[NodeID]]:
        visited.add(node_id)
        rec_stack.append(node_id)
        on_stack.add(node_id)
        for neighbor in adjacency.get(node_id, []):
            if neighbor in on_stack:
                start = rec_stack.index(neighbor)
                return rec_stack[start:] + [neighbor]
            if neighbor not in visited:
                found = visit(neighbor)
                if found:
                    return found
        rec_stack.pop()
        on_stack.discard(node_id)
        return None

    for node_id in adjacency:
        if node_id not in visited:
            found = visit(node_id)
            if found:
                return found
    return None


class GraphValidator:
    """
    Validates that a workflow graph can be scheduled.
    Ensures:
      - The graph has at least one node
      - At least one entry point (root node) exists
      - No cycles

    Also reports non-fatal findings (multi-parent nodes, isolated nodes) for
    the CLI and the HTTP surface.
    """

    def __init__(self, snapshot: GraphSnapshot) -> None:
        self.snapshot = snapshot

    def validate(self) -> List[NodeID]:
        """
        Run all checks. Raises TopologyError on failure; returns the root nodes.
        """
        if self.snapshot.is_empty():
            raise TopologyError("Workflow has no nodes to run.")
        roots = root_nodes(self.snapshot)
        if not roots:
            raise TopologyError(
                "No entry point: every node has an incoming edge.",
                details={"node_ids": self.snapshot.node_ids()},
            )
        cycle = find_cycle(self.snapshot)
        if cycle:
            raise TopologyError(
                f"Graph contains a cycle: {' -> '.join(cycle)}",
                details={"cycle": cycle},
            )
        return roots

    def warnings(self) -> List[str]:
        found: List[str] = []
        for node in self.snapshot.nodes:
            in_degree = self.snapshot.in_degree(node.id)
            if in_degree > 1:
                found.append(
                    f"Node '{node.id}' has {in_degree} incoming edges; their outputs are merged."
                )
            if in_degree == 0 and not self.snapshot.outgoing(node.id) and len(self.snapshot.nodes) > 1:
                found.append(f"Node '{node.id}' is isolated (no connections).")
        return found
