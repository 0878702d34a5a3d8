"""Shared builders and fakes for the resflow test suite."""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from resflow.builder.constants import ToolType
from resflow.builder.graph_store import GraphStore
from resflow.builder.types import Edge, Node, Position, ToolConfig
from resflow.execution_engine.invoker import ToolFailure, ToolSuccess


def make_node(node_id: str, tool_type: ToolType = ToolType.SEARCH, **config: Any) -> Node:
    """A node whose config carries ``tag=node_id`` so fakes can tell nodes apart."""
    config.setdefault("tag", node_id)
    if tool_type is ToolType.SEARCH:
        config.setdefault("query", f"query for {node_id}")
    return Node(id=node_id, tool_type=tool_type, config=config, position=Position(x=0, y=0))


def make_edge(source: str, target: str, edge_id: Optional[str] = None) -> Edge:
    return Edge(id=edge_id or f"{source}->{target}", source=source, target=target)


def build_store(nodes: Sequence[Node], links: Sequence[Tuple[str, str]]) -> GraphStore:
    return GraphStore(nodes, [make_edge(source, target) for source, target in links])


class RecordingInvoker:
    """
    Fake ToolInvoker. Nodes are told apart by a ``tag`` key in their config.

    Outputs are looked up by tag, then by tool type; anything else succeeds
    with a ``text`` payload naming the tag.
    """

    def __init__(
        self,
        outputs: Optional[Dict[Any, Any]] = None,
        delay: float = 0.0,
        fail_tags: Iterable[str] = (),
    ) -> None:
        self.outputs = outputs or {}
        self.delay = delay
        self.fail_tags = set(fail_tags)
        self.calls: List[Dict[str, Any]] = []
        self.finished: List[Optional[str]] = []

    async def invoke(self, tool_type, config: ToolConfig, resolved_input, session_id):
        tag = (config.model_extra or {}).get("tag")
        self.calls.append({
            "tag": tag,
            "tool_type": tool_type,
            "input": resolved_input,
            "session_id": session_id,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished.append(tag)
        if tag in self.fail_tags:
            return ToolFailure(f"{tag} failed")
        if tag in self.outputs:
            return ToolSuccess(self.outputs[tag])
        if tool_type in self.outputs:
            return ToolSuccess(self.outputs[tool_type])
        return ToolSuccess({"text": f"{tag or tool_type.value} done"})

    def tags(self) -> List[Optional[str]]:
        return [call["tag"] for call in self.calls]
