"""Ready-made research workflows offered in the editor's preset list."""

from typing import Callable, Dict, List, Sequence, Tuple

from resflow.builder.constants import ToolType
from resflow.builder.types import Edge, Node, Position
from resflow.exceptions import NotFoundError

PresetGraph = Tuple[List[Node], List[Edge]]

COLUMN_X = (50.0, 450.0, 850.0, 1250.0)


def _chain(steps: Sequence[Tuple[str, ToolType]], row_y: float, first_edge: int) -> PresetGraph:
    """A left-to-right chain of tool nodes joined by edges ``e<first_edge>``, ``e<first_edge+1>``..."""
    nodes = [
        Node(
            id=node_id,
            tool_type=tool_type,
            label=tool_type.value,
            config={},
            position=Position(x=COLUMN_X[index], y=row_y),
        )
        for index, (node_id, tool_type) in enumerate(steps)
    ]
    edges = [
        Edge(id=f"e{first_edge + index}", source=source.id, target=target.id)
        for index, (source, target) in enumerate(zip(nodes, nodes[1:]))
    ]
    return nodes, edges


def basic_research() -> PresetGraph:
    """Source Finder -> AI Literature Review -> Export TXT."""
    return _chain([
        ("basic_src", ToolType.SEARCH),
        ("basic_review", ToolType.REVIEW),
        ("basic_export", ToolType.EXPORT_TEXT),
    ], row_y=50.0, first_edge=1)


def fact_check() -> PresetGraph:
    """Source Finder -> Claim Extractor -> Contradiction Checker -> Export DOC."""
    return _chain([
        ("fact_src", ToolType.SEARCH),
        ("fact_claim", ToolType.CLAIM_EXTRACT),
        ("fact_contra", ToolType.CONTRADICTION_CHECK),
        ("fact_export", ToolType.EXPORT_DOCUMENT),
    ], row_y=150.0, first_edge=3)


def bibliography() -> PresetGraph:
    """Source Finder -> Reference & Citation Management -> Export TXT."""
    return _chain([
        ("bib_src", ToolType.SEARCH),
        ("bib_ref", ToolType.REFERENCE_FORMAT),
        ("bib_export", ToolType.EXPORT_TEXT),
    ], row_y=250.0, first_edge=6)


def literature_review() -> PresetGraph:
    """Source Finder -> AI Literature Review -> Export DOC."""
    return _chain([
        ("lit_src", ToolType.SEARCH),
        ("lit_review", ToolType.REVIEW),
        ("lit_export", ToolType.EXPORT_DOCUMENT),
    ], row_y=350.0, first_edge=8)


PRESETS: Dict[str, Callable[[], PresetGraph]] = {
    "basic-research": basic_research,
    "fact-check": fact_check,
    "bibliography": bibliography,
    "literature-review": literature_review,
}


def list_presets() -> List[Dict[str, str]]:
    return [
        {"name": name, "description": (factory.__doc__ or "").strip()}
        for name, factory in PRESETS.items()
    ]


def get_preset(name: str) -> PresetGraph:
    """
    Build a fresh copy of the named preset.

    Raises:
        NotFoundError: If no preset has that name.
    """
    key = name.strip().lower().replace("_", "-").replace(" ", "-")
    factory = PRESETS.get(key)
    if factory is None:
        raise NotFoundError(f"Unknown preset '{name}'", details={"available": sorted(PRESETS)})
    return factory()
