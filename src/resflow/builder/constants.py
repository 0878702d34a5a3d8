"""
resflow Shared Constants & Type-Safe Enumerations

This module centralizes the tool kinds, node statuses and tool categories used
across the builder, the scheduler, the HTTP surface and the CLI.

All enums in this file are single-source-of-truth for cross-package use.
Enum values are the labels persisted in workflow documents, so they must not
change once released.
"""

from enum import Enum, unique
from typing import Dict, FrozenSet, List


# --- Tool Types ---

@unique
class ToolType(str, Enum):
    """Closed set of tool kinds a workflow node can perform."""
    SEARCH = "Source Finder"
    CLAIM_EXTRACT = "Claim Extractor"
    CONTRADICTION_CHECK = "Contradiction Checker"
    REVIEW = "AI Literature Review"
    REFERENCE_FORMAT = "Reference & Citation Management"
    EXPORT_TEXT = "Export TXT"
    EXPORT_DOCUMENT = "Export DOC"


# --- Node Status ---

@unique
class NodeStatus(str, Enum):
    """Execution status of a node within a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES: FrozenSet[NodeStatus] = frozenset({NodeStatus.SUCCESS, NodeStatus.ERROR})


def is_terminal(status: NodeStatus) -> bool:
    return status in TERMINAL_STATUSES


# --- Tool Categories ---

@unique
class ToolCategory(str, Enum):
    """Grouping used when listing tools."""
    SEARCH = "Search"
    ANALYSIS = "Analysis"
    SYNTHESIS = "Synthesis"
    EXPORT = "Export"


TOOL_CATEGORIES: Dict[ToolType, ToolCategory] = {
    ToolType.SEARCH: ToolCategory.SEARCH,
    ToolType.CLAIM_EXTRACT: ToolCategory.ANALYSIS,
    ToolType.CONTRADICTION_CHECK: ToolCategory.ANALYSIS,
    ToolType.REVIEW: ToolCategory.SYNTHESIS,
    ToolType.REFERENCE_FORMAT: ToolCategory.SYNTHESIS,
    ToolType.EXPORT_TEXT: ToolCategory.EXPORT,
    ToolType.EXPORT_DOCUMENT: ToolCategory.EXPORT,
}

TOOL_DESCRIPTIONS: Dict[ToolType, str] = {
    ToolType.SEARCH: "Search academic papers for a query.",
    ToolType.CLAIM_EXTRACT: "Extract factual claims from text.",
    ToolType.CONTRADICTION_CHECK: "Check text or claims for contradictions.",
    ToolType.REVIEW: "Generate a literature review from a set of papers.",
    ToolType.REFERENCE_FORMAT: "Format references in a citation style.",
    ToolType.EXPORT_TEXT: "Export the incoming content as a text file.",
    ToolType.EXPORT_DOCUMENT: "Export the incoming content as a document file.",
}

EXPORT_TOOLS: FrozenSet[ToolType] = frozenset({ToolType.EXPORT_TEXT, ToolType.EXPORT_DOCUMENT})

# Consumers that take a structured list of papers rather than flattened text.
REVIEW_CONSUMERS: FrozenSet[ToolType] = frozenset({ToolType.REVIEW})

# Node type tag used by the canvas for every tool node.
TOOL_NODE_TYPE = "toolNode"


def is_export_tool(tool_type: ToolType) -> bool:
    return tool_type in EXPORT_TOOLS


def is_review_consumer(tool_type: ToolType) -> bool:
    return tool_type in REVIEW_CONSUMERS


def list_tool_types() -> List[ToolType]:
    """Tool types in palette order."""
    return list(ToolType)
