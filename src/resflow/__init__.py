"""resflow - a workflow graph runtime for research tool pipelines."""

from importlib.metadata import PackageNotFoundError, version as _version

from resflow.builder.constants import NodeStatus, ToolType
from resflow.builder.types import Edge, GraphSnapshot, Node
from resflow.builder.workflow_manager import WorkflowManager
from resflow.exceptions import ResflowError
from resflow.settings import Settings, get_settings

try:
    __version__: str = _version("resflow")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "Edge",
    "GraphSnapshot",
    "Node",
    "NodeStatus",
    "ResflowError",
    "Settings",
    "ToolType",
    "WorkflowManager",
    "get_settings",
]
