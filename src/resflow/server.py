"""
resflow HTTP API

FastAPI application exposing one WorkflowManager: graph editing, presets,
edit commands, workflow documents and run control.

- Request bodies are validated with pydantic models.
- ResflowError subclasses become JSON error bodies (``to_dict()``) with
  404 for missing resources, 409 for state conflicts and 400 otherwise.
- ``POST /workflow/run`` starts a run in the background; pass ``wait=true``
  to block until it finishes and receive the execution record.
- ``POST /workflow/nodes/{id}/run`` runs one node from its predecessors'
  current outputs and returns the updated node.

Run with: uvicorn resflow.server:app, or ``resflow serve``.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from resflow.builder.constants import TOOL_CATEGORIES, TOOL_DESCRIPTIONS, list_tool_types
from resflow.builder.presets import list_presets
from resflow.builder.types import Edge, Node
from resflow.builder.workflow_manager import WorkflowManager
from resflow.exceptions import ConflictError, NotFoundError, ResflowError
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)


def audit_log(action: str, details: Dict[str, Any]) -> None:
    logger.info("AUDIT | action=%s | details=%s", action, details)


# --- Pydantic Models ---

class _RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PositionModel(_RequestModel):
    x: float = 0.0
    y: float = 0.0


class NodeCreateRequest(_RequestModel):
    tool_type: str = Field(..., description="Tool type label, e.g. 'Source Finder'")
    position: Optional[PositionModel] = Field(default=None, description="Canvas position")
    config: Optional[Dict[str, Any]] = Field(default=None, description="Initial tool configuration")
    label: Optional[str] = Field(default=None, description="Display label")

    @field_validator("tool_type")
    @classmethod
    def tool_type_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Tool type must not be empty")
        return v


class NodeUpdateRequest(_RequestModel):
    config: Optional[Dict[str, Any]] = Field(default=None, description="Config changes to merge")
    position: Optional[PositionModel] = None
    label: Optional[str] = None


class EdgeCreateRequest(_RequestModel):
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")


class SelectionRequest(_RequestModel):
    node_ids: List[str] = Field(default_factory=list)


def node_to_dict(node: Node) -> Dict[str, Any]:
    return {
        "id": node.id,
        "toolType": node.tool_type.value,
        "label": node.label,
        "config": node.config.to_payload(),
        "status": node.status.value,
        "output": node.output,
        "sessionId": node.session_id,
        "position": {"x": node.position.x, "y": node.position.y},
    }


def edge_to_dict(edge: Edge) -> Dict[str, str]:
    return {"id": edge.id, "source": edge.source, "target": edge.target}


def _status_code(exc: ResflowError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def create_app(manager: Optional[WorkflowManager] = None) -> FastAPI:
    """Build the API around ``manager`` (a fresh WorkflowManager by default)."""
    service = manager or WorkflowManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await service.aclose()

    app = FastAPI(
        lifespan=lifespan,
        title="resflow",
        version="0.1.0",
        description="API for editing and running research workflow graphs.",
        openapi_tags=[
            {"name": "Workflow", "description": "The workflow graph and its documents."},
            {"name": "Editing", "description": "Node, edge, selection and clipboard operations."},
            {"name": "Execution", "description": "Running and stopping the workflow."},
            {"name": "Utility", "description": "Tool types and presets."},
        ],
    )
    app.state.manager = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ResflowError)
    async def resflow_error_handler(request: Request, exc: ResflowError) -> JSONResponse:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=_status_code(exc), content=exc.to_dict())

    # --- Utility ---

    @app.get("/tools", tags=["Utility"])
    async def get_tools() -> Dict[str, List[Dict[str, str]]]:
        """List the available tool types."""
        return {"tools": [
            {
                "toolType": tool.value,
                "category": TOOL_CATEGORIES[tool].value,
                "description": TOOL_DESCRIPTIONS[tool],
            }
            for tool in list_tool_types()
        ]}

    @app.get("/presets", tags=["Utility"])
    async def get_presets() -> Dict[str, List[Dict[str, str]]]:
        return {"presets": list_presets()}

    @app.post("/presets/{name}", tags=["Utility"])
    async def apply_preset(name: str) -> Dict[str, Any]:
        """Replace the workflow with a preset."""
        service.apply_preset(name)
        audit_log("apply_preset", {"name": name})
        return service.export_document()

    # --- Workflow ---

    @app.get("/workflow", tags=["Workflow"])
    async def get_workflow() -> Dict[str, Any]:
        snapshot = service.snapshot()
        return {
            "nodes": [node_to_dict(node) for node in snapshot.nodes],
            "edges": [edge_to_dict(edge) for edge in snapshot.edges],
            "version": snapshot.version,
            "warnings": service.validation_warnings(),
        }

    @app.put("/workflow", tags=["Workflow"])
    async def put_workflow(document: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the workflow with a workflow document."""
        snapshot = service.load_document(document)
        audit_log("load_document", {"nodes": len(snapshot.nodes), "edges": len(snapshot.edges)})
        return service.export_document()

    @app.delete("/workflow", tags=["Workflow"])
    async def clear_workflow() -> Dict[str, bool]:
        service.clear_workflow()
        audit_log("clear_workflow", {})
        return {"cleared": True}

    @app.get("/workflow/document", tags=["Workflow"])
    async def get_document() -> Dict[str, Any]:
        return service.export_document()

    @app.post("/workflow/save", tags=["Workflow"])
    async def save_local() -> Dict[str, Any]:
        document = service.save_local()
        return {"saved": True, "savedAt": document.get("savedAt")}

    @app.post("/workflow/load", tags=["Workflow"])
    async def load_local() -> Dict[str, bool]:
        return {"loaded": service.load_local()}

    # --- Editing ---

    @app.post("/workflow/nodes", tags=["Editing"], status_code=status.HTTP_201_CREATED)
    async def add_node(req: NodeCreateRequest) -> Dict[str, Any]:
        node = service.add_tool_node(
            req.tool_type,
            position=req.position.model_dump() if req.position else None,
            config=req.config,
            label=req.label,
        )
        audit_log("add_node", {"node_id": node.id, "tool_type": node.tool_type.value})
        return node_to_dict(node)

    @app.get("/workflow/nodes/{node_id}", tags=["Editing"])
    async def get_node(node_id: str) -> Dict[str, Any]:
        return node_to_dict(service.get_node(node_id))

    @app.patch("/workflow/nodes/{node_id}", tags=["Editing"])
    async def update_node(node_id: str, req: NodeUpdateRequest) -> Dict[str, Any]:
        service.get_node(node_id)
        fields: Dict[str, Any] = {}
        if req.config is not None:
            fields["config"] = req.config
        if req.position is not None:
            fields["position"] = req.position.model_dump()
        if req.label is not None:
            fields["label"] = req.label
        node = service.store.patch_node(node_id, **fields) if fields else service.get_node(node_id)
        if node is None:
            raise NotFoundError(f"Node '{node_id}' not found", details={"node_id": node_id})
        return node_to_dict(node)

    @app.delete("/workflow/nodes/{node_id}", tags=["Editing"])
    async def delete_node(node_id: str) -> Dict[str, List[str]]:
        removed = service.delete_node(node_id)
        audit_log("delete_node", {"node_id": node_id})
        return {"removedEdges": [edge.id for edge in removed]}

    @app.post("/workflow/edges", tags=["Editing"], status_code=status.HTTP_201_CREATED)
    async def add_edge(req: EdgeCreateRequest) -> Dict[str, str]:
        return edge_to_dict(service.connect(req.source, req.target))

    @app.delete("/workflow/edges/{edge_id}", tags=["Editing"])
    async def delete_edge(edge_id: str) -> Dict[str, bool]:
        return {"deleted": service.delete_edge(edge_id) is not None}

    @app.put("/workflow/selection", tags=["Editing"])
    async def set_selection(req: SelectionRequest) -> Dict[str, List[str]]:
        service.clipboard.select(req.node_ids)
        return {"selection": service.clipboard.selection}

    @app.post("/workflow/commands/{command}", tags=["Editing"])
    async def run_command(command: str, text_entry_focused: bool = False) -> Dict[str, Any]:
        """Run an edit command (copy, cut, paste, select-all, undo, redo, delete)."""
        executed = service.dispatch(command, text_entry_focused=text_entry_focused)
        return {
            "executed": executed,
            "selection": service.clipboard.selection,
            "nodeCount": len(service.store),
            "canUndo": service.clipboard.can_undo,
            "canRedo": service.clipboard.can_redo,
        }

    # --- Execution ---

    @app.post("/workflow/run", tags=["Execution"])
    async def run_workflow(wait: bool = False) -> Dict[str, Any]:
        """Start a run. With ``wait=true`` the response is the finished execution record."""
        if wait:
            record = await service.run()
            audit_log("run", {"execution_id": record["execution_id"], "status": record["status"]})
            return dict(record)
        execution_id = service.start()
        audit_log("run", {"execution_id": execution_id})
        return {"execution_id": execution_id, "status": "running"}

    @app.post("/workflow/nodes/{node_id}/run", tags=["Execution"])
    async def run_node(node_id: str) -> Dict[str, Any]:
        """Run one node on its own and return it with its new status and output."""
        node = await service.run_node(node_id)
        audit_log("run_node", {"node_id": node_id, "status": node.status.value})
        return node_to_dict(node)

    @app.post("/workflow/stop", tags=["Execution"])
    async def stop_workflow() -> Dict[str, Any]:
        record = service.stop()
        return {"stopped": record is not None, "record": record}

    @app.get("/workflow/status", tags=["Execution"])
    async def get_status() -> Dict[str, Any]:
        return service.status()

    @app.get("/workflow/history", tags=["Execution"])
    async def get_history(limit: Optional[int] = None) -> Dict[str, Any]:
        return {"runs": service.execution_history(limit)}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("resflow.server:app", host="127.0.0.1", port=8000)
