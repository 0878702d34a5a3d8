"""
resflow Scheduler

Drives execution of a workflow graph in dependency order.

- Validates topology up front (non-empty, at least one root, acyclic) and
  leaves the graph untouched when validation fails.
- Marks every node ``running`` for the duration of the run, then starts the
  root nodes as asyncio tasks with a staggered start so the tool service does
  not receive a burst of simultaneous calls.
- Counts unfinished parents per node (Kahn's algorithm). A node fires exactly
  once, when its last parent finishes, so convergent nodes wait for every
  parent and never execute twice.
- ``stop()`` cancels scheduled and in-flight tasks and returns every
  non-terminal node to ``pending``.
- ``run_node()`` re-runs a single node from its predecessors' current
  outputs without starting a workflow run.

Node failures are local: a failed node ends in ``error`` with its message as
output, independent branches keep running, and its descendants end in
``error`` without invoking their tools.
"""

import asyncio
import copy
import datetime
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from resflow.builder.adapters import AdapterRegistry, default_registry
from resflow.builder.constants import NodeStatus, is_terminal
from resflow.builder.graph_store import GraphStore
from resflow.builder.graph_validator import GraphValidator
from resflow.builder.types import ExecutionID, Node, NodeID, WorkflowExecutionRecord
from resflow.exceptions import (
    ConfigurationError,
    ConflictError,
    ExecutionError,
    NotFoundError,
    ResflowError,
    ToolTimeoutError,
)
from resflow.execution_engine.invoker import ToolFailure, ToolInvoker, ToolResult
from resflow.settings import Settings, get_settings
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

SchedulerCallback = Callable[[str, Dict[str, Any]], None]

IDLE = "idle"
RUNNING = "running"


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def mint_session_id() -> str:
    return f"workflow_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"


def _error_output(error: ResflowError) -> Dict[str, Any]:
    return {"error": error.message, "code": error.code}


class Scheduler:
    """
    Executes the graph owned by a GraphStore through a ToolInvoker.

    Usage:
        scheduler = Scheduler(store, invoker)
        record = await scheduler.run()
    """

    def __init__(
        self,
        store: GraphStore,
        invoker: ToolInvoker,
        registry: Optional[AdapterRegistry] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.invoker = invoker
        self.registry = registry or default_registry()
        self.root_start_delay = settings.root_start_delay
        self.root_stagger = settings.root_stagger
        self.child_delay = settings.child_delay
        self.tool_timeout = settings.tool_timeout

        self._state = IDLE
        self._execution_id: Optional[ExecutionID] = None
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._children: Dict[NodeID, List[NodeID]] = {}
        self._remaining: Dict[NodeID, int] = {}
        self._done: Optional[asyncio.Event] = None
        self._record: Optional[WorkflowExecutionRecord] = None
        self._history: List[WorkflowExecutionRecord] = []
        self._listeners: List[SchedulerCallback] = []
        self._single_runs: Set[NodeID] = set()

    # --- State ---

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RUNNING

    @property
    def last_record(self) -> Optional[WorkflowExecutionRecord]:
        return copy.deepcopy(self._record) if self._record else None

    def history(self, limit: Optional[int] = None) -> List[WorkflowExecutionRecord]:
        records = self._history[-limit:] if limit else self._history
        return copy.deepcopy(records)

    def on_event(self, callback: SchedulerCallback) -> None:
        self._listeners.append(callback)

    # --- Run control ---

    def start(self) -> ExecutionID:
        """
        Validate the graph and schedule its root nodes. Must be called from a
        running event loop.

        Raises:
            ConflictError: If a run is already in progress.
            TopologyError: If the graph is empty, has no root or has a cycle.
        """
        if self.is_running:
            raise ConflictError("A workflow run is already in progress.")
        if self._single_runs:
            raise ConflictError(
                "Single-node runs are in progress.",
                details={"node_ids": sorted(self._single_runs)},
            )
        snapshot = self.store.snapshot()
        roots = GraphValidator(snapshot).validate()

        execution_id = uuid.uuid4().hex
        self._execution_id = execution_id
        self._children = {nid: snapshot.children(nid) for nid in snapshot.node_ids()}
        self._remaining = {nid: snapshot.in_degree(nid) for nid in snapshot.node_ids()}
        self._done = asyncio.Event()
        self._state = RUNNING
        self._record = {
            "execution_id": execution_id,
            "start_time": _now(),
            "end_time": None,
            "status": RUNNING,
            "node_statuses": {},
        }

        self.store.set_status(snapshot.node_ids(), NodeStatus.RUNNING)
        logger.info("Run %s started: %d nodes, roots %s", execution_id, len(snapshot.nodes), roots)
        self._emit("run_started", {"execution_id": execution_id, "roots": roots})

        for index, root in enumerate(roots):
            self._spawn(root, self.root_start_delay + index * self.root_stagger)
        return execution_id

    async def wait(self) -> Optional[WorkflowExecutionRecord]:
        """Wait for the current run (if any) to finish or be stopped."""
        if self._done is not None:
            await self._done.wait()
        return self.last_record

    async def run(self) -> WorkflowExecutionRecord:
        """Start a run and wait for it. Cancelling the caller stops the run."""
        self.start()
        try:
            await self.wait()
        except asyncio.CancelledError:
            self.stop()
            raise
        assert self._record is not None
        return copy.deepcopy(self._record)

    def stop(self) -> Optional[WorkflowExecutionRecord]:
        """
        Cancel all scheduled and in-flight node tasks and return every
        non-terminal node to ``pending``. In-flight tool calls are abandoned,
        not rolled back. No-op when idle.
        """
        if not self.is_running:
            return None
        current = _current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
        logger.info("Run %s stopped", self._execution_id)
        self._finish("stopped")
        return self.last_record

    async def run_node(self, node_id: NodeID) -> Optional[Node]:
        """
        Run one node on its own, outside a workflow run. Its input is resolved
        from the predecessors' current outputs, or its literal config input.
        Descendants are not started. Returns the node as it ended, or None if
        it was deleted meanwhile.

        Raises:
            ConflictError: While a workflow run or a run of this node is in progress.
            NotFoundError: If the node does not exist.
        """
        if self.is_running:
            raise ConflictError("A workflow run is in progress.", details={"node_id": node_id})
        if node_id in self._single_runs:
            raise ConflictError(f"Node '{node_id}' is already running.", details={"node_id": node_id})
        if not self.store.has_node(node_id):
            raise NotFoundError(f"Node '{node_id}' not found", details={"node_id": node_id})

        self._single_runs.add(node_id)
        self.store.patch_node(node_id, status=NodeStatus.RUNNING)
        try:
            await self._run_guarded(node_id)
        finally:
            self._single_runs.discard(node_id)
            node = self.store.get_node(node_id)
            if node is not None and node.status == NodeStatus.RUNNING:
                self.store.patch_node(node_id, status=NodeStatus.PENDING)
        self._emit_node_finished(node_id)
        return self.store.get_node(node_id)

    # --- Task management ---

    def _spawn(self, node_id: NodeID, delay: float) -> None:
        assert self._execution_id is not None
        task = asyncio.create_task(
            self._execute(node_id, delay, self._execution_id),
            name=f"resflow-node-{node_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, node_id: NodeID, delay: float, execution_id: ExecutionID) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if self._execution_id != execution_id:
            return
        await self._run_guarded(node_id)
        if self._execution_id != execution_id:
            return
        self._emit_node_finished(node_id)
        self._release_children(node_id)
        self._maybe_finish()

    async def _run_guarded(self, node_id: NodeID) -> None:
        """Run one node; whatever it raises becomes that node's error output."""
        try:
            await self._run_node(node_id)
        except ResflowError as e:
            logger.warning("Node %s failed: %s", node_id, e.message)
            self.store.patch_node(node_id, status=NodeStatus.ERROR, output=_error_output(e))
        except Exception as e:
            logger.exception("Unexpected error while executing node %s", node_id)
            error = ExecutionError.from_exception(e, details={"node_id": node_id})
            self.store.patch_node(node_id, status=NodeStatus.ERROR, output=_error_output(error))

    async def _run_node(self, node_id: NodeID) -> None:
        node = self.store.get_node(node_id)
        if node is None:
            logger.warning("Node %s was deleted before it could run", node_id)
            return

        session_id = node.session_id
        if not session_id:
            session_id = mint_session_id()
            node = self.store.patch_node(node_id, session_id=session_id) or node

        predecessors = self.store.snapshot().predecessors(node_id)
        failed = [pred.id for pred in predecessors if pred.status == NodeStatus.ERROR]
        if failed:
            message = f"Upstream node(s) failed: {', '.join(failed)}"
            logger.info("Skipping %s: %s", node_id, message)
            self.store.patch_node(node_id, status=NodeStatus.ERROR, output={"error": message})
            return

        self._emit("node_started", {"node_id": node_id, "tool_type": node.tool_type.value})
        try:
            resolved = self.registry.resolve_input(node, predecessors)
        except ConfigurationError as e:
            logger.warning("Node %s not runnable: %s", node_id, e.message)
            self.store.patch_node(node_id, status=NodeStatus.ERROR, output=_error_output(e))
            return

        logger.info("Executing %s (%s)", node_id, node.tool_type.value)
        self.store.lock_config(node_id)
        try:
            result: ToolResult = await asyncio.wait_for(
                self.invoker.invoke(node.tool_type, node.config, resolved, session_id),
                timeout=self.tool_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ToolTimeoutError(
                f"{node.tool_type.value} timed out after {self.tool_timeout:g}s",
                details={"node_id": node_id, "timeout": self.tool_timeout},
            ) from e
        finally:
            self.store.unlock_config(node_id)

        if isinstance(result, ToolFailure):
            logger.warning("Node %s failed: %s", node_id, result.message)
            self.store.patch_node(node_id, status=NodeStatus.ERROR, output={"error": result.message})
        else:
            self.store.patch_node(node_id, status=NodeStatus.SUCCESS, output=result.output)

    def _release_children(self, node_id: NodeID) -> None:
        for child_id in self._children.get(node_id, []):
            if child_id not in self._remaining:
                continue
            self._remaining[child_id] -= 1
            if self._remaining[child_id] > 0:
                continue
            child = self.store.get_node(child_id)
            if child is not None and child.status == NodeStatus.RUNNING:
                logger.debug("Releasing %s after %s", child_id, node_id)
                self._spawn(child_id, self.child_delay)

    def _maybe_finish(self) -> None:
        snapshot = self.store.snapshot()
        all_terminal = all(is_terminal(node.status) for node in snapshot.nodes)
        current = _current_task()
        outstanding = any(task is not current and not task.done() for task in self._tasks)
        if all_terminal or not outstanding:
            self._finish("completed")

    def _finish(self, status: str) -> None:
        snapshot = self.store.snapshot()
        leftover = [node.id for node in snapshot.nodes if not is_terminal(node.status)]
        for node in snapshot.nodes:
            self.store.unlock_config(node.id)
        self.store.set_status(leftover, NodeStatus.PENDING)
        if leftover and status == "completed":
            logger.warning("Nodes never reached during run: %s", leftover)

        final = self.store.snapshot()
        if self._record is not None:
            self._record["end_time"] = _now()
            self._record["status"] = status
            self._record["node_statuses"] = {node.id: node.status.value for node in final.nodes}
            errors = {
                node.id: str(node.output.get("error"))
                for node in final.nodes
                if node.status == NodeStatus.ERROR and isinstance(node.output, dict)
            }
            if errors:
                self._record["errors"] = errors
            self._history.append(copy.deepcopy(self._record))

        execution_id = self._execution_id
        self._execution_id = None
        self._state = IDLE
        self._remaining.clear()
        self._children.clear()
        if self._done is not None:
            self._done.set()
        logger.info("Run %s %s", execution_id, status)
        self._emit("run_finished" if status == "completed" else "run_stopped", {
            "execution_id": execution_id,
            "status": status,
        })

    # --- Events ---

    def _emit_node_finished(self, node_id: NodeID) -> None:
        node = self.store.get_node(node_id)
        if node is not None:
            self._emit("node_finished", {"node_id": node_id, "status": node.status.value})

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        for callback in list(self._listeners):
            try:
                callback(event_type, payload)
            except Exception as e:
                logger.error("Scheduler listener error: %s", e)


def _current_task() -> Optional["asyncio.Task[Any]"]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
