"""
ToolInvoker: the one-call-per-node boundary to the tool execution service.

Every tool type maps to exactly one endpoint. Whatever goes wrong on the way
(network error, timeout, non-success status, malformed body) comes back as a
ToolFailure, so the scheduler has a single failure path and never handles
transport details.

Export tools have a side effect besides their confirmation payload: the file
is delivered to the user through an ExportSink. Re-running re-delivers, so
export invocations are never retried (no invoker here retries at all).
"""

import inspect
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol, Type, TypeVar, Union, runtime_checkable

import httpx

from resflow.builder.constants import ToolType, is_export_tool
from resflow.builder.types import ExportConfig, ReviewConfig, SearchConfig, ToolConfig
from resflow.exceptions import InvocationError
from resflow.settings import Settings, get_settings
from resflow.utilities.logging import get_logger

logger = get_logger(__name__)

ResolvedInput = Union[str, list]
C = TypeVar("C", bound=ToolConfig)


# --- Results ---

class ToolSuccess:
    """Successful invocation carrying the tool-specific payload."""

    ok = True

    def __init__(self, output: Any) -> None:
        self.output = output

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": True, "output": self.output}

    def __repr__(self) -> str:
        return f"ToolSuccess({self.output!r})"


class ToolFailure:
    """Failed invocation, normalized to a message."""

    ok = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"ToolFailure({self.message!r})"


ToolResult = Union[ToolSuccess, ToolFailure]


@runtime_checkable
class ToolInvoker(Protocol):
    async def invoke(
        self,
        tool_type: ToolType,
        config: ToolConfig,
        resolved_input: ResolvedInput,
        session_id: Optional[str],
    ) -> ToolResult:
        """Run one tool call. Must not raise for tool or transport failures."""
        ...


# --- Export delivery ---

@runtime_checkable
class ExportSink(Protocol):
    def deliver(self, file_name: str, content: bytes) -> str:
        """Hand a produced file to the user; returns where it went."""
        ...


class DirectoryExportSink:
    """Writes exported files into a directory (the headless 'download')."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def deliver(self, file_name: str, content: bytes) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / os.path.basename(file_name or "export.txt")
        target.write_bytes(content)
        logger.info("Exported %d bytes to %s", len(content), target)
        return str(target)


# --- Request construction ---

ENDPOINTS: Dict[ToolType, str] = {
    ToolType.SEARCH: "/api/source-finder/search",
    ToolType.CLAIM_EXTRACT: "/api/claim-extractor/extract",
    ToolType.CONTRADICTION_CHECK: "/api/contradiction-check/check",
    ToolType.REVIEW: "/api/literature-review/generate",
    ToolType.REFERENCE_FORMAT: "/api/reference-management/format",
    ToolType.EXPORT_TEXT: "/api/export-tools/txt",
    ToolType.EXPORT_DOCUMENT: "/api/export-tools/doc",
}


def _as_text(resolved_input: ResolvedInput) -> str:
    if isinstance(resolved_input, str):
        return resolved_input
    return json.dumps(resolved_input, indent=2, sort_keys=True)


def _require_config(tool_type: ToolType, config: ToolConfig, config_cls: Type[C]) -> C:
    if not isinstance(config, config_cls):
        raise InvocationError(
            f"{tool_type.value} expects a {config_cls.__name__}, got {type(config).__name__}",
            details={"tool_type": tool_type.value},
        )
    return config


def build_request_body(
    tool_type: ToolType,
    config: ToolConfig,
    resolved_input: ResolvedInput,
    session_id: Optional[str],
) -> Dict[str, Any]:
    """Request body for ``tool_type``; unset values are omitted."""
    model = config.model
    if tool_type is ToolType.SEARCH:
        config = _require_config(tool_type, config, SearchConfig)
        body: Dict[str, Any] = {
            "query": _as_text(resolved_input),
            "limit": config.limit,
            "yearFrom": config.year_from,
            "yearTo": config.year_to,
            "model": model,
        }
    elif tool_type is ToolType.CLAIM_EXTRACT:
        body = {"prompt": _as_text(resolved_input), "model": model}
    elif tool_type is ToolType.CONTRADICTION_CHECK:
        body = {"text": _as_text(resolved_input), "modelId": model}
    elif tool_type is ToolType.REVIEW:
        config = _require_config(tool_type, config, ReviewConfig)
        papers = resolved_input if isinstance(resolved_input, list) else []
        source_text = resolved_input if isinstance(resolved_input, str) and resolved_input != (config.topic or "") else None
        body = {
            "reviewTopicScope": config.topic,
            "reviewType": config.review_type,
            "reviewDepthLength": config.depth,
            "reviewTone": config.tone,
            "yearFrom": config.year_from,
            "yearTo": config.year_to,
            "papers": papers,
            "sourceText": source_text,
            "model": model,
        }
    elif tool_type is ToolType.REFERENCE_FORMAT:
        body = {
            "referencesInput": _as_text(resolved_input),
            "citationStyle": getattr(config, "citation_style", None),
            "model": model,
        }
    elif tool_type is ToolType.EXPORT_TEXT:
        config = _require_config(tool_type, config, ExportConfig)
        body = {"exportData": _as_text(resolved_input), "exportFileName": config.file_name()}
    elif tool_type is ToolType.EXPORT_DOCUMENT:
        config = _require_config(tool_type, config, ExportConfig)
        body = {"content": _as_text(resolved_input), "fileName": config.file_name()}
    else:
        raise InvocationError(f"Unknown or unhandled tool type: {tool_type}")
    body["sessionId"] = session_id
    return {key: value for key, value in body.items() if value is not None}


def _error_message(response: httpx.Response, raw: str, parsed: Any) -> str:
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return raw.strip() or response.reason_phrase or f"HTTP {response.status_code}"


# --- HTTP invoker ---

class HttpToolInvoker:
    """
    Invokes tools against the tool execution service over HTTP.

    Usage:
        async with HttpToolInvoker(base_url="http://localhost:5000") as invoker:
            result = await invoker.invoke(ToolType.SEARCH, config, "graph neural networks", None)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        sink: Optional[ExportSink] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = base_url or settings.tool_base_url
        self.timeout = timeout if timeout is not None else settings.tool_timeout
        self._client = client
        self._owns_client = client is None
        self.sink: ExportSink = sink or DirectoryExportSink(settings.export_dir)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(self.timeout))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpToolInvoker":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def invoke(
        self,
        tool_type: ToolType,
        config: ToolConfig,
        resolved_input: ResolvedInput,
        session_id: Optional[str],
    ) -> ToolResult:
        tool_type = ToolType(tool_type)
        try:
            body = build_request_body(tool_type, config, resolved_input, session_id)
        except InvocationError as e:
            return ToolFailure(e.message, e.details)
        endpoint = ENDPOINTS[tool_type]
        logger.debug("POST %s for %s (session %s)", endpoint, tool_type.value, session_id)
        try:
            response = await self._get_client().post(endpoint, json=body)
        except httpx.TimeoutException:
            return ToolFailure(f"{tool_type.value} timed out after {self.timeout:g}s", {"endpoint": endpoint})
        except httpx.HTTPError as e:
            return ToolFailure(f"{tool_type.value} request failed: {e}", {"endpoint": endpoint})

        if is_export_tool(tool_type):
            return self._finish_export(tool_type, config, response)
        return self._parse_json(tool_type, response)

    def _parse_json(self, tool_type: ToolType, response: httpx.Response) -> ToolResult:
        raw = response.text
        try:
            parsed = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            if response.is_success:
                return ToolFailure(f"Invalid JSON response: {e.msg}", {"status_code": response.status_code})
            parsed = None
        if not response.is_success:
            return ToolFailure(_error_message(response, raw, parsed), {"status_code": response.status_code})
        return ToolSuccess(parsed)

    def _finish_export(self, tool_type: ToolType, config: ToolConfig, response: httpx.Response) -> ToolResult:
        if not response.is_success:
            raw = response.text
            try:
                parsed = json.loads(raw) if raw.strip() else None
            except json.JSONDecodeError:
                parsed = None
            return ToolFailure(_error_message(response, raw, parsed), {"status_code": response.status_code})
        try:
            file_name = _require_config(tool_type, config, ExportConfig).file_name()
        except InvocationError as e:
            return ToolFailure(e.message, e.details)
        try:
            location = self.sink.deliver(file_name, response.content)
        except OSError as e:
            return ToolFailure(f"Could not deliver {file_name}: {e}")
        output: Dict[str, Any] = {
            "message": "File downloaded successfully",
            "fileName": file_name,
            "path": location,
        }
        if tool_type is ToolType.EXPORT_DOCUMENT:
            output["content"] = response.text
        return ToolSuccess(output)


# --- In-process invoker ---

ToolHandler = Callable[[ToolConfig, ResolvedInput, Optional[str]], Union[Any, Awaitable[Any]]]


class CallableToolInvoker:
    """
    Dispatches tool calls to in-process callables, one per tool type.
    Handlers may be sync or async; anything they raise becomes a ToolFailure.
    """

    def __init__(self, handlers: Mapping[ToolType, ToolHandler]) -> None:
        self.handlers: Dict[ToolType, ToolHandler] = {ToolType(k): v for k, v in handlers.items()}

    async def invoke(
        self,
        tool_type: ToolType,
        config: ToolConfig,
        resolved_input: ResolvedInput,
        session_id: Optional[str],
    ) -> ToolResult:
        handler = self.handlers.get(ToolType(tool_type))
        if handler is None:
            return ToolFailure(f"No handler registered for {ToolType(tool_type).value}")
        try:
            output = handler(config, resolved_input, session_id)
            if inspect.isawaitable(output):
                output = await output
        except InvocationError as e:
            return ToolFailure(e.message, e.details)
        except Exception as e:
            logger.warning("Tool handler for %s raised: %s", ToolType(tool_type).value, e)
            return ToolFailure(str(e) or e.__class__.__name__)
        if isinstance(output, (ToolSuccess, ToolFailure)):
            return output
        return ToolSuccess(output)
