"""Request dispatch over a single framed stream.

The dispatcher reads frames, correlates each request with exactly one
response, and runs tool handlers as independent tasks behind a FIFO
admission queue. Responses are written in completion order; clients match
them by id.

Per request:

1. parse the envelope; malformed JSON answers ``ParseError`` with a null id
2. look the tool up; unknown tools answer ``ToolNotFound`` without running
   anything
3. validate parameters against the tool schema
4. wait for an admission slot (queueing time counts against the deadline)
5. run the handler, racing it against the deadline and cancellation
6. write one result or error envelope
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import LATEST_PROTOCOL_VERSION, CallToolResult, TextContent
from pydantic import ValidationError

from ..error_handling import (
    FramingError,
    ForgejoMCPError,
    InvalidRequestError,
    ParseError,
    ToolNotFoundError,
    ToolValidationError,
    classify_exception,
    to_error_payload,
)
from ..framing import FrameReader, FrameWriter, decode_frame
from ..models import CancelledNotification, parse_client_notification, validate_params
from ..redaction import redact_value
from .execution import AdmissionQueue, ExecutionContext, RequestId
from .services import ServerServices
from .tools import ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-server-forgejo"
DEFAULT_SHUTDOWN_GRACE = 2.0


class EnvelopeError(Exception):
    """An envelope that cannot be dispatched, with whatever id it carried."""

    def __init__(self, error: ForgejoMCPError, request_id: Optional[RequestId] = None):
        super().__init__(error.message)
        self.error = error
        self.request_id = request_id


@dataclass(frozen=True)
class RequestEnvelope:
    id: Optional[RequestId]
    method: str
    params: Any
    received_at: float
    is_notification: bool = False


def _valid_id(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def parse_envelope(message: Any, received_at: float) -> RequestEnvelope:
    """Check the JSON-RPC shape of a decoded frame.

    Raises:
        EnvelopeError: carrying an ``InvalidRequest`` error.
    """
    if isinstance(message, list):
        raise EnvelopeError(InvalidRequestError("Batch requests are not supported"))
    if not isinstance(message, dict):
        raise EnvelopeError(InvalidRequestError("Request must be a JSON object"))

    is_notification = "id" not in message
    request_id = message.get("id")
    if not is_notification and not _valid_id(request_id):
        raise EnvelopeError(InvalidRequestError("Request id must be a string or an integer"))
    if message.get("jsonrpc", "2.0") != "2.0":
        raise EnvelopeError(InvalidRequestError("Unsupported jsonrpc version"), request_id)

    method = message.get("method")
    if not isinstance(method, str) or not method:
        raise EnvelopeError(InvalidRequestError("Request is missing 'method'"), request_id)

    return RequestEnvelope(
        id=request_id,
        method=method,
        params=message.get("params"),
        received_at=received_at,
        is_notification=is_notification,
    )


@dataclass
class _InFlight:
    request: RequestEnvelope
    context: ExecutionContext
    task: Optional["asyncio.Task[None]"] = None


class Dispatcher:
    """Serves one connection at a time over a frame reader/writer pair."""

    def __init__(
        self,
        registry: ToolRegistry,
        services: ServerServices,
        *,
        max_concurrency: Optional[int] = None,
        default_timeout: Optional[float] = None,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        server_version: str = "0.1.0",
    ):
        config = services.config
        self.registry = registry
        self.services = services
        self.default_timeout = default_timeout or config.tool_timeout
        self.shutdown_grace = shutdown_grace
        self.server_version = server_version
        self.admission = AdmissionQueue(max_concurrency or config.max_concurrency)
        self._inflight: Dict[RequestId, _InFlight] = {}
        self._handler_tasks: Set["asyncio.Task[Any]"] = set()
        self._writer: Optional[FrameWriter] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def run(self, reader: FrameReader, writer: FrameWriter) -> None:
        """Serve requests until the input stream ends or a frame is malformed.

        Every in-flight request is cancelled when the connection ends.
        """
        self._loop = asyncio.get_running_loop()
        self._writer = writer
        try:
            async for frame in reader.frames():
                await self._handle_frame(frame)
        except FramingError as e:
            logger.error(f"Closing connection: {e}")
        finally:
            await self._shutdown()

    async def _handle_frame(self, frame: bytes) -> None:
        received_at = self._loop.time()
        try:
            message = decode_frame(frame)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Unparseable frame ({len(frame)} bytes): {type(e).__name__}")
            await self._send_error(None, ParseError("Invalid JSON in request frame"))
            return

        try:
            request = parse_envelope(message, received_at)
        except EnvelopeError as e:
            await self._send_error(e.request_id, e.error)
            return

        if request.is_notification:
            self._handle_notification(request)
            return
        if request.id in self._inflight:
            await self._send_error(
                request.id, InvalidRequestError(f"Request id {request.id!r} is already in flight")
            )
            return

        await self._route(request)

    def _handle_notification(self, request: RequestEnvelope) -> None:
        try:
            notification = parse_client_notification(
                {"jsonrpc": "2.0", "method": request.method, "params": request.params}
            )
        except ValidationError:
            logger.warning(f"Malformed {request.method} notification ignored")
            return
        if notification is None:
            if request.method in self.registry:
                logger.warning(f"Tool call '{request.method}' sent without an id; nothing to respond to")
            return
        if isinstance(notification, CancelledNotification):
            entry = self._inflight.get(notification.params.requestId)
            if entry is None:
                logger.debug(f"Cancellation for unknown request {notification.params.requestId!r}")
                return
            entry.context.cancel(notification.params.reason or "cancelled by client")

    async def _route(self, request: RequestEnvelope) -> None:
        method = request.method
        wrap = False
        if method == "initialize":
            await self._send_result(request.id, self._initialize_result(request.params))
            return
        if method == "ping":
            await self._send_result(request.id, {})
            return
        if method == "tools/list":
            await self._send_result(request.id, {"tools": self._manifest()})
            return
        if method == "tools/call":
            params = request.params if isinstance(request.params, dict) else {}
            tool_name = params.get("name")
            if not isinstance(tool_name, str) or not tool_name:
                await self._send_error(
                    request.id,
                    ToolValidationError(
                        "tools/call requires a tool 'name'",
                        [{"field": "name", "message": "Field required"}],
                    ),
                )
                return
            arguments = params.get("arguments")
            wrap = True
        else:
            tool_name = method
            arguments = request.params

        try:
            tool = self.registry.lookup(tool_name)
        except ToolNotFoundError as e:
            logger.info(f"Request {request.id!r}: unknown tool {tool_name!r}")
            await self._send_error(request.id, e)
            duration_ms = (self._loop.time() - request.received_at) * 1000
            await self.services.metrics.record_request(tool_name, e.kind, duration_ms)
            return

        timeout = tool.timeout or self.default_timeout
        context = ExecutionContext(
            request_id=request.id,
            tool_name=tool.name,
            deadline=request.received_at + timeout,
            timeout=timeout,
            services=self.services,
        )
        entry = _InFlight(request=request, context=context)
        self._inflight[request.id] = entry
        entry.task = asyncio.create_task(self._execute(entry, tool, arguments, wrap))
        entry.task.add_done_callback(lambda _, rid=request.id, e=entry: self._forget(rid, e))

    def _forget(self, request_id: RequestId, entry: _InFlight) -> None:
        if self._inflight.get(request_id) is entry:
            del self._inflight[request_id]

    async def _execute(self, entry: _InFlight, tool: ToolDefinition, arguments: Any, wrap: bool) -> None:
        request, ctx = entry.request, entry.context
        outcome = "ok"
        try:
            params = validate_params(tool.schema, arguments)
            await ctx.guard(self.admission.acquire())
            handler_task = asyncio.ensure_future(self._invoke(tool, params, ctx))
            self._handler_tasks.add(handler_task)
            handler_task.add_done_callback(self._handler_finished)

            result = await ctx.guard(handler_task, detach=True)
            if wrap:
                result = self._tool_result(result)
            await self._send_result(request.id, result)
        except asyncio.CancelledError:
            outcome = "Cancelled"
            raise
        except Exception as e:
            error = classify_exception(e)
            outcome = error.kind
            if error is not e:
                logger.exception(f"Tool '{tool.name}' failed on request {request.id!r}")
            await self._send_error(request.id, error)
        finally:
            if outcome != "ok":
                # a detached handler may still be running
                ctx.cancel(f"request finished ({outcome})")
            duration_ms = (self._loop.time() - request.received_at) * 1000
            log = logger.info if outcome == "ok" else logger.warning
            log(
                f"{tool.name} [{request.id!r}] -> {outcome} in {duration_ms:.1f}ms",
                extra={
                    "request_id": request.id,
                    "tool": tool.name,
                    "duration_ms": round(duration_ms, 1),
                    "outcome": outcome,
                },
            )
            await self.services.metrics.record_request(tool.name, outcome, duration_ms)

    @staticmethod
    async def _invoke(tool: ToolDefinition, params: Any, ctx: ExecutionContext) -> Any:
        if tool.requires_auth:
            await ctx.authenticate()
        return await tool.handler(params, ctx)

    def _handler_finished(self, task: "asyncio.Task[Any]") -> None:
        # slot frees only once the handler has really stopped
        self._handler_tasks.discard(task)
        self.admission.release()
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Handler finished with {type(task.exception()).__name__}")

    async def _shutdown(self) -> None:
        entries = list(self._inflight.values())
        if not entries and not self._handler_tasks:
            return
        logger.info(f"Connection closed with {len(entries)} request(s) in flight; cancelling")
        for entry in entries:
            entry.context.cancel("connection closed")

        tasks = [entry.task for entry in entries if entry.task is not None]
        tasks.extend(self._handler_tasks)
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_grace)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} task(s) that ignored cancellation")
            await asyncio.gather(*pending, return_exceptions=True)

    def _manifest(self):
        return [tool.model_dump(mode="json", by_alias=True, exclude_none=True) for tool in self.registry.manifest()]

    def _initialize_result(self, params: Any) -> Dict[str, Any]:
        requested = params.get("protocolVersion") if isinstance(params, dict) else None
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": self.server_version},
            "tools": self._manifest(),
        }

    @staticmethod
    def _tool_result(result: Any) -> Dict[str, Any]:
        text = json.dumps(result, ensure_ascii=False, default=str)
        call_result = CallToolResult(
            content=[TextContent(type="text", text=text)],
            structuredContent=result if isinstance(result, dict) else {"result": result},
        )
        return call_result.model_dump(mode="json", by_alias=True, exclude_none=True)

    async def _send(self, message: Dict[str, Any]) -> bool:
        if self._writer is None:
            return False
        return await self._writer.write(message)

    async def _send_result(self, request_id: Optional[RequestId], result: Any) -> bool:
        return await self._send({"jsonrpc": "2.0", "id": request_id, "result": redact_value(result)})

    async def _send_error(self, request_id: Optional[RequestId], error: ForgejoMCPError) -> bool:
        return await self._send({"jsonrpc": "2.0", "id": request_id, "error": to_error_payload(error)})
