"""MCP Server implementation.

Ties together the tool registry, session manager and response formatter,
and serves JSON-RPC over stdio. The HTTP transport lives in ``routes``.
"""

from __future__ import annotations

import asyncio
import json
import sys
import time
from typing import Any, Callable, Optional, Protocol

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..core.context import context_for_error
from ..core.errors import (
    ErrorKind,
    InternalError,
    MCPError,
    ProtocolError,
    RequestTimeoutError,
    ValidationError,
)
from ..core.logging import configure_logging, ensure_logging
from ..observability.metrics import MCPMetrics, bind_session_metrics
from .events import EventEmitter, ServerEvent
from .formatter import ResponseFormatter, default_formatter, ensure_valid_response
from .rate_limit import MCPRateLimiter
from .registry import RegistryConfig, ToolRegistry
from .sessions import SessionConfig, SessionManager, TransportKind
from .types import (
    MCP_PROTOCOL_VERSION,
    MCPCapabilities,
    MCPInitializeResult,
    MCPRequest,
    MCPResponse,
    MCPServerInfo,
    ToolContext,
    ToolDescriptor,
    ToolResult,
    parse_arguments,
)

logger = structlog.get_logger(__name__)

# Faults that reach the caller as JSON-RPC errors during tools/call.
# Everything else is reported in-band with isError set.
OUT_OF_BAND_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.TOOL_NOT_FOUND})

# MCP logging levels -> structlog level names
MCP_LOG_LEVELS = {
    "debug": "debug",
    "info": "info",
    "notice": "info",
    "warning": "warning",
    "error": "error",
    "critical": "critical",
    "alert": "critical",
    "emergency": "critical",
}


class MessageWriter(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class MCPServer:
    """MCP Server orchestrating registry, sessions and formatting.

    Implements the Model Context Protocol for exposing Stampchain
    tools to LLM agents and IDEs.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        sessions: Optional[SessionManager] = None,
        formatter: Optional[ResponseFormatter] = None,
        rate_limiter: Optional[MCPRateLimiter] = None,
        api_client: Any = None,
        metrics: Optional[MCPMetrics] = None,
        owns_api_client: bool = False,
    ) -> None:
        """Initialize MCP server.

        Args:
            settings: Server settings (defaults when not provided)
            registry: Tool registry (created from settings if not provided)
            sessions: Session manager (created from settings if not provided)
            formatter: Response formatter (environment defaults if not provided)
            rate_limiter: Per-session rate limiter
            api_client: Stampchain client handed to tools via their context
            metrics: Prometheus metrics holder
            owns_api_client: Close ``api_client`` when the server stops
        """
        self._settings = settings or Settings()
        self.name = self._settings.server_name
        self.version = self._settings.server_version
        self._registry = registry or ToolRegistry(
            RegistryConfig(
                validate_on_register=self._settings.validate_on_register,
                allow_duplicate_names=self._settings.allow_duplicate_tools,
                max_tools=self._settings.max_tools,
            )
        )
        self._sessions = sessions or SessionManager(
            SessionConfig(
                max_connections=self._settings.max_connections,
                session_timeout_ms=self._settings.session_timeout_ms,
            )
        )
        self._formatter = formatter or default_formatter(self._settings.is_development)
        self._rate_limiter = rate_limiter
        self._api_client = api_client
        self._owns_api_client = owns_api_client
        self._metrics = metrics or MCPMetrics()
        self._events: EventEmitter[ServerEvent] = EventEmitter("server")
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrent_requests)
        self._inflight: set[asyncio.Task[Any]] = set()
        self._unbind_metrics: Optional[Callable[[], None]] = None

        self._initialized = False
        self._running = False
        self._stopping = False
        self._started_at: Optional[float] = None
        self._request_count = 0
        self._error_count = 0
        self._tool_call_count = 0

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def registry(self) -> ToolRegistry:
        """Get the tool registry."""
        return self._registry

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def formatter(self) -> ResponseFormatter:
        return self._formatter

    @property
    def metrics(self) -> MCPMetrics:
        return self._metrics

    @property
    def api_client(self) -> Any:
        return self._api_client

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def on(self, event: ServerEvent, callback: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe to a server notification; returns an unsubscribe callable."""
        return self._events.subscribe(ServerEvent(event), callback)

    def get_capabilities(self) -> MCPCapabilities:
        """Get server capabilities."""
        return MCPCapabilities(
            tools={"listChanged": True},
            resources=None,
            prompts=None,
            logging={},
        )

    def get_server_info(self) -> MCPServerInfo:
        """Get server info."""
        return MCPServerInfo(name=self.name, version=self.version)

    # Lifecycle

    async def start(self) -> None:
        """Start background work. Safe to call more than once."""
        if self._running:
            return
        self._running = True
        self._stopping = False
        self._started_at = time.monotonic()
        self._sessions.start()
        self._unbind_metrics = bind_session_metrics(self._metrics, self._sessions)
        logger.info(
            "mcp_server_started",
            name=self.name,
            version=self.version,
            tools=len(self._registry),
        )
        self._events.emit(ServerEvent.START)

    async def stop(self) -> None:
        """Shut down gracefully.

        Stops accepting sessions, ends the idle sweep, closes every session,
        gives in-flight tool calls a bounded grace period and cancels the
        rest, then clears the registry. Safe to call more than once.
        """
        if self._stopping or not (self._running or self._inflight):
            return
        self._stopping = True
        logger.info("mcp_server_stopping", in_flight=len(self._inflight))

        await self._sessions.shutdown()
        await self._drain_inflight(self._settings.shutdown_grace_seconds)

        if self._unbind_metrics:
            self._unbind_metrics()
            self._unbind_metrics = None
        self._running = False
        self._events.emit(ServerEvent.STOP)
        self._events.clear()
        self._registry.clear()

        if self._owns_api_client and self._api_client is not None:
            await self._api_client.aclose()

        logger.info("mcp_server_stopped", requests=self._request_count)

    async def _drain_inflight(self, grace_seconds: float) -> None:
        if not self._inflight:
            return
        pending = set(self._inflight)
        _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        if not still_running:
            return
        logger.warning("mcp_inflight_cancelled", count=len(still_running))
        for task in still_running:
            task.cancel()
        await asyncio.wait(still_running)

    # Sessions

    def open_session(self, transport: TransportKind | str = TransportKind.STDIO) -> str:
        """Register a client connection and return its session id."""
        return self._sessions.register_connection(transport)

    def close_session(self, session_id: str) -> bool:
        if self._rate_limiter:
            self._rate_limiter.forget(session_id)
        return self._sessions.unregister_connection(session_id)

    # Request handling

    async def handle_message(
        self,
        raw: str | bytes | dict[str, Any],
        session_id: Optional[str] = None,
    ) -> Optional[dict[str, Any]]:
        """Parse and handle one JSON-RPC message.

        Returns:
            The response payload, or None for notifications
        """
        data: Any = raw
        if isinstance(raw, (str, bytes)):
            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                return self.format_protocol_error(
                    ProtocolError(f"Parse error: {e}"), None, "parse"
                ).to_wire()

        if isinstance(data, list):
            return self.format_protocol_error(
                ProtocolError("Batch requests are not supported"), None, "parse"
            ).to_wire()

        request_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
            request_id = None
        try:
            request = MCPRequest.model_validate(data)
        except PydanticValidationError as e:
            message = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
                for err in e.errors()
            )
            return self.format_protocol_error(
                ProtocolError(f"Invalid request: {message}"), request_id, "parse"
            ).to_wire()

        response = await self.handle_request(request, session_id)
        return response.to_wire() if response is not None else None

    async def handle_request(
        self,
        request: MCPRequest,
        session_id: Optional[str] = None,
    ) -> Optional[MCPResponse]:
        """Handle an MCP request.

        Args:
            request: The MCP request
            session_id: Session the request arrived on, if any

        Returns:
            MCP response, or None for notifications
        """
        method = request.method
        self._request_count += 1
        self._metrics.record_request(method)
        self._events.emit(ServerEvent.REQUEST, method, session_id)

        logger.debug(
            "mcp_request_received",
            method=method,
            request_id=request.id,
            session_id=session_id,
        )

        if session_id is not None:
            self._sessions.update_activity(session_id)

        try:
            if self._stopping:
                raise ProtocolError("Server is shutting down")

            if method == "initialize":
                result = await self._handle_initialize(request.params)
            elif method in ("notifications/initialized", "initialized"):
                return None
            elif method == "ping":
                result = {}
            elif method == "tools/list":
                result = await self._handle_tools_list(request.params)
            elif method == "tools/call":
                result = await self._handle_tools_call(
                    request.params, session_id, request.id
                )
            elif method == "resources/list":
                result = {"resources": []}
            elif method == "prompts/list":
                result = {"prompts": []}
            elif method == "logging/setLevel":
                result = self._handle_set_level(request.params)
            elif method.startswith("notifications/"):
                return None
            else:
                raise ProtocolError(
                    f"Unknown method: {method}",
                    {"method": method},
                )

            if request.is_notification:
                return None
            return MCPResponse.success(request.id, result)

        except Exception as e:
            if session_id is not None:
                self._sessions.report_error(session_id, e)
            if not isinstance(e, MCPError):
                logger.exception(
                    "mcp_request_unexpected_error",
                    method=method,
                    error=str(e),
                )
            tool_name = request.params.get("name") if method == "tools/call" else None
            response = self.format_protocol_error(
                e,
                request.id,
                method,
                tool_name=tool_name if isinstance(tool_name, str) else None,
            )
            return None if request.is_notification else response

    def format_protocol_error(
        self,
        error: Any,
        request_id: str | int | None,
        operation: str,
        tool_name: Optional[str] = None,
    ) -> MCPResponse:
        """Render ``error`` through the formatter as a JSON-RPC error response."""
        context = context_for_error(error, tool_name or self.name, operation, request_id)
        rendered = self._formatter.create_error_response(error, context)
        self._error_count += 1
        self._metrics.record_error(rendered.error.kind.value)
        return MCPResponse.failure(request_id, rendered.fault.to_dict())

    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle initialize request."""
        client_info = params.get("clientInfo") or {}
        logger.info(
            "mcp_initialize",
            client_name=client_info.get("name"),
            client_version=client_info.get("version"),
            client_protocol=params.get("protocolVersion"),
        )

        self._initialized = True

        result = MCPInitializeResult(
            protocolVersion=MCP_PROTOCOL_VERSION,
            capabilities=self.get_capabilities(),
            serverInfo=self.get_server_info(),
        )
        return result.model_dump(by_alias=True, exclude_none=True)

    async def _handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle tools/list request."""
        if params.get("cursor"):
            # No pagination: everything fits in the first page
            return {"tools": []}
        return {"tools": self._registry.list_tools()}

    def _handle_set_level(self, params: dict[str, Any]) -> dict[str, Any]:
        level = str(params.get("level", "")).lower()
        mapped = MCP_LOG_LEVELS.get(level)
        if mapped is None:
            raise ValidationError(f"Unknown log level: {params.get('level')}", field="level")
        configure_logging(mapped, self._settings.log_json)
        logger.info("mcp_log_level_changed", level=mapped)
        return {}

    async def _handle_tools_call(
        self,
        params: dict[str, Any],
        session_id: Optional[str],
        request_id: str | int | None,
    ) -> dict[str, Any]:
        """Handle tools/call request."""
        name = params.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Tool name is required", field="name")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object", field="arguments")

        if self._rate_limiter is not None and session_id is not None:
            await self._rate_limiter.check(session_id)

        tool = self._registry.get(name)
        if tool.params_model is not None:
            parse_arguments(tool.params_model, arguments)

        context = ToolContext(
            api_client=self._api_client,
            logger=logger.bind(tool=name, session_id=session_id, request_id=request_id),
            session_id=session_id,
            request_id=request_id,
        )

        try:
            result = await self.execute_tool(tool, arguments, context)
        except MCPError as e:
            if e.kind in OUT_OF_BAND_KINDS:
                raise
            return self._in_band_failure(e, name, arguments, request_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._in_band_failure(e, name, arguments, request_id)

        return result.to_dict()

    def _in_band_failure(
        self,
        error: Any,
        tool_name: str,
        arguments: dict[str, Any],
        request_id: str | int | None,
    ) -> dict[str, Any]:
        context = context_for_error(error, tool_name, "execute", request_id, arguments)
        rendered = self._formatter.create_error_response(error, context)
        self._error_count += 1
        self._metrics.record_error(rendered.error.kind.value)
        return ensure_valid_response(rendered.tool_result, tool_name).to_dict()

    async def execute_tool(
        self,
        tool: ToolDescriptor,
        arguments: dict[str, Any],
        context: Optional[ToolContext] = None,
    ) -> ToolResult:
        """Run a tool with the concurrency bound and timeout applied.

        The execution is tracked so shutdown can wait for it. Closing the
        caller's session does not cancel it.

        Raises:
            RequestTimeoutError: If the tool exceeds its time budget
            MCPError: Whatever the tool raised, or ProtocolError for a
                malformed result
        """
        timeout = tool.timeout_seconds or self._settings.request_timeout_seconds
        session_id = context.session_id if context else None
        self._tool_call_count += 1

        async with self._semaphore:
            start_time = time.perf_counter()
            logger.info(
                "mcp_tool_call_started",
                tool=tool.name,
                session_id=session_id,
                timeout_seconds=timeout,
            )
            task = asyncio.create_task(tool.execute(arguments, context))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

            status = "error"
            try:
                raw = await asyncio.wait_for(task, timeout=timeout)
                result = ensure_valid_response(_coerce_result(raw), tool.name)
                status = "success"
            except asyncio.TimeoutError as e:
                status = "timeout"
                logger.warning(
                    "mcp_tool_call_timeout",
                    tool=tool.name,
                    session_id=session_id,
                    timeout_seconds=timeout,
                )
                raise RequestTimeoutError(
                    f"Tool '{tool.name}' timed out after {timeout:g} seconds",
                    timeout_seconds=timeout,
                    tool_name=tool.name,
                ) from e
            except asyncio.CancelledError:
                if not (self._stopping and task.cancelled()):
                    raise
                status = "cancelled"
                raise InternalError(
                    f"Tool '{tool.name}' was cancelled during shutdown",
                    {"tool": tool.name},
                ) from None
            finally:
                elapsed = time.perf_counter() - start_time
                self._metrics.record_tool_call(tool.name, status, elapsed)
                self._events.emit(
                    ServerEvent.TOOL_EXECUTION,
                    tool.name,
                    status,
                    int(elapsed * 1000),
                    session_id,
                )

            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.info(
                "mcp_tool_call_completed",
                tool=tool.name,
                session_id=session_id,
                elapsed_ms=elapsed_ms,
            )
            return self._formatter.create_success_response(result, {"elapsed_ms": elapsed_ms})

    def get_stats(self) -> dict[str, Any]:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return {
            "server": {
                "name": self.name,
                "version": self.version,
                "running": self._running,
                "initialized": self._initialized,
                "uptime_seconds": round(uptime, 3),
            },
            "requests": {
                "total": self._request_count,
                "errors": self._error_count,
                "tool_calls": self._tool_call_count,
                "in_flight": len(self._inflight),
            },
            "sessions": self._sessions.get_stats().to_dict(),
            "registry": self._registry.get_stats(),
        }

    # Stdio Transport

    async def run_stdio(self) -> None:
        """Run the server using stdio transport.

        Reads newline-delimited JSON-RPC requests from stdin and writes
        responses to stdout.
        """
        ensure_logging(self._settings.log_level, self._settings.log_json)
        reader = asyncio.StreamReader(limit=self._settings.max_message_bytes)
        protocol = asyncio.StreamReaderProtocol(reader)

        loop = asyncio.get_running_loop()
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)

        writer_transport, writer_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin,
            sys.stdout,
        )
        writer = asyncio.StreamWriter(
            writer_transport,
            writer_protocol,
            None,
            loop,
        )
        await self.serve_stream(reader, writer)

    async def serve_stream(
        self,
        reader: asyncio.StreamReader,
        writer: MessageWriter,
        transport: TransportKind = TransportKind.STDIO,
    ) -> None:
        """Serve one newline-delimited JSON-RPC connection until EOF.

        The connection gets its own session. Requests are handled
        concurrently; responses are written as they complete. A message
        longer than the reader's limit is discarded and answered with a
        protocol fault; the connection stays open.
        """
        session_id = self.open_session(transport)
        write_lock = asyncio.Lock()
        pending: set[asyncio.Task[None]] = set()
        logger.info("mcp_stream_connected", session_id=session_id, transport=transport.value)

        async def send(payload: dict[str, Any]) -> None:
            data = (json.dumps(payload, default=str) + "\n").encode("utf-8")
            async with write_lock:
                writer.write(data)
                await writer.drain()

        async def respond(line: bytes) -> None:
            payload = await self.handle_message(line, session_id)
            if payload is not None:
                await send(payload)

        try:
            while not self._stopping:
                try:
                    line = await read_frame(reader)
                except ProtocolError as e:
                    logger.warning(
                        "mcp_stream_message_too_large",
                        session_id=session_id,
                        discarded_bytes=e.data.get("discarded_bytes"),
                    )
                    self._sessions.report_error(session_id, e)
                    await send(self.format_protocol_error(e, None, "parse").to_wire())
                    continue
                if not line:
                    break
                if not line.strip():
                    continue
                task = asyncio.create_task(respond(line.strip()))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            self.close_session(session_id)
            if pending:
                done, _ = await asyncio.wait(set(pending))
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        logger.error(
                            "mcp_stream_write_failed",
                            session_id=session_id,
                            error=str(task.exception()),
                        )
            logger.info("mcp_stream_disconnected", session_id=session_id)


async def read_frame(reader: asyncio.StreamReader) -> bytes:
    """Read one newline-terminated frame, or the unterminated tail at EOF.

    Returns ``b""`` at EOF.

    Raises:
        ProtocolError: If the frame exceeds the reader's limit. The whole
            frame, up to and including its newline, is consumed first so
            the next read starts at the following message.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        overrun = e.consumed

    discarded = 0
    try:
        while True:
            await reader.readexactly(overrun)
            discarded += overrun
            try:
                tail = await reader.readuntil(b"\n")
            except asyncio.LimitOverrunError as e:
                overrun = e.consumed
                continue
            discarded += len(tail)
            break
    except asyncio.IncompleteReadError as e:
        discarded += len(e.partial)

    raise ProtocolError(
        "Message exceeds the maximum message size",
        {"discarded_bytes": discarded},
    )


def _coerce_result(raw: Any) -> ToolResult:
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, str):
        return ToolResult.text(raw)
    if isinstance(raw, dict) and "content" in raw:
        return ToolResult(
            content=raw.get("content"),  # type: ignore[arg-type]
            is_error=raw.get("isError", False),
            meta=raw.get("_meta") or {},
        )
    return ToolResult.json(raw)


class MCPServerFactory:
    """Factory for creating configured MCP servers."""

    @staticmethod
    def create_server(
        settings: Optional[Settings] = None,
        api_client: Any = None,
        register_tools: bool = True,
    ) -> MCPServer:
        """Create a configured MCP server.

        Args:
            settings: Server settings
            api_client: Stampchain client; one is created from settings if omitted
            register_tools: Register the default Stampchain tools

        Returns:
            Configured MCPServer instance
        """
        from ..api.client import StampchainClient
        from ..tools import register_default_tools

        settings = settings or Settings()
        ensure_logging(settings.log_level, settings.log_json)
        owns_client = api_client is None
        client = api_client or StampchainClient.from_settings(settings)

        server = MCPServer(
            settings=settings,
            rate_limiter=MCPRateLimiter(
                max_requests=settings.rate_limit_per_minute,
                window_seconds=60,
            ),
            api_client=client,
            owns_api_client=owns_client,
        )
        if register_tools:
            register_default_tools(server.registry, client)
        return server
