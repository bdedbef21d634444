"""MCP Server HTTP routes for FastAPI.

Provides a JSON-RPC message endpoint plus discovery, health and metrics
endpoints. Sessions are tracked with the ``Mcp-Session-Id`` header.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.responses import JSONResponse, Response

from ..core.errors import MCPError, ProtocolError
from .server import MCPServer
from .sessions import TransportKind
from .types import MCP_PROTOCOL_VERSION

logger = structlog.get_logger(__name__)

SESSION_HEADER = "Mcp-Session-Id"

router = APIRouter(prefix="/mcp/v1", tags=["mcp-server"])


def get_mcp_server(request: Request) -> MCPServer:
    """Get MCP server from app state."""
    server = getattr(request.app.state, "mcp_server", None)
    if server is None:
        raise HTTPException(
            status_code=503,
            detail="MCP server not initialized",
        )
    return server


def _peek(body: bytes) -> tuple[Optional[str], Any]:
    """Return the method and id of a JSON-RPC body without validating it."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    method = payload.get("method")
    request_id = payload.get("id")
    if not isinstance(request_id, (str, int)) or isinstance(request_id, bool):
        request_id = None
    return (method if isinstance(method, str) else None), request_id


@router.post("/messages")
async def post_message(
    request: Request,
    server: MCPServer = Depends(get_mcp_server),
    session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
) -> Response:
    """Handle one JSON-RPC message.

    An ``initialize`` request without a session header opens a new
    session whose id is returned in the ``Mcp-Session-Id`` header.
    Notifications are acknowledged with 202 and no body. Any other
    message must name a live session.
    """
    body = await request.body()
    method, request_id = _peek(body)

    if session_id is None and method == "initialize":
        try:
            session_id = server.open_session(TransportKind.HTTP)
        except MCPError as e:
            failure = server.format_protocol_error(e, request_id, "initialize")
            return JSONResponse(failure.to_wire(), status_code=503)
        logger.info("mcp_http_session_opened", session_id=session_id)
    elif method is not None:
        if session_id is None:
            failure = server.format_protocol_error(
                ProtocolError(f"{SESSION_HEADER} header is required"), request_id, method
            )
            return JSONResponse(failure.to_wire(), status_code=400)
        if not server.sessions.has_session(session_id):
            failure = server.format_protocol_error(
                ProtocolError(f"Unknown session: {session_id}"), request_id, method
            )
            return JSONResponse(failure.to_wire(), status_code=404)

    payload = await server.handle_message(body, session_id)

    headers = {SESSION_HEADER: session_id} if session_id else None
    if payload is None:
        return Response(status_code=202, headers=headers)
    return JSONResponse(payload, headers=headers)


@router.delete("/messages")
async def close_session(
    server: MCPServer = Depends(get_mcp_server),
    session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
) -> Response:
    """Terminate the session named by the ``Mcp-Session-Id`` header."""
    if session_id is None:
        raise HTTPException(status_code=400, detail=f"{SESSION_HEADER} header is required")
    if not server.close_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    logger.info("mcp_http_session_closed", session_id=session_id)
    return Response(status_code=204)


@router.get("/tools")
async def list_tools(
    server: MCPServer = Depends(get_mcp_server),
) -> dict[str, Any]:
    """List available MCP tools."""
    tools = server.registry.list_tools()
    return {
        "tools": tools,
        "count": len(tools),
    }


@router.get("/info")
async def server_info(
    server: MCPServer = Depends(get_mcp_server),
) -> dict[str, Any]:
    """Get MCP server information and capabilities."""
    return {
        "name": server.name,
        "version": server.version,
        "protocol_version": MCP_PROTOCOL_VERSION,
        "capabilities": server.get_capabilities().model_dump(exclude_none=True),
        "categories": server.registry.get_categories(),
        "tools_by_category": server.registry.get_tools_by_category(),
    }


@router.get("/health")
async def health_check(
    server: MCPServer = Depends(get_mcp_server),
) -> dict[str, Any]:
    """Health check endpoint for the MCP server."""
    stats = server.get_stats()
    return {
        "status": "healthy" if server.is_running else "stopped",
        "server": server.name,
        "version": server.version,
        "sessions": stats["sessions"]["total_sessions"],
        "tools": stats["registry"]["total_tools"],
    }


@router.get("/metrics")
async def metrics(
    server: MCPServer = Depends(get_mcp_server),
) -> Response:
    """Prometheus metrics for this server."""
    return Response(content=server.metrics.render(), media_type=CONTENT_TYPE_LATEST)


def create_app(server: MCPServer) -> FastAPI:
    """Build a FastAPI app serving ``server`` over HTTP.

    The server is started and stopped with the application lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await server.start()
        try:
            yield
        finally:
            await server.stop()

    app = FastAPI(title=server.name, version=server.version, lifespan=lifespan)
    app.state.mcp_server = server
    app.include_router(router)
    return app
