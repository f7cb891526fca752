"""
Bridge HTTP API

JSON routes exposing the query façade to the control caller:

- GET  /health    - Connection state and buffer statistics
- GET  /snapshot  - Mirrored editor state (?mode=Full|ScriptsOnly|NoScripts)
- POST /commands  - Execute a code fragment ({"code": "..."})
- GET  /logs      - Query buffered logs (filter options as query parameters)
- POST /logs      - Query buffered logs (filter options as a JSON body)
"""

import json
import logging
from typing import Dict, Any, TYPE_CHECKING

from aiohttp import web
from aiohttp.web import Request, Response

from bridge.errors import (
    AlreadyInFlightError,
    BridgeError,
    CommandTimeoutError,
    InvalidRequestError,
    NotConnectedError,
    RemoteExecutionError,
    TransportError,
)

if TYPE_CHECKING:
    from bridge.context import BridgeContext

logger = logging.getLogger(__name__)

CONTEXT_KEY = web.AppKey("bridge_context")

# Query parameters that carry lists
LIST_PARAMS = ("types", "severities", "fields")


def status_for(error: BridgeError) -> int:
    if isinstance(error, InvalidRequestError):
        return 400
    if isinstance(error, AlreadyInFlightError):
        return 409
    if isinstance(error, RemoteExecutionError):
        return 422
    if isinstance(error, (NotConnectedError, TransportError)):
        return 503
    if isinstance(error, CommandTimeoutError):
        return 504
    return 500


def _json_response(data: Any, status: int = 200) -> Response:
    return web.json_response(data, status=status, dumps=lambda obj: json.dumps(obj, default=str))


def _error_response(error: BridgeError) -> Response:
    return _json_response({"error": error.to_dict()}, status=status_for(error))


def _context(request: Request) -> "BridgeContext":
    return request.app[CONTEXT_KEY]


async def handle_health(request: Request) -> Response:
    context = _context(request)
    peer = context.peer_server
    return _json_response({
        "connection": peer.state.value,
        "peer": peer.peer_info,
        "snapshotUpdatedAt": context.state_mirror.updated_at,
        "logCount": len(context.log_buffer),
        "logCapacity": context.log_buffer.capacity,
        "commandInFlight": context.coordinator.busy,
        "droppedFrames": context.router.dropped_frames,
    })


async def handle_snapshot(request: Request) -> Response:
    mode = request.query.get("mode", "Full")
    try:
        return _json_response(_context(request).facade.get_snapshot(mode))
    except BridgeError as e:
        return _error_response(e)


async def handle_execute(request: Request) -> Response:
    try:
        body = await request.json()
    except ValueError:
        return _error_response(InvalidRequestError("Request body must be a JSON object"))
    if not isinstance(body, dict):
        return _error_response(InvalidRequestError("Request body must be a JSON object"))
    try:
        outcome = await _context(request).facade.execute_command(body.get("code"))
        return _json_response(outcome)
    except BridgeError as e:
        return _error_response(e)


async def handle_logs(request: Request) -> Response:
    if request.method == "POST" and request.can_read_body:
        try:
            filters = await request.json()
        except ValueError:
            return _error_response(InvalidRequestError("Request body must be a JSON object"))
    else:
        filters = _filters_from_query(request)
    try:
        return _json_response(_context(request).facade.query_logs(None if filters == {} else filters))
    except BridgeError as e:
        return _error_response(e)


def _filters_from_query(request: Request) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    for name in set(request.query.keys()):
        values = request.query.getall(name)
        if name in LIST_PARAMS:
            filters[name] = [part for value in values for part in value.split(",") if part]
        else:
            filters[name] = values[-1]
    return filters


def setup_routes(app: web.Application, context: "BridgeContext") -> None:
    app[CONTEXT_KEY] = context
    app.router.add_get('/health', handle_health)
    app.router.add_get('/snapshot', handle_snapshot)
    app.router.add_post('/commands', handle_execute)
    app.router.add_get('/logs', handle_logs)
    app.router.add_post('/logs', handle_logs)
