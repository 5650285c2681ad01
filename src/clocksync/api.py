import logging
import aiohttp
from aiohttp import web

from clocksync.algorithms.base import NodeSet, SingleReference
from clocksync.algorithms.handles import RemoteNodeHandle
from clocksync.config import QUERY_TIMEOUT
from clocksync.core.identity import Role
from clocksync.errors import ConfigurationError, InvalidReferenceError, TransportFailure

logger = logging.getLogger(__name__)


async def _json_body(request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(text="invalid json")
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="expected a json object")
    return body


# ---------------------------
# /time : clock reading used by remote algorithms
# ---------------------------
async def time_handler(request):
    node = request.app['node']
    snapshot = node.clock.snapshot()
    identity = node.identity
    return web.json_response({
        "node_id": identity.node_id,
        "name": identity.name,
        "role": identity.role.value,
        "time_ms": snapshot.time_ms,
        "drift_rate": snapshot.drift_rate,
    })


async def clock_status_handler(request):
    """Detailed clock, identity and protocol statistics."""
    node = request.app['node']
    status = node.get_status()
    registry = request.app.get('registry')
    active = registry.get_active() if registry else None
    status["active_algorithm"] = active.name if active else None
    return web.json_response(status)


async def peers_handler(request):
    node = request.app['node']
    peers = [
        {"peer_id": entry.peer_id, "address": str(entry.address), "last_seen": entry.last_seen}
        for entry in node.peers().values()
    ]
    return web.json_response({"count": len(peers), "peers": peers})


# ---------------------------
# /algorithms : registry
# ---------------------------
async def algorithms_handler(request):
    registry = request.app['registry']
    return web.json_response({"algorithms": registry.describe()})


async def set_algorithm_handler(request):
    registry = request.app['registry']
    body = await _json_body(request)
    name = body.get("name")
    if not isinstance(name, str) or not name.strip():
        return web.json_response({"status": "error", "message": "name is required"}, status=400)

    if not registry.set_active(name):
        return web.json_response(
            {"status": "error", "message": f"Unknown algorithm: {name}", "available": registry.names()},
            status=404,
        )
    active = registry.get_active()
    return web.json_response({"status": "ok", "active": active.name, "description": active.description})


# ---------------------------
# /time/sync : run the active algorithm against remote nodes
# ---------------------------
async def sync_trigger_handler(request):
    """
    Synchronize this node with the active algorithm.

    Body: {"master_url": "http://host:port"} for master-slave algorithms or
    {"peer_urls": [...], "include_self": true} for averaging algorithms.
    """
    node = request.app['node']
    registry = request.app['registry']
    body = await _json_body(request)

    strategy = registry.get_active()
    if strategy is None:
        return web.json_response({"status": "error", "message": "No algorithm registered"}, status=503)

    timeout = strategy.query_timeout if strategy.query_timeout is not None else QUERY_TIMEOUT
    try:
        if strategy.reference_kind is SingleReference:
            urls = [body.get("master_url")]
            if not isinstance(urls[0], str) or not urls[0]:
                raise InvalidReferenceError(f"{strategy.name} requires master_url")
        else:
            urls = body.get("peer_urls") or []
            if not isinstance(urls, list):
                raise InvalidReferenceError("peer_urls must be a list")
            if not all(isinstance(url, str) and url for url in urls):
                raise InvalidReferenceError("peer_urls must contain non-empty strings")

        # every handle of this trigger shares one session
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            handles = [await RemoteNodeHandle.connect(url, session=session, timeout=timeout) for url in urls]
            if strategy.reference_kind is SingleReference:
                reference = SingleReference(handles[0])
            else:
                if body.get("include_self", True):
                    handles.insert(0, node.handle())
                reference = NodeSet(handles)

            result = await strategy.synchronize(node, reference)

    except InvalidReferenceError as e:
        return web.json_response({"status": "error", "message": str(e)}, status=400)
    except TransportFailure as e:
        logger.error(f"Manual sync trigger failed: {e}")
        return web.json_response({"status": "error", "message": str(e)}, status=502)

    return web.json_response(
        {"status": "ok" if result.success else "failed", "result": result.to_dict()},
        status=200 if result.success else 502,
    )


# ---------------------------
# Operator controls
# ---------------------------
async def role_handler(request):
    node = request.app['node']
    body = await _json_body(request)
    try:
        role = Role.parse(body.get("role"))
    except ValueError as e:
        return web.json_response({"status": "error", "message": str(e)}, status=400)
    node.set_role(role)
    return web.json_response({"status": "ok", "role": node.role.value})


async def drift_handler(request):
    node = request.app['node']
    body = await _json_body(request)
    rate = body.get("drift_rate")
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        return web.json_response({"status": "error", "message": "drift_rate must be a number"}, status=400)
    try:
        node.clock.set_drift_rate(rate)
    except ConfigurationError as e:
        return web.json_response({"status": "error", "message": str(e)}, status=400)
    return web.json_response({"status": "ok", "drift_rate": node.clock.drift_rate})


def add_routes(app: web.Application) -> None:
    app.add_routes([
        web.get('/time', time_handler),
        web.get('/clock', clock_status_handler),
        web.get('/peers', peers_handler),
        web.get('/algorithms', algorithms_handler),
        web.post('/algorithms/active', set_algorithm_handler),
        web.post('/time/sync', sync_trigger_handler),
        web.post('/role', role_handler),
        web.post('/drift', drift_handler),
    ])
