import logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

import argparse
from aiohttp import web

from clocksync.algorithms.registry import AlgorithmRegistry, default_registry
from clocksync.api import add_routes
from clocksync.config import (
    DEFAULT_API_PORT,
    DEFAULT_MULTICAST_GROUP,
    DEFAULT_MULTICAST_PORT,
    DEFAULT_NODE_PORT,
    NodeConfig,
)
from clocksync.core.identity import Role
from clocksync.core.node import NodeAgent
from clocksync.protocol.transport import HttpTransport, MulticastTransport

ALLOWED_CORS_METHODS = "GET,POST,OPTIONS"
ALLOWED_CORS_HEADERS = "Content-Type,Accept"


@web.middleware
async def cors_middleware(request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    origin = request.headers.get("Origin")
    response.headers["Access-Control-Allow-Origin"] = origin or "*"
    response.headers["Access-Control-Allow-Methods"] = ALLOWED_CORS_METHODS
    response.headers["Access-Control-Allow-Headers"] = ALLOWED_CORS_HEADERS
    response.headers["Access-Control-Max-Age"] = "86400"
    return response


def make_app(node: NodeAgent, registry: AlgorithmRegistry):
    """
    Build aiohttp app and register routes.
    """
    app = web.Application(middlewares=[cors_middleware])
    app['node'] = node
    app['registry'] = registry
    add_routes(app)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


async def on_startup(app):
    """
    Open the node's transport and start its protocol tasks.
    """
    await app['node'].start()


async def on_cleanup(app):
    await app['node'].stop()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a clock synchronization node")
    parser.add_argument("--name", required=True)
    parser.add_argument("--host", default="127.0.0.1",
                        help="address the node protocol binds to")
    parser.add_argument("--port", type=int, default=DEFAULT_NODE_PORT,
                        help="node protocol port")
    parser.add_argument("--group", default=DEFAULT_MULTICAST_GROUP)
    parser.add_argument("--group-port", type=int, default=DEFAULT_MULTICAST_PORT)
    parser.add_argument("--master", action="store_true",
                        help="start as the master time source")
    parser.add_argument("--drift", type=float, default=None,
                        help="clock drift rate, random around 1.0 when omitted")
    parser.add_argument("--transport", choices=["multicast", "http"], default="multicast")
    parser.add_argument("--peers", default="",
                        help="comma separated peer URLs for --transport http e.g. http://127.0.0.1:9001")
    parser.add_argument("--api-host", default="127.0.0.1")
    parser.add_argument("--api-port", type=int, default=DEFAULT_API_PORT)
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def build_node(args, config: NodeConfig) -> NodeAgent:
    listen = (args.host, args.port)
    if args.transport == "http":
        peers = [x.strip() for x in args.peers.split(",") if x.strip()]
        transport = HttpTransport(listen, peers)
    else:
        transport = MulticastTransport(listen, (args.group, args.group_port))
    return NodeAgent(
        args.name,
        listen,
        (args.group, args.group_port),
        Role.MASTER if args.master else Role.REGULAR,
        transport=transport,
        config=config,
        drift_rate=args.drift,
    )


def main(argv=None):
    args = parse_args(argv)
    logging.getLogger().setLevel(args.log_level)

    config = NodeConfig.from_env()
    node = build_node(args, config)
    registry = default_registry(query_timeout=config.query_timeout)
    app = make_app(node, registry)
    logger.info(f"Operator API of {node.name} on http://{args.api_host}:{args.api_port}")
    web.run_app(app, host=args.api_host, port=args.api_port)


if __name__ == "__main__":
    main()
