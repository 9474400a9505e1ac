"""HTTP and WebSocket surface of the wallet monitor"""

import asyncio

from aiohttp import WSMsgType, web

from wallet_monitor.core.broadcaster import DifferentialBroadcaster
from wallet_monitor.core.charts import Metric, TimeWindow, chart_data
from wallet_monitor.core.config import BROADCAST_INTERVAL
from wallet_monitor.core.errors import ConflictError, NotFoundError, ValidationError
from wallet_monitor.core.logger import logger
from wallet_monitor.core.monitor import WalletMonitor

MONITOR_KEY = web.AppKey("monitor", WalletMonitor)
INTERVAL_KEY = web.AppKey("broadcast_interval", float)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Client errors as JSON {"error": ...} with the matching status"""
    try:
        return await handler(request)
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except ConflictError as e:
        return web.json_response({"error": str(e)}, status=409)
    except NotFoundError as e:
        return web.json_response({"error": str(e)}, status=404)


async def list_wallets_handler(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    summaries = await monitor.store.list_summaries()
    return web.json_response([summary.to_dict() for summary in summaries])


async def add_wallet_handler(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    summary = await monitor.add_wallet(str(body.get("name") or ""), str(body.get("address") or ""))
    return web.json_response(summary.to_dict(), status=201)


async def wallet_detail_handler(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    summary = await monitor.store.summary(request.match_info["address"])
    return web.json_response(summary.to_dict())


async def remove_wallet_handler(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    address = request.match_info["address"]
    name = await monitor.remove_wallet(address)
    return web.json_response({"address": address, "name": name, "removed": True})


async def chart_handler(request: web.Request) -> web.Response:
    """
    Chart points of one wallet.

    Query: wallet=<address>, data_type=sol|wsol|total, interval=5M..1W|ALL
    """
    monitor = request.app[MONITOR_KEY]
    address = request.query.get("wallet", "").strip()
    if not address:
        raise ValidationError("Query parameter 'wallet' is required")

    metric = Metric.parse(request.query.get("data_type", Metric.TOTAL.value))
    window = TimeWindow.parse(request.query.get("interval", TimeWindow.H1.value))

    points = await chart_data(monitor.store, address, metric, window)
    return web.json_response(
        {
            "wallet": address,
            "data_type": metric.value,
            "interval": window.value,
            "points": [point.to_dict() for point in points],
        }
    )


async def health_handler(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    ingestion = monitor.ingestion
    return web.json_response(
        {
            "status": "healthy",
            "ingestion_state": ingestion.state.value,
            "source": ingestion.source.name,
            "connections": ingestion.connections,
            "subscriptions": ingestion.subscriptions,
            "wallets": len(monitor.store),
        }
    )


async def ws_handler(request: web.Request) -> web.WebSocketResponse:
    """Live updates: one differential broadcaster per connected client"""
    monitor = request.app[MONITOR_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    logger.info("Live update client connected")

    broadcaster = DifferentialBroadcaster(monitor.store, interval=request.app[INTERVAL_KEY])
    task = asyncio.create_task(broadcaster.run(ws.send_json))
    try:
        async for msg in ws:
            # Clients only listen; anything but a close frame is ignored
            if msg.type == WSMsgType.ERROR:
                logger.debug(f"Live update client error: {ws.exception()}")
                break
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Live update client disconnected")

    return ws


def create_app(monitor: WalletMonitor, broadcast_interval: float = BROADCAST_INTERVAL) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[MONITOR_KEY] = monitor
    app[INTERVAL_KEY] = broadcast_interval

    app.router.add_get("/api/wallets", list_wallets_handler)
    app.router.add_post("/api/wallets", add_wallet_handler)
    app.router.add_get("/api/wallets/{address}", wallet_detail_handler)
    app.router.add_delete("/api/wallets/{address}", remove_wallet_handler)
    app.router.add_get("/api/chart", chart_handler)
    app.router.add_get("/api/health", health_handler)
    app.router.add_get("/ws", ws_handler)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Server started on http://{host}:{port}")
    logger.info(f"  - Wallets: http://{host}:{port}/api/wallets")
    logger.info(f"  - Live updates: ws://{host}:{port}/ws")
    return runner
