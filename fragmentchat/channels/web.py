"""HTTP surface for conversation persistence."""

import asyncio
import json

from aiohttp import web
from loguru import logger

from fragmentchat.config.schema import GatewayConfig
from fragmentchat.session.store import (
    PersistenceGateway,
    StoreUnavailable,
    UnexpectedPersistenceFailure,
    ValidationError,
)

GATEWAY_KEY = web.AppKey("gateway", PersistenceGateway)


def create_app(gateway: PersistenceGateway) -> web.Application:
    """Build the aiohttp application serving ``/conversations``."""
    app = web.Application()
    app[GATEWAY_KEY] = gateway
    app.router.add_post("/conversations", handle_append)
    app.router.add_get("/conversations", handle_query)
    return app


async def handle_append(request: web.Request) -> web.Response:
    """Store one turn: ``201 {id}``, ``400 {error}``, ``200 {skipped}`` or ``500 {error}``."""
    gateway = request.app[GATEWAY_KEY]
    if not gateway.configured:
        return web.json_response({"skipped": True}, status=200)

    try:
        body = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "Request body must be JSON"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "Request body must be an object"}, status=400)

    try:
        record_id = await gateway.append(
            conversation_id=body.get("conversationId"),
            user_id=body.get("userId"),
            role=body.get("role"),
            content=body.get("content"),
            fragment=body.get("fragment"),
            model=body.get("model"),
            created_at=body.get("createdAt"),
        )
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except StoreUnavailable as e:
        logger.warning("Skipping conversation save: {}", e)
        return web.json_response({"skipped": True}, status=200)
    except UnexpectedPersistenceFailure as e:
        return web.json_response({"error": str(e)}, status=500)
    except Exception as e:
        logger.error("Failed to save conversation: {}", e)
        return web.json_response({"error": "Failed to save conversation"}, status=500)

    return web.json_response({"id": record_id}, status=201)


async def handle_query(request: web.Request) -> web.Response:
    """List turns for ``?id=`` and/or ``?userId=`` ordered by creation time."""
    gateway = request.app[GATEWAY_KEY]
    if not gateway.configured:
        return web.json_response({"messages": [], "skipped": True})

    conversation_id = request.query.get("id") or None
    user_id = request.query.get("userId") or None

    try:
        messages = await gateway.query(conversation_id=conversation_id, user_id=user_id)
    except ValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except UnexpectedPersistenceFailure as e:
        return web.json_response({"error": str(e)}, status=500)
    except Exception as e:
        logger.error("Failed to fetch conversations: {}", e)
        return web.json_response({"error": "Failed to fetch conversations"}, status=500)

    return web.json_response({"messages": messages})


class WebGateway:
    """Runs the persistence HTTP server until cancelled."""

    def __init__(self, config: GatewayConfig, gateway: PersistenceGateway):
        self.config = config
        self.gateway = gateway
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = create_app(self.gateway)
        self._runner = web.AppRunner(app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info(
            "Persistence gateway listening on http://{}:{}",
            self.config.host,
            self.config.port,
        )

        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Persistence gateway stopped")
