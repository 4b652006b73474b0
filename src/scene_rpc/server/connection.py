"""Websocket adapter: one request per binary frame, one reply per request."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from scene_rpc.server.config.models import ServeConfig
from scene_rpc.server.processor import MessageProcessor

logger = logging.getLogger(__name__)


async def safe_send(ws: Any, data: Any) -> bool:
    """Send ``data`` on ``ws`` and close on failure.

    Returns True when the send succeeds, False when it fails (the failure is
    logged and the socket closed).
    """

    try:
        await ws.send(data)
        return True
    except Exception:
        logger.debug("WebSocket send failed", exc_info=True)
        try:
            await ws.close()
        except Exception:
            logger.debug("WebSocket close failed after send failure", exc_info=True)
        return False


async def serve_connection(ws: Any, processor: MessageProcessor) -> None:
    """Answer every binary frame on ``ws`` until the peer goes away."""

    remote = getattr(ws, "remote_address", None)
    logger.info("scene client connected remote=%s id=%s", remote, id(ws))
    try:
        async for msg in ws:
            if isinstance(msg, str):
                logger.debug("ignoring text frame from remote=%s", remote)
                continue
            reply = processor.process(msg)
            if not await safe_send(ws, reply):
                break
    except ConnectionClosed as exc:
        rcvd = exc.rcvd
        logger.info(
            "scene client closed remote=%s id=%s code=%s reason=%s",
            remote,
            id(ws),
            rcvd.code if rcvd is not None else None,
            rcvd.reason if rcvd is not None else None,
        )
    finally:
        try:
            await ws.close()
        except Exception as exc:
            logger.debug("scene WS close error: %s", exc)


async def serve(
    processor: MessageProcessor,
    serve_cfg: Optional[ServeConfig] = None,
    *,
    ready: Optional[asyncio.Event] = None,
) -> None:
    """Run the websocket server until cancelled."""

    cfg = serve_cfg if serve_cfg is not None else processor.ctx.serve

    async def _handler(ws: Any, *_: Any) -> None:
        await serve_connection(ws, processor)

    logger.info("starting scene server on %s:%d", cfg.host, cfg.port)
    async with websockets.serve(
        _handler,
        cfg.host,
        cfg.port,
        compression=None,
        max_size=cfg.max_size,
    ):
        if ready is not None:
            ready.set()
        await asyncio.Future()


__all__ = ["safe_send", "serve", "serve_connection"]
