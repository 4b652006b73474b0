"""Command-line entry point: serve an in-memory scene over websockets."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Iterable, Mapping, Optional

from scene_rpc.memory import MemoryManager
from scene_rpc.server.config import ProcessorCtx, load_processor_ctx
from scene_rpc.server.connection import serve
from scene_rpc.server.processor import MessageProcessor
from scene_rpc.server.registry import HandlerRegistry
from scene_rpc.server.scene_store import SceneStore

logger = logging.getLogger(__name__)


def build_processor(
    ctx: Optional[ProcessorCtx] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    enable_cuda: Optional[bool] = False,
) -> tuple[MessageProcessor, SceneStore]:
    """Wire config, memory manager, store and registry into a processor."""

    if ctx is None:
        ctx = load_processor_ctx(env)
    memory = MemoryManager.create_default(
        enable_cuda=enable_cuda,
        log_calls=ctx.debug_policy.logging.log_memory,
    )
    store = SceneStore(memory)
    registry = store.register(HandlerRegistry())
    return MessageProcessor(registry, ctx), store


def main(argv: Optional[Iterable[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="scene-rpc receiver")
    parser.add_argument("--host", default=None, help="Bind address (default: SCENE_RPC_HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (default: SCENE_RPC_PORT or 51454)")
    parser.add_argument("--cuda", action="store_true", help="Register the CUDA memory manager when a device is visible")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging for scene_rpc")
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.debug:
        logging.getLogger("scene_rpc").setLevel(logging.DEBUG)

    env = dict(os.environ)
    if args.host:
        env["SCENE_RPC_HOST"] = args.host
    if args.port is not None:
        env["SCENE_RPC_PORT"] = str(args.port)
    processor, _store = build_processor(env=env, enable_cuda=None if args.cuda else False)

    try:
        asyncio.run(serve(processor))
    except KeyboardInterrupt:
        logger.info("scene server stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
