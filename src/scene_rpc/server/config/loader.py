"""Resolve :class:`ProcessorCtx` from the environment.

Environment keys consulted:

- ``SCENE_RPC_CONFIG`` JSON bundle, e.g.
  ``{"validate_lines": false, "serve": {"host": "0.0.0.0", "port": 9000}}``
- ``SCENE_RPC_VALIDATE_LINES``, ``SCENE_RPC_STRICT_ATTRIBUTES``,
  ``SCENE_RPC_CHECK_BYTE_LENGTH``, ``SCENE_RPC_MAX_MESSAGE_BYTES``
- ``SCENE_RPC_HOST``, ``SCENE_RPC_PORT``
- ``SCENE_RPC_DEBUG`` (see :mod:`.logging_policy`)

Individual variables win over the JSON bundle.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from scene_rpc.server.config.logging_policy import load_debug_policy
from scene_rpc.server.config.models import ProcessorConfig, ProcessorCtx, ServeConfig
from scene_rpc.utils.env import cfg_bool, cfg_int, cfg_str, env_bool, env_int, env_json, env_str

logger = logging.getLogger(__name__)


def load_processor_config(env: Optional[Mapping[str, str]] = None) -> ProcessorConfig:
    env = env if env is not None else os.environ
    bundle = env_json(env, "SCENE_RPC_CONFIG")
    defaults = ProcessorConfig()

    validate_lines = cfg_bool(bundle.get("validate_lines"), defaults.validate_lines)
    strict_attributes = cfg_bool(bundle.get("strict_attributes"), defaults.strict_attributes)
    check_byte_length = cfg_bool(bundle.get("check_byte_length"), defaults.check_byte_length)
    max_message_bytes = cfg_int(bundle.get("max_message_bytes"), defaults.max_message_bytes)

    return ProcessorConfig(
        validate_lines=env_bool(env, "SCENE_RPC_VALIDATE_LINES", validate_lines),
        strict_attributes=env_bool(env, "SCENE_RPC_STRICT_ATTRIBUTES", strict_attributes),
        check_byte_length=env_bool(env, "SCENE_RPC_CHECK_BYTE_LENGTH", check_byte_length),
        max_message_bytes=max(0, env_int(env, "SCENE_RPC_MAX_MESSAGE_BYTES", max_message_bytes)),
    )


def load_serve_config(env: Optional[Mapping[str, str]] = None) -> ServeConfig:
    env = env if env is not None else os.environ
    bundle = env_json(env, "SCENE_RPC_CONFIG")
    serve = bundle.get("serve")
    if not isinstance(serve, dict):
        serve = {}
    defaults = ServeConfig()

    host = cfg_str(serve.get("host"), defaults.host)
    port = cfg_int(serve.get("port"), defaults.port)
    raw_max = serve.get("max_size")
    max_size = cfg_int(raw_max, 0) if raw_max is not None else None

    return ServeConfig(
        host=env_str(env, "SCENE_RPC_HOST", host) or host,
        port=env_int(env, "SCENE_RPC_PORT", port),
        max_size=max_size if max_size else None,
    )


def load_processor_ctx(env: Optional[Mapping[str, str]] = None) -> ProcessorCtx:
    """Build a :class:`ProcessorCtx` by reading the environment once."""

    env = env if env is not None else os.environ
    ctx = ProcessorCtx(
        cfg=load_processor_config(env),
        serve=load_serve_config(env),
        debug_policy=load_debug_policy(env),
    )
    logger.debug("resolved processor ctx: %s", ctx)
    return ctx


__all__ = ["load_processor_config", "load_processor_ctx", "load_serve_config"]
