"""Verbose-trace switches for the receiver, read from ``SCENE_RPC_DEBUG``.

Accepted forms::

    SCENE_RPC_DEBUG=1                       # debug on, no extra traces
    SCENE_RPC_DEBUG=decode,dispatch         # debug on with the named traces
    SCENE_RPC_DEBUG=all
    SCENE_RPC_DEBUG='["memory"]'
    SCENE_RPC_DEBUG='{"enabled": true, "flags": "validate"}'

Flags: ``decode``, ``validate``, ``dispatch``, ``memory`` and ``all``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

from scene_rpc.utils.env import cfg_bool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoggingToggles:
    log_decode: bool = False
    log_validate: bool = False
    log_dispatch: bool = False
    log_memory: bool = False

    @classmethod
    def from_flags(cls, flags: set[str]) -> "LoggingToggles":
        if "all" in flags:
            return cls(**{f.name: True for f in fields(cls)})
        return cls(**{f.name: f.name[len("log_"):] in flags for f in fields(cls)})


@dataclass(frozen=True)
class DebugPolicy:
    enabled: bool = False
    logging: LoggingToggles = field(default_factory=LoggingToggles)


KNOWN_FLAGS = frozenset({"decode", "validate", "dispatch", "memory", "all"})


def _normalise_flags(raw: Any) -> set[str]:
    if isinstance(raw, str):
        tokens = raw.split(",")
    elif isinstance(raw, (list, tuple, set)):
        tokens = [str(item) for item in raw]
    else:
        return set()
    return {tok.strip().lower() for tok in tokens if tok.strip()}


def _parse(raw: str) -> tuple[bool, Any]:
    """Return ``(enabled, flags)`` for one ``SCENE_RPC_DEBUG`` value."""

    text = raw.strip()
    if text.startswith(("{", "[")):
        try:
            decoded = json.loads(text)
        except ValueError:
            logger.warning("SCENE_RPC_DEBUG is not valid JSON; reading it as a flag list")
        else:
            if isinstance(decoded, dict):
                return cfg_bool(decoded.get("enabled"), True), decoded.get("flags")
            return True, decoded
    lowered = text.lower()
    if lowered in ("", "0", "false", "no", "off"):
        return False, None
    if lowered in ("1", "true", "yes", "on"):
        return True, None
    return True, text


def load_debug_policy(env: Optional[Mapping[str, str]] = None) -> DebugPolicy:
    env = env if env is not None else os.environ
    raw = env.get("SCENE_RPC_DEBUG")
    if raw is None:
        return DebugPolicy()

    enabled, raw_flags = _parse(raw)
    flags = _normalise_flags(raw_flags)
    unknown = flags - KNOWN_FLAGS
    if unknown:
        logger.warning("Ignoring unknown SCENE_RPC_DEBUG flags: %s", ", ".join(sorted(unknown)))
    if not enabled:
        return DebugPolicy()
    return DebugPolicy(enabled=True, logging=LoggingToggles.from_flags(flags & KNOWN_FLAGS))


__all__ = ["DebugPolicy", "KNOWN_FLAGS", "LoggingToggles", "load_debug_policy"]
