from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


def env_str(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return default
    v = v.strip()
    return v if v != "" else default


def env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    v = env.get(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    v = env.get(name)
    if not v:
        return default
    try:
        return int(v, 10)
    except ValueError:
        return default


def env_json(env: Mapping[str, str], name: str) -> dict[str, Any]:
    raw = env.get(name)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse %s; ignoring", name, exc_info=True)
        return {}
    if isinstance(data, dict):
        return data
    logger.warning("%s must be a JSON object; ignoring", name)
    return {}


def cfg_bool(value: object, default: bool) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        val = value.strip().lower()
        if val in {"1", "true", "yes", "on"}:
            return True
        if val in {"0", "false", "no", "off", ""}:
            return False
    return bool(default)


def cfg_int(value: object, default: int) -> int:
    if value is None:
        return int(default)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return int(default)
    return int(default)


def cfg_str(value: object, default: str) -> str:
    if value is None:
        return default
    return str(value).strip() or default
