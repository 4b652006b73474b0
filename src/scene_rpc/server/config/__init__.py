"""Shared configuration for the scene-rpc receiver."""

from .loader import load_processor_config, load_processor_ctx, load_serve_config
from .logging_policy import DebugPolicy, LoggingToggles, load_debug_policy
from .models import ProcessorConfig, ProcessorCtx, ServeConfig

__all__ = [
    "DebugPolicy",
    "LoggingToggles",
    "ProcessorConfig",
    "ProcessorCtx",
    "ServeConfig",
    "load_debug_policy",
    "load_processor_config",
    "load_processor_ctx",
    "load_serve_config",
]
