"""Configuration dataclasses shared across the server package."""

from __future__ import annotations

from dataclasses import dataclass, field

from scene_rpc.protocol.messages import CheckOptions
from scene_rpc.server.config.logging_policy import DebugPolicy, load_debug_policy


@dataclass(frozen=True)
class ProcessorConfig:
    """Validation and admission settings for inbound messages."""

    validate_lines: bool = True
    strict_attributes: bool = False
    check_byte_length: bool = True
    max_message_bytes: int = 0  # 0 = unlimited

    @property
    def check_options(self) -> CheckOptions:
        return CheckOptions(
            validate_lines=self.validate_lines,
            strict_attributes=self.strict_attributes,
        )


@dataclass(frozen=True)
class ServeConfig:
    """Websocket adapter settings."""

    host: str = "127.0.0.1"
    port: int = 51454
    max_size: int | None = None


@dataclass(frozen=True)
class ProcessorCtx:
    """Resolved receiver context, built once at startup and passed down."""

    cfg: ProcessorConfig = field(default_factory=ProcessorConfig)
    serve: ServeConfig = field(default_factory=ServeConfig)
    debug_policy: DebugPolicy = field(default_factory=lambda: load_debug_policy({}))


__all__ = ["ProcessorConfig", "ProcessorCtx", "ServeConfig"]
