"""Decode, validate and dispatch one inbound request at a time.

``MessageProcessor.process`` takes the raw request bytes and always returns
reply bytes: a ``Reply`` header followed by either a ``Status`` or the
message a handler produced. Failures map to status codes:

1. unknown ``msg_id`` or no handler registered for it
2. header or body could not be decoded
3. body decoded but failed validation, or the handler raised

Decoded arrays borrow the decode buffer. Handlers that keep an array past
the call must ``copy()`` it first.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from scene_rpc.memory.manager import MemoryManagerError
from scene_rpc.protocol.envelopes import Status, pack_reply
from scene_rpc.protocol.errors import (
    MessageDecodeError,
    MessageValidationError,
    UnsupportedMessageError,
)
from scene_rpc.protocol.messages import SCENE_MESSAGE_TYPES
from scene_rpc.protocol.parser import MessageParser
from scene_rpc.protocol.validation import ValidationReport, check_byte_length
from scene_rpc.server.config.models import ProcessorCtx
from scene_rpc.server.registry import HandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProcessorStats:
    requests: int = 0
    replies: Counter = field(default_factory=Counter)

    def record(self, status: Status) -> None:
        self.replies[int(status.code)] += 1


class MessageProcessor:
    """Receiver side of the protocol; one instance may serve many connections."""

    def __init__(
        self,
        registry: HandlerRegistry,
        ctx: Optional[ProcessorCtx] = None,
        *,
        parser: Optional[MessageParser] = None,
    ) -> None:
        self._registry = registry
        self._ctx = ctx if ctx is not None else ProcessorCtx()
        self._parser = parser if parser is not None else MessageParser(SCENE_MESSAGE_TYPES)
        self.stats = ProcessorStats()

    @property
    def ctx(self) -> ProcessorCtx:
        return self._ctx

    def process(self, raw: bytes) -> bytes:
        """Handle one request and return the packed reply."""

        result = self.handle(raw)
        try:
            return pack_reply(result)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("failed to pack reply %s: %s", getattr(result, "MSG_ID", "?"), exc)
            status = Status.processing_failed().with_detail(f"reply could not be packed: {exc}")
            self.stats.record(status)
            return pack_reply(status)

    def handle(self, raw: bytes) -> Any:
        """Like :meth:`process` but returns the reply body unpacked."""

        self.stats.requests += 1
        msg_id = "?"
        try:
            self._check_size(raw)
            header, offset = self._parser.read_header(raw)
            msg_id = header.msg_id
            if self._ctx.debug_policy.logging.log_decode:
                logger.info("request msg_id=%s bytes=%d body_offset=%d", msg_id, len(raw), offset)
            if msg_id not in self._registry or not self._parser.supports(msg_id):
                raise UnsupportedMessageError(msg_id)
            message = self._parser.read_body(raw, msg_id, offset)
            self._validate(msg_id, message)
            result = self._dispatch(msg_id, message)
        except UnsupportedMessageError as exc:
            logger.info("rejecting unsupported msg_id=%r", exc.msg_id)
            status = Status.unsupported_msg_id().with_detail(exc.msg_id)
        except MessageDecodeError as exc:
            logger.info("failed to unpack msg_id=%s: %s", msg_id, exc)
            status = Status.unpacking_failed().with_detail(str(exc))
        except MessageValidationError as exc:
            logger.info("invalid %s: %s", msg_id, exc.report.format())
            status = Status.processing_failed().with_detail(exc.report.format())
        except MemoryManagerError:
            raise
        except Exception as exc:
            logger.exception("handler for %s failed", msg_id)
            status = Status.processing_failed().with_detail(str(exc))
        else:
            if isinstance(result, Status):
                self.stats.record(result)
            else:
                self.stats.record(Status.ok())
            return result
        self.stats.record(status)
        return status

    def _check_size(self, raw: bytes) -> None:
        limit = self._ctx.cfg.max_message_bytes
        if limit and len(raw) > limit:
            raise MessageDecodeError(f"message of {len(raw)} bytes exceeds limit of {limit}")

    def _validate(self, msg_id: str, message: Any) -> None:
        cfg = self._ctx.cfg
        report = ValidationReport()
        if cfg.check_byte_length:
            for name, array in message.iter_arrays():
                check_byte_length(array, report, field=f"{name} array")
            if not report.ok:
                raise MessageValidationError(report)
        if not message.check_message(report, options=cfg.check_options):
            raise MessageValidationError(report)
        if self._ctx.debug_policy.logging.log_validate:
            logger.info("validated %s", msg_id)

    def _dispatch(self, msg_id: str, message: Any) -> Any:
        handler = self._registry.get_handler(msg_id)
        if handler is None:
            raise UnsupportedMessageError(msg_id)
        if self._ctx.debug_policy.logging.log_dispatch:
            logger.info("dispatch %s -> %s", msg_id, getattr(handler, "__qualname__", handler))
        result = handler(message)
        if result is None:
            return Status.ok()
        if isinstance(result, Status):
            return result
        if hasattr(result, "MSG_ID") and hasattr(result, "to_dict"):
            return result
        raise TypeError(f"handler for {msg_id} returned unsupported {type(result).__name__}")


__all__ = ["MessageProcessor", "ProcessorStats"]
