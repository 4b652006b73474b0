"""Exception hierarchy for the scene protocol.

Library code raises these; :class:`scene_rpc.server.processor.MessageProcessor`
is the only place that turns them into ``Status`` replies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .envelopes import Status
    from .validation import ValidationReport


class ProtocolError(Exception):
    """Base class for recoverable protocol failures."""


class UnsupportedMessageError(ProtocolError):
    """Raised when a ``msg_id`` has no schema (or no handler)."""

    def __init__(self, msg_id: str) -> None:
        super().__init__(f"unsupported msg_id {msg_id!r}")
        self.msg_id = msg_id


class MessageDecodeError(ProtocolError):
    """Raised when bytes or mappings do not match the expected schema."""


class MessageValidationError(ProtocolError):
    """Raised when a decoded message fails semantic validation."""

    def __init__(self, report: "ValidationReport") -> None:
        super().__init__(report.format())
        self.report = report


class RemoteError(Exception):
    """Client-side error carrying the non-OK status returned by the peer."""

    def __init__(self, status: "Status", msg_id: Optional[str] = None) -> None:
        prefix = f"{msg_id}: " if msg_id else ""
        super().__init__(f"{prefix}status {int(status.code)}: {status.str}")
        self.status = status
        self.msg_id = msg_id


__all__ = [
    "MessageDecodeError",
    "MessageValidationError",
    "ProtocolError",
    "RemoteError",
    "UnsupportedMessageError",
]
