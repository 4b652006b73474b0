"""Request/reply headers, the status body, and msgpack framing.

A request on the wire is two msgpack maps back to back: the header
``{"msg_id": ...}`` followed by the body named by ``msg_id``. Replies use
the same layout with a :class:`Reply` header, usually followed by a
:class:`Status`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, ClassVar, Dict, Mapping

import msgpack

from .errors import MessageDecodeError

STATUS_MSG_ID = "status"


class StatusCode(IntEnum):
    OK = 0
    UNSUPPORTED_MSG_ID = 1
    UNPACKING_FAILED = 2
    PROCESSING_FAILED = 3


def _header_msg_id(data: Any, owner: str) -> str:
    if not isinstance(data, Mapping):
        raise MessageDecodeError(f"{owner} header must be a mapping, got {type(data).__name__}")
    msg_id = data.get("msg_id")
    if not isinstance(msg_id, str):
        raise MessageDecodeError(f"{owner} header 'msg_id' must be a string")
    return msg_id


@dataclass(frozen=True)
class Request:
    """Header naming the schema of the body that follows."""

    msg_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"msg_id": self.msg_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Request":
        return cls(msg_id=_header_msg_id(data, "request"))


@dataclass(frozen=True)
class Reply:
    """Header naming the schema of the reply body that follows."""

    msg_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"msg_id": self.msg_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Reply":
        return cls(msg_id=_header_msg_id(data, "reply"))


@dataclass(frozen=True)
class Status:
    """Result of processing one request. ``code == 0`` means success."""

    MSG_ID: ClassVar[str] = STATUS_MSG_ID

    code: int = StatusCode.OK
    str: str = ""

    @classmethod
    def ok(cls) -> "Status":
        return cls()

    @classmethod
    def unsupported_msg_id(cls) -> "Status":
        return cls(StatusCode.UNSUPPORTED_MSG_ID, "unsupported msg_id")

    @classmethod
    def unpacking_failed(cls) -> "Status":
        return cls(StatusCode.UNPACKING_FAILED, "error during unpacking")

    @classmethod
    def processing_failed(cls) -> "Status":
        return cls(StatusCode.PROCESSING_FAILED, "error while processing message")

    @property
    def is_ok(self) -> bool:
        return self.code == StatusCode.OK

    def with_detail(self, detail: "str") -> "Status":
        if not detail:
            return self
        return replace(self, str=f"{self.str}: {detail}" if self.str else detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": int(self.code), "str": self.str}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Status":
        if not isinstance(data, Mapping):
            raise MessageDecodeError(f"status must be a mapping, got {type(data).__name__}")
        code = data.get("code", 0)
        text = data.get("str", "")
        if isinstance(code, bool) or not isinstance(code, int):
            raise MessageDecodeError("status.code must be an integer")
        # ``str`` below is the builtin; the field name only shadows it in the class body
        if not isinstance(text, str):
            raise MessageDecodeError("status.str must be a string")
        return cls(code=code, str=text)


def pack_object(payload: Mapping[str, Any]) -> bytes:
    """Serialize one mapping; binary fields stay msgpack ``bin``."""

    return msgpack.packb(payload, use_bin_type=True)


def pack_message(body: Any) -> bytes:
    return pack_object(body.to_dict())


def pack_request(body: Any) -> bytes:
    """Header ``Request{body.MSG_ID}`` followed by *body*."""

    return pack_object(Request(body.MSG_ID).to_dict()) + pack_message(body)


def pack_reply(body: Any) -> bytes:
    """Header ``Reply{body.MSG_ID}`` followed by *body*."""

    return pack_object(Reply(body.MSG_ID).to_dict()) + pack_message(body)


__all__ = [
    "Reply",
    "Request",
    "STATUS_MSG_ID",
    "Status",
    "StatusCode",
    "pack_message",
    "pack_object",
    "pack_reply",
    "pack_request",
]
