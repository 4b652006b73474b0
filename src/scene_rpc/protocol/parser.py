"""Two-phase decoding of request and reply streams."""

from __future__ import annotations

import io
import logging
from typing import Any, Callable, Mapping, Optional, TypeVar

import msgpack

from .envelopes import STATUS_MSG_ID, Reply, Request, Status
from .errors import MessageDecodeError, UnsupportedMessageError
from .messages import SCENE_MESSAGE_TYPES

logger = logging.getLogger(__name__)

HeaderT = TypeVar("HeaderT", Request, Reply)

MESSAGE_TYPES: dict[str, type] = {**SCENE_MESSAGE_TYPES, STATUS_MSG_ID: Status}

_UNPACK_ERRORS = (msgpack.UnpackException, ValueError, TypeError)


def unpack_object(raw: Any) -> Any:
    """Decode exactly one msgpack object from *raw*."""

    try:
        return msgpack.unpackb(raw, raw=False)
    except _UNPACK_ERRORS as exc:
        raise MessageDecodeError(f"malformed msgpack body: {exc}") from exc


class MessageParser:
    """Decode a header, then look its ``msg_id`` up to decode the body.

    The header and body are consecutive msgpack objects in the same buffer;
    :meth:`read_header` returns the offset where the body starts.
    """

    def __init__(self, message_types: Optional[Mapping[str, type]] = None) -> None:
        self._types: dict[str, type] = dict(MESSAGE_TYPES if message_types is None else message_types)

    def supports(self, msg_id: str) -> bool:
        return msg_id in self._types

    def message_ids(self) -> tuple[str, ...]:
        return tuple(self._types.keys())

    def read_header(self, raw: bytes) -> tuple[Request, int]:
        return self._read_header(raw, Request.from_dict)

    def read_reply_header(self, raw: bytes) -> tuple[Reply, int]:
        return self._read_header(raw, Reply.from_dict)

    def read_body(self, raw: bytes, msg_id: str, offset: int = 0) -> Any:
        loader = self._types.get(msg_id)
        if loader is None:
            raise UnsupportedMessageError(msg_id)
        body = unpack_object(memoryview(raw)[offset:])
        return self.decode(msg_id, body)

    def decode(self, msg_id: str, data: Mapping[str, Any]) -> Any:
        """Build the message registered for *msg_id* from a decoded mapping."""

        loader = self._types.get(msg_id)
        if loader is None:
            raise UnsupportedMessageError(msg_id)
        try:
            return loader.from_dict(data)  # type: ignore[attr-defined]
        except MessageDecodeError:
            raise
        except (TypeError, ValueError, KeyError) as exc:
            raise MessageDecodeError(f"{msg_id}: {exc}") from exc

    def parse_request(self, raw: bytes) -> tuple[Request, Any]:
        header, offset = self.read_header(raw)
        return header, self.read_body(raw, header.msg_id, offset)

    def parse_reply(self, raw: bytes) -> tuple[Reply, Any]:
        header, offset = self.read_reply_header(raw)
        return header, self.read_body(raw, header.msg_id, offset)

    def _read_header(self, raw: bytes, loader: Callable[[Mapping[str, Any]], HeaderT]) -> tuple[HeaderT, int]:
        # file-like input so only the header chunk is buffered, not the whole body
        unpacker = msgpack.Unpacker(io.BytesIO(raw), raw=False)
        try:
            data = unpacker.unpack()
        except msgpack.OutOfData as exc:
            raise MessageDecodeError("truncated message header") from exc
        except _UNPACK_ERRORS as exc:
            raise MessageDecodeError(f"malformed message header: {exc}") from exc
        header = loader(data)
        offset = unpacker.tell()
        logger.debug("decoded header msg_id=%s body_offset=%d", header.msg_id, offset)
        return header, offset


__all__ = ["MESSAGE_TYPES", "MessageParser", "unpack_object"]
