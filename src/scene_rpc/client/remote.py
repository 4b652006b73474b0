"""Sender helpers: build a request, ship it, decode the reply.

``SceneClient`` is transport agnostic; a transport is any callable taking the
packed request and returning the packed reply. :func:`websocket_transport`
provides one over a blocking websocket connection.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from scene_rpc.protocol.arrays import as_array
from scene_rpc.protocol.envelopes import Status, pack_request
from scene_rpc.protocol.errors import MessageDecodeError, RemoteError
from scene_rpc.protocol.messages import (
    CameraData,
    GetMeshData,
    MeshData,
    SetActiveCamera,
    SetCameraData,
    SetMeshData,
    SetProperties,
    SetTime,
)
from scene_rpc.protocol.parser import MessageParser

logger = logging.getLogger(__name__)

Transport = Callable[[bytes], bytes]


def _array_map(arrays: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return {name: as_array(arr) for name, arr in (arrays or {}).items()}


class SceneClient:
    def __init__(self, transport: Transport, *, parser: Optional[MessageParser] = None, raise_on_error: bool = False) -> None:
        self._transport = transport
        self._parser = parser if parser is not None else MessageParser()
        self._raise_on_error = bool(raise_on_error)

    def request(self, message: Any) -> Any:
        """Send *message* and return the decoded reply body."""

        raw = self._transport(pack_request(message))
        header, body = self._parser.parse_reply(raw)
        logger.debug("reply msg_id=%s for %s", header.msg_id, message.MSG_ID)
        return body

    def _send(self, message: Any) -> Status:
        reply = self.request(message)
        if not isinstance(reply, Status):
            raise MessageDecodeError(f"expected status reply to {message.MSG_ID}, got {getattr(reply, 'MSG_ID', type(reply).__name__)}")
        if self._raise_on_error and not reply.is_ok:
            raise RemoteError(reply, message.MSG_ID)
        return reply

    def set_mesh_data(
        self,
        path: str,
        vertices: Any,
        faces: Any = None,
        lines: Any = None,
        *,
        time: int = 0,
        layer: str = "",
        vertex_attributes: Optional[Mapping[str, Any]] = None,
        face_attributes: Optional[Mapping[str, Any]] = None,
        line_attributes: Optional[Mapping[str, Any]] = None,
        textures: Optional[Mapping[str, Any]] = None,
    ) -> Status:
        mesh = MeshData(
            vertices=as_array(vertices),
            vertex_attributes=_array_map(vertex_attributes),
            faces=as_array(faces),
            face_attributes=_array_map(face_attributes),
            lines=as_array(lines),
            line_attributes=_array_map(line_attributes),
            textures=_array_map(textures),
        )
        return self._send(SetMeshData(path=path, time=time, layer=layer, data=mesh))

    def get_mesh_data(self, path: str, *, time: int = 0, layer: str = "") -> MeshData:
        """Fetch a mesh; the returned arrays borrow the reply buffer."""

        msg = GetMeshData(path=path, time=time, layer=layer)
        reply = self.request(msg)
        if isinstance(reply, Status):
            raise RemoteError(reply, msg.MSG_ID)
        if not isinstance(reply, MeshData):
            raise MessageDecodeError(f"expected mesh_data reply, got {getattr(reply, 'MSG_ID', type(reply).__name__)}")
        return reply

    def set_camera_data(
        self,
        path: str,
        *,
        rotation: Sequence[float] = (0.0, 0.0, 0.0, 1.0),
        translation: Sequence[float] = (0.0, 0.0, 0.0),
        intrinsic_model: str = "",
        intrinsic_parameters: Sequence[float] = (),
        width: int = 0,
        height: int = 0,
        images: Optional[Mapping[str, Any]] = None,
        time: int = 0,
        layer: str = "",
    ) -> Status:
        camera = CameraData(
            rotation=tuple(float(v) for v in rotation),  # type: ignore[arg-type]
            translation=tuple(float(v) for v in translation),  # type: ignore[arg-type]
            intrinsic_model=intrinsic_model,
            intrinsic_parameters=tuple(float(v) for v in intrinsic_parameters),
            width=int(width),
            height=int(height),
            images=_array_map(images),
        )
        return self._send(SetCameraData(path=path, time=time, layer=layer, data=camera))

    def set_time(self, time: int) -> Status:
        return self._send(SetTime(time=int(time)))

    def set_active_camera(self, path: str) -> Status:
        return self._send(SetActiveCamera(path=path))

    def set_properties(self, path: str, **properties: Any) -> Status:
        return self._send(SetProperties(path=path, properties=properties))


def websocket_transport(uri: str, *, open_timeout: float = 10.0) -> Transport:
    """Blocking transport: one binary frame out, one binary frame back.

    The connection is opened lazily on first use and kept open; call
    ``transport.close()`` to release it.
    """

    from websockets.sync.client import connect

    state: Dict[str, Any] = {"ws": None}

    def _send(data: bytes) -> bytes:
        ws = state["ws"]
        if ws is None:
            ws = connect(uri, max_size=None, compression=None, open_timeout=open_timeout)
            state["ws"] = ws
        ws.send(data)
        reply = ws.recv()
        if isinstance(reply, str):
            raise MessageDecodeError("expected a binary reply frame")
        return reply

    def _close() -> None:
        ws = state["ws"]
        state["ws"] = None
        if ws is not None:
            ws.close()

    _send.close = _close  # type: ignore[attr-defined]
    return _send


__all__ = ["SceneClient", "Transport", "websocket_transport"]
