"""In-memory scene used as the default receiver.

Incoming arrays borrow the decode buffer, so the store copies every array
it keeps into host buffers obtained from the :class:`MemoryManager`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from scene_rpc.memory import HOST, MemoryManager
from scene_rpc.protocol.arrays import Array
from scene_rpc.protocol.messages import (
    GET_MESH_DATA_MSG_ID,
    SET_ACTIVE_CAMERA_MSG_ID,
    SET_CAMERA_DATA_MSG_ID,
    SET_MESH_DATA_MSG_ID,
    SET_PROPERTIES_MSG_ID,
    SET_TIME_MSG_ID,
    CameraData,
    GetMeshData,
    MeshData,
    SetActiveCamera,
    SetCameraData,
    SetMeshData,
    SetProperties,
    SetTime,
)
from scene_rpc.server.registry import HandlerRegistry

logger = logging.getLogger(__name__)

SceneKey = tuple[str, int, str]


@dataclass
class _Entry:
    value: Any
    buffers: list[Any] = field(default_factory=list)


class SceneStore:
    """Objects keyed by ``(path, time, layer)`` plus global scene state."""

    def __init__(self, memory: Optional[MemoryManager] = None) -> None:
        self._memory = memory if memory is not None else MemoryManager.create_default(enable_cuda=False)
        self._meshes: Dict[SceneKey, _Entry] = {}
        self._cameras: Dict[SceneKey, _Entry] = {}
        self.time: int = 0
        self.active_camera: Optional[str] = None
        self.properties: Dict[str, Dict[str, Any]] = {}

    # ---- storage ----------------------------------------------------------------

    def _own(self, array: Array, buffers: list[Any]) -> Array:
        nbytes = array.nbytes
        buf = self._memory.malloc(nbytes, HOST)
        buffers.append(buf)
        self._memory.memcpy_from_host(buf, HOST, array.data, nbytes)
        return Array(type=array.type, shape=tuple(array.shape), data=memoryview(buf).toreadonly())

    def _own_map(self, arrays: Dict[str, Array], buffers: list[Any]) -> Dict[str, Array]:
        return {name: self._own(arr, buffers) for name, arr in arrays.items()}

    def _release(self, entry: Optional[_Entry]) -> None:
        if entry is None:
            return
        for buf in entry.buffers:
            self._memory.free(buf, HOST)

    def put_mesh(self, key: SceneKey, mesh: MeshData) -> None:
        buffers: list[Any] = []
        owned = MeshData(
            vertices=self._own(mesh.vertices, buffers),
            vertex_attributes=self._own_map(mesh.vertex_attributes, buffers),
            faces=self._own(mesh.faces, buffers),
            face_attributes=self._own_map(mesh.face_attributes, buffers),
            lines=self._own(mesh.lines, buffers),
            line_attributes=self._own_map(mesh.line_attributes, buffers),
            textures=self._own_map(mesh.textures, buffers),
        )
        self._release(self._meshes.get(key))
        self._meshes[key] = _Entry(owned, buffers)

    def get_mesh(self, key: SceneKey) -> MeshData:
        entry = self._meshes.get(key)
        if entry is None:
            path, time, layer = key
            raise LookupError(f"no mesh at path={path!r} time={time} layer={layer!r}")
        return entry.value

    def put_camera(self, key: SceneKey, camera: CameraData) -> None:
        buffers: list[Any] = []
        owned = replace(camera, images=self._own_map(camera.images, buffers))
        self._release(self._cameras.get(key))
        self._cameras[key] = _Entry(owned, buffers)

    def get_camera(self, key: SceneKey) -> CameraData:
        entry = self._cameras.get(key)
        if entry is None:
            raise LookupError(f"no camera at {key!r}")
        return entry.value

    def paths(self) -> set[str]:
        return {key[0] for key in self._meshes} | {key[0] for key in self._cameras}

    def clear(self) -> None:
        for entry in list(self._meshes.values()) + list(self._cameras.values()):
            self._release(entry)
        self._meshes.clear()
        self._cameras.clear()
        self.properties.clear()
        self.active_camera = None
        self.time = 0

    # ---- handlers ---------------------------------------------------------------

    def on_set_mesh_data(self, msg: SetMeshData) -> None:
        self.put_mesh((msg.path, msg.time, msg.layer), msg.data)
        logger.debug("stored mesh path=%s time=%d layer=%s vertices=%s", msg.path, msg.time, msg.layer, list(msg.data.vertices.shape))

    def on_get_mesh_data(self, msg: GetMeshData) -> MeshData:
        return self.get_mesh((msg.path, msg.time, msg.layer))

    def on_set_camera_data(self, msg: SetCameraData) -> None:
        self.put_camera((msg.path, msg.time, msg.layer), msg.data)

    def on_set_time(self, msg: SetTime) -> None:
        self.time = msg.time

    def on_set_active_camera(self, msg: SetActiveCamera) -> None:
        if msg.path not in {key[0] for key in self._cameras}:
            raise LookupError(f"no camera at path={msg.path!r}")
        self.active_camera = msg.path

    def on_set_properties(self, msg: SetProperties) -> None:
        if msg.path not in self.paths():
            raise LookupError(f"no object at path={msg.path!r}")
        self.properties.setdefault(msg.path, {}).update(msg.properties)

    def register(self, registry: HandlerRegistry) -> HandlerRegistry:
        registry.register(SET_MESH_DATA_MSG_ID, self.on_set_mesh_data)
        registry.register(GET_MESH_DATA_MSG_ID, self.on_get_mesh_data)
        registry.register(SET_CAMERA_DATA_MSG_ID, self.on_set_camera_data)
        registry.register(SET_TIME_MSG_ID, self.on_set_time)
        registry.register(SET_ACTIVE_CAMERA_MSG_ID, self.on_set_active_camera)
        registry.register(SET_PROPERTIES_MSG_ID, self.on_set_properties)
        return registry


__all__ = ["SceneKey", "SceneStore"]
