"""Scene-update message shapes.

Each message is a frozen dataclass with a fixed ``MSG_ID`` and a
``to_dict``/``from_dict`` pair. Fields are keyed by name on the wire, so
decoders ignore unknown keys, accept any ordering and fall back to the
documented default for missing keys. Type mismatches raise
:class:`~scene_rpc.protocol.errors.MessageDecodeError`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Iterator, Mapping, Optional, Sequence

import numpy as np

from .arrays import Array, ElementType, as_array, type_str
from .errors import MessageDecodeError
from .validation import (
    ValidationReport,
    check_non_empty,
    check_rank,
    check_shape,
    check_type,
    format_shape,
)

MESH_DATA_MSG_ID = "mesh_data"
SET_MESH_DATA_MSG_ID = "set_mesh_data"
GET_MESH_DATA_MSG_ID = "get_mesh_data"
CAMERA_DATA_MSG_ID = "camera_data"
SET_CAMERA_DATA_MSG_ID = "set_camera_data"
SET_TIME_MSG_ID = "set_time"
SET_ACTIVE_CAMERA_MSG_ID = "set_active_camera"
SET_PROPERTIES_MSG_ID = "set_properties"

INDEX_TYPES: tuple[str, ...] = (type_str(ElementType.INT32), type_str(ElementType.INT64))

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


# ---- Decode helpers -------------------------------------------------------------


def _mapping(data: Any, owner: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise MessageDecodeError(f"{owner} must be a mapping, got {type(data).__name__}")
    return data


def _get_str(data: Mapping[str, Any], name: str, owner: str, default: str = "") -> str:
    value = data.get(name, default)
    if not isinstance(value, str):
        raise MessageDecodeError(f"{owner}.{name} must be a string")
    return value


def _get_int(data: Mapping[str, Any], name: str, owner: str, default: int = 0, *, int32: bool = False) -> int:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MessageDecodeError(f"{owner}.{name} must be an integer")
    if int32 and not (_INT32_MIN <= value <= _INT32_MAX):
        raise MessageDecodeError(f"{owner}.{name} does not fit in int32")
    return value


def _get_floats(
    data: Mapping[str, Any],
    name: str,
    owner: str,
    default: Sequence[float],
    *,
    length: Optional[int] = None,
) -> tuple[float, ...]:
    value = data.get(name, default)
    if not isinstance(value, (list, tuple)):
        raise MessageDecodeError(f"{owner}.{name} must be a sequence of numbers")
    out: list[float] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (int, float)):
            raise MessageDecodeError(f"{owner}.{name} must contain only numbers")
        out.append(float(item))
    if length is not None and len(out) != length:
        raise MessageDecodeError(f"{owner}.{name} must have {length} values, got {len(out)}")
    return tuple(out)


def _get_array(data: Mapping[str, Any], name: str, owner: str) -> Array:
    value = data.get(name)
    if value is None:
        return Array.empty()
    try:
        return Array.from_dict(value)
    except MessageDecodeError as exc:
        raise MessageDecodeError(f"{owner}.{name}: {exc}") from exc


def _get_array_map(data: Mapping[str, Any], name: str, owner: str) -> Dict[str, Array]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MessageDecodeError(f"{owner}.{name} must be a mapping of arrays")
    arrays: Dict[str, Array] = {}
    for key, entry in value.items():
        if not isinstance(key, str):
            raise MessageDecodeError(f"{owner}.{name} keys must be strings")
        try:
            arrays[key] = Array.from_dict(entry)
        except MessageDecodeError as exc:
            raise MessageDecodeError(f"{owner}.{name}[{key!r}]: {exc}") from exc
    return arrays


def _array_map_to_dict(arrays: Mapping[str, Array]) -> Dict[str, Any]:
    return {key: arr.to_dict() for key, arr in arrays.items()}


# ---- Validation options ---------------------------------------------------------


@dataclass(frozen=True)
class CheckOptions:
    """Knobs for semantic validation beyond the baseline mesh checks."""

    validate_lines: bool = True
    strict_attributes: bool = False


DEFAULT_CHECK_OPTIONS = CheckOptions()


class SceneMessage:
    """Behaviour shared by every message body."""

    MSG_ID: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:  # pragma: no cover - overridden
        raise NotImplementedError

    def iter_arrays(self) -> Iterator[tuple[str, Array]]:
        """Yield ``(field, array)`` for every array carried by the message."""
        return iter(())

    def check_message(
        self,
        report: Optional[ValidationReport] = None,
        *,
        options: CheckOptions = DEFAULT_CHECK_OPTIONS,
    ) -> bool:
        return True


# ---- Mesh -----------------------------------------------------------------------


def _check_index_array(
    array: Array,
    report: ValidationReport,
    *,
    field: str,
    min_run: int,
) -> bool:
    """Faces/lines family: rank 1 stream or rank 2 rows of at least *min_run*."""

    if not array.shape:
        return True
    if not check_rank(array, [1, 2], report, field=field):
        return False
    if not check_type(array, INDEX_TYPES, report, field=field):
        return False
    if not check_non_empty(array, report, field=field):
        return False
    if array.ndim == 2 and array.shape[1] < min_run:
        report.add(field, f"shape [?, >{min_run - 1}]", format_shape(array.shape))
        return False
    return True


def _count_runs(array: Array, min_run: int) -> Optional[int]:
    """Number of entries in an index array, walking ``n i1 .. in`` streams.

    Returns ``None`` when a rank-1 stream is truncated or has a run shorter
    than *min_run*. Only call after the rank/type checks passed.
    """

    if array.ndim == 2:
        return array.shape[0]
    flat = array.as_numpy()
    count = 0
    pos = 0
    total = int(flat.shape[0])
    while pos < total:
        run = int(flat[pos])
        if run < min_run or pos + 1 + run > total:
            return None
        pos += 1 + run
        count += 1
    return count


@dataclass(frozen=True)
class MeshData(SceneMessage):
    """Point clouds, triangle meshes, line sets.

    ``vertices`` has shape ``[num_vertices, 3]``. ``faces`` and ``lines`` are
    int32/int64 index arrays: rank 2 ``[count, n]`` for fixed-size polygons
    or line strips, rank 1 for a flat ``n i1 i2 ... in`` stream of variable
    length entries (n >= 3 for faces, n >= 2 for lines). Attribute maps and
    ``textures`` are free-form.
    """

    MSG_ID: ClassVar[str] = MESH_DATA_MSG_ID

    vertices: Array = field(default_factory=Array.empty)
    vertex_attributes: Dict[str, Array] = field(default_factory=dict)
    faces: Array = field(default_factory=Array.empty)
    face_attributes: Dict[str, Array] = field(default_factory=dict)
    lines: Array = field(default_factory=Array.empty)
    line_attributes: Dict[str, Array] = field(default_factory=dict)
    textures: Dict[str, Array] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vertices": self.vertices.to_dict(),
            "vertex_attributes": _array_map_to_dict(self.vertex_attributes),
            "faces": self.faces.to_dict(),
            "face_attributes": _array_map_to_dict(self.face_attributes),
            "lines": self.lines.to_dict(),
            "line_attributes": _array_map_to_dict(self.line_attributes),
            "textures": _array_map_to_dict(self.textures),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MeshData":
        owner = MESH_DATA_MSG_ID
        data = _mapping(data, owner)
        return cls(
            vertices=_get_array(data, "vertices", owner),
            vertex_attributes=_get_array_map(data, "vertex_attributes", owner),
            faces=_get_array(data, "faces", owner),
            face_attributes=_get_array_map(data, "face_attributes", owner),
            lines=_get_array(data, "lines", owner),
            line_attributes=_get_array_map(data, "line_attributes", owner),
            textures=_get_array_map(data, "textures", owner),
        )

    def iter_arrays(self) -> Iterator[tuple[str, Array]]:
        yield "vertices", self.vertices
        yield "faces", self.faces
        yield "lines", self.lines
        for group in ("vertex_attributes", "face_attributes", "line_attributes", "textures"):
            for name, arr in getattr(self, group).items():
                yield f"{group}[{name!r}]", arr

    def check_vertices(self, report: Optional[ValidationReport] = None) -> bool:
        report = report if report is not None else ValidationReport()
        return check_non_empty(self.vertices, report, field="vertices array") and check_shape(
            self.vertices, [-1, 3], report, field="vertices array"
        )

    def check_faces(self, report: Optional[ValidationReport] = None) -> bool:
        report = report if report is not None else ValidationReport()
        return _check_index_array(self.faces, report, field="faces array", min_run=3)

    def check_lines(self, report: Optional[ValidationReport] = None) -> bool:
        report = report if report is not None else ValidationReport()
        return _check_index_array(self.lines, report, field="lines array", min_run=2)

    def check_attributes(self, report: Optional[ValidationReport] = None) -> bool:
        """First dimension of each attribute must match its owner's count.

        Call after :meth:`check_vertices`, :meth:`check_faces` and
        :meth:`check_lines` have passed.
        """

        report = report if report is not None else ValidationReport()
        status = True
        owners = (
            ("vertex_attributes", "vertices array", self.vertices.shape[0] if self.vertices.shape else 0),
            ("face_attributes", "faces array", self._entry_count(self.faces, 3, report, "faces array")),
            ("line_attributes", "lines array", self._entry_count(self.lines, 2, report, "lines array")),
        )
        for group, owner, count in owners:
            attributes: Dict[str, Array] = getattr(self, group)
            if count is None:
                status = False
                continue
            for name, arr in attributes.items():
                if not arr.shape or arr.shape[0] != count:
                    report.add(
                        f"{group}[{name!r}]",
                        f"first dimension {count} to match the {owner}",
                        f"shape {format_shape(arr.shape)}",
                    )
                    status = False
        return status

    @staticmethod
    def _entry_count(array: Array, min_run: int, report: ValidationReport, field: str) -> Optional[int]:
        if not array.shape:
            return 0
        if not _check_index_array(array, report, field=field, min_run=min_run):
            return None
        count = _count_runs(array, min_run)
        if count is None:
            report.add(field, f"a well-formed 'n i1 ... in' stream with n >= {min_run}", f"{array.size} entries")
        return count

    def check_message(
        self,
        report: Optional[ValidationReport] = None,
        *,
        options: CheckOptions = DEFAULT_CHECK_OPTIONS,
    ) -> bool:
        report = report if report is not None else ValidationReport()
        status = self.check_vertices(report) and self.check_faces(report)
        if status and options.validate_lines:
            status = self.check_lines(report)
        if status and options.strict_attributes:
            status = self.check_attributes(report)
        if not status:
            report.add(f"{MESH_DATA_MSG_ID} message")
        return status


@dataclass(frozen=True)
class SetMeshData(SceneMessage):
    """Add or replace mesh data at ``path`` in the scene tree."""

    MSG_ID: ClassVar[str] = SET_MESH_DATA_MSG_ID

    path: str = ""
    time: int = 0
    layer: str = ""
    data: MeshData = field(default_factory=MeshData)

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "time": self.time, "layer": self.layer, "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetMeshData":
        owner = SET_MESH_DATA_MSG_ID
        data = _mapping(data, owner)
        body = data.get("data")
        return cls(
            path=_get_str(data, "path", owner),
            time=_get_int(data, "time", owner, int32=True),
            layer=_get_str(data, "layer", owner),
            data=MeshData.from_dict(body) if body is not None else MeshData(),
        )

    def iter_arrays(self) -> Iterator[tuple[str, Array]]:
        return self.data.iter_arrays()

    def check_message(
        self,
        report: Optional[ValidationReport] = None,
        *,
        options: CheckOptions = DEFAULT_CHECK_OPTIONS,
    ) -> bool:
        return self.data.check_message(report, options=options)


@dataclass(frozen=True)
class GetMeshData(SceneMessage):
    """Request the mesh stored at ``path`` for ``time`` and ``layer``."""

    MSG_ID: ClassVar[str] = GET_MESH_DATA_MSG_ID

    path: str = ""
    time: int = 0
    layer: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "time": self.time, "layer": self.layer}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GetMeshData":
        owner = GET_MESH_DATA_MSG_ID
        data = _mapping(data, owner)
        return cls(
            path=_get_str(data, "path", owner),
            time=_get_int(data, "time", owner, int32=True),
            layer=_get_str(data, "layer", owner),
        )


# ---- Camera ---------------------------------------------------------------------

_IDENTITY_QUAT = (0.0, 0.0, 0.0, 1.0)


@dataclass(frozen=True)
class CameraData(SceneMessage):
    """Extrinsics and intrinsics of one camera.

    The world to camera transform is ``X_cam = X_world * R + t`` with ``R``
    stored as a quaternion ``[x, y, z, w]``. Intrinsics follow colmap's
    naming, e.g. ``intrinsic_model="SIMPLE_RADIAL"`` with parameters
    ``[f, cx, cy, k]``.
    """

    MSG_ID: ClassVar[str] = CAMERA_DATA_MSG_ID

    rotation: tuple[float, float, float, float] = _IDENTITY_QUAT
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    intrinsic_model: str = ""
    intrinsic_parameters: tuple[float, ...] = ()
    width: int = 0
    height: int = 0
    images: Dict[str, Array] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "R": list(self.rotation),
            "t": list(self.translation),
            "intrinsic_model": self.intrinsic_model,
            "intrinsic_parameters": list(self.intrinsic_parameters),
            "width": self.width,
            "height": self.height,
            "images": _array_map_to_dict(self.images),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CameraData":
        owner = CAMERA_DATA_MSG_ID
        data = _mapping(data, owner)
        return cls(
            rotation=_get_floats(data, "R", owner, _IDENTITY_QUAT, length=4),  # type: ignore[arg-type]
            translation=_get_floats(data, "t", owner, (0.0, 0.0, 0.0), length=3),  # type: ignore[arg-type]
            intrinsic_model=_get_str(data, "intrinsic_model", owner),
            intrinsic_parameters=_get_floats(data, "intrinsic_parameters", owner, ()),
            width=_get_int(data, "width", owner, int32=True),
            height=_get_int(data, "height", owner, int32=True),
            images=_get_array_map(data, "images", owner),
        )

    def iter_arrays(self) -> Iterator[tuple[str, Array]]:
        for name, arr in self.images.items():
            yield f"images[{name!r}]", arr

    def check_message(
        self,
        report: Optional[ValidationReport] = None,
        *,
        options: CheckOptions = DEFAULT_CHECK_OPTIONS,
    ) -> bool:
        report = report if report is not None else ValidationReport()
        status = True
        for name, values in (("R", self.rotation), ("t", self.translation), ("intrinsic_parameters", self.intrinsic_parameters)):
            if not all(math.isfinite(v) for v in values):
                report.add(f"camera_data {name}", "finite values", str(list(values)))
                status = False
        if status and not any(self.rotation):
            report.add("camera_data R", "a non-zero quaternion", str(list(self.rotation)))
            status = False
        for name, value in (("width", self.width), ("height", self.height)):
            if value < 0:
                report.add(f"camera_data {name}", "a non-negative size", str(value))
                status = False
        if not status:
            report.add(f"{CAMERA_DATA_MSG_ID} message")
        return status


@dataclass(frozen=True)
class SetCameraData(SceneMessage):
    """Add or replace a camera at ``path`` in the scene tree."""

    MSG_ID: ClassVar[str] = SET_CAMERA_DATA_MSG_ID

    path: str = ""
    time: int = 0
    layer: str = ""
    data: CameraData = field(default_factory=CameraData)

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "time": self.time, "layer": self.layer, "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetCameraData":
        owner = SET_CAMERA_DATA_MSG_ID
        data = _mapping(data, owner)
        body = data.get("data")
        return cls(
            path=_get_str(data, "path", owner),
            time=_get_int(data, "time", owner, int32=True),
            layer=_get_str(data, "layer", owner),
            data=CameraData.from_dict(body) if body is not None else CameraData(),
        )

    def iter_arrays(self) -> Iterator[tuple[str, Array]]:
        return self.data.iter_arrays()

    def check_message(
        self,
        report: Optional[ValidationReport] = None,
        *,
        options: CheckOptions = DEFAULT_CHECK_OPTIONS,
    ) -> bool:
        return self.data.check_message(report, options=options)


# ---- Scene state ----------------------------------------------------------------


@dataclass(frozen=True)
class SetTime(SceneMessage):
    """Set the current scene time."""

    MSG_ID: ClassVar[str] = SET_TIME_MSG_ID

    time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetTime":
        data = _mapping(data, SET_TIME_MSG_ID)
        return cls(time=_get_int(data, "time", SET_TIME_MSG_ID, int32=True))


@dataclass(frozen=True)
class SetActiveCamera(SceneMessage):
    """Make the object at ``path`` the active camera."""

    MSG_ID: ClassVar[str] = SET_ACTIVE_CAMERA_MSG_ID

    path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetActiveCamera":
        data = _mapping(data, SET_ACTIVE_CAMERA_MSG_ID)
        return cls(path=_get_str(data, "path", SET_ACTIVE_CAMERA_MSG_ID))


@dataclass(frozen=True)
class SetProperties(SceneMessage):
    """Set application-specific properties on the object at ``path``."""

    MSG_ID: ClassVar[str] = SET_PROPERTIES_MSG_ID

    path: str = ""
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"path": self.path}
        if self.properties:
            payload["properties"] = dict(self.properties)
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SetProperties":
        owner = SET_PROPERTIES_MSG_ID
        data = _mapping(data, owner)
        props = data.get("properties")
        if props is None:
            props = {}
        if not isinstance(props, Mapping):
            raise MessageDecodeError(f"{owner}.properties must be a mapping")
        if any(not isinstance(key, str) for key in props):
            raise MessageDecodeError(f"{owner}.properties keys must be strings")
        return cls(path=_get_str(data, "path", owner), properties=dict(props))


SCENE_MESSAGE_TYPES: Dict[str, type] = {
    cls.MSG_ID: cls
    for cls in (
        MeshData,
        SetMeshData,
        GetMeshData,
        CameraData,
        SetCameraData,
        SetTime,
        SetActiveCamera,
        SetProperties,
    )
}


def mesh_from_numpy(
    vertices: np.ndarray,
    faces: Optional[np.ndarray] = None,
    lines: Optional[np.ndarray] = None,
    **attributes: Mapping[str, np.ndarray],
) -> MeshData:
    """Build a :class:`MeshData` borrowing the given numpy arrays.

    Keyword arguments ``vertex_attributes``, ``face_attributes``,
    ``line_attributes`` and ``textures`` take name to array mappings.
    """

    unknown = set(attributes) - {"vertex_attributes", "face_attributes", "line_attributes", "textures"}
    if unknown:
        raise TypeError(f"unexpected attribute groups: {sorted(unknown)}")
    groups = {
        group: {name: as_array(arr) for name, arr in mapping.items()}
        for group, mapping in attributes.items()
    }
    return MeshData(
        vertices=as_array(vertices),
        faces=as_array(faces),
        lines=as_array(lines),
        **groups,
    )


__all__ = [
    "CAMERA_DATA_MSG_ID",
    "CameraData",
    "CheckOptions",
    "DEFAULT_CHECK_OPTIONS",
    "GET_MESH_DATA_MSG_ID",
    "GetMeshData",
    "INDEX_TYPES",
    "MESH_DATA_MSG_ID",
    "MeshData",
    "SCENE_MESSAGE_TYPES",
    "SET_ACTIVE_CAMERA_MSG_ID",
    "SET_CAMERA_DATA_MSG_ID",
    "SET_MESH_DATA_MSG_ID",
    "SET_PROPERTIES_MSG_ID",
    "SET_TIME_MSG_ID",
    "SceneMessage",
    "SetActiveCamera",
    "SetCameraData",
    "SetMeshData",
    "SetProperties",
    "SetTime",
    "mesh_from_numpy",
]
