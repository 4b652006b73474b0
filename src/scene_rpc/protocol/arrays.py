"""Typed array encoding shared by every scene message.

An :class:`Array` is ``{type, shape, data}`` where ``type`` is the numpy
array-interface type string (``"<f4"``, ``"|u1"`` ...), ``shape`` is a tuple
of ints and ``data`` is a read-only ``memoryview`` over bytes owned by
somebody else: the caller's buffer on encode, the decode buffer on decode.

The mapping produced by :meth:`Array.to_dict` can be rebuilt in numpy with::

    np.frombuffer(d["data"], dtype=np.dtype(d["type"])).reshape(d["shape"])
"""

from __future__ import annotations

import math
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from .errors import MessageDecodeError

ARRAY_MSG_ID = "array"

# Resolved once from the host; tags never carry per-call state.
HOST_BYTE_ORDER = "<" if sys.byteorder == "little" else ">"

_TAG_RE = re.compile(r"^[<>|=]([fiu])([1248])$")


class ElementType(Enum):
    """Closed set of element kinds an :class:`Array` may carry."""

    FLOAT32 = ("f", 4)
    FLOAT64 = ("f", 8)
    INT8 = ("i", 1)
    INT16 = ("i", 2)
    INT32 = ("i", 4)
    INT64 = ("i", 8)
    UINT8 = ("u", 1)
    UINT16 = ("u", 2)
    UINT32 = ("u", 4)
    UINT64 = ("u", 8)

    @property
    def kind(self) -> str:
        return self.value[0]

    @property
    def itemsize(self) -> int:
        return self.value[1]

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(type_str(self))


def _build_type_strs() -> dict[ElementType, str]:
    table: dict[ElementType, str] = {}
    for member in ElementType:
        order = "|" if member.itemsize == 1 else HOST_BYTE_ORDER
        table[member] = f"{order}{member.kind}{member.itemsize}"
    return table


_TYPE_STRS = _build_type_strs()
_ELEMENT_TYPES = {tag: member for member, tag in _TYPE_STRS.items()}


def type_str(element_type: ElementType) -> str:
    """Return the canonical type tag, e.g. ``type_str(ElementType.FLOAT32) == "<f4"``."""

    return _TYPE_STRS[element_type]


def element_type_from_str(tag: str) -> ElementType:
    """Inverse of :func:`type_str` for host-order tags."""

    try:
        return _ELEMENT_TYPES[tag]
    except KeyError:
        raise ValueError(f"unsupported array type {tag!r}") from None


def tag_itemsize(tag: str) -> Optional[int]:
    """Element width encoded in *tag*, or ``None`` when the tag is not recognised."""

    match = _TAG_RE.match(tag)
    if match is None:
        return None
    return int(match.group(2))


def _readonly_bytes(buffer: Any) -> memoryview:
    view = memoryview(buffer)
    if not view.c_contiguous:
        raise ValueError("array buffer must be C-contiguous")
    if view.nbytes == 0:
        # memoryview.cast refuses shapes containing zeros
        return memoryview(b"")
    if view.format != "B" or view.ndim != 1:
        view = view.cast("B")
    return view.toreadonly()


@dataclass(frozen=True)
class Array:
    """Non-owning typed, shaped view over a contiguous byte buffer.

    ``data`` must not outlive the buffer it was built from. Use :meth:`copy`
    before handing an Array to another thread or keeping it past the
    lifetime of the decode buffer.
    """

    type: str = ""
    shape: tuple[int, ...] = ()
    data: memoryview = field(default_factory=lambda: memoryview(b""))

    @classmethod
    def empty(cls) -> "Array":
        return cls()

    @classmethod
    def from_buffer(cls, buffer: Any, element_type: ElementType, shape: Sequence[int]) -> "Array":
        """Borrow *buffer* as an array of *element_type* with *shape*."""

        dims = tuple(int(d) for d in shape)
        if not dims:
            # shape () is reserved for Array.empty()
            raise ValueError("rank-0 arrays are not supported; reshape to (1,)")
        if any(d < 0 for d in dims):
            raise ValueError(f"negative dimension in shape {list(dims)}")
        nbytes = element_type.itemsize * math.prod(dims)
        view = _readonly_bytes(buffer)
        if len(view) < nbytes:
            raise ValueError(
                f"buffer holds {len(view)} bytes but shape {list(dims)} of {type_str(element_type)} needs {nbytes}"
            )
        return cls(type=type_str(element_type), shape=dims, data=view[:nbytes])

    @classmethod
    def from_numpy(cls, array: np.ndarray) -> "Array":
        """Borrow a C-contiguous numpy array without copying."""

        if not array.flags.c_contiguous:
            raise ValueError("numpy array must be C-contiguous; call np.ascontiguousarray first")
        element_type = element_type_from_str(array.dtype.str)
        return cls.from_buffer(array.reshape(-1).view(np.uint8), element_type, array.shape)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Array":
        if not isinstance(data, Mapping):
            raise MessageDecodeError(f"array must be a mapping, got {type(data).__name__}")
        tag = data.get("type", "")
        if not isinstance(tag, str):
            raise MessageDecodeError("array 'type' must be a string")
        raw_shape = data.get("shape", ())
        if not isinstance(raw_shape, (list, tuple)):
            raise MessageDecodeError("array 'shape' must be a sequence")
        shape: list[int] = []
        for dim in raw_shape:
            if isinstance(dim, bool) or not isinstance(dim, int):
                raise MessageDecodeError(f"array 'shape' entries must be ints, got {dim!r}")
            shape.append(dim)
        payload = data.get("data", b"")
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise MessageDecodeError("array 'data' must be binary")
        return cls(type=tag, shape=tuple(shape), data=_readonly_bytes(payload))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "shape": list(self.shape), "data": self.data}

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def size(self) -> int:
        return math.prod(self.shape) if self.shape else 0

    @property
    def nbytes(self) -> int:
        return len(self.data)

    def expected_nbytes(self) -> Optional[int]:
        itemsize = tag_itemsize(self.type)
        if itemsize is None:
            return None
        return itemsize * self.size

    def as_numpy(self, *, copy: bool = False) -> np.ndarray:
        """Reinterpret the payload using the stored type tag.

        No check is made that the tag is what the caller expects; validate
        the array first. With ``copy=False`` the result shares memory with
        the source buffer and is read-only.
        """

        arr = np.frombuffer(self.data, dtype=np.dtype(self.type)).reshape(self.shape)
        return arr.copy() if copy else arr

    def copy(self) -> "Array":
        """Deep copy whose payload is owned by the new Array."""

        return Array(type=self.type, shape=self.shape, data=memoryview(bytes(self.data)).toreadonly())

    def __repr__(self) -> str:
        return f"Array(type={self.type!r}, shape={list(self.shape)}, nbytes={self.nbytes})"


def as_array(value: Any) -> Array:
    """Accept an :class:`Array`, numpy array, or ``None`` (meaning empty)."""

    if value is None:
        return Array.empty()
    if isinstance(value, Array):
        return value
    if isinstance(value, np.ndarray):
        return Array.from_numpy(value)
    raise TypeError(f"expected Array or numpy.ndarray, got {type(value).__name__}")


__all__ = [
    "ARRAY_MSG_ID",
    "Array",
    "ElementType",
    "HOST_BYTE_ORDER",
    "as_array",
    "element_type_from_str",
    "tag_itemsize",
    "type_str",
]
