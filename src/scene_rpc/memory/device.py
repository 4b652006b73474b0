"""Device identifiers for the memory manager."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DeviceType(Enum):
    CPU = "CPU"
    CUDA = "CUDA"
    UNSUPPORTED = "UNSUPPORTED"


@dataclass(frozen=True)
class Device:
    """A device kind plus an index, written ``"CPU:0"`` or ``"CUDA:1"``."""

    type: DeviceType = DeviceType.CPU
    index: int = 0
    name: str = ""

    @classmethod
    def parse(cls, spec: str) -> "Device":
        """Parse ``"KIND:index"``; unknown kinds map to ``UNSUPPORTED``."""

        kind, _, idx = spec.strip().partition(":")
        try:
            index = int(idx) if idx else 0
        except ValueError:
            raise ValueError(f"invalid device index in {spec!r}") from None
        try:
            dtype = DeviceType(kind.upper())
        except ValueError:
            return cls(DeviceType.UNSUPPORTED, index, name=kind)
        if dtype is DeviceType.UNSUPPORTED:
            return cls(dtype, index, name=kind)
        return cls(dtype, index)

    @property
    def is_host(self) -> bool:
        return self.type is DeviceType.CPU

    def __str__(self) -> str:
        label = self.name if self.type is DeviceType.UNSUPPORTED and self.name else self.type.value
        return f"{label}:{self.index}"


HOST = Device(DeviceType.CPU, 0)

__all__ = ["Device", "DeviceType", "HOST"]
