"""Device memory management for array payload buffers."""

from .device import HOST, Device, DeviceType
from .manager import (
    CPUMemoryManager,
    CUDAMemoryManager,
    DeviceMemoryManager,
    MemoryManager,
    MemoryManagerError,
    MemoryStatistic,
)

__all__ = [
    "CPUMemoryManager",
    "CUDAMemoryManager",
    "Device",
    "DeviceMemoryManager",
    "DeviceType",
    "HOST",
    "MemoryManager",
    "MemoryManagerError",
    "MemoryStatistic",
]
