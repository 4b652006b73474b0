"""Allocate, free and copy raw byte buffers across devices.

:class:`MemoryManager` is an explicit registry built once at startup
(:meth:`MemoryManager.create_default`) and handed to whoever needs device
buffers. Misuse (a ``None`` buffer in a non-empty copy, an unsupported
device) raises :class:`MemoryManagerError`; these are programming errors in
trusted code and are never turned into protocol status replies.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import numpy as np
import psutil

from .device import HOST, Device, DeviceType

logger = logging.getLogger(__name__)


class MemoryManagerError(RuntimeError):
    """Fatal misuse of the memory manager."""


class DeviceMemoryManager(Protocol):
    backend: str

    def malloc(self, nbytes: int, device: Device) -> Any: ...

    def free(self, handle: Any, device: Device) -> None: ...

    def memcpy(self, dst: Any, dst_device: Device, src: Any, src_device: Device, nbytes: int) -> None: ...


def _host_bytes(buffer: Any) -> np.ndarray:
    """Flat uint8 view over a host buffer (numpy array or buffer-protocol object)."""

    if isinstance(buffer, np.ndarray):
        if not buffer.flags.c_contiguous:
            raise MemoryManagerError("host buffers must be C-contiguous")
        return buffer.reshape(-1).view(np.uint8)
    view = memoryview(buffer)
    if view.nbytes == 0:
        return np.empty(0, dtype=np.uint8)
    return np.frombuffer(view.cast("B") if view.format != "B" or view.ndim != 1 else view, dtype=np.uint8)


def _check_extent(view: Any, nbytes: int, what: str) -> None:
    if int(view.size) < nbytes:
        raise MemoryManagerError(f"{what} holds {int(view.size)} bytes, copy needs {nbytes}")


class CPUMemoryManager:
    """Host memory backed by numpy ``uint8`` arrays."""

    def __init__(self) -> None:
        self.backend = "cpu"

    def malloc(self, nbytes: int, device: Device) -> np.ndarray:
        return np.empty(int(nbytes), dtype=np.uint8)

    def free(self, handle: Any, device: Device) -> None:
        # numpy owns the allocation; dropping the last reference releases it
        return None

    def memcpy(self, dst: Any, dst_device: Device, src: Any, src_device: Device, nbytes: int) -> None:
        dst_view = _host_bytes(dst)
        src_view = _host_bytes(src)
        _check_extent(dst_view, nbytes, "destination")
        _check_extent(src_view, nbytes, "source")
        if not dst_view.flags.writeable:
            raise MemoryManagerError("destination buffer is read-only")
        dst_view[:nbytes] = src_view[:nbytes]

    def get_available_memory(self) -> int:
        """Available system RAM in bytes."""
        return psutil.virtual_memory().available

    def get_used_memory(self) -> int:
        return psutil.virtual_memory().used

    def __repr__(self) -> str:
        available_gb = self.get_available_memory() / 1e9
        return f"CPUMemoryManager(available={available_gb:.1f}GB)"


class CUDAMemoryManager:
    """Device memory backed by cupy ``uint8`` arrays.

    Copies between two CUDA devices assume the devices can address each
    other (same family); no staging through the host is attempted.
    """

    def __init__(self) -> None:
        import cupy as cp  # type: ignore

        self._cp = cp
        self.backend = "cuda"

    def malloc(self, nbytes: int, device: Device) -> Any:
        with self._cp.cuda.Device(device.index):
            return self._cp.empty(int(nbytes), dtype=self._cp.uint8)

    def free(self, handle: Any, device: Device) -> None:
        # cupy returns blocks to its memory pool once the array is collected
        return None

    def _device_bytes(self, buffer: Any) -> Any:
        return buffer.ravel().view(self._cp.uint8)

    def memcpy(self, dst: Any, dst_device: Device, src: Any, src_device: Device, nbytes: int) -> None:
        if src_device.is_host and dst_device.is_host:
            raise MemoryManagerError("CUDA memory manager asked to copy host to host")
        if src_device.is_host:
            src_view = _host_bytes(src)
            dst_view = self._device_bytes(dst)
            _check_extent(src_view, nbytes, "source")
            _check_extent(dst_view, nbytes, "destination")
            with self._cp.cuda.Device(dst_device.index):
                dst_view[:nbytes].set(src_view[:nbytes])
        elif dst_device.is_host:
            src_view = self._device_bytes(src)
            dst_view = _host_bytes(dst)
            _check_extent(src_view, nbytes, "source")
            _check_extent(dst_view, nbytes, "destination")
            with self._cp.cuda.Device(src_device.index):
                dst_view[:nbytes] = src_view[:nbytes].get()
        else:
            src_view = self._device_bytes(src)
            dst_view = self._device_bytes(dst)
            _check_extent(src_view, nbytes, "source")
            _check_extent(dst_view, nbytes, "destination")
            with self._cp.cuda.Device(dst_device.index):
                dst_view[:nbytes] = src_view[:nbytes]


@dataclass
class MemoryStatistic:
    """Per-device malloc/free bookkeeping."""

    malloc_count: Counter = field(default_factory=Counter)
    free_count: Counter = field(default_factory=Counter)
    bytes_allocated: Counter = field(default_factory=Counter)
    _live: dict[int, tuple[str, int]] = field(default_factory=dict)

    def record_malloc(self, handle: Any, nbytes: int, device: Device) -> None:
        key = str(device)
        self.malloc_count[key] += 1
        self.bytes_allocated[key] += int(nbytes)
        self._live[id(handle)] = (key, int(nbytes))

    def record_free(self, handle: Any, device: Device) -> None:
        key = str(device)
        self.free_count[key] += 1
        entry = self._live.pop(id(handle), None)
        if entry is not None:
            self.bytes_allocated[entry[0]] -= entry[1]
        else:
            logger.debug("free of untracked handle on %s", key)

    def outstanding(self, device: Device) -> int:
        key = str(device)
        return self.malloc_count[key] - self.free_count[key]


class MemoryManager:
    """Route allocation and copies to the manager owning each device type."""

    def __init__(
        self,
        managers: Mapping[DeviceType, DeviceMemoryManager],
        *,
        statistic: Optional[MemoryStatistic] = None,
        log_calls: bool = False,
    ) -> None:
        self._managers: dict[DeviceType, DeviceMemoryManager] = dict(managers)
        self.statistic = statistic if statistic is not None else MemoryStatistic()
        self._log_calls = bool(log_calls)

    @classmethod
    def create_default(cls, *, enable_cuda: Optional[bool] = None, log_calls: bool = False) -> "MemoryManager":
        """CPU always; CUDA when requested or, by default, when cupy sees a device."""

        from scene_rpc import _check_cuda

        managers: dict[DeviceType, DeviceMemoryManager] = {DeviceType.CPU: CPUMemoryManager()}
        want_cuda = _check_cuda() if enable_cuda is None else enable_cuda
        if want_cuda:
            managers[DeviceType.CUDA] = CUDAMemoryManager()
        return cls(managers, log_calls=log_calls)

    def device_manager(self, device: Device) -> DeviceMemoryManager:
        manager = self._managers.get(device.type)
        if device.type is DeviceType.UNSUPPORTED or manager is None:
            raise MemoryManagerError(f"Unimplemented device '{device}'.")
        return manager

    def supports(self, device: Device) -> bool:
        return device.type is not DeviceType.UNSUPPORTED and device.type in self._managers

    def malloc(self, nbytes: int, device: Device) -> Any:
        handle = self.device_manager(device).malloc(nbytes, device)
        self.statistic.record_malloc(handle, nbytes, device)
        if self._log_calls:
            logger.info("malloc %d bytes on %s", nbytes, device)
        return handle

    def free(self, handle: Any, device: Device) -> None:
        self.device_manager(device).free(handle, device)
        self.statistic.record_free(handle, device)
        if self._log_calls:
            logger.info("free on %s", device)

    def memcpy(self, dst: Any, dst_device: Device, src: Any, src_device: Device, nbytes: int) -> None:
        # empty copies are valid even when the handles are None
        if nbytes == 0:
            return
        if src is None or dst is None:
            raise MemoryManagerError("src and dst cannot be None.")
        for device in (dst_device, src_device):
            if device.type not in (DeviceType.CPU, DeviceType.CUDA):
                raise MemoryManagerError(f"MemoryManager.memcpy: Unimplemented device '{device}'.")

        if dst_device.is_host and src_device.is_host:
            manager = self.device_manager(src_device)
        elif src_device.type is DeviceType.CUDA:
            manager = self.device_manager(src_device)
        else:
            manager = self.device_manager(dst_device)
        if self._log_calls:
            logger.info("memcpy %d bytes %s -> %s via %s", nbytes, src_device, dst_device, manager.backend)
        manager.memcpy(dst, dst_device, src, src_device, int(nbytes))

    def memcpy_from_host(self, dst: Any, dst_device: Device, host_src: Any, nbytes: int) -> None:
        self.memcpy(dst, dst_device, host_src, HOST, nbytes)

    def memcpy_to_host(self, host_dst: Any, src: Any, src_device: Device, nbytes: int) -> None:
        self.memcpy(host_dst, HOST, src, src_device, nbytes)


__all__ = [
    "CPUMemoryManager",
    "CUDAMemoryManager",
    "DeviceMemoryManager",
    "MemoryManager",
    "MemoryManagerError",
    "MemoryStatistic",
]
