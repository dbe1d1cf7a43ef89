"""Device buffers and the table that owns them."""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass

import numpy as np
import torch

from kestrel.device.handle import DeviceHandle
from kestrel.errors import ConfigError


class DeviceBuffer:
    """A named, fixed-size, flat float32 array in device memory."""

    def __init__(self, name: str, data: torch.Tensor) -> None:
        if data.dim() != 1 or data.dtype != torch.float32:
            raise ValueError(f"{name}: expected a flat float32 tensor, got {data.dtype} {tuple(data.shape)}")
        self.name = name
        self.data = data

    @property
    def size(self) -> int:
        return int(self.data.numel())

    def tensor(self) -> torch.Tensor:
        return self.data

    def view(self, offset: int, length: int) -> "BufferView":
        """A window of length elements starting at offset."""
        offset, length = int(offset), int(length)
        if offset < 0 or length < 0 or offset + length > self.size:
            raise ConfigError(
                f"{self.name}: view [{offset}, {offset + length}) outside buffer of {self.size}"
            )
        return BufferView(self, offset, length)

    def __repr__(self) -> str:
        return f"DeviceBuffer({self.name!r}, size={self.size})"


@dataclass(frozen=True)
class BufferView:
    """An offset window into a DeviceBuffer.

    Writes through the view land in the underlying buffer.
    """

    buffer: DeviceBuffer
    offset: int
    length: int

    def tensor(self) -> torch.Tensor:
        return self.buffer.data.narrow(0, self.offset, self.length)


class BufferTable(Mapping[str, DeviceBuffer]):
    """Owns every buffer allocated for one run, keyed by name.

    Buffers are never reallocated; a second allocation under the same
    name is an error.
    """

    def __init__(self, handle: DeviceHandle) -> None:
        self.handle = handle
        self._buffers: dict[str, DeviceBuffer] = {}

    def _add(self, name: str, data: torch.Tensor) -> DeviceBuffer:
        if name in self._buffers:
            raise ValueError(f"buffer {name!r} already allocated")
        buf = DeviceBuffer(name, data)
        self._buffers[name] = buf
        return buf

    def allocate(self, name: str, size: int) -> DeviceBuffer:
        """Allocate a zeroed buffer of size floats."""
        return self._add(name, self.handle.alloc(size))

    def upload(self, name: str, host: np.ndarray) -> DeviceBuffer:
        """Copy a host array into a new buffer, flattened row-major."""
        return self._add(name, self.handle.upload(host))

    @property
    def nbytes(self) -> int:
        return sum(b.size for b in self._buffers.values()) * 4

    def release(self) -> None:
        """Drop every buffer; the table is empty afterwards."""
        self._buffers.clear()

    def __getitem__(self, name: str) -> DeviceBuffer:
        return self._buffers[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._buffers)

    def __len__(self) -> int:
        return len(self._buffers)
