"""Dispatch tracing for ordering checks and debugging.

A DispatchTrace attached to a handle records the name and launch shape of
every kernel submitted through it, in submission order. Because the
stream executes in submission order, the record is also the execution
order on the device.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from kestrel.device.launch import LaunchShape

if TYPE_CHECKING:
    from kestrel.device.handle import DeviceHandle


@dataclass(frozen=True)
class DispatchRecord:
    """One submitted kernel invocation."""

    kernel: str
    shape: LaunchShape


class DispatchTrace:
    """Captures dispatches issued through a DeviceHandle."""

    def __init__(self, handle: "DeviceHandle") -> None:
        self._handle = handle
        self._attached = False
        self.records: list[DispatchRecord] = []

    def attach(self) -> None:
        """Start recording dispatches."""
        if self._attached:
            raise ValueError("DispatchTrace is already attached.")
        self._handle.add_trace(self)
        self._attached = True

    def detach(self) -> None:
        """Stop recording dispatches."""
        if self._attached:
            self._handle.remove_trace(self)
            self._attached = False

    def clear(self) -> None:
        """Remove all captured records."""
        self.records.clear()

    def record(self, kernel: str, shape: LaunchShape) -> None:
        self.records.append(DispatchRecord(kernel=kernel, shape=shape))

    @property
    def kernels(self) -> list[str]:
        """Kernel names in submission order."""
        return [r.kernel for r in self.records]

    def __enter__(self) -> "DispatchTrace":
        """Context manager entry: attach to the handle."""
        self.attach()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: object | None,
    ) -> None:
        """Context manager exit: detach from the handle."""
        self.detach()
