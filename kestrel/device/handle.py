"""Device handle: the single owner of an accelerator context.

The handle opens one device, builds the kernel library for it once, and
exposes dispatch(name, shape, *args). Dispatches go onto one stream and
run in submission order; the host only waits when it reads memory back
with download(). Buffers are passed as kestrel buffers or views and are
resolved to device tensors here, so callers never handle raw addresses.

Every device failure is fatal: driver exceptions are wrapped into
DeviceInitError or DispatchError and nothing is retried.
"""
from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
import torch

from kestrel.config.device import DeviceConfig, KernelBackend, pick_device
from kestrel.console import logger as console
from kestrel.device.launch import LaunchShape
from kestrel.errors import DeviceError, DeviceInitError, DispatchError
from kestrel.kernels.library import KernelLibrary, warmup_calls
from kestrel.kernels.runtime import triton_usable

if TYPE_CHECKING:
    from kestrel.device.trace import DispatchTrace

logger = logging.getLogger(__name__)


class DeviceResident(Protocol):
    """Anything that can hand the handle a flat device tensor."""

    def tensor(self) -> torch.Tensor: ...


def resolve_backend(config: DeviceConfig, device: torch.device) -> KernelBackend:
    """Turn AUTO into a concrete backend for the chosen device."""
    if config.backend != KernelBackend.AUTO:
        return config.backend
    return KernelBackend.TRITON if triton_usable(device) else KernelBackend.TORCH


class DeviceHandle:
    """Owns one accelerator context and the kernel set compiled for it.

    Everything allocated through a handle is only valid while the handle
    is open. After close(), every call raises DeviceError.
    """

    def __init__(
        self,
        *,
        device: torch.device,
        library: KernelLibrary,
        config: DeviceConfig,
    ) -> None:
        self.device = device
        self.library = library
        self.config = config
        self.stream: torch.cuda.Stream | None = (
            torch.cuda.Stream(device=device) if device.type == "cuda" else None
        )
        self.dispatch_count = 0
        self._closed = False
        self._traces: list["DispatchTrace"] = []

    @classmethod
    def initialize(cls, config: DeviceConfig | None = None) -> "DeviceHandle":
        """Open the configured device and compile the kernel set once.

        Raises DeviceInitError when the device is missing or the kernel
        set cannot be compiled.
        """
        config = config or DeviceConfig()
        try:
            device = pick_device(config.device)
        except RuntimeError as e:
            raise DeviceInitError(f"unknown device {config.device!r}: {e}") from e
        if device.type == "cuda" and not torch.cuda.is_available():
            raise DeviceInitError(f"device {device} requested but CUDA is not available")

        backend = resolve_backend(config, device)
        if backend == KernelBackend.TRITON and not triton_usable(device):
            raise DeviceInitError(f"Triton kernels need a CUDA device with Triton, got {device}")

        library = KernelLibrary.load(backend, rope=config.rope)
        try:
            handle = cls(device=device, library=library, config=config)
        except (RuntimeError, AssertionError) as e:
            raise DeviceInitError(f"could not open a stream on {device}: {e}") from e
        if config.warmup:
            handle.warmup()

        console.info(f"device [highlight]{device}[/highlight] ready")
        console.key_value(
            {
                "backend": backend.value,
                "kernels": len(library),
                "rope": config.rope.value,
                "tile": config.tile,
                "block size": config.block_size,
            },
            title="Kernel set",
        )
        return handle

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drain the stream and release the handle."""
        if self._closed:
            return
        self.synchronize()
        self._closed = True
        logger.debug("device handle on %s closed after %d dispatches", self.device, self.dispatch_count)

    def __enter__(self) -> "DeviceHandle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: object | None,
    ) -> None:
        self.close()

    def _require_open(self) -> None:
        if self._closed:
            raise DeviceError("device handle is closed")

    def _on_stream(self) -> contextlib.AbstractContextManager[object]:
        if self.stream is None:
            return contextlib.nullcontext()
        return torch.cuda.stream(self.stream)

    def warmup(self) -> None:
        """Launch every kernel once so JIT compilation happens now."""
        self._require_open()
        try:
            with self._on_stream():
                for name, shape, args in warmup_calls(self.device):
                    self.library[name](shape, *args)
            self.synchronize()
        except DeviceError:
            raise
        except Exception as e:
            raise DeviceInitError(f"kernel set failed to compile: {e}") from e

    # ─────────────────────────────────────────────────────────────────────
    # Memory
    # ─────────────────────────────────────────────────────────────────────

    def alloc(self, size: int) -> torch.Tensor:
        """Allocate a zeroed flat float32 buffer on the device."""
        self._require_open()
        try:
            with self._on_stream():
                return torch.zeros(int(size), dtype=torch.float32, device=self.device)
        except RuntimeError as e:
            raise DeviceError(f"allocation of {size} floats failed: {e}") from e

    def upload(self, host: np.ndarray | torch.Tensor) -> torch.Tensor:
        """Copy a host array into a new flat float32 device buffer."""
        self._require_open()
        src = torch.as_tensor(np.asarray(host, dtype=np.float32)).reshape(-1)
        try:
            with self._on_stream():
                return src.to(self.device, copy=True)
        except RuntimeError as e:
            raise DeviceError(f"upload of {src.numel()} floats failed: {e}") from e

    def download(self, buf: DeviceResident | torch.Tensor) -> torch.Tensor:
        """Copy device memory back to the host.

        This is a synchronization point: it waits for every dispatch
        queued before it on the stream.
        """
        self._require_open()
        tensor = buf if isinstance(buf, torch.Tensor) else buf.tensor()
        self.synchronize()
        try:
            return tensor.detach().to("cpu", copy=True)
        except RuntimeError as e:
            raise DeviceError(f"download failed: {e}") from e

    def synchronize(self) -> None:
        """Block until all queued work on the stream has finished."""
        if self.stream is not None:
            try:
                self.stream.synchronize()
            except RuntimeError as e:
                raise DeviceError(f"stream synchronization failed: {e}") from e

    # ─────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────

    def dispatch(self, name: str, shape: LaunchShape, *args: object) -> None:
        """Submit one kernel invocation to the stream.

        Buffer arguments may be DeviceBuffers, BufferViews or tensors;
        scalars pass through unchanged.
        """
        if self._closed:
            raise DispatchError(name, "device handle is closed")
        try:
            kernel = self.library[name]
        except KeyError:
            raise DispatchError(name, "no such kernel") from None
        if not shape.is_valid():
            raise DispatchError(name, f"invalid launch shape {shape}")

        resolved = tuple(self._resolve(a) for a in args)
        for trace in self._traces:
            trace.record(name, shape)
        logger.debug("dispatch %s grid=%s block=%s", name, shape.grid, shape.block)
        try:
            with self._on_stream():
                kernel(shape, *resolved)
        except DeviceError:
            raise
        except Exception as e:
            raise DispatchError(name, str(e)) from e
        self.dispatch_count += 1

    def _resolve(self, arg: object) -> object:
        if isinstance(arg, torch.Tensor):
            return arg
        tensor = getattr(arg, "tensor", None)
        if callable(tensor):
            return tensor()
        return arg

    # ─────────────────────────────────────────────────────────────────────
    # Tracing
    # ─────────────────────────────────────────────────────────────────────

    def add_trace(self, trace: "DispatchTrace") -> None:
        self._traces.append(trace)

    def remove_trace(self, trace: "DispatchTrace") -> None:
        self._traces.remove(trace)

