"""Kernel library: the compiled kernel set, registered under stable names.

A library is built once per process for one backend. Built-in names never
change; the sequencer and the tests refer to kernels only by these names.
"""
from __future__ import annotations

import functools
from collections.abc import Callable, Iterator, Mapping
from types import ModuleType

import torch

from kestrel.config.device import KernelBackend, RopeVariant
from kestrel.device.launch import LaunchShape
from kestrel.errors import DeviceInitError
from kestrel.kernels import torch_kernels, triton_kernels
from kestrel.kernels.runtime import TRITON_AVAILABLE

KERNEL_NAMES: tuple[str, ...] = (
    "matmul",
    "copy",
    "rmsnorm",
    "apply_rope",
    "softmax",
    "multi_head_attention",
    "array_add",
    "array_mult",
    "silu",
)

KernelFn = Callable[..., None]


class KernelLibrary(Mapping[str, KernelFn]):
    """Name → kernel mapping for one backend."""

    def __init__(self, backend: KernelBackend, kernels: Mapping[str, KernelFn]) -> None:
        missing = [name for name in KERNEL_NAMES if name not in kernels]
        if missing:
            raise DeviceInitError(f"kernel set is missing {', '.join(missing)}")
        self.backend = backend
        self._kernels = dict(kernels)

    @classmethod
    def load(
        cls,
        backend: KernelBackend,
        *,
        rope: RopeVariant = RopeVariant.ROTATION,
    ) -> "KernelLibrary":
        """Collect the kernel set for a concrete backend.

        The rotary variant is bound here so every apply_rope dispatch in a
        run uses the same formula.
        """
        module: ModuleType
        if backend == KernelBackend.TORCH:
            module = torch_kernels
        elif backend == KernelBackend.TRITON:
            if not TRITON_AVAILABLE or not triton_kernels.compiled():
                raise DeviceInitError("Triton backend requested but Triton is not installed")
            module = triton_kernels
        else:
            raise DeviceInitError(f"backend {backend.value!r} must be resolved before loading")

        kernels: dict[str, KernelFn] = {
            name: getattr(module, name) for name in KERNEL_NAMES if hasattr(module, name)
        }
        if "apply_rope" in kernels:
            kernels["apply_rope"] = functools.partial(kernels["apply_rope"], variant=rope)
        return cls(backend, kernels)

    def __getitem__(self, name: str) -> KernelFn:
        return self._kernels[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._kernels)

    def __len__(self) -> int:
        return len(self._kernels)


def warmup_calls(device: torch.device) -> list[tuple[str, LaunchShape, tuple[object, ...]]]:
    """One tiny, valid invocation per kernel.

    Launching these forces JIT compilation of the whole set at startup,
    so a compile failure is an initialization error rather than a fault
    in the middle of a run.
    """
    def buf(n: int, fill: float = 0.5) -> torch.Tensor:
        return torch.full((n,), fill, dtype=torch.float32, device=device)

    dim, n_heads, head_size, seq_len = 4, 2, 2, 2
    return [
        ("matmul", LaunchShape.tiled(2, 2), (buf(4), buf(6), buf(6), 3, 2, 2)),
        ("copy", LaunchShape.for_num_elems(4), (buf(4), buf(4), 4)),
        ("rmsnorm", LaunchShape.single(), (buf(4), buf(4), buf(4, 1.0), 0, 4, 1e-5)),
        (
            "apply_rope",
            LaunchShape.for_num_elems(n_heads * head_size // 2),
            (buf(dim), buf(dim), buf(seq_len, 1.0), buf(seq_len, 0.0), 0, n_heads, head_size),
        ),
        ("softmax", LaunchShape.single(), (buf(4), 4)),
        (
            "multi_head_attention",
            LaunchShape.per_program(n_heads),
            (
                buf(dim), buf(n_heads * seq_len), buf(dim),
                buf(seq_len * dim), buf(seq_len * dim),
                0, dim, 0, head_size, seq_len, n_heads,
            ),
        ),
        ("array_add", LaunchShape.for_num_elems(4), (buf(4), buf(4), 4)),
        ("array_mult", LaunchShape.for_num_elems(4), (buf(4), buf(4), 4)),
        ("silu", LaunchShape.for_num_elems(4), (buf(4), 4)),
    ]
