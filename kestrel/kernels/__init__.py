"""The fixed kernel set and its two implementations.

Every kernel parallelizes over one output index space and is dispatched
by name through a DeviceHandle:
- matmul, copy, array_add, array_mult, silu: one lane per output element
- rmsnorm, softmax: a single reducing lane per call
- apply_rope: one lane per rotated coordinate pair
- multi_head_attention: one lane per head
"""
from kestrel.kernels.library import KERNEL_NAMES, KernelFn, KernelLibrary

__all__ = ["KERNEL_NAMES", "KernelFn", "KernelLibrary"]
