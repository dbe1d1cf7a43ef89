"""Device and kernel-set settings.

These choose which accelerator to open, which kernel backend to compile,
and which launch geometry to use. They do not affect buffer sizes.
"""
from __future__ import annotations

import enum

import torch

from kestrel.config import Config, PositiveInt


class KernelBackend(str, enum.Enum):
    """Implementation of the kernel set.

    TRITON: JIT-compiled Triton programs (CUDA only)
    TORCH: torch tensor programs that run on any torch device
    AUTO: TRITON when CUDA and Triton are both present, else TORCH
    """

    AUTO = "auto"
    TRITON = "triton"
    TORCH = "torch"


class RopeVariant(str, enum.Enum):
    """Second-component formula of the rotary kernel.

    ROTATION: (x0*cos - x1*sin, x0*sin + x1*cos), a true rotation
    REFERENCE: (x0*cos - x1*sin, x0*cos + x1*cos), cos in the second term;
        like ROTATION it reads the unrotated pair and covers every head
    """

    ROTATION = "rotation"
    REFERENCE = "reference"


class DeviceConfig(Config):
    """Which accelerator to open and how to launch on it."""

    device: str = "auto"
    backend: KernelBackend = KernelBackend.AUTO
    rope: RopeVariant = RopeVariant.ROTATION
    block_size: PositiveInt = 1024
    tile: PositiveInt = 32
    warmup: bool = True


def pick_device(explicit: str | None = None) -> torch.device:
    """
    pick_device chooses CUDA when it is present unless the caller overrides it.
    """
    if explicit and explicit != "auto":
        return torch.device(explicit)
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")
