"""Triton availability detection.

The Triton kernel set only works on CUDA. This module provides safe
runtime detection so the package imports and type-checks without Triton
installed; the torch kernel set is used instead.
"""
from __future__ import annotations

import importlib.util
from typing import TYPE_CHECKING

import torch

__all__ = ["TRITON_AVAILABLE", "triton_usable"]


try:
    _triton_spec = importlib.util.find_spec("triton") is not None
    _triton_lang_spec = importlib.util.find_spec("triton.language") is not None
except (ImportError, ValueError, AttributeError):
    _triton_spec = False
    _triton_lang_spec = False

# At type-check time, force this off so Triton-only code stays behind guards
TRITON_AVAILABLE: bool = (
    False if TYPE_CHECKING else bool(_triton_spec and _triton_lang_spec)
)


def triton_usable(device: torch.device) -> bool:
    """Check if the Triton kernel set can run on the given device."""
    return bool(TRITON_AVAILABLE) and device.type == "cuda" and torch.cuda.is_available()
