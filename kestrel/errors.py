"""Error taxonomy for the device-execution layer.

Three kinds of failure are kept apart so a host process can tell them
apart when it logs and exits:
- ConfigError: shapes or settings that can never work (caught early)
- DeviceError: the accelerator failed; buffers are in an undefined state
- CacheOrderError: a key/value cache cell was used out of causal order
"""
from __future__ import annotations


class KestrelError(Exception):
    """Base class for every error raised by kestrel."""


class ConfigError(KestrelError, ValueError):
    """A configuration or shape mismatch, detected before any dispatch."""


class DeviceError(KestrelError, RuntimeError):
    """An unrecoverable device fault.

    Nothing in kestrel retries after one of these. The run must be
    abandoned; the handle and every buffer it backs are unusable.
    """

    fatal: bool = True


class DeviceInitError(DeviceError):
    """No usable accelerator, or the kernel set failed to compile."""


class DispatchError(DeviceError):
    """A kernel launch failed."""

    def __init__(self, kernel: str, message: str) -> None:
        super().__init__(f"{kernel}: {message}")
        self.kernel = kernel


class CacheOrderError(KestrelError, RuntimeError):
    """A key/value cache cell was written twice, skipped, or read too early."""
