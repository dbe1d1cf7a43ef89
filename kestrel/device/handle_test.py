"""
handle_test provides tests for DeviceHandle.
"""
from __future__ import annotations

import io
import unittest
from unittest import mock

import numpy as np
import torch
from rich.console import Console

from kestrel.config.device import DeviceConfig, KernelBackend
from kestrel.console import logger as console
from kestrel.console.logger import KESTREL_THEME
from kestrel.device.handle import DeviceHandle, resolve_backend
from kestrel.device.launch import LaunchShape
from kestrel.errors import DeviceError, DeviceInitError, DispatchError

CPU = DeviceConfig(device="cpu", backend=KernelBackend.TORCH)


class InitializeTest(unittest.TestCase):
    """
    InitializeTest provides tests for opening a device.
    """
    def test_cpu_torch(self) -> None:
        """
        test a CPU handle with the torch backend.
        """
        handle = DeviceHandle.initialize(CPU)
        self.assertEqual(handle.device.type, "cpu")
        self.assertEqual(handle.library.backend, KernelBackend.TORCH)
        self.assertIsNone(handle.stream)
        self.assertFalse(handle.closed)

    def test_auto_resolves_to_torch_on_cpu(self) -> None:
        """
        test AUTO picks torch on the CPU.
        """
        cfg = DeviceConfig(device="cpu")
        self.assertEqual(resolve_backend(cfg, torch.device("cpu")), KernelBackend.TORCH)

    def test_unknown_device(self) -> None:
        """
        test an unparseable device string.
        """
        with self.assertRaises(DeviceInitError):
            DeviceHandle.initialize(DeviceConfig(device="nonsense", backend=KernelBackend.TORCH))

    @unittest.skipIf(torch.cuda.is_available(), "CUDA is available")
    def test_cuda_without_cuda(self) -> None:
        """
        test requesting CUDA on a host without it.
        """
        with self.assertRaises(DeviceInitError):
            DeviceHandle.initialize(DeviceConfig(device="cuda", backend=KernelBackend.TORCH))

    def test_explicit_triton_when_unusable(self) -> None:
        """
        test an explicit Triton backend without Triton support.
        """
        with mock.patch("kestrel.device.handle.triton_usable", return_value=False):
            with self.assertRaises(DeviceInitError):
                DeviceHandle.initialize(DeviceConfig(device="cpu", backend=KernelBackend.TRITON))

    def test_stream_failure_is_init_error(self) -> None:
        """
        test a stream that cannot be opened on the device is an init error.
        """
        cfg = DeviceConfig(device="cuda:7", backend=KernelBackend.TORCH, warmup=False)
        with mock.patch("torch.cuda.is_available", return_value=True), mock.patch(
            "torch.cuda.Stream", side_effect=RuntimeError("invalid device ordinal")
        ):
            with self.assertRaises(DeviceInitError) as ctx:
                DeviceHandle.initialize(cfg)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_reports_kernel_set(self) -> None:
        """
        test initialize prints the resolved backend and kernel count.
        """
        output = io.StringIO()
        captured = Console(file=output, force_terminal=False, theme=KESTREL_THEME, width=120)
        with mock.patch.object(console, "console", captured):
            DeviceHandle.initialize(CPU)
        text = output.getvalue()
        self.assertIn("Kernel set", text)
        self.assertIn("backend:", text)
        self.assertIn("torch", text)
        self.assertIn("kernels:", text)

    def test_warmup_failure_is_init_error(self) -> None:
        """
        test a warmup failure surfaces as an init error.
        """
        with mock.patch("kestrel.device.handle.warmup_calls", side_effect=RuntimeError("ptx")):
            with self.assertRaises(DeviceInitError):
                DeviceHandle.initialize(CPU)


class MemoryTest(unittest.TestCase):
    """
    MemoryTest provides tests for alloc, upload and download.
    """
    def setUp(self) -> None:
        self.handle = DeviceHandle.initialize(CPU)

    def test_alloc_is_zeroed_float32(self) -> None:
        """
        test alloc returns zeroed float32 memory.
        """
        buf = self.handle.alloc(5)
        self.assertEqual(buf.dtype, torch.float32)
        self.assertEqual(buf.tolist(), [0.0] * 5)

    def test_upload_flattens_and_copies(self) -> None:
        """
        test upload flattens and detaches from the host array.
        """
        host = np.arange(6, dtype=np.float64).reshape(2, 3)
        buf = self.handle.upload(host)
        self.assertEqual(tuple(buf.shape), (6,))
        self.assertEqual(buf.dtype, torch.float32)
        host[0, 0] = 99
        self.assertEqual(float(buf[0]), 0.0)

    def test_download_is_a_copy(self) -> None:
        """
        test download returns an independent host copy.
        """
        buf = self.handle.upload(np.ones(3))
        out = self.handle.download(buf)
        out[0] = 7
        self.assertEqual(float(buf[0]), 1.0)


class DispatchTest(unittest.TestCase):
    """
    DispatchTest provides tests for kernel dispatch.
    """
    def setUp(self) -> None:
        self.handle = DeviceHandle.initialize(CPU)

    def test_dispatch_runs_kernel(self) -> None:
        """
        test a dispatch runs and is counted.
        """
        x = self.handle.upload(np.array([1.0, 2.0]))
        y = self.handle.upload(np.array([10.0, 20.0]))
        self.handle.dispatch("array_add", LaunchShape.for_num_elems(2), x, y, 2)
        self.assertEqual(self.handle.download(x).tolist(), [11.0, 22.0])
        self.assertEqual(self.handle.dispatch_count, 1)

    def test_unknown_kernel(self) -> None:
        """
        test an unknown kernel name.
        """
        with self.assertRaises(DispatchError) as ctx:
            self.handle.dispatch("gemm", LaunchShape.single())
        self.assertEqual(ctx.exception.kernel, "gemm")

    def test_invalid_shape(self) -> None:
        """
        test a launch shape with a zero dimension.
        """
        x = self.handle.alloc(2)
        with self.assertRaises(DispatchError):
            self.handle.dispatch("silu", LaunchShape(grid=(0, 1, 1)), x, 2)

    def test_kernel_failure_is_wrapped(self) -> None:
        """
        test a kernel exception becomes a DispatchError.
        """
        dest = self.handle.alloc(2)
        src = self.handle.alloc(4)
        with self.assertRaises(DispatchError) as ctx:
            self.handle.dispatch("copy", LaunchShape.for_num_elems(4), dest, src, 4)
        self.assertEqual(ctx.exception.kernel, "copy")
        self.assertIsInstance(ctx.exception, DeviceError)

    def test_closed_handle(self) -> None:
        """
        test every call fails after close.
        """
        x = self.handle.alloc(2)
        with DeviceHandle.initialize(CPU) as other:
            pass
        self.assertTrue(other.closed)
        with self.assertRaises(DispatchError):
            other.dispatch("silu", LaunchShape.for_num_elems(2), x, 2)
        with self.assertRaises(DeviceError):
            other.alloc(1)


if __name__ == "__main__":
    unittest.main()
