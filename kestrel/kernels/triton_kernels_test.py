"""
triton_kernels_test checks the Triton kernel set against the torch kernel set.
"""
from __future__ import annotations

import unittest

import torch

from kestrel.config.device import RopeVariant
from kestrel.device.launch import LaunchShape
from kestrel.kernels import torch_kernels
from kestrel.kernels import triton_kernels
from kestrel.kernels.runtime import triton_usable

CUDA = torch.device("cuda")


@unittest.skipUnless(
    torch.cuda.is_available() and triton_usable(CUDA), "CUDA and Triton required"
)
class TritonParityTest(unittest.TestCase):
    """
    TritonParityTest runs each kernel on both backends with the same inputs.
    """
    def setUp(self) -> None:
        torch.manual_seed(0)

    def _both(self, name: str, shape: LaunchShape, *args: object, **kwargs: object):
        host = [a.clone() if isinstance(a, torch.Tensor) else a for a in args]
        dev = [a.to(CUDA) if isinstance(a, torch.Tensor) else a for a in args]
        getattr(torch_kernels, name)(shape, *host, **kwargs)
        getattr(triton_kernels, name)(shape, *dev, **kwargs)
        torch.cuda.synchronize()
        return host, [a.cpu() if isinstance(a, torch.Tensor) else a for a in dev]

    def test_matmul(self) -> None:
        """
        test matmul across tile-aligned and ragged shapes.
        """
        for rows, width, cols in ((2, 3, 2), (288, 288, 1), (45, 17, 33)):
            host, dev = self._both(
                "matmul", LaunchShape.tiled(rows, cols),
                torch.zeros(rows * cols), torch.randn(rows * width), torch.randn(width * cols),
                width, rows, cols,
            )
            torch.testing.assert_close(dev[0], host[0], rtol=1e-4, atol=1e-4)

    def test_rmsnorm_and_softmax(self) -> None:
        """
        test the single-program reducers over several blocks.
        """
        x = torch.randn(2000)
        host, dev = self._both(
            "rmsnorm", LaunchShape.single(), torch.zeros(2000), x, torch.randn(2100), 100, 2000, 1e-5,
        )
        torch.testing.assert_close(dev[0], host[0], rtol=1e-4, atol=1e-5)
        host, dev = self._both("softmax", LaunchShape.single(), x * 10, 1500)
        torch.testing.assert_close(dev[0], host[0], rtol=1e-4, atol=1e-6)

    def test_apply_rope(self) -> None:
        """
        test both rotary variants.
        """
        n_heads, head_size, seq_len = 4, 8, 6
        dim = n_heads * head_size
        for variant in RopeVariant:
            host, dev = self._both(
                "apply_rope", LaunchShape.for_num_elems(dim // 2),
                torch.randn(dim), torch.randn(dim),
                torch.rand(seq_len * head_size // 2), torch.rand(seq_len * head_size // 2),
                3, n_heads, head_size, variant=variant,
            )
            torch.testing.assert_close(dev[0], host[0])
            torch.testing.assert_close(dev[1], host[1])

    def test_attention(self) -> None:
        """
        test attention over a cache longer than one score block.
        """
        n_heads, head_size, seq_len, n_layers = 4, 16, 100, 2
        dim = n_heads * head_size
        host, dev = self._both(
            "multi_head_attention", LaunchShape.per_program(n_heads),
            torch.zeros(dim), torch.zeros(n_heads * seq_len), torch.randn(dim),
            torch.randn(n_layers * seq_len * dim), torch.randn(n_layers * seq_len * dim),
            1, dim, 70, head_size, seq_len, n_heads,
        )
        torch.testing.assert_close(dev[0], host[0], rtol=1e-4, atol=1e-5)

    def test_elementwise(self) -> None:
        """
        test add, mult, silu and copy.
        """
        shape = LaunchShape.for_num_elems(3000)
        for name in ("array_add", "array_mult"):
            host, dev = self._both(name, shape, torch.randn(3000), torch.randn(3000), 3000)
            torch.testing.assert_close(dev[0], host[0])
        host, dev = self._both("silu", shape, torch.randn(3000), 3000)
        torch.testing.assert_close(dev[0], host[0])
        host, dev = self._both("copy", shape, torch.zeros(3000), torch.randn(3000), 3000)
        torch.testing.assert_close(dev[0], host[0])


if __name__ == "__main__":
    unittest.main()
