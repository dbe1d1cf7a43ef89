"""
layer_test provides tests for LayerSequencer.
"""
from __future__ import annotations

import unittest

import torch

from kestrel.config.device import DeviceConfig, KernelBackend
from kestrel.config.model import ModelConfig
from kestrel.device.handle import DeviceHandle
from kestrel.device.trace import DispatchTrace
from kestrel.engine.layer import LayerSequencer
from kestrel.errors import CacheOrderError
from kestrel.memory.state import DeviceMemory
from kestrel.memory.weights import TransformerWeights

LAYER_ORDER = [
    "rmsnorm",
    "matmul", "matmul", "matmul",
    "apply_rope",
    "multi_head_attention",
    "matmul", "array_add",
    "rmsnorm",
    "matmul", "matmul",
    "silu", "array_mult",
    "matmul", "array_add",
]


class LayerSequencerTest(unittest.TestCase):
    """
    LayerSequencerTest provides tests for per-layer dispatch order.
    """
    def setUp(self) -> None:
        self.config = ModelConfig(
            dim=8, hidden_dim=12, n_layers=2, n_heads=2, vocab_size=10, seq_len=5
        )
        self.handle = DeviceHandle.initialize(
            DeviceConfig(device="cpu", backend=KernelBackend.TORCH, warmup=False)
        )
        self.weights = TransformerWeights.random(self.config)
        self.memory = DeviceMemory(self.handle, self.config, self.weights)
        self.sequencer = LayerSequencer(self.handle, self.memory)

    def test_dispatch_order(self) -> None:
        """
        test one layer submits its kernels in block order.
        """
        with DispatchTrace(self.handle) as trace:
            self.sequencer.run(0, 0)
        self.assertEqual(trace.kernels, LAYER_ORDER)

    def test_cache_cell_written_once(self) -> None:
        """
        test a second run at the same position is rejected.
        """
        self.sequencer.run(1, 0)
        self.assertEqual(self.memory.cache.length(1), 1)
        with self.assertRaises(CacheOrderError):
            self.sequencer.run(1, 0)

    def test_projections_land_in_cache(self) -> None:
        """
        test the (0, 0) cache cell holds wk[0] and wv[0] applied to rmsnorm(x).
        """
        dim = self.config.dim
        x = torch.linspace(-1.0, 1.0, dim)
        self.memory.x.tensor().copy_(x)
        self.sequencer.run(0, 0)

        rms_att = torch.from_numpy(self.weights.rms_att[0])
        xb = rms_att * x * torch.rsqrt(x.pow(2).mean() + self.config.norm_eps)
        # Rotation by angle zero leaves the key unchanged at position 0.
        expected_key = torch.from_numpy(self.weights.wk[0]) @ xb
        expected_value = torch.from_numpy(self.weights.wv[0]) @ xb

        torch.testing.assert_close(self.memory.cache.key.tensor()[:dim], expected_key)
        torch.testing.assert_close(self.memory.cache.value.tensor()[:dim], expected_value)
        self.assertGreater(float(expected_value.abs().sum()), 0.0)


if __name__ == "__main__":
    unittest.main()
