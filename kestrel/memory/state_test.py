"""
state_test provides tests for DeviceMemory.
"""
from __future__ import annotations

import unittest

from kestrel.config.device import DeviceConfig, KernelBackend
from kestrel.config.model import ModelConfig
from kestrel.device.handle import DeviceHandle
from kestrel.memory.state import DeviceMemory
from kestrel.memory.weights import TransformerWeights


class DeviceMemoryTest(unittest.TestCase):
    """
    DeviceMemoryTest provides tests for buffer sizing and inspection.
    """
    def setUp(self) -> None:
        self.config = ModelConfig(
            dim=8, hidden_dim=12, n_layers=2, n_heads=2, vocab_size=10, seq_len=5
        )
        handle = DeviceHandle.initialize(
            DeviceConfig(device="cpu", backend=KernelBackend.TORCH, warmup=False)
        )
        self.memory = DeviceMemory(handle, self.config, TransformerWeights.random(self.config))

    def test_activation_sizes(self) -> None:
        """
        test every activation buffer has its fixed size.
        """
        m = self.memory
        self.assertEqual([m.x.size, m.xb.size, m.xb2.size, m.q.size], [8, 8, 8, 8])
        self.assertEqual([m.hb.size, m.hb2.size], [12, 12])
        self.assertEqual(m.att.size, 2 * 5)
        self.assertEqual(m.logits.size, 10)
        self.assertEqual(m.cache.key.size, 2 * 5 * 8)

    def test_inspect_any_buffer(self) -> None:
        """
        test inspect copies any named buffer to the host.
        """
        emb = self.memory.inspect("token_embedding")
        self.assertEqual(tuple(emb.shape), (80,))
        self.assertEqual(emb.device.type, "cpu")
        with self.assertRaises(KeyError):
            self.memory.inspect("nope")

    def test_reset_rewinds_cache(self) -> None:
        """
        test reset rewinds the cache cursor.
        """
        self.memory.cache.claim(0, 0)
        self.memory.reset()
        self.assertEqual(self.memory.cache.length(0), 0)

    def test_release(self) -> None:
        """
        test release empties the buffer table.
        """
        self.memory.release()
        self.assertEqual(len(self.memory.table), 0)


if __name__ == "__main__":
    unittest.main()
