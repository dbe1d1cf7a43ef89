"""Per-run device state: activations, key/value cache and weights.

One DeviceMemory belongs to exactly one run on one DeviceHandle. Every
activation buffer has a fixed size for the whole run:

    x, xb, xb2, q   dim                 residual stream and scratch
    hb, hb2         hidden_dim          feed-forward scratch
    att             n_heads * seq_len   attention scores, one row per head
    logits          vocab_size          classifier output
"""
from __future__ import annotations

import torch

from kestrel.config.model import ModelConfig
from kestrel.device.handle import DeviceHandle
from kestrel.memory.buffer import BufferTable, DeviceBuffer
from kestrel.memory.cache import KVCache
from kestrel.memory.weights import DeviceWeights, TransformerWeights


class DeviceMemory:
    """Owns every device buffer of one run."""

    x: DeviceBuffer
    xb: DeviceBuffer
    xb2: DeviceBuffer
    q: DeviceBuffer
    hb: DeviceBuffer
    hb2: DeviceBuffer
    att: DeviceBuffer
    logits: DeviceBuffer

    def __init__(
        self,
        handle: DeviceHandle,
        config: ModelConfig,
        weights: TransformerWeights,
    ) -> None:
        """Allocate activations and the cache, then upload weights."""
        self.handle = handle
        self.config = config
        self.table = BufferTable(handle)

        for name, size in self.activation_sizes(config).items():
            setattr(self, name, self.table.allocate(name, size))
        self.cache = KVCache(self.table, config)
        self.weights = DeviceWeights.upload(self.table, config, weights)

    @staticmethod
    def activation_sizes(config: ModelConfig) -> dict[str, int]:
        return {
            "x": config.dim,
            "xb": config.dim,
            "xb2": config.dim,
            "q": config.dim,
            "hb": config.hidden_dim,
            "hb2": config.hidden_dim,
            "att": config.n_heads * config.seq_len,
            "logits": config.vocab_size,
        }

    def inspect(self, name: str) -> torch.Tensor:
        """Copy any named buffer to the host.

        Debugging only: the read synchronizes the stream, and nothing in
        the forward pass depends on it.
        """
        return self.handle.download(self.table[name])

    def reset(self) -> None:
        """Start a new run on the same buffers."""
        self.cache.reset()

    def release(self) -> None:
        """Drop every buffer; the memory model is unusable afterwards."""
        self.table.release()
