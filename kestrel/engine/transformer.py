"""Token forward pass: embedding row in, logits out.

The outer generation loop (not part of kestrel) keeps one Transformer for
a whole run and calls forward(token, pos) with pos = 0, 1, 2, ... Logits
are the only data copied back to the host, and that copy is the run's
only synchronization point.
"""
from __future__ import annotations

import torch

from kestrel.config.model import ModelConfig
from kestrel.device.handle import DeviceHandle
from kestrel.device.launch import LaunchShape
from kestrel.engine.layer import LayerSequencer
from kestrel.errors import CacheOrderError
from kestrel.memory.state import DeviceMemory
from kestrel.memory.weights import TransformerWeights


class Transformer:
    """A llama-style decoder bound to one device handle."""

    def __init__(
        self,
        handle: DeviceHandle,
        config: ModelConfig,
        weights: TransformerWeights,
    ) -> None:
        self.handle = handle
        self.config = config
        self.memory = DeviceMemory(handle, config, weights)
        self.sequencer = LayerSequencer(handle, self.memory)
        self._next_pos = 0

    @property
    def pos(self) -> int:
        """Next cache position forward() expects."""
        return self._next_pos

    def step(self, token: int, pos: int) -> None:
        """Submit the full forward pass for one token without reading back."""
        cfg = self.config
        token = cfg.check_token(token)
        pos = cfg.check_position(pos)
        if pos != self._next_pos:
            raise CacheOrderError(f"forward at pos={pos}, expected pos={self._next_pos}")

        mem = self.memory
        w = mem.weights
        dim = cfg.dim
        block = self.handle.config.block_size

        self.handle.dispatch(
            "copy",
            LaunchShape.for_num_elems(dim, block),
            mem.x, w["token_embedding"].view(token * dim, dim), dim,
        )
        for layer in range(cfg.n_layers):
            self.sequencer.run(layer, pos)

        self.handle.dispatch("rmsnorm", LaunchShape.single(), mem.x, mem.x, w["rms_final"], 0, dim, cfg.norm_eps)
        self.handle.dispatch(
            "matmul",
            LaunchShape.tiled(cfg.vocab_size, 1, self.handle.config.tile),
            mem.logits, w["wcls"], mem.x, dim, cfg.vocab_size, 1,
        )
        self._next_pos = pos + 1

    def forward(self, token: int, pos: int) -> torch.Tensor:
        """Run one token at one position and return host logits."""
        self.step(token, pos)
        return self.handle.download(self.memory.logits)

    def reset(self) -> None:
        """Start a new run: positions restart at 0."""
        self.memory.reset()
        self._next_pos = 0
