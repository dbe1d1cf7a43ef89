"""Key/value cache: append-only, write-once-per-cell, strictly causal.

Two buffers of n_layers * seq_len * dim floats, addressed as
[layer][position][head][offset] with

    layer*seq_len*dim + position*dim + head*head_size + offset

Each (layer, position) cell is written exactly once, in increasing
position order, and attention at position p may only read cells 0..=p.
The write cursor per layer enforces both on the host side; cells at or
beyond the cursor hold garbage and are never handed out for reading.
"""
from __future__ import annotations

from kestrel.config.model import ModelConfig
from kestrel.errors import CacheOrderError
from kestrel.memory.buffer import BufferTable, BufferView, DeviceBuffer


class KVCache:
    """Stores keys and values for every layer and position of one run."""

    key: DeviceBuffer
    value: DeviceBuffer

    def __init__(self, table: BufferTable, config: ModelConfig) -> None:
        """Allocate key and value storage."""
        self.config = config
        self.key = table.allocate("key_cache", config.cache_size)
        self.value = table.allocate("value_cache", config.cache_size)
        self._length = [0] * config.n_layers

    def offset(self, layer: int, pos: int, head: int = 0) -> int:
        """Linear index of the first element of (layer, pos, head)."""
        cfg = self.config
        return layer * cfg.seq_len * cfg.dim + pos * cfg.dim + head * cfg.head_size

    def length(self, layer: int) -> int:
        """Number of positions written for a layer."""
        return self._length[layer]

    def claim(self, layer: int, pos: int) -> tuple[BufferView, BufferView]:
        """Reserve the (layer, pos) cell for its single write.

        Returns the key and value slots the projections write into.
        """
        self.config.check_position(pos)
        if not 0 <= layer < self.config.n_layers:
            raise CacheOrderError(f"layer {layer} outside [0, {self.config.n_layers})")
        expected = self._length[layer]
        if pos < expected:
            raise CacheOrderError(f"cache cell (layer={layer}, pos={pos}) already written")
        if pos > expected:
            raise CacheOrderError(
                f"cache cell (layer={layer}, pos={pos}) skips unwritten position {expected}"
            )
        self._length[layer] = pos + 1
        base = self.offset(layer, pos)
        dim = self.config.dim
        return self.key.view(base, dim), self.value.view(base, dim)

    def require_readable(self, layer: int, pos: int) -> None:
        """Check positions 0..=pos of a layer have all been written."""
        if pos >= self._length[layer]:
            raise CacheOrderError(
                f"attention at pos={pos} would read unwritten cells of layer {layer} "
                f"(written: {self._length[layer]})"
            )

    def reset(self) -> None:
        """Rewind every layer to position 0 for a new run."""
        self._length = [0] * self.config.n_layers
