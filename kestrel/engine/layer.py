"""Layer execution sequencer: one transformer block as ordered dispatches.

For layer l at cache position p the sequencer submits, in this order:

1. rmsnorm       x -> xb with rms_att[l]
2. matmul ×3     xb -> q, key_cache[l, p], value_cache[l, p]
3. apply_rope    q and key_cache[l, p], rotated by row p
4. attention     q over key/value_cache[l, 0..=p] -> xb
5. matmul, add   xb -> xb2 with wo[l]; x += xb2
6. rmsnorm, matmul ×2, silu, mult, matmul, add
                 x -> xb -> hb, hb2; hb = silu(hb) * hb2; xb = w2[l] hb; x += xb

Each step consumes the previous step's outputs, and the single stream
executes in submission order, so no explicit synchronization is needed.
Step 2 is the only write to the (l, p) cache cell.
"""
from __future__ import annotations

from kestrel.config.model import ModelConfig
from kestrel.device.handle import DeviceHandle
from kestrel.device.launch import LaunchShape
from kestrel.memory.state import DeviceMemory


class LayerSequencer:
    """Issues the kernel dispatches of one layer at one position."""

    def __init__(self, handle: DeviceHandle, memory: DeviceMemory) -> None:
        self.handle = handle
        self.memory = memory
        self.config: ModelConfig = memory.config

    def _elems(self, n: int) -> LaunchShape:
        return LaunchShape.for_num_elems(n, self.handle.config.block_size)

    def _matvec(self, out: object, w: object, x: object, width: int, rows: int) -> None:
        """out[rows] = w[rows, width] @ x[width]."""
        self.handle.dispatch(
            "matmul",
            LaunchShape.tiled(rows, 1, self.handle.config.tile),
            out, w, x, width, rows, 1,
        )

    def run(self, layer: int, pos: int) -> None:
        """Submit every dispatch of layer at cache position pos."""
        cfg = self.config
        mem = self.memory
        w = mem.weights
        dispatch = self.handle.dispatch
        dim, hidden = cfg.dim, cfg.hidden_dim

        cfg.check_position(pos)
        k_slot, v_slot = mem.cache.claim(layer, pos)

        # Attention block.
        dispatch("rmsnorm", LaunchShape.single(), mem.xb, mem.x, w["rms_att"], layer * dim, dim, cfg.norm_eps)
        self._matvec(mem.q, w.layer("wq", layer), mem.xb, dim, dim)
        self._matvec(k_slot, w.layer("wk", layer), mem.xb, dim, dim)
        self._matvec(v_slot, w.layer("wv", layer), mem.xb, dim, dim)
        dispatch(
            "apply_rope",
            self._elems(cfg.n_heads * cfg.head_size // 2),
            mem.q, k_slot, w["freq_real"], w["freq_imag"], pos, cfg.n_heads, cfg.head_size,
        )

        mem.cache.require_readable(layer, pos)
        dispatch(
            "multi_head_attention",
            LaunchShape.per_program(cfg.n_heads),
            mem.xb, mem.att, mem.q, mem.cache.key, mem.cache.value,
            layer, dim, pos, cfg.head_size, cfg.seq_len, cfg.n_heads,
        )
        self._matvec(mem.xb2, w.layer("wo", layer), mem.xb, dim, dim)
        dispatch("array_add", self._elems(dim), mem.x, mem.xb2, dim)

        # Feed-forward block.
        dispatch("rmsnorm", LaunchShape.single(), mem.xb, mem.x, w["rms_ffn"], layer * dim, dim, cfg.norm_eps)
        self._matvec(mem.hb, w.layer("w1", layer), mem.xb, dim, hidden)
        self._matvec(mem.hb2, w.layer("w3", layer), mem.xb, dim, hidden)
        dispatch("silu", self._elems(hidden), mem.hb, hidden)
        dispatch("array_mult", self._elems(hidden), mem.hb, mem.hb2, hidden)
        self._matvec(mem.xb, w.layer("w2", layer), mem.hb, hidden, dim)
        dispatch("array_add", self._elems(dim), mem.x, mem.xb, dim)
