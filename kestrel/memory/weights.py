"""Model weights: host arrays in, device buffers out.

The weight loader (outside kestrel) supplies a TransformerWeights of host
float32 arrays. It is checked against the ModelConfig and copied once into
device memory at startup; after that, kernels only ever see DeviceWeights.
"""
from __future__ import annotations

from dataclasses import dataclass, fields

import numpy as np

from kestrel.config.model import ModelConfig
from kestrel.errors import ConfigError
from kestrel.memory.buffer import BufferTable, BufferView, DeviceBuffer


def rope_tables(config: ModelConfig) -> tuple[np.ndarray, np.ndarray]:
    """Per-position rotary cos/sin tables of shape [seq_len, head_size/2].

    Row p, column i holds cos/sin(p * theta^(-2i/head_size)).
    """
    hs = config.head_size
    inv_freq = 1.0 / (config.rope_theta ** (np.arange(0, hs, 2, dtype=np.float64) / hs))
    t = np.arange(config.seq_len, dtype=np.float64)
    freqs = np.outer(t, inv_freq)
    return np.cos(freqs).astype(np.float32), np.sin(freqs).astype(np.float32)


def expected_shapes(config: ModelConfig) -> dict[str, tuple[int, ...]]:
    """Host array shape for every weight field."""
    L, d, h = config.n_layers, config.dim, config.hidden_dim
    return {
        "token_embedding": (config.vocab_size, d),
        "rms_att": (L, d),
        "wq": (L, d, d),
        "wk": (L, d, d),
        "wv": (L, d, d),
        "wo": (L, d, d),
        "rms_ffn": (L, d),
        "w1": (L, h, d),
        "w2": (L, d, h),
        "w3": (L, h, d),
        "rms_final": (d,),
        "freq_real": (config.seq_len, config.head_size // 2),
        "freq_imag": (config.seq_len, config.head_size // 2),
        "wcls": (config.vocab_size, d),
    }


@dataclass
class TransformerWeights:
    """Host-resident weights of a llama-style decoder.

    Projection matrices are stored [out, in] per layer. wcls defaults to
    the token embedding (tied classifier).
    """

    token_embedding: np.ndarray
    rms_att: np.ndarray
    wq: np.ndarray
    wk: np.ndarray
    wv: np.ndarray
    wo: np.ndarray
    rms_ffn: np.ndarray
    w1: np.ndarray
    w2: np.ndarray
    w3: np.ndarray
    rms_final: np.ndarray
    freq_real: np.ndarray
    freq_imag: np.ndarray
    wcls: np.ndarray | None = None

    @property
    def classifier(self) -> np.ndarray:
        return self.token_embedding if self.wcls is None else self.wcls

    def validate(self, config: ModelConfig) -> None:
        """Check every array against the config; raise ConfigError on mismatch."""
        shapes = expected_shapes(config)
        for f in fields(self):
            arr = getattr(self, f.name)
            if arr is None:
                continue
            got = tuple(np.shape(arr))
            if got != shapes[f.name]:
                raise ConfigError(
                    f"weight {f.name!r} has shape {got}, expected {shapes[f.name]}"
                )

    @classmethod
    def random(
        cls,
        config: ModelConfig,
        *,
        seed: int = 0,
        scale: float = 0.1,
    ) -> "TransformerWeights":
        """Deterministic random weights for tests and benchmarks."""
        rng = np.random.default_rng(seed)
        shapes = expected_shapes(config)

        def normal(name: str) -> np.ndarray:
            return (rng.standard_normal(shapes[name]) * scale).astype(np.float32)

        def norm(name: str) -> np.ndarray:
            return (1.0 + rng.standard_normal(shapes[name]) * scale).astype(np.float32)

        freq_real, freq_imag = rope_tables(config)
        return cls(
            token_embedding=normal("token_embedding"),
            rms_att=norm("rms_att"),
            wq=normal("wq"),
            wk=normal("wk"),
            wv=normal("wv"),
            wo=normal("wo"),
            rms_ffn=norm("rms_ffn"),
            w1=normal("w1"),
            w2=normal("w2"),
            w3=normal("w3"),
            rms_final=norm("rms_final"),
            freq_real=freq_real,
            freq_imag=freq_imag,
        )


# Fields laid out [n_layers, ...]; layer(name, l) slices them.
LAYERED = ("rms_att", "wq", "wk", "wv", "wo", "rms_ffn", "w1", "w2", "w3")


class DeviceWeights:
    """Uploaded weights, one DeviceBuffer per field."""

    def __init__(self, config: ModelConfig, buffers: dict[str, DeviceBuffer]) -> None:
        self.config = config
        self._buffers = buffers

    @classmethod
    def upload(
        cls,
        table: BufferTable,
        config: ModelConfig,
        weights: TransformerWeights,
    ) -> "DeviceWeights":
        """Validate and copy every weight array into the buffer table."""
        weights.validate(config)
        buffers: dict[str, DeviceBuffer] = {}
        for f in fields(weights):
            if f.name == "wcls":
                continue
            buffers[f.name] = table.upload(f.name, getattr(weights, f.name))
        buffers["wcls"] = (
            buffers["token_embedding"]
            if weights.wcls is None
            else table.upload("wcls", weights.wcls)
        )
        return cls(config, buffers)

    def __getitem__(self, name: str) -> DeviceBuffer:
        return self._buffers[name]

    def layer(self, name: str, layer: int) -> BufferView:
        """The slice of a per-layer weight belonging to one layer."""
        if name not in LAYERED:
            raise KeyError(f"{name!r} is not a per-layer weight")
        buf = self._buffers[name]
        stride = buf.size // self.config.n_layers
        return buf.view(layer * stride, stride)
