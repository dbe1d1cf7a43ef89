"""Model geometry: the dimensions every buffer and kernel is sized from.

The geometry is fixed for the lifetime of a run. Buffers are allocated
from it once, weights are checked against it once, and kernels receive
its values as scalar arguments on every dispatch.
"""
from __future__ import annotations

from pydantic import ValidationError, model_validator
from typing_extensions import Self

from kestrel.config import Config, PositiveFloat, PositiveInt
from kestrel.errors import ConfigError


class ModelConfig(Config):
    """Dimensions of a llama-style decoder.

    dim is split evenly across n_heads; each head's slice must have an
    even width so rotary encoding can pair its coordinates.
    """

    dim: PositiveInt
    hidden_dim: PositiveInt
    n_layers: PositiveInt
    n_heads: PositiveInt
    vocab_size: PositiveInt
    seq_len: PositiveInt
    norm_eps: PositiveFloat = 1e-5
    rope_theta: PositiveFloat = 10000.0

    @model_validator(mode="after")
    def _check_heads(self) -> Self:
        if self.dim % self.n_heads != 0:
            raise ValueError(
                f"dim ({self.dim}) must be divisible by n_heads ({self.n_heads})"
            )
        if (self.dim // self.n_heads) % 2 != 0:
            raise ValueError(
                f"head_size ({self.dim // self.n_heads}) must be even for rotary pairs"
            )
        return self

    @classmethod
    def create(cls, **fields: object) -> "ModelConfig":
        """Build a config, reporting validation failures as ConfigError."""
        try:
            return cls(**fields)  # type: ignore[arg-type]
        except ValidationError as e:
            raise ConfigError(f"invalid model config: {e}") from e

    @property
    def head_size(self) -> int:
        """Width of one attention head."""
        return self.dim // self.n_heads

    @property
    def cache_size(self) -> int:
        """Element count of one of the key/value cache buffers."""
        return self.n_layers * self.seq_len * self.dim

    def check_position(self, pos: int) -> int:
        """Validate a cache position against seq_len."""
        if not 0 <= int(pos) < self.seq_len:
            raise ConfigError(
                f"cache position {pos} outside [0, {self.seq_len})"
            )
        return int(pos)

    def check_token(self, token: int) -> int:
        """Validate a token id against the vocabulary."""
        if not 0 <= int(token) < self.vocab_size:
            raise ConfigError(
                f"token id {token} outside [0, {self.vocab_size})"
            )
        return int(token)
