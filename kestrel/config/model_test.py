"""
model_test provides tests for ModelConfig.
"""
from __future__ import annotations

import unittest

from pydantic import ValidationError

from kestrel.config.model import ModelConfig
from kestrel.errors import ConfigError


def _fields(**overrides: object) -> dict[str, object]:
    base: dict[str, object] = dict(
        dim=8, hidden_dim=16, n_layers=2, n_heads=2, vocab_size=32, seq_len=8
    )
    base.update(overrides)
    return base


class ModelConfigTest(unittest.TestCase):
    """
    ModelConfigTest provides tests for ModelConfig.
    """
    def test_head_size(self) -> None:
        """
        test head_size and cache_size derivation.
        """
        cfg = ModelConfig(**_fields())
        self.assertEqual(cfg.head_size, 4)
        self.assertEqual(cfg.cache_size, 2 * 8 * 8)
        self.assertAlmostEqual(cfg.norm_eps, 1e-5)

    def test_rejects_indivisible_heads(self) -> None:
        """
        test dim % n_heads != 0 is rejected as a config error.
        """
        with self.assertRaises(ConfigError):
            ModelConfig.create(**_fields(dim=10, n_heads=3))
        with self.assertRaises(ValidationError):
            ModelConfig(**_fields(dim=10, n_heads=3))

    def test_rejects_odd_head_size(self) -> None:
        """
        test odd head widths are rejected.
        """
        with self.assertRaises(ConfigError):
            ModelConfig.create(**_fields(dim=6, n_heads=2))

    def test_rejects_non_positive(self) -> None:
        """
        test zero dimensions are rejected.
        """
        with self.assertRaises(ConfigError):
            ModelConfig.create(**_fields(seq_len=0))

    def test_config_error_is_value_error(self) -> None:
        """
        test ConfigError stays catchable as ValueError.
        """
        with self.assertRaises(ValueError):
            ModelConfig.create(**_fields(n_heads=3))

    def test_frozen(self) -> None:
        """
        test configs cannot be mutated after creation.
        """
        cfg = ModelConfig(**_fields())
        with self.assertRaises(ValidationError):
            cfg.dim = 16  # type: ignore[misc]

    def test_check_position(self) -> None:
        """
        test positions at or beyond seq_len are config errors.
        """
        cfg = ModelConfig(**_fields())
        self.assertEqual(cfg.check_position(7), 7)
        with self.assertRaises(ConfigError):
            cfg.check_position(8)
        with self.assertRaises(ConfigError):
            cfg.check_position(-1)

    def test_check_token(self) -> None:
        """
        test token ids outside the vocabulary are config errors.
        """
        cfg = ModelConfig(**_fields())
        self.assertEqual(cfg.check_token(31), 31)
        with self.assertRaises(ConfigError):
            cfg.check_token(32)


if __name__ == "__main__":
    unittest.main()
