"""Benchmarks for the device forward pass."""
