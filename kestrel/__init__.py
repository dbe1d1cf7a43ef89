"""Kestrel: the device-execution layer of a transformer decoder.

Kestrel runs one transformer forward pass per token on an accelerator. It
owns the kernels, the buffers they read and write, and the order in which
they are dispatched:
- Kernels: matmul, RMSNorm, rotary encoding, softmax, attention, elementwise
- Device handle: one accelerator context, one stream, dispatch by name
- Device memory: activations, uploaded weights, and the key/value cache
- Sequencer: the per-layer dispatch order for a cache position
"""
