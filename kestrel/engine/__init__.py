"""Forward execution on the device, plus a host reference for parity.

- layer: LayerSequencer, the ordered dispatches of one transformer block
- transformer: Transformer, one token through every layer to logits
- reference: HostReference, the same recurrence computed on the host
- parity: device-versus-host comparison over a token sequence
"""
