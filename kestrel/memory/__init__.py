"""Device memory model: every buffer a run reads or writes.

All buffers are flat float32 arrays allocated once, sized from the model
config, and owned here, never by a kernel call. Kernels receive them as
DeviceBuffers or BufferViews (offset windows), which the device handle
resolves to device tensors at dispatch time.
- buffer: DeviceBuffer, BufferView, BufferTable
- cache: KVCache, the append-only key/value store
- weights: TransformerWeights (host) and DeviceWeights (uploaded)
- state: DeviceMemory, activations + cache + weights for one run
"""
