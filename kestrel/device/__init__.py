"""Device access: one accelerator context, one stream, dispatch by name.

- launch: LaunchShape, the lane geometry of one kernel invocation
- handle: DeviceHandle, which owns the context and the compiled kernel set
- trace: DispatchTrace, a recorder of every dispatch issued through a handle
"""
