"""
Core update engine.

This package contains the primary logic. The `UpdateEngine` owns the
inventory and the current batch and runs the single dispatch queue; the
`ReconciliationEngine` decides what needs upgrading, and the
`UpdateOrchestrator` supervises each update through `ExtensionUpdater`.
"""
