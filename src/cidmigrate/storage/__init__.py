# src/cidmigrate/storage/__init__.py
"""
Durable local state for the migrator.

The checkpoint file is the only state that survives between runs:
- it is read fully at startup (missing = empty, unparseable = fatal),
- it is appended to (and fsynced) only after a confirmed on-chain success,
- it is guarded by a single-writer lock so two runs never share it.
"""
