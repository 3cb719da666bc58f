"""
Storage subsystem.

- kv_store.py: SQLite key-value backend (always available)
- file_access.py: user-chosen data file backend + handle registry
- persistent_store.py: backend selection, fallback, import/export
- exporters.py: JSON / CSV rendering
"""
