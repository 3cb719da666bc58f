"""
Core building blocks.

- models.py: ActiveTask, HistoryEntry, TaskDefinition, StorageStatus
- validation.py: pure checks returning ValidationResult
- errors.py: typed error taxonomy
- ports.py: Protocols for host capabilities (key-value, file handles, clock, notifier)
- state.py: observable in-memory state store
"""
