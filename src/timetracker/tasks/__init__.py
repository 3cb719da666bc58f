"""
Task subsystem.

- registry.py: task definitions keyed by id, indexed by normalized name
- task_manager.py: start/stop/switch lifecycle and startup reconciliation
- summaries.py: read-only aggregations over the history log
- reminder.py: polling loop that triggers "still working?" reminders
"""
