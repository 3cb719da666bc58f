"""
TimeTracker core.

Components:
- core/: models, validation, errors, ports and the observable state store
- storage/: key-value backend, file backend, persistent store, exporters
- tasks/: task registry, lifecycle manager, summaries, reminder poll
- preferences.py: user settings persisted in the key-value backend
- cli/ + connectors/: console front-end
"""

__version__ = "0.1.0"
