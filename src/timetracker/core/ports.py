# src/timetracker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage backends and the notification channel swappable and makes testing easier.
"""

from typing import Awaitable, Protocol

from .models import ActiveTask


class KeyValueBackend(Protocol):
    """Always-available persistent key-value store (bytes in, bytes out)."""

    def get(self, key: str) -> bytes | None: ...
    def set(self, key: str, value: bytes) -> None: ...
    def remove(self, key: str) -> None: ...


class HandleRegistry(Protocol):
    """Small secondary store that remembers file-handle references across restarts."""

    def get(self, key: str) -> str | None: ...
    def put(self, key: str, reference: str) -> None: ...
    def delete(self, key: str) -> None: ...


class FileHandle(Protocol):
    """A user-granted file: full read, full replace, liveness check."""

    @property
    def reference(self) -> str: ...

    def verify(self) -> Awaitable[None]: ...
    def read_text(self) -> Awaitable[str]: ...
    def write_text(self, data: str) -> Awaitable[None]: ...


class FileSystemAccess(Protocol):
    """
    Optional advanced capability.

    supported=False means the host cannot offer file handles at all;
    request_handle returns None when the user declines.
    """

    @property
    def supported(self) -> bool: ...

    def request_handle(self, suggested_name: str) -> Awaitable[FileHandle | None]: ...
    def restore_handle(self, reference: str) -> Awaitable[FileHandle]: ...


class Clock(Protocol):
    def now_ms(self) -> int: ...


class Notifier(Protocol):
    """Delivery channel for "still working on X?" reminders."""

    def notify(self, task: ActiveTask) -> Awaitable[None]: ...
