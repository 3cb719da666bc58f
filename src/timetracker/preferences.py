# src/timetracker/preferences.py

"""User preferences, stored as one JSON document in the key-value backend."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from .core.errors import ValidationError
from .core.ports import KeyValueBackend
from .core.validation import validate_notification_interval

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "timetracker-preferences"

DEFAULT_PREFERENCES: dict[str, Any] = {
    "notificationInterval": 1,
    "theme": "light",
    "dateFormat": "default",
    "timeFormat": "24h",
}

_CHOICES: dict[str, tuple[str, ...]] = {
    "theme": ("light", "dark", "auto"),
    "dateFormat": ("default", "iso", "us", "eu"),
    "timeFormat": ("12h", "24h"),
}


def _check(key: str, value: Any) -> None:
    if key == "notificationInterval":
        validate_notification_interval(value).raise_for_errors()
        return
    choices = _CHOICES.get(key)
    if choices is None:
        raise ValidationError(f"Unknown preference: {key}", details={"key": key})
    if value not in choices:
        raise ValidationError(
            f"{key} must be one of: {', '.join(choices)}",
            details={"key": key, "value": value},
        )


class PreferencesManager:
    def __init__(self, kv: KeyValueBackend) -> None:
        self._kv = kv
        self._settings = self._load()

    def _load(self) -> dict[str, Any]:
        try:
            raw = self._kv.get(PREFERENCES_KEY)
            if raw is None:
                return dict(DEFAULT_PREFERENCES)
            parsed = json.loads(raw.decode("utf-8"))
            if not isinstance(parsed, dict):
                raise ValueError("preferences document is not an object")
        except (ValueError, UnicodeDecodeError):
            logger.warning("Stored preferences are unreadable; using defaults", exc_info=True)
            return dict(DEFAULT_PREFERENCES)

        merged = dict(DEFAULT_PREFERENCES)
        for key, value in parsed.items():
            if key not in DEFAULT_PREFERENCES:
                continue
            try:
                _check(key, value)
            except ValidationError:
                logger.warning("Ignoring invalid stored preference %s=%r", key, value)
                continue
            merged[key] = value
        return merged

    def _save(self) -> None:
        self._kv.set(PREFERENCES_KEY, json.dumps(self._settings).encode("utf-8"))

    def get_setting(self, key: str) -> Any:
        return self._settings.get(key, DEFAULT_PREFERENCES.get(key))

    def set_setting(self, key: str, value: Any) -> None:
        _check(key, value)
        self._settings[key] = value
        self._save()

    def get_all_settings(self) -> dict[str, Any]:
        return dict(self._settings)

    def update_settings(self, changes: Mapping[str, Any]) -> None:
        """Apply several settings at once; nothing is changed if any value is invalid."""
        for key, value in changes.items():
            _check(key, value)
        self._settings.update(changes)
        self._save()

    def reset_to_defaults(self) -> None:
        self._settings = dict(DEFAULT_PREFERENCES)
        self._save()

    # ---- notification interval ----

    def get_notification_interval(self) -> int:
        return int(self.get_setting("notificationInterval"))

    def set_notification_interval(self, minutes: int) -> None:
        self.set_setting("notificationInterval", minutes)

    def get_notification_interval_seconds(self) -> float:
        return self.get_notification_interval() * 60.0

    def get_formatted_notification_interval(self) -> str:
        minutes = self.get_notification_interval()
        if minutes < 60:
            return f"{minutes} minute{'s' if minutes != 1 else ''}"
        hours, rest = divmod(minutes, 60)
        if rest == 0:
            return f"{hours} hour{'s' if hours != 1 else ''}"
        return f"{hours}h {rest}m"

    # ---- backup ----

    def export_settings(self) -> str:
        return json.dumps(self._settings, indent=2)

    def import_settings(self, settings_json: str) -> None:
        """
        Merge settings from a backup. An invalid notification interval is replaced by
        the default; any other invalid value raises ValidationError.
        """
        try:
            imported = json.loads(settings_json)
        except json.JSONDecodeError as exc:
            raise ValidationError("Preferences backup is not valid JSON") from exc
        if not isinstance(imported, dict):
            raise ValidationError("Preferences backup must be an object")

        imported = {k: v for k, v in imported.items() if k in DEFAULT_PREFERENCES}
        if "notificationInterval" in imported and not validate_notification_interval(
            imported["notificationInterval"]
        ):
            imported["notificationInterval"] = DEFAULT_PREFERENCES["notificationInterval"]
        self.update_settings(imported)

    def validate_settings(self, settings: Mapping[str, Any] | None = None) -> list[str]:
        to_validate = self._settings if settings is None else settings
        errors: list[str] = []
        for key in DEFAULT_PREFERENCES:
            try:
                _check(key, to_validate.get(key))
            except ValidationError as exc:
                errors.append(exc.message)
        return errors
