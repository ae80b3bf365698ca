"""User settings record persisted as JSON.

Holds the GitHub token, the organisation to scan, the scan interval and
the autostart preference. The file is created with defaults on first load.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from cemetery.store import StorageError, read_json, write_json, writer_lock

log = logging.getLogger(__name__)

DEFAULT_TARGET_ORG = "microsoft"
DEFAULT_SCAN_INTERVAL = 3600  # seconds


@dataclass
class Settings:
    github_token: str | None = None
    target_org: str = DEFAULT_TARGET_ORG
    scan_interval: int = DEFAULT_SCAN_INTERVAL
    auto_start: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> Settings:
        """Build settings from a stored mapping, filling absent keys with defaults."""
        if not isinstance(data, dict):
            raise ValueError("settings must be a JSON object")
        defaults = cls()
        token = data.get("github_token", defaults.github_token)
        if token is not None and not isinstance(token, str):
            raise ValueError("'github_token' must be a string or null")
        org = data.get("target_org", defaults.target_org)
        if not isinstance(org, str) or not org:
            raise ValueError("'target_org' must be a non-empty string")
        interval = data.get("scan_interval", defaults.scan_interval)
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ValueError("'scan_interval' must be a positive integer (seconds)")
        auto_start = data.get("auto_start", defaults.auto_start)
        if not isinstance(auto_start, bool):
            raise ValueError("'auto_start' must be a boolean")
        return cls(
            github_token=token,
            target_org=org,
            scan_interval=interval,
            auto_start=auto_start,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettingsStore:
    """Single owner of the settings JSON file.

    Parameters
    ----------
    path:
        Location of ``settings.json``.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Settings:
        """Return the stored settings, writing defaults if the file is absent.

        Raises
        ------
        ParseError
            If the file exists but is not valid JSON.
        StorageError
            If the file holds an invalid settings record or cannot be read.
        """
        try:
            raw = read_json(self._path)
        except FileNotFoundError:
            settings = Settings()
            log.info("No settings at %s; writing defaults", self._path)
            self.save(settings)
            return settings

        try:
            return Settings.from_dict(raw)
        except ValueError as exc:
            raise StorageError(f"Invalid settings in {self._path}: {exc}") from exc

    def save(self, settings: Settings) -> None:
        """Persist *settings*, replacing the whole file."""
        with writer_lock(self._path):
            write_json(self._path, settings.to_dict())

    def update_token(self, token: str) -> Settings:
        """Store a new GitHub token and return the updated settings."""
        settings = self.load()
        settings.github_token = token
        self.save(settings)
        log.info("GitHub token updated")
        return settings
