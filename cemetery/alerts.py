"""Zombie alerts: detected resurrections of retired code.

Alerts are appended by an external matcher (which owns similarity
scoring) and read, acknowledged or cleared by callers. Each stored entry
is validated on its own, so one malformed alert never hides the rest.

Per-alert lifecycle::

    unread --mark_read--> read
    (any)  --clear_all--> gone   (whole set replaced, last_check stamped)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from cemetery.models import Tombstone, ZombieAlert, format_timestamp, now_utc
from cemetery.registry.tombstones import TombstoneRegistry
from cemetery.store import StorageError, read_json, write_json, writer_lock

log = logging.getLogger(__name__)

NEVER_CHECKED = "never"


class AlertError(Exception):
    """Raised when an alert handed to the store is invalid."""


@dataclass
class AlertListing:
    alerts: list[ZombieAlert] = field(default_factory=list)
    last_check: str = NEVER_CHECKED

    @property
    def total_alerts(self) -> int:
        return len(self.alerts)

    @property
    def unread_count(self) -> int:
        return sum(1 for a in self.alerts if not a.notified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "last_check": self.last_check,
            "total_alerts": self.total_alerts,
            "unread_count": self.unread_count,
        }


def _is_valid(entry: Any) -> bool:
    try:
        ZombieAlert.from_dict(entry)
    except ValueError:
        return False
    return True


class AlertStore:
    """Single owner of ``zombie-alerts.json``.

    Parameters
    ----------
    path:
        Location of the alerts file.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read_document(self) -> dict[str, Any]:
        """Return the raw stored document; raises like :func:`read_json`."""
        raw = read_json(self._path)
        if not isinstance(raw, dict):
            raise StorageError(f"Alert file {self._path} is not a JSON object")
        return raw

    def get_alerts(self) -> AlertListing:
        """Return every valid stored alert plus the last check time.

        Missing or unreadable files yield an empty listing.
        """
        try:
            raw = self._read_document()
        except FileNotFoundError:
            return AlertListing()
        except StorageError as exc:
            log.warning("Alert file unreadable, treating as empty: %s", exc)
            return AlertListing()

        entries = raw.get("alerts")
        if not isinstance(entries, list):
            entries = []

        alerts: list[ZombieAlert] = []
        for i, entry in enumerate(entries):
            try:
                alerts.append(ZombieAlert.from_dict(entry))
            except ValueError as exc:
                log.warning("Skipping alert #%d in %s: %s", i, self._path, exc)

        last_check = raw.get("last_check")
        if not isinstance(last_check, str) or not last_check:
            last_check = NEVER_CHECKED
        return AlertListing(alerts=alerts, last_check=last_check)

    def get(self, alert_id: str) -> ZombieAlert | None:
        for alert in self.get_alerts().alerts:
            if alert.id == alert_id:
                return alert
        return None

    def unread(self) -> list[ZombieAlert]:
        return [a for a in self.get_alerts().alerts if not a.notified]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self, entries: list[Any], last_check: str) -> None:
        write_json(self._path, {"alerts": entries, "last_check": last_check})

    def _read_for_update(self) -> tuple[list[Any], str]:
        """Raw entries and last_check for a rewrite.

        Entries that fail validation are carried through untouched.
        """
        try:
            raw = self._read_document()
        except FileNotFoundError:
            return [], NEVER_CHECKED
        entries = raw.get("alerts")
        last_check = raw.get("last_check")
        return (
            entries if isinstance(entries, list) else [],
            last_check if isinstance(last_check, str) and last_check else NEVER_CHECKED,
        )

    def record(self, alert: ZombieAlert) -> None:
        """Store an alert from the matcher, replacing one with the same id."""
        payload = alert.to_dict()
        try:
            ZombieAlert.from_dict(payload)
        except ValueError as exc:
            raise AlertError(f"Invalid alert {alert.id!r}: {exc}") from exc

        with writer_lock(self._path):
            entries, last_check = self._read_for_update()
            entries = [
                e for e in entries
                if not (isinstance(e, dict) and e.get("id") == alert.id)
            ]
            entries.append(payload)
            self._write(entries, last_check)
        log.info(
            "Zombie alert %s: %s -> %s (similarity %.2f)",
            alert.id, alert.corpse_repo, alert.zombie_repo, alert.similarity,
        )

    def mark_read(self, alert_id: str) -> bool:
        """Mark one alert as read.

        Idempotent. Returns False (and writes nothing) if no valid alert has
        that id, or the alert file is missing or unreadable.
        """
        if not self._path.exists():
            return False

        with writer_lock(self._path):
            try:
                entries, last_check = self._read_for_update()
            except StorageError as exc:
                log.warning("Alert file unreadable, not marking %s read: %s", alert_id, exc)
                return False
            for entry in entries:
                if _is_valid(entry) and entry["id"] == alert_id:
                    if entry.get("notified") is True:
                        return True
                    entry["notified"] = True
                    self._write(entries, last_check)
                    return True
        return False

    def clear_all(self) -> str:
        """Drop every alert and stamp a new ``last_check``. Returns the stamp."""
        stamp = format_timestamp(now_utc())
        with writer_lock(self._path):
            self._write([], stamp)
        log.info("Cleared all zombie alerts")
        return stamp

    def acknowledge(self, alert_id: str, tombstones: TombstoneRegistry) -> Tombstone | None:
        """Mark an alert read and record the resurrection on its tombstone.

        The corpse tombstone is matched by id or name against
        ``corpse_repo``. Returns the resurrected tombstone, or None when the
        alert is unknown or no tombstone matches.
        """
        alert = self.get(alert_id)
        if alert is None:
            return None

        self.mark_read(alert_id)

        target = f"{alert.zombie_repo}/{alert.zombie_path}".rstrip("/")
        match = next(
            (t for t in tombstones.all() if alert.corpse_repo in (t.id, t.name)),
            None,
        )
        if match is None:
            log.warning("No tombstone found for corpse %s", alert.corpse_repo)
            return None
        return tombstones.mark_resurrected(match.id, target)
