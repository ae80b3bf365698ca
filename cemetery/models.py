"""Record types for assets, tombstones, zombie alerts and scan output.

Every persisted record has a ``from_dict`` that validates one stored entry
independently (raising ``ValueError`` on a bad shape) and a ``to_dict``
producing the JSON form written to disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(dt: datetime) -> str:
    """Format *dt* as an ISO-8601 UTC string with a ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"expected ISO-8601 timestamp, got {value!r}")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ------------------------------------------------------------------
# Field helpers
# ------------------------------------------------------------------


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' must be a non-empty string")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string or null")
    return value


def _text(data: dict[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _count(data: dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{key}' must be a non-negative integer")
    return value


def _tags(data: dict[str, Any]) -> list[str]:
    value = data.get("tags", [])
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValueError("'tags' must be a list of strings")
    return value


def _score(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise ValueError(f"'{key}' must be within 0.0-1.0, got {value}")
    return float(value)


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass
class Asset:
    """A tracked code unit, alive or dead."""

    id: str
    name: str
    type: str
    location: str
    language: str | None = None
    tags: set[str] = field(default_factory=set)
    alive: bool = True
    line_count: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> Asset:
        if not isinstance(data, dict):
            raise ValueError("asset entry must be an object")
        alive = data.get("alive", True)
        if not isinstance(alive, bool):
            raise ValueError("'alive' must be a boolean")
        return cls(
            id=_require_str(data, "id"),
            name=_text(data, "name"),
            type=_text(data, "type") or "unknown",
            location=_text(data, "location"),
            language=_optional_str(data, "language"),
            tags=set(_tags(data)),
            alive=alive,
            line_count=_count(data, "line_count"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "location": self.location,
            "language": self.language,
            "tags": sorted(self.tags),
            "alive": self.alive,
            "line_count": self.line_count,
        }


@dataclass
class Tombstone:
    """The persisted record of a dead asset.

    ``placeholder`` marks the fixed fallback records served when the
    registry file is missing or unreadable. It is never written to disk.
    """

    id: str
    name: str
    cause_of_death: str
    epitaph: str
    original_path: str
    died_at: str
    tags: list[str] = field(default_factory=list)
    language: str | None = None
    line_count: int = 0
    resurrected_at: str | None = None
    resurrected_to: str | None = None
    placeholder: bool = field(default=False, compare=False)

    @property
    def resurrected(self) -> bool:
        return self.resurrected_at is not None

    @property
    def died_at_dt(self) -> datetime:
        return parse_timestamp(self.died_at)

    @classmethod
    def from_dict(cls, data: Any) -> Tombstone:
        if not isinstance(data, dict):
            raise ValueError("tombstone entry must be an object")
        died_at = _require_str(data, "died_at")
        parse_timestamp(died_at)
        resurrected_at = _optional_str(data, "resurrected_at")
        if resurrected_at is not None:
            parse_timestamp(resurrected_at)
        return cls(
            id=_require_str(data, "id"),
            name=_text(data, "name"),
            cause_of_death=_text(data, "cause_of_death"),
            epitaph=_text(data, "epitaph"),
            original_path=_text(data, "original_path"),
            died_at=died_at,
            tags=_tags(data),
            language=_optional_str(data, "language"),
            line_count=_count(data, "line_count"),
            resurrected_at=resurrected_at,
            resurrected_to=_optional_str(data, "resurrected_to"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cause_of_death": self.cause_of_death,
            "epitaph": self.epitaph,
            "tags": list(self.tags),
            "original_path": self.original_path,
            "language": self.language,
            "line_count": self.line_count,
            "died_at": self.died_at,
            "resurrected_at": self.resurrected_at,
            "resurrected_to": self.resurrected_to,
        }


@dataclass
class ZombieAlert:
    """A detected resurrection of retired code.

    ``similarity`` and ``confidence`` come from the external matcher and
    are stored as given once range-checked.
    """

    id: str
    corpse_repo: str
    corpse_path: str
    zombie_repo: str
    zombie_path: str
    similarity: float
    resurrection_type: str
    confidence: float
    detected_at: str
    notified: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> ZombieAlert:
        if not isinstance(data, dict):
            raise ValueError("alert entry must be an object")
        notified = data.get("notified", False)
        if not isinstance(notified, bool):
            raise ValueError("'notified' must be a boolean")
        detected_at = _require_str(data, "detected_at")
        parse_timestamp(detected_at)
        return cls(
            id=_require_str(data, "id"),
            corpse_repo=_require_str(data, "corpse_repo"),
            corpse_path=_text(data, "corpse_path"),
            zombie_repo=_require_str(data, "zombie_repo"),
            zombie_path=_text(data, "zombie_path"),
            similarity=_score(data, "similarity"),
            resurrection_type=_require_str(data, "resurrection_type"),
            confidence=_score(data, "confidence"),
            detected_at=detected_at,
            notified=notified,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "corpse_repo": self.corpse_repo,
            "corpse_path": self.corpse_path,
            "zombie_repo": self.zombie_repo,
            "zombie_path": self.zombie_path,
            "similarity": self.similarity,
            "resurrection_type": self.resurrection_type,
            "confidence": self.confidence,
            "detected_at": self.detected_at,
            "notified": self.notified,
        }


@dataclass
class RepoRecord:
    """One repository as reported by a source (GitHub or local git)."""

    id: str
    full_name: str
    updated_at: datetime
    stargazers_count: int
    language: str | None
    url: str

    @property
    def name(self) -> str:
        return self.full_name.rsplit("/", 1)[-1]


@dataclass
class Stats:
    total_assets: int = 0
    alive_assets: int = 0
    dead_assets: int = 0
    total_tombstones: int = 0
    resurrected: int = 0
    last_scan: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_assets": self.total_assets,
            "alive_assets": self.alive_assets,
            "dead_assets": self.dead_assets,
            "total_tombstones": self.total_tombstones,
            "resurrected": self.resurrected,
            "last_scan": self.last_scan,
        }


@dataclass
class ScanResult:
    success: bool
    scanned: int
    zombies: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "scanned": self.scanned,
            "zombies": self.zombies,
            "message": self.message,
        }
