"""Tombstone registry: capped, deduplicated archive of dead assets.

Storage order is newest-insert-first. ``upsert`` removes any prior record
with the same id, inserts at the head and truncates the tail so at most
:data:`MAX_TOMBSTONES` records are kept. Listing sorts by ``died_at``
on every read and never trusts storage order.

When the registry file is absent or unreadable, :meth:`TombstoneRegistry.list`
serves :data:`PLACEHOLDER_TOMBSTONES` so a UI has something to show. Those
records carry ``placeholder=True``; callers that need real data should
check :meth:`TombstoneRegistry.exists` or that flag.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import replace
from pathlib import Path

from cemetery.models import Tombstone, format_timestamp, now_utc
from cemetery.store import ParseError, StorageError, read_json, write_json, writer_lock

log = logging.getLogger(__name__)

MAX_TOMBSTONES = 100

# Cause keyword -> epitaph pool. First matching keyword wins.
EPITAPHS: dict[str, list[str]] = {
    "deprecated": [
        "Once glorious, now only an @deprecated marker remains",
        "The stack moved on and left it behind",
        "A new framework arrived; the veteran retired",
    ],
    "refactor": [
        "It was fine. The refactorer just thought it could be better",
        "Its soul was elevated in the refactor",
        "Not dead, just starting over under a new name",
    ],
    "unused": [
        "The day it was written was the last day it was read",
        "Never imported, never needed",
        "The dead code detector's favourite",
    ],
    "requirements-changed": [
        "The requirements changed; it did not keep up",
        "One sentence from product, one lifetime of code",
        "The PRD changed and the code fell in the line of duty",
    ],
    "inactive": [
        "Nobody committed, nobody noticed",
        "Its last push is a distant memory",
        "Waiting for a pull request that never came",
    ],
}

DEFAULT_EPITAPHS = [
    "Rest in peace. You compiled once",
    "Its console.log lives on forever in git history",
    "It is gone, but its comments still mislead the living",
    "Here lies code that did what the TODO never would",
]

PLACEHOLDER_TOMBSTONES: tuple[Tombstone, ...] = (
    Tombstone(
        id="regex-validator",
        name="RegEx captcha parser",
        cause_of_death="Killed by slider captchas",
        epitaph="It solved 99% of captchas until the captchas learned to evolve",
        tags=["rust", "validator"],
        original_path="src/utils/regex-validator.ts",
        language="Rust",
        line_count=256,
        died_at="2024-03-15T00:00:00Z",
        placeholder=True,
    ),
    Tombstone(
        id="vue2-admin",
        name="Vue 2.0 admin panel",
        cause_of_death="Vue 3 was released",
        epitaph="The Composition API will never enslave us!",
        tags=["vue", "admin"],
        original_path="packages/admin/src/main.ts",
        language="Vue",
        line_count=1542,
        died_at="2023-01-07T00:00:00Z",
        placeholder=True,
    ),
    Tombstone(
        id="jquery-branch",
        name="jQuery branch",
        cause_of_death="IE11 finally died",
        epitaph="RIP IE, you are finally gone",
        tags=["javascript", "jquery"],
        original_path="src/legacy/jquery-bridge.js",
        language="JavaScript",
        line_count=892,
        died_at="2022-06-15T00:00:00Z",
        placeholder=True,
    ),
)


def generate_epitaph(cause: str, seed: str = "") -> str:
    """Pick an epitaph matching *cause*.

    The pool is chosen by the first keyword found in the lower-cased cause;
    the entry within the pool is chosen by a hash of *seed* so the same
    asset always gets the same epitaph.
    """
    lower = cause.lower()
    pool = DEFAULT_EPITAPHS
    for keyword, epitaphs in EPITAPHS.items():
        if keyword in lower:
            pool = epitaphs
            break
    digest = hashlib.sha256(f"{seed}:{cause}".encode("utf-8")).digest()
    return pool[digest[0] % len(pool)]


class TombstoneRegistry:
    """Single owner of ``tombstone-registry.json``.

    Parameters
    ----------
    path:
        Location of the registry file.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        """True when the backing file exists (i.e. listings are real data)."""
        return self._path.exists()

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _read(self) -> list[Tombstone]:
        """Read stored records in storage order.

        Raises FileNotFoundError when absent and ParseError/StorageError
        when unreadable. Entries that fail validation are skipped.
        """
        raw = read_json(self._path)
        if not isinstance(raw, list):
            raise ParseError(f"Tombstone registry {self._path} is not a JSON list")

        tombstones: list[Tombstone] = []
        for i, entry in enumerate(raw):
            try:
                tombstones.append(Tombstone.from_dict(entry))
            except ValueError as exc:
                log.warning("Skipping tombstone #%d in %s: %s", i, self._path, exc)
        return tombstones

    def _read_for_update(self) -> list[Tombstone]:
        # Absent starts empty; a corrupt file raises instead of being overwritten
        try:
            return self._read()
        except FileNotFoundError:
            return []

    def _write(self, tombstones: list[Tombstone]) -> None:
        write_json(self._path, [t.to_dict() for t in tombstones])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[Tombstone]:
        """All real records in storage order. Empty if absent or unreadable."""
        try:
            return self._read()
        except FileNotFoundError:
            return []
        except StorageError as exc:
            log.warning("Tombstone registry unreadable: %s", exc)
            return []

    def list(self, limit: int) -> list[Tombstone]:
        """Return up to *limit* tombstones, most recently dead first.

        Falls back to :data:`PLACEHOLDER_TOMBSTONES` when the registry file
        is absent or unreadable.
        """
        if limit <= 0:
            return []

        try:
            tombstones = self._read()
        except FileNotFoundError:
            log.debug("No tombstone registry at %s; serving placeholders", self._path)
            tombstones = [replace(t) for t in PLACEHOLDER_TOMBSTONES]
        except StorageError as exc:
            log.warning("Tombstone registry unreadable, serving placeholders: %s", exc)
            tombstones = [replace(t) for t in PLACEHOLDER_TOMBSTONES]

        tombstones.sort(key=lambda t: t.died_at_dt, reverse=True)
        return tombstones[:limit]

    def get(self, tombstone_id: str) -> Tombstone | None:
        for tombstone in self.all():
            if tombstone.id == tombstone_id:
                return tombstone
        return None

    def search(self, query: str) -> list[Tombstone]:
        """Find tombstones whose text contains every keyword in *query*."""
        keywords = query.lower().split()
        if not keywords:
            return []

        results = []
        for t in self.all():
            searchable = " ".join([
                t.name,
                t.cause_of_death,
                t.epitaph,
                t.original_path,
                t.language or "",
                *t.tags,
            ]).lower()
            if all(kw in searchable for kw in keywords):
                results.append(t)
        return results

    def language_breakdown(self) -> dict[str, int]:
        return dict(Counter(t.language for t in self.all() if t.language))

    def cause_breakdown(self) -> dict[str, int]:
        return dict(Counter(t.cause_of_death[:30] for t in self.all()))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, tombstone: Tombstone) -> None:
        """Insert *tombstone* at the head, replacing any record with its id.

        The sequence is truncated to :data:`MAX_TOMBSTONES`. The write is
        all-or-nothing.

        Raises
        ------
        ValueError
            If *tombstone* would not survive being read back.
        StorageError
            If the registry cannot be read back or written.
        """
        try:
            Tombstone.from_dict(tombstone.to_dict())
        except ValueError as exc:
            raise ValueError(f"Invalid tombstone {tombstone.id!r}: {exc}") from exc

        with writer_lock(self._path):
            current = self._read_for_update()
            updated = [tombstone] + [t for t in current if t.id != tombstone.id]
            evicted = len(updated) - MAX_TOMBSTONES
            if evicted > 0:
                log.debug("Evicting %d oldest tombstone(s)", evicted)
            self._write(updated[:MAX_TOMBSTONES])

    def mark_resurrected(self, tombstone_id: str, resurrected_to: str) -> Tombstone | None:
        """Record that a tombstone's code came back at *resurrected_to*.

        Returns the updated record, or None (and writes nothing) when the
        id is unknown or the registry is unreadable.
        """
        with writer_lock(self._path):
            try:
                current = self._read_for_update()
            except StorageError as exc:
                log.warning("Tombstone registry unreadable, not resurrecting %s: %s", tombstone_id, exc)
                return None
            for tombstone in current:
                if tombstone.id == tombstone_id:
                    tombstone.resurrected_at = format_timestamp(now_utc())
                    tombstone.resurrected_to = resurrected_to
                    self._write(current)
                    log.info("Tombstone %s resurrected to %s", tombstone_id, resurrected_to)
                    return tombstone
        return None
