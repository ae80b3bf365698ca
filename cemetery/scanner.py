"""Staleness scan: classify repositories as alive or dead.

A repository is dead ("worth a tombstone") when it has been inactive for
longer than the threshold *and* someone ever noticed it (at least one
star, or one commit for local repositories). Dead repositories are
upserted into the tombstone registry as they are found; the asset index
is refreshed in one write at the end of the run.

The full repository list is fetched before anything is written, so a
fetch failure leaves both registries untouched.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from cemetery.models import (
    Asset,
    RepoRecord,
    ScanResult,
    Tombstone,
    format_timestamp,
    now_utc,
)
from cemetery.registry.assets import AssetRegistry
from cemetery.registry.tombstones import TombstoneRegistry, generate_epitaph
from cemetery.sources import RepoSource, SourceError, repo_record_from_github
from cemetery.store import StorageError

log = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 180


class ScanError(Exception):
    """Raised when a scan run is aborted. ``__cause__`` holds the reason.

    ``scanned`` and ``zombies`` count the progress made before the abort;
    tombstones counted in ``zombies`` are already stored.
    """

    def __init__(self, message: str, scanned: int = 0, zombies: int = 0) -> None:
        super().__init__(message)
        self.scanned = scanned
        self.zombies = zombies


class CancelToken:
    """Cooperative cancellation flag checked between repository records."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def is_zombie(record: RepoRecord, now: datetime, threshold: timedelta) -> bool:
    """True iff *record* is inactive past *threshold* and was ever noticed."""
    return now - record.updated_at > threshold and record.stargazers_count > 0


def build_tombstone(
    record: RepoRecord,
    now: datetime,
    source_tag: str,
    line_count: int = 0,
) -> Tombstone:
    idle_days = (now - record.updated_at).days
    tags = {source_tag}
    if record.language:
        tags.add(record.language.lower())
    return Tombstone(
        id=record.id,
        name=record.full_name,
        cause_of_death=f"No activity for {idle_days} days",
        epitaph=generate_epitaph("inactive", seed=record.id),
        tags=sorted(tags),
        original_path=record.url,
        language=record.language,
        line_count=line_count,
        died_at=format_timestamp(record.updated_at),
    )


def build_asset(record: RepoRecord, alive: bool, source_tag: str, line_count: int = 0) -> Asset:
    tags = {source_tag}
    if record.language:
        tags.add(record.language.lower())
    return Asset(
        id=record.id,
        name=record.name,
        type="repository",
        location=record.url,
        language=record.language,
        tags=tags,
        alive=alive,
        line_count=line_count,
    )


def _line_count(raw: Any) -> int:
    value = raw.get("line_count", 0) if isinstance(raw, dict) else 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


class StalenessScanner:
    """Runs one scan over a repository source.

    Parameters
    ----------
    tombstones:
        Registry receiving tombstones for dead repositories.
    assets:
        Registry refreshed with every scanned repository.
    threshold_days:
        Inactivity threshold in days.
    parse:
        Maps one raw source entry to a RepoRecord, raising ValueError on
        malformed input.
    """

    def __init__(
        self,
        tombstones: TombstoneRegistry,
        assets: AssetRegistry,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        parse: Callable[[Any], RepoRecord] = repo_record_from_github,
    ) -> None:
        self._tombstones = tombstones
        self._assets = assets
        self._threshold = timedelta(days=threshold_days)
        self._parse = parse

    @property
    def threshold(self) -> timedelta:
        return self._threshold

    def scan(
        self,
        source: RepoSource,
        source_tag: str = "github",
        now: datetime | None = None,
        cancel: CancelToken | None = None,
    ) -> ScanResult:
        """Fetch, classify and record every repository from *source*.

        Raises
        ------
        ScanError
            If the source cannot be fetched or a registry write fails.
            Tombstones upserted before a write failure stay in place.
        """
        now = now or now_utc()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        try:
            entries = list(source())
        except SourceError as exc:
            log.error("Scan aborted while fetching repositories: %s", exc)
            raise ScanError(f"Scan aborted: {exc}") from exc

        # Resurrected tombstones are not buried again by a rescan
        resurrected = {t.id for t in self._tombstones.all() if t.resurrected}

        scanned = 0
        zombies = 0
        cancelled = False
        assets: list[Asset] = []

        for i, raw in enumerate(entries):
            if cancel is not None and cancel.cancelled:
                log.info("Scan cancelled after %d of %d repositories", scanned, len(entries))
                cancelled = True
                break

            scanned += 1
            try:
                record = self._parse(raw)
            except ValueError as exc:
                log.warning("Skipping malformed repository entry #%d: %s", i, exc)
                continue

            line_count = _line_count(raw)
            dead = is_zombie(record, now, self._threshold) and record.id not in resurrected

            if dead:
                tombstone = build_tombstone(record, now, source_tag, line_count)
                try:
                    self._tombstones.upsert(tombstone)
                except StorageError as exc:
                    log.error("Scan aborted writing tombstone %s: %s", record.id, exc)
                    raise ScanError(
                        f"Scan aborted: {exc}", scanned=scanned, zombies=zombies,
                    ) from exc
                zombies += 1
                log.debug("Zombie: %s (%s)", record.full_name, tombstone.cause_of_death)

            assets.append(build_asset(record, not dead, source_tag, line_count))

        try:
            self._assets.merge(assets)
        except StorageError as exc:
            log.error("Scan aborted writing asset index: %s", exc)
            raise ScanError(
                f"Scan aborted: {exc}", scanned=scanned, zombies=zombies,
            ) from exc

        if cancelled:
            message = f"Scan cancelled: {scanned} repositories scanned, {zombies} zombie(s) found"
            return ScanResult(success=False, scanned=scanned, zombies=zombies, message=message)

        message = f"Scan complete: {scanned} repositories scanned, {zombies} zombie(s) found"
        log.info(message)
        return ScanResult(success=True, scanned=scanned, zombies=zombies, message=message)
