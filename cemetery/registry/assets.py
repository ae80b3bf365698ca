"""Asset index: the current known set of assets, alive or dead.

Assets are never deleted. A scan refreshes the set and flips ``alive``;
resurrecting a tombstone flips its asset back to alive.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from cemetery.models import Asset
from cemetery.store import ParseError, StorageError, read_json, write_json, writer_lock

log = logging.getLogger(__name__)


class AssetRegistry:
    """Single owner of ``asset-index.json``.

    Parameters
    ----------
    path:
        Location of the asset index file.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self) -> list[Asset]:
        raw = read_json(self._path)
        if not isinstance(raw, list):
            raise ParseError(f"Asset index {self._path} is not a JSON list")

        assets: list[Asset] = []
        for i, entry in enumerate(raw):
            try:
                assets.append(Asset.from_dict(entry))
            except ValueError as exc:
                log.warning("Skipping asset #%d in %s: %s", i, self._path, exc)
        return assets

    def _read_for_update(self) -> list[Asset]:
        try:
            return self._read()
        except FileNotFoundError:
            return []

    def load(self) -> list[Asset]:
        """Return all stored assets.

        Missing or unreadable files yield an empty list. Individual entries
        that fail validation are skipped.
        """
        try:
            return self._read()
        except FileNotFoundError:
            return []
        except StorageError as exc:
            log.warning("Asset index unreadable, treating as empty: %s", exc)
            return []

    def get(self, asset_id: str) -> Asset | None:
        for asset in self.load():
            if asset.id == asset_id:
                return asset
        return None

    def last_modified(self) -> datetime | None:
        """Wall-clock time the index was last written, or None if never."""
        try:
            mtime = self._path.stat().st_mtime
        except OSError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def merge(self, assets: Iterable[Asset]) -> list[Asset]:
        """Insert or replace *assets* by id, keeping everything else.

        Existing order is kept; new ids are appended. Returns the full set
        as written. Raises ValueError, before anything is written, if any
        asset would not survive being read back.
        """
        assets = list(assets)
        for asset in assets:
            try:
                Asset.from_dict(asset.to_dict())
            except ValueError as exc:
                raise ValueError(f"Invalid asset {asset.id!r}: {exc}") from exc

        with writer_lock(self._path):
            current = self._read_for_update()
            index = {a.id: i for i, a in enumerate(current)}
            for asset in assets:
                if asset.id in index:
                    current[index[asset.id]] = asset
                else:
                    index[asset.id] = len(current)
                    current.append(asset)
            write_json(self._path, [a.to_dict() for a in current])
        return current

    def set_alive(self, asset_id: str, alive: bool) -> bool:
        """Flip the ``alive`` flag of one asset.

        Returns False (and writes nothing) if the id is unknown or the index
        is unreadable.
        """
        with writer_lock(self._path):
            try:
                current = self._read_for_update()
            except StorageError as exc:
                log.warning("Asset index unreadable, not updating %s: %s", asset_id, exc)
                return False
            for asset in current:
                if asset.id == asset_id:
                    if asset.alive == alive:
                        return True
                    asset.alive = alive
                    write_json(self._path, [a.to_dict() for a in current])
                    return True
        return False
