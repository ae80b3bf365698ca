"""Summary counts derived from the asset index and tombstone registry.

Nothing here is persisted. Every call reads fresh snapshots; missing or
unreadable stores count as empty.
"""

from __future__ import annotations

from cemetery.models import Stats
from cemetery.registry.assets import AssetRegistry
from cemetery.registry.tombstones import TombstoneRegistry

UNKNOWN_LAST_SCAN = "unknown"
LAST_SCAN_FORMAT = "%Y-%m-%d %H:%M:%S"


class DataIntegrityError(Exception):
    """Raised when derived counts are inconsistent (e.g. alive > total)."""


def dead_count(total: int, alive: int) -> int:
    """``total - alive``, refusing to go negative."""
    if alive > total:
        raise DataIntegrityError(
            f"alive asset count ({alive}) exceeds total asset count ({total})"
        )
    return total - alive


def compute_stats(assets: AssetRegistry, tombstones: TombstoneRegistry) -> Stats:
    """Compute :class:`Stats` over the current registry contents.

    ``last_scan`` is the asset index's last-modified time (UTC), or
    ``"unknown"`` if the index has never been written.
    """
    asset_list = assets.load()
    total = len(asset_list)
    alive = sum(1 for a in asset_list if a.alive)

    tombstone_list = tombstones.all()

    modified = assets.last_modified()
    last_scan = modified.strftime(LAST_SCAN_FORMAT) if modified else UNKNOWN_LAST_SCAN

    return Stats(
        total_assets=total,
        alive_assets=alive,
        dead_assets=dead_count(total, alive),
        total_tombstones=len(tombstone_list),
        resurrected=sum(1 for t in tombstone_list if t.resurrected),
        last_scan=last_scan,
    )
