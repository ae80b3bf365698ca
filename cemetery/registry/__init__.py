"""Registries: the asset index and the tombstone store.

Each registry is the single owner of one JSON document under
``.cemetery/``. Reads degrade gracefully; writes are atomic and raise
:class:`cemetery.store.StorageError` on failure.
"""

from cemetery.registry.assets import AssetRegistry
from cemetery.registry.tombstones import (
    MAX_TOMBSTONES,
    PLACEHOLDER_TOMBSTONES,
    TombstoneRegistry,
    generate_epitaph,
)

__all__ = [
    "AssetRegistry",
    "MAX_TOMBSTONES",
    "PLACEHOLDER_TOMBSTONES",
    "TombstoneRegistry",
    "generate_epitaph",
]
