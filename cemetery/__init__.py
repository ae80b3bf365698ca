"""Code Cemetery: tombstones for retired code."""

__version__ = "0.1.0"
