"""JSON file persistence shared by every cemetery store.

Each logical store (settings, asset index, tombstone registry, zombie
alerts) owns exactly one JSON document. Writes go to a temp file in the
same directory and are moved into place with ``os.replace`` so readers see
either the previous document or the new one, never a partial write.
Read-modify-write sequences hold a per-store lock file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

log = logging.getLogger(__name__)

# Locks older than this are assumed to belong to a crashed writer
STALE_LOCK_SECONDS = 300


class StorageError(Exception):
    """Raised when a store file cannot be read or written."""


class ParseError(StorageError):
    """Raised when a store file exists but does not hold valid JSON."""


def read_json(path: Path) -> Any:
    """Read and decode a JSON document.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist. Callers decide whether absence is fatal.
    ParseError
        If the file is not valid JSON.
    StorageError
        On any other OS-level read failure.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise
    except OSError as exc:
        raise StorageError(f"Cannot read {path}: {exc}") from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Malformed JSON in {path}: {exc}") from exc


def write_json(path: Path, payload: Any) -> None:
    """Atomically replace *path* with the JSON encoding of *payload*.

    Either the full document lands or the previous file is left untouched.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    except (OSError, TypeError, ValueError) as exc:
        raise StorageError(f"Cannot write {path}: {exc}") from exc

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_path = Path(fh.name)
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        if tmp_path is not None:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
        raise StorageError(f"Cannot write {path}: {exc}") from exc


def lock_path_for(path: Path) -> Path:
    return Path(path).with_name(Path(path).name + ".lock")


@contextmanager
def writer_lock(path: Path, stale_after: float = STALE_LOCK_SECONDS) -> Iterator[None]:
    """Hold the single-writer lock for the store at *path*.

    The lock is a sibling ``<name>.lock`` file created with ``O_EXCL``.
    A lock older than *stale_after* seconds is broken and re-acquired.
    """
    path = Path(path)
    lock_path = lock_path_for(path)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"Cannot create store directory for {path}: {exc}") from exc

    flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY
    try:
        fd = os.open(lock_path, flags)
    except FileExistsError:
        if not _is_stale(lock_path, stale_after):
            raise _locked(path, lock_path) from None
        _break_stale_lock(path, lock_path, stale_after)
        try:
            fd = os.open(lock_path, flags)
        except FileExistsError:
            # Another writer broke the same stale lock first
            raise _locked(path, lock_path) from None
        except OSError as exc:
            raise StorageError(f"Cannot acquire lock {lock_path}: {exc}") from exc
    except OSError as exc:
        raise StorageError(f"Cannot acquire lock {lock_path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w") as fh:
            fh.write(f"{os.getpid()}\n")
        yield
    finally:
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass


def _is_stale(lock_path: Path, stale_after: float) -> bool:
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    return age > stale_after


def _locked(path: Path, lock_path: Path) -> StorageError:
    return StorageError(
        f"Store {path.name} is locked by another writer ({lock_path}). "
        "If no other cemetery process is running, delete the lock file."
    )


def _break_stale_lock(path: Path, lock_path: Path, stale_after: float) -> None:
    """Remove a stale lock without removing a lock another writer just took.

    The lock is renamed aside (atomic, so only one breaker wins) and the
    renamed file is checked again. If it turns out to be fresh it is linked
    back into place and the store is reported as locked.
    """
    aside = lock_path.with_name(f"{lock_path.name}.{os.getpid()}.stale")
    try:
        os.rename(lock_path, aside)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise StorageError(f"Cannot break stale lock {lock_path}: {exc}") from exc

    try:
        if not _is_stale(aside, stale_after):
            try:
                os.link(aside, lock_path)
            except FileExistsError:
                pass
            except OSError as exc:
                log.warning("Cannot restore lock %s: %s", lock_path, exc)
            raise _locked(path, lock_path)
        log.warning("Breaking stale lock %s", lock_path)
    finally:
        aside.unlink(missing_ok=True)
