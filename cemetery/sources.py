"""Repository sources: GitHub organisations and local git checkouts.

Both sources produce GitHub-shaped repository entries that
:func:`repo_record_from_github` maps to :class:`~cemetery.models.RepoRecord`
for the staleness scanner. GitHub listing shells out to the ``gh`` CLI; local
discovery shells out to ``git``.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

from cemetery.models import RepoRecord, parse_timestamp

log = logging.getLogger(__name__)

# A source is any callable returning the raw repository entries for one run
RepoSource = Callable[[], Sequence[Any]]

LANG_MAP: dict[str, str] = {
    ".ts": "TypeScript", ".tsx": "TypeScript",
    ".js": "JavaScript", ".jsx": "JavaScript",
    ".py": "Python",
    ".go": "Go",
    ".rs": "Rust",
    ".java": "Java",
    ".cpp": "C++", ".cc": "C++", ".cxx": "C++",
    ".c": "C", ".h": "C",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".rb": "Ruby",
    ".php": "PHP",
    ".sh": "Shell",
    ".vue": "Vue",
}

IGNORE_DIRS = {
    "node_modules", ".git", "dist", "build", "out", "__pycache__",
    ".cache", "vendor", "target", "coverage", ".cemetery",
}


class SourceError(Exception):
    """Raised when a source cannot produce its repository list."""


class NetworkError(SourceError):
    """Raised when repository records cannot be fetched from GitHub."""


# ------------------------------------------------------------------
# GitHub
# ------------------------------------------------------------------


def fetch_org_repos(
    org: str,
    token: str | None = None,
    timeout: int = 120,
) -> list[dict]:
    """List every repository of a GitHub organisation via ``gh api``.

    Args:
        org: Organisation login, e.g. ``microsoft``.
        token: Optional token exported as ``GH_TOKEN`` for the ``gh`` call.
        timeout: Seconds before the call is abandoned.

    Returns:
        The raw repository objects as returned by the REST API.

    Raises:
        NetworkError: ``gh`` missing, failed, timed out, or returned
            undecodable output.
    """
    env = dict(os.environ)
    if token:
        env["GH_TOKEN"] = token

    try:
        result = subprocess.run(
            [
                "gh", "api", "--paginate",
                f"orgs/{org}/repos?per_page=100&type=all",
            ],
            capture_output=True, text=True, check=True, env=env, timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise NetworkError("gh CLI not found; install GitHub CLI to scan organisations") from exc
    except subprocess.TimeoutExpired as exc:
        raise NetworkError(f"gh api timed out after {timeout}s for org {org}") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        detail = f": {stderr}" if stderr else ""
        raise NetworkError(f"gh api failed for org {org}{detail}") from exc

    try:
        return _decode_pages(result.stdout)
    except json.JSONDecodeError as exc:
        raise NetworkError(f"Undecodable response from gh api for org {org}: {exc}") from exc


def _decode_pages(stdout: str) -> list[dict]:
    """Decode ``gh api --paginate`` output.

    Paginated output is one JSON array per page written back to back, so
    decode arrays until the buffer is exhausted.
    """
    decoder = json.JSONDecoder()
    repos: list[dict] = []
    text = stdout.strip()
    pos = 0
    while pos < len(text):
        page, end = decoder.raw_decode(text, pos)
        if isinstance(page, list):
            repos.extend(page)
        else:
            repos.append(page)
        pos = end
        while pos < len(text) and text[pos].isspace():
            pos += 1
    return repos


def github_source(org: str, token: str | None = None, timeout: int = 120) -> RepoSource:
    def fetch() -> list[dict]:
        log.info("Fetching repositories for GitHub org %s", org)
        return fetch_org_repos(org, token=token, timeout=timeout)
    return fetch


def repo_record_from_github(raw: Any) -> RepoRecord:
    """Map one GitHub REST repository object to a RepoRecord.

    Raises ValueError on missing or mistyped fields.
    """
    if not isinstance(raw, dict):
        raise ValueError("repository entry must be an object")

    repo_id = raw.get("id")
    if isinstance(repo_id, bool) or not isinstance(repo_id, (int, str)) or repo_id == "":
        raise ValueError("'id' missing")
    full_name = raw.get("full_name")
    if not isinstance(full_name, str) or not full_name:
        raise ValueError("'full_name' missing")
    updated_raw = raw.get("updated_at")
    if not isinstance(updated_raw, str):
        raise ValueError("'updated_at' missing")
    stars = raw.get("stargazers_count", 0)
    if isinstance(stars, bool) or not isinstance(stars, int) or stars < 0:
        raise ValueError("'stargazers_count' must be a non-negative integer")
    language = raw.get("language")
    if language is not None and not isinstance(language, str):
        raise ValueError("'language' must be a string or null")

    return RepoRecord(
        id=str(repo_id),
        full_name=full_name,
        updated_at=parse_timestamp(updated_raw),
        stargazers_count=stars,
        language=language,
        url=str(raw.get("html_url") or f"https://github.com/{full_name}"),
    )


# ------------------------------------------------------------------
# Local git repositories
# ------------------------------------------------------------------


def discover_git_repos(root: Path, max_depth: int = 2) -> list[Path]:
    """Find directories containing ``.git`` under *root*, up to *max_depth* levels."""
    root = Path(root)
    if not root.is_dir():
        return []

    found: list[Path] = []

    def walk(path: Path, depth: int) -> None:
        try:
            is_repo = (path / ".git").exists()
        except OSError as exc:
            log.warning("Cannot inspect %s: %s", path, exc)
            return
        if is_repo:
            found.append(path)
            return
        if depth >= max_depth:
            return
        try:
            children = sorted(p for p in path.iterdir() if p.is_dir())
        except OSError as exc:
            log.warning("Cannot list %s: %s", path, exc)
            return
        for child in children:
            if child.name in IGNORE_DIRS or child.name.startswith("."):
                continue
            walk(child, depth + 1)

    walk(root, 0)
    return found


def get_repo_git_info(repo_path: Path) -> tuple[str | None, int]:
    """Return (last commit ISO date, commit count) for a local repository.

    Missing history yields ``(None, 0)``.
    """
    try:
        result = subprocess.run(
            ["git", "log", "-1", "--format=%cI"],
            capture_output=True, text=True, cwd=repo_path,
        )
        last_commit = result.stdout.strip() if result.returncode == 0 and result.stdout.strip() else None

        result = subprocess.run(
            ["git", "rev-list", "--count", "HEAD"],
            capture_output=True, text=True, cwd=repo_path,
        )
    except FileNotFoundError as exc:
        raise SourceError("git not found; install git to scan local repositories") from exc
    except OSError as exc:
        raise SourceError(f"Cannot run git in {repo_path}: {exc}") from exc
    try:
        commits = int(result.stdout.strip()) if result.returncode == 0 else 0
    except ValueError:
        commits = 0

    return last_commit, commits


def detect_language(repo_path: Path) -> str | None:
    """Dominant language by file count, or None if nothing recognisable."""
    counts: Counter[str] = Counter()
    for dirpath, dirnames, filenames in os.walk(repo_path):
        dirnames[:] = [d for d in dirnames if d not in IGNORE_DIRS and not d.startswith(".")]
        for name in filenames:
            lang = LANG_MAP.get(Path(name).suffix.lower())
            if lang:
                counts[lang] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def count_lines(repo_path: Path) -> int:
    """Total lines across recognised source files in *repo_path*."""
    total = 0
    for dirpath, dirnames, filenames in os.walk(repo_path):
        dirnames[:] = [d for d in dirnames if d not in IGNORE_DIRS and not d.startswith(".")]
        for name in filenames:
            if Path(name).suffix.lower() not in LANG_MAP:
                continue
            try:
                with open(Path(dirpath) / name, "rb") as fh:
                    total += sum(1 for _ in fh)
            except OSError:
                continue
    return total


def describe_local_repo(repo_path: Path) -> dict[str, Any]:
    """Build a GitHub-shaped entry for a local repository.

    ``stargazers_count`` carries the commit count: a repository nobody
    ever committed to is treated like one nobody ever starred.
    """
    repo_path = Path(repo_path).resolve()
    last_commit, commits = get_repo_git_info(repo_path)
    if last_commit is None:
        try:
            mtime = repo_path.stat().st_mtime
        except OSError as exc:
            raise SourceError(f"Cannot stat {repo_path}: {exc}") from exc
        last_commit = datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()

    return {
        "id": f"local:{repo_path}",
        "full_name": f"local/{repo_path.name}",
        "updated_at": last_commit,
        "stargazers_count": commits,
        "language": detect_language(repo_path),
        "html_url": repo_path.as_uri(),
        "line_count": count_lines(repo_path),
    }


def local_source(paths: Sequence[Path]) -> RepoSource:
    def fetch() -> list[dict]:
        entries: list[dict] = []
        for root in paths:
            if not Path(root).is_dir():
                raise SourceError(f"Local scan path does not exist: {root}")
            for repo in discover_git_repos(root):
                entries.append(describe_local_repo(repo))
        log.info("Found %d local repositories", len(entries))
        return entries
    return fetch
