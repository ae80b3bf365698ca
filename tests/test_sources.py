"""Tests for cemetery.sources."""

from __future__ import annotations

import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from cemetery.sources import (
    NetworkError,
    SourceError,
    count_lines,
    describe_local_repo,
    detect_language,
    discover_git_repos,
    fetch_org_repos,
    github_source,
    local_source,
    repo_record_from_github,
)


def _completed(stdout: str, returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


class TestFetchOrgRepos:
    def test_calls_gh_api_with_token(self) -> None:
        payload = json.dumps([{"id": 1, "full_name": "acme/a"}])
        with patch("cemetery.sources.subprocess.run", return_value=_completed(payload)) as mock_run:
            repos = fetch_org_repos("acme", token="ghp_x", timeout=30)

        assert repos == [{"id": 1, "full_name": "acme/a"}]
        args, kwargs = mock_run.call_args
        assert args[0][:3] == ["gh", "api", "--paginate"]
        assert "orgs/acme/repos" in args[0][3]
        assert kwargs["env"]["GH_TOKEN"] == "ghp_x"
        assert kwargs["timeout"] == 30
        assert kwargs["check"] is True

    def test_concatenated_pages(self) -> None:
        stdout = json.dumps([{"id": 1}]) + json.dumps([{"id": 2}, {"id": 3}]) + "\n"
        with patch("cemetery.sources.subprocess.run", return_value=_completed(stdout)):
            assert [r["id"] for r in fetch_org_repos("acme")] == [1, 2, 3]

    def test_empty_output(self) -> None:
        with patch("cemetery.sources.subprocess.run", return_value=_completed("")):
            assert fetch_org_repos("acme") == []

    def test_gh_failure(self) -> None:
        err = subprocess.CalledProcessError(1, ["gh"], stderr="HTTP 404: Not Found")
        with patch("cemetery.sources.subprocess.run", side_effect=err):
            with pytest.raises(NetworkError, match="404"):
                fetch_org_repos("nope")

    def test_gh_missing(self) -> None:
        with patch("cemetery.sources.subprocess.run", side_effect=FileNotFoundError("gh")):
            with pytest.raises(NetworkError, match="gh CLI not found"):
                fetch_org_repos("acme")

    def test_timeout(self) -> None:
        err = subprocess.TimeoutExpired(["gh"], 5)
        with patch("cemetery.sources.subprocess.run", side_effect=err):
            with pytest.raises(NetworkError, match="timed out"):
                fetch_org_repos("acme", timeout=5)

    def test_undecodable_output(self) -> None:
        with patch("cemetery.sources.subprocess.run", return_value=_completed("<html>")):
            with pytest.raises(NetworkError, match="Undecodable"):
                fetch_org_repos("acme")

    def test_network_error_is_source_error(self) -> None:
        assert issubclass(NetworkError, SourceError)

    def test_github_source_is_lazy(self) -> None:
        with patch("cemetery.sources.subprocess.run", return_value=_completed("[]")) as mock_run:
            source = github_source("acme")
            mock_run.assert_not_called()
            assert source() == []
            mock_run.assert_called_once()


class TestRepoRecordFromGithub:
    def test_maps_fields(self) -> None:
        record = repo_record_from_github({
            "id": 99,
            "full_name": "acme/widget",
            "updated_at": "2024-01-02T03:04:05Z",
            "stargazers_count": 7,
            "language": "Go",
            "html_url": "https://github.com/acme/widget",
        })
        assert record.id == "99"
        assert record.name == "widget"
        assert record.updated_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert record.stargazers_count == 7
        assert record.url == "https://github.com/acme/widget"

    def test_url_fallback(self) -> None:
        record = repo_record_from_github(
            {"id": 1, "full_name": "acme/x", "updated_at": "2024-01-01T00:00:00Z"}
        )
        assert record.url == "https://github.com/acme/x"
        assert record.stargazers_count == 0

    @pytest.mark.parametrize(
        "raw",
        [
            "junk",
            {"full_name": "a/b", "updated_at": "2024-01-01T00:00:00Z"},
            {"id": 1, "updated_at": "2024-01-01T00:00:00Z"},
            {"id": 1, "full_name": "a/b"},
            {"id": 1, "full_name": "a/b", "updated_at": "yesterday"},
            {"id": 1, "full_name": "a/b", "updated_at": "2024-01-01T00:00:00Z", "stargazers_count": -1},
            {"id": 1, "full_name": "a/b", "updated_at": "2024-01-01T00:00:00Z", "language": 5},
        ],
    )
    def test_rejects_malformed(self, raw: object) -> None:
        with pytest.raises(ValueError):
            repo_record_from_github(raw)


class TestLocalRepos:
    def _make_repo(self, path: Path, files: dict[str, str]) -> Path:
        (path / ".git").mkdir(parents=True)
        for name, content in files.items():
            target = path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return path

    def test_discover_to_depth_two(self, tmp_path: Path) -> None:
        self._make_repo(tmp_path / "a", {})
        self._make_repo(tmp_path / "group" / "b", {})
        self._make_repo(tmp_path / "x" / "y" / "too-deep", {})
        (tmp_path / "node_modules" / "dep" / ".git").mkdir(parents=True)
        found = discover_git_repos(tmp_path)
        assert found == [tmp_path / "a", tmp_path / "group" / "b"]

    def test_detect_language_and_lines(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "r", {
            "a.py": "x = 1\ny = 2\n",
            "b.py": "z = 3\n",
            "c.go": "package main\n",
            "README.md": "ignored\n",
        })
        assert detect_language(repo) == "Python"
        assert count_lines(repo) == 4

    def test_detect_language_none(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "r", {"notes.txt": "hi"})
        assert detect_language(repo) is None

    def test_describe_uses_git_info(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "proj", {"main.rs": "fn main() {}\n"})
        with patch(
            "cemetery.sources.get_repo_git_info",
            return_value=("2023-05-01T10:00:00+02:00", 12),
        ):
            entry = describe_local_repo(repo)

        assert entry["full_name"] == "local/proj"
        assert entry["stargazers_count"] == 12
        assert entry["language"] == "Rust"
        record = repo_record_from_github(entry)
        assert record.updated_at == datetime(2023, 5, 1, 8, 0, tzinfo=timezone.utc)

    def test_describe_falls_back_to_mtime(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "proj", {})
        with patch("cemetery.sources.get_repo_git_info", return_value=(None, 0)):
            entry = describe_local_repo(repo)
        assert entry["stargazers_count"] == 0
        repo_record_from_github(entry)

    def test_local_source_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(SourceError, match="does not exist"):
            local_source([tmp_path / "missing"])()

    def test_git_missing(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "proj", {})
        with patch("cemetery.sources.subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(SourceError, match="git not found"):
                describe_local_repo(repo)

    def test_git_not_runnable(self, tmp_path: Path) -> None:
        repo = self._make_repo(tmp_path / "proj", {})
        with patch("cemetery.sources.subprocess.run", side_effect=PermissionError("denied")):
            with pytest.raises(SourceError, match="Cannot run git"):
                describe_local_repo(repo)
