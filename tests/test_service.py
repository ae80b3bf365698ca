"""Tests for cemetery.service."""

from __future__ import annotations

import json
import os
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from cemetery.config import ConfigError
from cemetery.models import ZombieAlert
from cemetery.service import Cemetery, run_scanner
from cemetery.settings import Settings


def _gh_output(*repos: dict) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(list(repos)), stderr="")


def _repo(rid: int, updated_at: str, stars: int = 3) -> dict:
    return {
        "id": rid,
        "full_name": f"acme/r{rid}",
        "updated_at": updated_at,
        "stargazers_count": stars,
        "language": "TypeScript",
        "html_url": f"https://github.com/acme/r{rid}",
    }


RECENT = (datetime.now(timezone.utc) - timedelta(days=3)).strftime("%Y-%m-%dT%H:%M:%SZ")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / ".cemetery").mkdir()
    return tmp_path


@pytest.fixture
def cemetery(project: Path) -> Cemetery:
    return Cemetery.open(project)


class TestOpen:
    def test_requires_init(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            Cemetery.open(tmp_path)

    def test_store_paths(self, cemetery: Cemetery, project: Path) -> None:
        assert cemetery.tombstones.path == project / ".cemetery" / "tombstone-registry.json"
        assert cemetery.settings.path == project / ".cemetery" / "settings.json"


class TestSettingsOperations:
    def test_round_trip(self, cemetery: Cemetery) -> None:
        settings = Settings(github_token="t", target_org="acme", scan_interval=60, auto_start=True)
        cemetery.save_config(settings)
        assert cemetery.load_config() == settings

    def test_update_token(self, cemetery: Cemetery) -> None:
        cemetery.update_token("ghp_1")
        assert cemetery.load_config().github_token == "ghp_1"


class TestTriggerScan:
    def test_github_scan(self, cemetery: Cemetery) -> None:
        cemetery.save_config(Settings(github_token="ghp_t", target_org="acme"))
        output = _gh_output(
            _repo(1, "2020-01-01T00:00:00Z"),
            _repo(2, RECENT),
            _repo(3, "2020-01-01T00:00:00Z", stars=0),
        )
        with patch("cemetery.sources.subprocess.run", return_value=output) as mock_run:
            result = cemetery.trigger_scan()

        assert result.success
        assert (result.scanned, result.zombies) == (3, 1)
        assert "orgs/acme/repos" in mock_run.call_args[0][0][3]
        assert mock_run.call_args[1]["env"]["GH_TOKEN"] == "ghp_t"

        stats = cemetery.get_stats()
        assert (stats.total_assets, stats.alive_assets, stats.dead_assets) == (3, 2, 1)
        assert stats.total_tombstones == 1
        assert stats.last_scan != "unknown"
        assert [t.id for t in cemetery.list_recent_tombstones(5)] == ["1"]

    def test_write_failure_reports_progress(self, cemetery: Cemetery) -> None:
        real_replace = os.replace
        calls = []

        def replace_once(src, dst):
            calls.append(dst)
            if len(calls) > 1:
                raise OSError("disk full")
            return real_replace(src, dst)

        output = _gh_output(
            _repo(1, "2020-01-01T00:00:00Z"),
            _repo(2, "2020-01-01T00:00:00Z"),
        )
        cemetery.load_config()
        with patch("cemetery.sources.subprocess.run", return_value=output), \
             patch("cemetery.store.os.replace", side_effect=replace_once):
            result = cemetery.trigger_scan()

        assert not result.success
        assert "disk full" in result.message
        assert (result.scanned, result.zombies) == (2, 1)
        assert [t.id for t in cemetery.tombstones.all()] == ["1"]

    def test_fetch_failure_returns_failed_result(self, cemetery: Cemetery) -> None:
        err = subprocess.CalledProcessError(1, ["gh"], stderr="rate limited")
        with patch("cemetery.sources.subprocess.run", side_effect=err):
            result = cemetery.trigger_scan()
        assert not result.success
        assert result.scanned == 0
        assert "rate limited" in result.message
        assert not cemetery.tombstones.exists()

    def test_threshold_from_config(self, project: Path) -> None:
        (project / ".cemetery" / "config.yaml").write_text(
            yaml.dump({"scan": {"dead_threshold_days": 1}})
        )
        cemetery = Cemetery.open(project)
        with patch("cemetery.sources.subprocess.run", return_value=_gh_output(_repo(2, RECENT))):
            assert cemetery.trigger_scan().zombies == 1

    def test_local_scan(self, project: Path) -> None:
        repos = project / "repos"
        (repos / "old" / ".git").mkdir(parents=True)
        (repos / "old" / "main.py").write_text("print('hi')\n")
        (project / ".cemetery" / "config.yaml").write_text(
            yaml.dump({"scan": {"source": "local", "local_paths": ["repos"]}})
        )
        cemetery = Cemetery.open(project)

        with patch(
            "cemetery.sources.get_repo_git_info",
            return_value=("2019-01-01T00:00:00Z", 4),
        ):
            result = cemetery.trigger_scan()

        assert result.success
        assert result.zombies == 1
        tombstone = cemetery.list_recent_tombstones(1)[0]
        assert tombstone.name == "local/old"
        assert tombstone.language == "Python"
        assert "local" in tombstone.tags


class TestTombstoneOperations:
    def _scan_one_dead(self, cemetery: Cemetery) -> None:
        with patch(
            "cemetery.sources.subprocess.run",
            return_value=_gh_output(_repo(1, "2020-01-01T00:00:00Z")),
        ):
            cemetery.trigger_scan()

    def test_placeholders_before_first_scan(self, cemetery: Cemetery) -> None:
        listing = cemetery.list_recent_tombstones(10)
        assert len(listing) == 3
        assert all(t.placeholder for t in listing)

    def test_resurrect_revives_asset(self, cemetery: Cemetery) -> None:
        self._scan_one_dead(cemetery)
        assert cemetery.assets.get("1").alive is False

        tombstone = cemetery.resurrect("1", "acme/phoenix")

        assert tombstone is not None
        assert cemetery.assets.get("1").alive is True
        assert cemetery.get_stats().resurrected == 1

    def test_resurrect_unknown(self, cemetery: Cemetery) -> None:
        assert cemetery.resurrect("nope", "x") is None

    def test_search(self, cemetery: Cemetery) -> None:
        self._scan_one_dead(cemetery)
        assert [t.id for t in cemetery.search_tombstones("typescript r1")] == ["1"]

    def test_render_report(self, cemetery: Cemetery) -> None:
        self._scan_one_dead(cemetery)
        text = cemetery.render_report()
        assert "**acme/r1**" in text
        assert "- TypeScript: 1" in text


class TestAlertOperations:
    def _alert(self, aid: str, corpse: str = "acme/r1") -> ZombieAlert:
        return ZombieAlert(
            id=aid, corpse_repo=corpse, corpse_path="src/a.ts",
            zombie_repo="acme/r9", zombie_path="src/a.ts",
            similarity=0.9, resurrection_type="copy_paste", confidence=0.9,
            detected_at="2025-01-01T00:00:00Z",
        )

    def test_mark_read_unknown_keeps_unread_count(self, cemetery: Cemetery) -> None:
        cemetery.alerts.record(self._alert("a1"))
        cemetery.mark_alert_read("missing")
        assert cemetery.get_zombie_alerts().unread_count == 1

    def test_clear_all(self, cemetery: Cemetery) -> None:
        cemetery.alerts.record(self._alert("a1"))
        before = cemetery.get_zombie_alerts().last_check
        cemetery.clear_all_alerts()
        listing = cemetery.get_zombie_alerts()
        assert listing.total_alerts == 0
        assert listing.last_check != before

    def test_acknowledge_revives_asset(self, cemetery: Cemetery) -> None:
        with patch(
            "cemetery.sources.subprocess.run",
            return_value=_gh_output(_repo(1, "2020-01-01T00:00:00Z")),
        ):
            cemetery.trigger_scan()
        cemetery.alerts.record(self._alert("a1"))

        tombstone = cemetery.acknowledge_alert("a1")

        assert tombstone is not None
        assert tombstone.resurrected_to == "acme/r9/src/a.ts"
        assert cemetery.assets.get("1").alive is True
        assert cemetery.get_zombie_alerts().unread_count == 0


class TestRunScanner:
    def test_stops_after_signal(self, cemetery: Cemetery) -> None:
        handlers = {}

        def fake_signal(signum, handler):
            handlers[signum] = handler

        def fake_scan(cancel=None):
            handlers[next(iter(handlers))](2, None)
            from cemetery.models import ScanResult

            return ScanResult(success=True, scanned=0, zombies=0, message="Scan complete")

        with patch("cemetery.service.signal.signal", side_effect=fake_signal), \
             patch.object(cemetery, "trigger_scan", side_effect=fake_scan) as mock_scan, \
             patch("cemetery.service.time.sleep") as mock_sleep:
            run_scanner(cemetery, interval=5)

        mock_scan.assert_called_once()
        mock_sleep.assert_not_called()

    def test_loop_survives_errors(self, cemetery: Cemetery) -> None:
        calls = []
        handlers = {}

        def fake_signal(signum, handler):
            handlers[signum] = handler

        def fake_scan(cancel=None):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            handlers[next(iter(handlers))](15, None)
            from cemetery.models import ScanResult

            return ScanResult(success=False, scanned=0, zombies=0, message="Scan aborted")

        with patch("cemetery.service.signal.signal", side_effect=fake_signal), \
             patch.object(cemetery, "trigger_scan", side_effect=fake_scan), \
             patch("cemetery.service.time.sleep") as mock_sleep:
            run_scanner(cemetery, interval=2)

        assert len(calls) == 2
        assert mock_sleep.call_count == 2
