"""Cemetery service: the operations exposed to the CLI and other callers.

:class:`Cemetery` wires the project config to one instance of each store
and exposes request/response operations. :func:`run_scanner` is the
periodic caller that re-runs the scan every ``scan_interval`` seconds.
"""

from __future__ import annotations

import logging
import signal
import time
from pathlib import Path

from cemetery.alerts import AlertListing, AlertStore
from cemetery.config import load_config, resolve_local_paths, resolve_store_paths
from cemetery.models import ScanResult, Stats, Tombstone
from cemetery.registry import AssetRegistry, TombstoneRegistry
from cemetery.report import render_report
from cemetery.scanner import CancelToken, ScanError, StalenessScanner
from cemetery.settings import Settings, SettingsStore
from cemetery.sources import RepoSource, github_source, local_source
from cemetery.stats import compute_stats

log = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 10


class Cemetery:
    """One project's registries, settings and alerts.

    Parameters
    ----------
    config:
        Project config dict as returned by :func:`cemetery.config.load_config`.
    project_root:
        Project root directory; relative store paths resolve against it.
    """

    def __init__(self, config: dict, project_root: Path) -> None:
        self.config = config
        self.project_root = Path(project_root)
        paths = resolve_store_paths(config, self.project_root)
        self.settings = SettingsStore(paths["settings"])
        self.assets = AssetRegistry(paths["assets"])
        self.tombstones = TombstoneRegistry(paths["tombstones"])
        self.alerts = AlertStore(paths["alerts"])

    @classmethod
    def open(cls, project_root: Path) -> Cemetery:
        """Load ``.cemetery/config.yaml`` under *project_root*.

        Raises :class:`~cemetery.config.ConfigError` if the project has not
        been initialised.
        """
        root = Path(project_root)
        return cls(load_config(root), root)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def load_config(self) -> Settings:
        return self.settings.load()

    def save_config(self, settings: Settings) -> None:
        self.settings.save(settings)

    def update_token(self, token: str) -> Settings:
        return self.settings.update_token(token)

    # ------------------------------------------------------------------
    # Registry queries
    # ------------------------------------------------------------------

    def get_stats(self) -> Stats:
        return compute_stats(self.assets, self.tombstones)

    def list_recent_tombstones(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[Tombstone]:
        return self.tombstones.list(limit)

    def search_tombstones(self, query: str) -> list[Tombstone]:
        return self.tombstones.search(query)

    def get_tombstone(self, tombstone_id: str) -> Tombstone | None:
        return self.tombstones.get(tombstone_id)

    def resurrect(self, tombstone_id: str, resurrected_to: str) -> Tombstone | None:
        """Mark a tombstone resurrected and its asset alive again.

        Returns None when no tombstone has that id.
        """
        tombstone = self.tombstones.mark_resurrected(tombstone_id, resurrected_to)
        if tombstone is not None:
            self.assets.set_alive(tombstone.id, True)
        return tombstone

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _source(self, settings: Settings) -> tuple[RepoSource, str]:
        scan_cfg = self.config["scan"]
        if scan_cfg["source"] == "local":
            return local_source(resolve_local_paths(self.config, self.project_root)), "local"
        return (
            github_source(
                settings.target_org,
                token=settings.github_token,
                timeout=scan_cfg.get("fetch_timeout", 120),
            ),
            "github",
        )

    def trigger_scan(self, cancel: CancelToken | None = None) -> ScanResult:
        """Run one staleness scan.

        An aborted scan is reported as ``success=False`` with the reason in
        ``message`` rather than raised. Its counts cover the records
        processed before the abort.
        """
        settings = self.settings.load()
        source, source_tag = self._source(settings)
        scanner = StalenessScanner(
            self.tombstones,
            self.assets,
            threshold_days=self.config["scan"]["dead_threshold_days"],
        )
        try:
            return scanner.scan(source, source_tag=source_tag, cancel=cancel)
        except ScanError as exc:
            return ScanResult(
                success=False, scanned=exc.scanned, zombies=exc.zombies, message=str(exc),
            )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def get_zombie_alerts(self) -> AlertListing:
        return self.alerts.get_alerts()

    def mark_alert_read(self, alert_id: str) -> bool:
        return self.alerts.mark_read(alert_id)

    def clear_all_alerts(self) -> str:
        return self.alerts.clear_all()

    def acknowledge_alert(self, alert_id: str) -> Tombstone | None:
        """Mark an alert read and resurrect the tombstone it points at."""
        tombstone = self.alerts.acknowledge(alert_id, self.tombstones)
        if tombstone is not None:
            self.assets.set_alive(tombstone.id, True)
        return tombstone

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def render_report(self, limit: int = DEFAULT_RECENT_LIMIT) -> str:
        recent = self.tombstones.all()
        recent.sort(key=lambda t: t.died_at_dt, reverse=True)
        return render_report(
            self.get_stats(),
            recent[:limit],
            self.get_zombie_alerts(),
            languages=self.tombstones.language_breakdown(),
        )


def run_scanner(cemetery: Cemetery, interval: int | None = None) -> None:
    """Scan in the foreground until SIGINT or SIGTERM.

    Parameters
    ----------
    cemetery:
        The project to scan.
    interval:
        Seconds between scans. When None, ``scan_interval`` is re-read from
        settings before every sleep.
    """
    running = True
    cancel = CancelToken()

    def _shutdown(signum: int, frame: object) -> None:
        nonlocal running
        log.info("Received signal %d, shutting down...", signum)
        running = False
        cancel.cancel()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    log.info("Cemetery scanner started (project=%s)", cemetery.project_root)

    while running:
        sleep_for = interval
        try:
            result = cemetery.trigger_scan(cancel=cancel)
            if result.success:
                log.info(result.message)
            else:
                log.warning(result.message)
            if sleep_for is None:
                sleep_for = cemetery.load_config().scan_interval
        except Exception:
            log.exception("Error in scan loop")

        if sleep_for is None:
            sleep_for = Settings().scan_interval

        # Sleep in small increments to allow clean shutdown
        for _ in range(sleep_for):
            if not running:
                break
            time.sleep(1)

    log.info("Cemetery scanner stopped")
