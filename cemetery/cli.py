"""CLI entry point for cemetery."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from cemetery.alerts import AlertError
from cemetery.config import CEMETERY_DIR, ConfigError
from cemetery.stats import DataIntegrityError
from cemetery.store import StorageError


# Default config template
CONFIG_TEMPLATE = """\
stores:
  assets: .cemetery/asset-index.json
  tombstones: .cemetery/tombstone-registry.json
  alerts: .cemetery/zombie-alerts.json
  settings: .cemetery/settings.json

scan:
  source: github  # github | local
  dead_threshold_days: 180
  fetch_timeout: 120  # seconds for one gh api call
  local_paths: []  # used when source is local, e.g. [~/code]
"""

project_root_option = click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Project root directory (default: cwd).",
)

verbose_option = click.option(
    "--verbose", "-v", is_flag=True, default=False, help="Log at DEBUG level.",
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@contextmanager
def _errors() -> Iterator[None]:
    """Turn cemetery errors into a one-line message and exit status 1."""
    try:
        yield
    except (ConfigError, StorageError, DataIntegrityError, AlertError) as exc:
        raise click.ClickException(str(exc)) from exc


def _open(project_root: str):
    from cemetery.service import Cemetery

    return Cemetery.open(Path(project_root))


def _mask(token: str | None) -> str:
    if not token:
        return "(not set)"
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


@click.group()
def cli() -> None:
    """Code Cemetery: tombstones for retired code."""


@cli.command()
@project_root_option
def init(project_root: str) -> None:
    """Initialize .cemetery/ with config and default settings."""
    root = Path(project_root)
    cemetery_dir = root / CEMETERY_DIR

    if cemetery_dir.exists():
        click.echo(f"{CEMETERY_DIR}/ already exists at {cemetery_dir}")
        raise SystemExit(1)

    cemetery_dir.mkdir(parents=True)
    config_path = cemetery_dir / "config.yaml"
    config_path.write_text(CONFIG_TEMPLATE)
    click.echo(f"Created {config_path}")

    with _errors():
        cemetery = _open(project_root)
        cemetery.load_config()
    click.echo(f"Created {cemetery.settings.path}")
    click.echo("Cemetery initialized.")


@cli.command()
@project_root_option
@verbose_option
def scan(project_root: str, verbose: bool) -> None:
    """Scan repositories once and bury the inactive ones."""
    _configure_logging(verbose)
    with _errors():
        result = _open(project_root).trigger_scan()
    click.echo(result.message)
    if not result.success:
        raise SystemExit(1)


@cli.command()
@project_root_option
def stats(project_root: str) -> None:
    """Show asset and tombstone counts."""
    with _errors():
        s = _open(project_root).get_stats()
    click.echo("Assets:")
    click.echo(f"  Total: {s.total_assets}")
    click.echo(f"  Alive: {s.alive_assets}")
    click.echo(f"  Dead: {s.dead_assets}")
    click.echo(f"Tombstones: {s.total_tombstones} ({s.resurrected} resurrected)")
    click.echo(f"Last scan: {s.last_scan}")


@cli.command()
@project_root_option
@click.option("--limit", type=int, default=10, show_default=True, help="Maximum tombstones to list.")
def tombstones(project_root: str, limit: int) -> None:
    """List the most recently dead tombstones."""
    with _errors():
        cemetery = _open(project_root)
        listing = cemetery.list_recent_tombstones(limit)
    if listing and listing[0].placeholder:
        click.echo("No tombstone registry yet; showing sample records.")
    for t in listing:
        marker = " [resurrected]" if t.resurrected else ""
        click.echo(f"{t.died_at[:10]}  {t.id}  {t.name}: {t.cause_of_death}{marker}")


@cli.command()
@project_root_option
@click.argument("query")
def search(project_root: str, query: str) -> None:
    """Find tombstones matching every keyword in QUERY."""
    with _errors():
        results = _open(project_root).search_tombstones(query)
    if not results:
        click.echo("No matching tombstones.")
        return
    for t in results:
        click.echo(f"{t.id}  {t.name}: {t.cause_of_death}")


@cli.command()
@project_root_option
@click.argument("tombstone_id")
def show(project_root: str, tombstone_id: str) -> None:
    """Print a tombstone card."""
    from cemetery.report import render_tombstone

    with _errors():
        tombstone = _open(project_root).get_tombstone(tombstone_id)
    if tombstone is None:
        raise click.ClickException(f"No tombstone with id {tombstone_id}")
    click.echo(render_tombstone(tombstone), nl=False)


@cli.command()
@project_root_option
@click.argument("tombstone_id")
@click.argument("target")
def resurrect(project_root: str, tombstone_id: str, target: str) -> None:
    """Mark a tombstone as resurrected at TARGET."""
    with _errors():
        tombstone = _open(project_root).resurrect(tombstone_id, target)
    if tombstone is None:
        raise click.ClickException(f"No tombstone with id {tombstone_id}")
    click.echo(f"Resurrected {tombstone.name} -> {target}")


@cli.command()
@project_root_option
def alerts(project_root: str) -> None:
    """List zombie alerts."""
    with _errors():
        listing = _open(project_root).get_zombie_alerts()
    click.echo(
        f"Zombie alerts: {listing.total_alerts} total, {listing.unread_count} unread "
        f"(last check: {listing.last_check})"
    )
    for a in listing.alerts:
        flag = " " if a.notified else "*"
        click.echo(
            f" {flag} {a.id}  {a.corpse_repo}/{a.corpse_path} -> {a.zombie_repo}/{a.zombie_path}"
            f"  {a.resurrection_type} similarity={a.similarity:.2f} confidence={a.confidence:.2f}"
        )


@cli.command("alerts-read")
@project_root_option
@click.argument("alert_id")
def alerts_read(project_root: str, alert_id: str) -> None:
    """Mark one zombie alert as read."""
    with _errors():
        found = _open(project_root).mark_alert_read(alert_id)
    if found:
        click.echo(f"Marked {alert_id} as read")
    else:
        click.echo(f"No alert with id {alert_id}")


@cli.command("alerts-clear")
@project_root_option
def alerts_clear(project_root: str) -> None:
    """Remove every zombie alert."""
    with _errors():
        stamp = _open(project_root).clear_all_alerts()
    click.echo(f"Cleared all alerts at {stamp}")


@cli.command("alerts-ack")
@project_root_option
@click.argument("alert_id")
def alerts_ack(project_root: str, alert_id: str) -> None:
    """Acknowledge an alert and resurrect its tombstone."""
    with _errors():
        tombstone = _open(project_root).acknowledge_alert(alert_id)
    if tombstone is None:
        click.echo(f"Alert {alert_id} acknowledged; no matching tombstone")
    else:
        click.echo(f"Resurrected {tombstone.name} -> {tombstone.resurrected_to}")


@cli.command("config")
@project_root_option
@click.option("--token", default=None, help="GitHub token used for organisation scans.")
@click.option("--org", default=None, help="GitHub organisation to scan.")
@click.option("--interval", type=click.IntRange(min=1), default=None, help="Seconds between scans for 'run'.")
@click.option("--auto-start/--no-auto-start", default=None, help="Launch the scanner at login.")
def config_cmd(
    project_root: str,
    token: str | None,
    org: str | None,
    interval: int | None,
    auto_start: bool | None,
) -> None:
    """Show settings, or update them with the given options."""
    from cemetery.autostart import DisabledAutostart

    with _errors():
        cemetery = _open(project_root)
        if token is not None:
            cemetery.update_token(token)
        settings = cemetery.load_config()

        changed = False
        if org is not None:
            settings.target_org = org
            changed = True
        if interval is not None:
            settings.scan_interval = interval
            changed = True
        if auto_start is not None:
            settings.auto_start = auto_start
            DisabledAutostart().apply(auto_start)
            changed = True
        if changed:
            cemetery.save_config(settings)

    click.echo(f"github_token:  {_mask(settings.github_token)}")
    click.echo(f"target_org:    {settings.target_org}")
    click.echo(f"scan_interval: {settings.scan_interval}s")
    click.echo(f"auto_start:    {str(settings.auto_start).lower()}")


@cli.command()
@project_root_option
@click.option("--limit", type=int, default=10, show_default=True, help="Recent tombstones to include.")
def report(project_root: str, limit: int) -> None:
    """Print a Markdown summary report."""
    with _errors():
        text = _open(project_root).render_report(limit=limit)
    click.echo(text, nl=False)


@cli.command()
@project_root_option
@verbose_option
@click.option("--interval", type=click.IntRange(min=1), default=None, help="Override settings scan_interval (seconds).")
def run(project_root: str, verbose: bool, interval: int | None) -> None:
    """Scan periodically in the foreground."""
    from cemetery.service import run_scanner

    _configure_logging(verbose)
    with _errors():
        cemetery = _open(project_root)
    click.echo(f"Starting cemetery scanner for {cemetery.project_root}...")
    run_scanner(cemetery, interval=interval)
