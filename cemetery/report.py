"""Render tombstone cards and the summary report from Jinja2 templates."""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from cemetery.alerts import AlertListing
from cemetery.models import Stats, Tombstone, format_timestamp, now_utc, parse_timestamp

_TEMPLATES_DIR = Path(__file__).parent / "templates"


def _day(value: str | None) -> str:
    """Jinja2 filter: the date part of an ISO-8601 timestamp."""
    if not value:
        return ""
    try:
        return parse_timestamp(value).date().isoformat()
    except ValueError:
        return value


def _get_env() -> Environment:
    """Create a Jinja2 environment loading from cemetery/templates/."""
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["day"] = _day
    return env


def render_tombstone(tombstone: Tombstone) -> str:
    """Render a single tombstone as a plain-text card."""
    template = _get_env().get_template("tombstone.txt")
    return template.render(t=tombstone)


def render_report(
    stats: Stats,
    tombstones: list[Tombstone],
    alerts: AlertListing,
    languages: dict[str, int] | None = None,
    generated_at: str | None = None,
) -> str:
    """Render the Markdown summary report.

    Parameters
    ----------
    stats:
        Current registry counts.
    tombstones:
        Recent tombstones, already ordered for display.
    alerts:
        Current alert listing; only unread alerts are itemised.
    languages:
        Tombstone count per language, shown most common first.
    generated_at:
        Timestamp printed in the header (default: now, UTC).
    """
    template = _get_env().get_template("report.md")
    ordered_languages = sorted(
        (languages or {}).items(), key=lambda item: (-item[1], item[0])
    )
    return template.render(
        stats=stats,
        tombstones=tombstones,
        alerts=alerts,
        unread=[a for a in alerts.alerts if not a.notified],
        languages=ordered_languages,
        generated_at=generated_at or format_timestamp(now_utc()),
    )
