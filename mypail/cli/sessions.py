"""Session store maintenance commands: stats, cleanup, show."""

from __future__ import annotations

import json as json_mod
import time
from pathlib import Path
from typing import Optional

import click

from mypail.cli.formatters import build_table, format_duration, get_console, state_text


def _open_store(sessions_dir: Optional[Path]):
    from mypail.config import StoreConfig
    from mypail.memory.session_store import SessionStore

    try:
        config = StoreConfig()
    except Exception as e:
        raise click.ClickException(f"Configuration error: {e}") from e
    return SessionStore(
        sessions_dir or config.sessions_dir,
        max_age=config.max_age,
        active_window=config.active_window,
    )


@click.group("sessions")
@click.option(
    "--sessions-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Session directory (overrides MYPAIL_SESSIONS_DIR)",
)
@click.pass_context
def sessions_group(ctx: click.Context, sessions_dir: Optional[Path]) -> None:
    """Inspect and maintain persisted sessions."""
    ctx.ensure_object(dict)
    ctx.obj["sessions_dir"] = sessions_dir


@sessions_group.command("stats")
@click.pass_context
def sessions_stats(ctx: click.Context) -> None:
    """Count persisted sessions."""
    store = _open_store(ctx.obj.get("sessions_dir"))
    stats = store.get_stats()
    if ctx.obj.get("json"):
        click.echo(json_mod.dumps(stats))
        return
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table(
        "Persisted sessions",
        ["Total", f"Active (<{format_duration(store.active_window)})",
         f"Recent (<{format_duration(store.max_age)})"],
        [[stats["total"], stats["active"], stats["recent"]]],
    ))


@sessions_group.command("cleanup")
@click.pass_context
def sessions_cleanup(ctx: click.Context) -> None:
    """Delete expired session records now."""
    store = _open_store(ctx.obj.get("sessions_dir"))
    result = store.cleanup_old_sessions()
    if ctx.obj.get("json"):
        click.echo(json_mod.dumps(result))
        return
    click.echo(f"Deleted {result['deleted']} expired session(s), kept {result['kept']}.")


@sessions_group.command("show")
@click.argument("session_id")
@click.pass_context
def sessions_show(ctx: click.Context, session_id: str) -> None:
    """Print the persisted record for SESSION_ID."""
    store = _open_store(ctx.obj.get("sessions_dir"))
    record = store.raw_record(session_id)
    if record is None:
        raise click.ClickException(f"No persisted session '{session_id}'.")

    if ctx.obj.get("json"):
        click.echo(json_mod.dumps(record, indent=2))
        return

    now = time.time()
    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table(
        f"Session {record.get('sessionId', session_id)}",
        ["Field", "Value"],
        [
            ["Name", record.get("aiName", "")],
            ["Created", f"{format_duration(max(0.0, now - float(record.get('created', now))))} ago"],
            ["Last access", f"{format_duration(max(0.0, now - float(record.get('lastAccess', now))))} ago"],
        ],
    ))

    traits = record.get("traits") or {}
    if traits:
        console.print(build_table(
            "Traits", ["Trait", "Value"],
            [[k.replace("_", " "), v] for k, v in traits.items()],
        ))

    schooling = record.get("schoolingLevels") or {}
    if schooling:
        console.print(build_table(
            "Schooling", ["Band", "Level"],
            [[state_text(band), level] for band, level in schooling.items()],
        ))

    thresholds = record.get("thresholds") or {}
    if thresholds:
        console.print(build_table(
            "Thresholds", ["Band", "Upper bound"],
            [[state_text(band), value] for band, value in thresholds.items()],
        ))
