"""CLI application: Click-based command hierarchy for mypail.

The main CLI group and global flags. Subcommand modules register
themselves by importing and adding to the group.
"""

from __future__ import annotations

import json as json_mod

import click

from mypail.cli.formatters import boost_text, build_table, get_console


@click.group()
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output")
@click.option("--no-color", is_flag=True, help="Disable ANSI colors")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, no_color: bool) -> None:
    """mypail - emotion engine for an AI companion."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_output
    ctx.obj["no_color"] = no_color


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (overrides MYPAIL_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (overrides MYPAIL_PORT)")
def serve_cmd(host: str | None, port: int | None) -> None:
    """Run the HTTP gateway until SIGINT/SIGTERM."""
    from mypail.config import MypailConfig
    from mypail.main import run_server

    try:
        config = MypailConfig()
    except Exception as e:
        raise click.ClickException(f"Configuration error: {e}") from e
    if host:
        config.server.host = host
    if port is not None:
        config.server.port = port
    run_server(config)


@cli.command("classify")
@click.argument("text")
@click.pass_context
def classify_cmd(ctx: click.Context, text: str) -> None:
    """Show which trigger category TEXT hits, and its mood boost."""
    from mypail.classifier import KeywordClassifier

    classifier = KeywordClassifier()
    category = classifier.detect_category(text)
    boost = classifier.trigger_value(category)
    label = category.value if category else None

    if ctx.obj.get("json"):
        click.echo(json_mod.dumps({"category": label, "boost": boost}))
        return

    console = get_console(no_color=ctx.obj.get("no_color", False))
    console.print(build_table(
        "Classification",
        ["Category", "Boost"],
        [[label or "(none, LLM fallback)", boost_text(boost)]],
    ))


# ---------------------------------------------------------------------------
# Register subcommand modules
# ---------------------------------------------------------------------------

def _register_subcommands() -> None:
    """Import and register all subcommand groups."""
    from mypail.cli.sessions import sessions_group

    cli.add_command(sessions_group)


_register_subcommands()
