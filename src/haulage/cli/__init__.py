"""haul CLI: operator console for legacy-to-new schema migrations."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from haulage.cli import check, entities, helper, migrate

app = typer.Typer(
    name="haul",
    help="haul — migrate legacy database rows into a new schema, one entity at a time.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    legacy_uri: str | None = None
    target_uri: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("haulage")
        except Exception:
            v = "unknown"
        print(f"haul {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    legacy: Optional[str] = typer.Option(
        None,
        "--legacy",
        envvar="HAULAGE_LEGACY_URI",
        help="Legacy store URI or SQLite path (e.g. sqlite:///legacy.db)",
    ),
    target: Optional[str] = typer.Option(
        None,
        "--target",
        envvar="HAULAGE_TARGET_URI",
        help="Target store URI or SQLite path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Log to stderr (-vv for debug)"
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all haul commands."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    state.legacy_uri = legacy
    state.target_uri = target
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="migrate")(migrate.migrate_cmd)
app.command(name="check")(check.check_cmd)
app.command(name="entities")(entities.entities_cmd)
app.command(name="helper")(helper.helper_cmd)


def main() -> None:
    """Entry point for the haul CLI."""
    app()
