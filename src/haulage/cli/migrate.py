"""haul migrate — run migration passes for one or more entities."""

from __future__ import annotations

import os
import sys
from typing import Optional

import typer

from haulage.cli import _exitcodes as ec
from haulage.cli._filters import parse_where_args
from haulage.cli._loader import load_catalog
from haulage.cli._output import print_error, print_object, print_summary
from haulage.cli._storage import config_from_env, open_stores
from haulage.config import options_from_env
from haulage.driver import Migrator
from haulage.errors import ConfigurationError, MigrationAborted, StoreUnavailableError


def migrate_cmd(
    entities: list[str] = typer.Argument(..., help="Entity names to migrate, in order"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    mappers: Optional[str] = typer.Option(
        None, "--mappers", help="Python import path for a separate mapper module"
    ),
    where: Optional[list[str]] = typer.Option(
        None, "--where", help="COLUMN OP VALUE_JSON legacy row filter (repeatable)"
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", help="Max legacy rows per entity (env: HAULAGE_LIMIT)"
    ),
    offset: Optional[int] = typer.Option(
        None, "--offset", help="Skip the first N legacy rows (env: HAULAGE_OFFSET)"
    ),
    label: Optional[str] = typer.Option(None, "--label", help="Name shown in progress lines"),
    create_tables: bool = typer.Option(
        False, "--create-tables", help="Create missing target tables from the models"
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress per-row progress"),
    strict: bool = typer.Option(False, "--strict", help="Non-zero exit when any row fails"),
) -> None:
    """Wipe each target entity and migrate its legacy rows into it."""
    from haulage.cli import state

    json_mode = state.json_output

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        filter_expr = parse_where_args(where)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        catalog = load_catalog(models, models_path, mappers)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    options = options_from_env(
        os.environ, limit=limit, offset=offset, filter=filter_expr, label=label
    )

    try:
        legacy, target = open_stores()
    except (ValueError, StoreUnavailableError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR if isinstance(e, ValueError) else ec.GENERAL_ERROR)

    def echo(line: str) -> None:
        # Keep stdout parseable in JSON mode.
        print(line, file=sys.stderr if json_mode else sys.stdout)

    migrator = Migrator(
        catalog,
        legacy,
        target,
        config=config_from_env(create_tables=create_tables, echo_progress=not quiet),
        echo=echo,
    )

    try:
        reports = migrator.run_many(entities, options)
    except ConfigurationError as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)
    except MigrationAborted as e:
        print_error(f"{e}: {e.__cause__}")
        if json_mode:
            print_object(
                {
                    "reports": [r.to_dict() for r in e.completed],
                    "aborted": e.report.to_dict(),
                },
                json_mode=True,
            )
        raise typer.Exit(ec.ABORTED)
    except StoreUnavailableError as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)
    finally:
        legacy.close()
        target.close()

    if json_mode:
        print_object({"reports": [r.to_dict() for r in reports]}, json_mode=True)
    else:
        for report in reports:
            print_summary(report)

    if strict and any(r.failed for r in reports):
        raise typer.Exit(ec.ROW_ERRORS)
