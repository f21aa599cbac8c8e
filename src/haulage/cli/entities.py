"""haul entities — list migratable entities."""

from __future__ import annotations

from typing import Optional

import typer

from haulage.cli import _exitcodes as ec
from haulage.cli._loader import load_catalog
from haulage.cli._output import print_error, print_table


def entities_cmd(
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    mappers: Optional[str] = typer.Option(
        None, "--mappers", help="Python import path for a separate mapper module"
    ),
) -> None:
    """List entities with their legacy table and field mapper."""
    from haulage.cli import state

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        catalog = load_catalog(models, models_path, mappers)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    rows = []
    for name in catalog.names():
        entry = catalog.resolve(name)
        rows.append(
            [
                entry.name,
                entry.entity_type.__table_name__,
                entry.legacy_type.__legacy_name__,
                entry.legacy_type.__table_name__,
                entry.mapper_name,
            ]
        )

    print_table(
        ["entity", "table", "legacy_type", "legacy_table", "mapper"],
        rows,
        json_mode=state.json_output,
    )
