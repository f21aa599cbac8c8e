"""haul helper — run a registered migration helper routine."""

from __future__ import annotations

from typing import Optional

import typer

from haulage.cli import _exitcodes as ec
from haulage.cli._loader import load_catalog
from haulage.cli._output import print_error, print_object
from haulage.cli._storage import config_from_env, open_stores
from haulage.driver import Migrator
from haulage.errors import HaulageError


def helper_cmd(
    name: str = typer.Argument(..., help="Helper name given to @migration_helper"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    mappers: Optional[str] = typer.Option(
        None, "--mappers", help="Python import path for a separate mapper module"
    ),
) -> None:
    """Run custom migration code registered with @migration_helper."""
    from haulage.cli import state

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        catalog = load_catalog(models, models_path, mappers)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    try:
        legacy, target = open_stores()
    except (ValueError, HaulageError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        result = Migrator(catalog, legacy, target, config=config_from_env()).run_helper(name)
    except HaulageError as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)
    finally:
        legacy.close()
        target.close()

    print_object({"helper": name, "result": result}, json_mode=state.json_output)
