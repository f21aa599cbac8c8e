"""haul check — resolve every entity in the catalog and report problems."""

from __future__ import annotations

from typing import Optional

import typer

from haulage.cli import _exitcodes as ec
from haulage.cli._loader import load_catalog
from haulage.cli._output import print_error, print_object
from haulage.cli._storage import open_stores
from haulage.errors import ConfigurationError, StoreUnavailableError


def check_cmd(
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    mappers: Optional[str] = typer.Option(
        None, "--mappers", help="Python import path for a separate mapper module"
    ),
    stores: bool = typer.Option(
        False, "--stores", help="Also verify legacy and target tables exist"
    ),
) -> None:
    """Check that every legacy type resolves to an entity and a field mapper."""
    from haulage.cli import state

    json_mode = state.json_output

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        catalog = load_catalog(models, models_path, mappers)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    problems = catalog.check()

    if stores and not problems:
        try:
            legacy, target = open_stores()
        except (ValueError, StoreUnavailableError) as e:
            print_error(str(e))
            raise typer.Exit(ec.USAGE_ERROR)
        try:
            for name in catalog.names():
                entry = catalog.resolve(name)
                for check_table, declared in (
                    (legacy.check_table, entry.legacy_type),
                    (target.check_table, entry.entity_type),
                ):
                    try:
                        check_table(declared)  # type: ignore[operator]
                    except (ConfigurationError, StoreUnavailableError) as e:
                        problems.append(str(e))
        finally:
            legacy.close()
            target.close()

    if json_mode:
        print_object(
            {"status": "ok" if not problems else "problems", "problems": problems},
            json_mode=True,
        )
    elif problems:
        print(f"{len(problems)} problem(s) found:")
        for p in problems:
            print(f"  - {p}")
    else:
        print(f"Catalog OK: {len(catalog.names())} entity(ies) resolve.")

    if problems:
        raise typer.Exit(ec.GENERAL_ERROR)
