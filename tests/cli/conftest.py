"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from haulage.cli import app

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep operator environment settings out of CLI runs."""
    for name in (
        "HAULAGE_LEGACY_URI",
        "HAULAGE_TARGET_URI",
        "HAULAGE_LIMIT",
        "HAULAGE_OFFSET",
        "HAULAGE_FETCH_BATCH_SIZE",
        "HAULAGE_KEEP_PARTIAL",
        "limit",
        "offset",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def stores(legacy_db, target_db):
    """(legacy_path, target_path) for a seeded legacy DB and an empty target DB."""
    return legacy_db, target_db


def invoke(
    runner: CliRunner,
    args: list[str],
    stores: tuple[str, str] | None = None,
) -> "Result":
    """Invoke CLI with proper state setup."""
    if stores:
        # Inject store selection before the subcommand
        legacy_path, target_path = stores
        args = ["--legacy", legacy_path, "--target", target_path] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
