"""CLI helpers for opening stores and building runtime config."""

from __future__ import annotations

import os

from haulage.config import HaulageConfig
from haulage.storage import (
    SqliteLegacyStore,
    SqliteTargetStore,
    open_legacy_store,
    open_target_store,
)


def resolve_store_binding() -> tuple[str | None, str | None]:
    """Return (legacy_uri, target_uri) from CLI state."""
    from haulage.cli import state

    return state.legacy_uri, state.target_uri


def config_from_env(**overrides: bool) -> HaulageConfig:
    """Build driver config from environment defaults and CLI flags."""
    config = HaulageConfig()
    batch = os.getenv("HAULAGE_FETCH_BATCH_SIZE")
    if batch and batch.isdigit() and int(batch) > 0:
        config.fetch_batch_size = int(batch)
    if os.getenv("HAULAGE_KEEP_PARTIAL") == "1":
        config.wipe_on_abort = False
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


def open_stores() -> tuple[SqliteLegacyStore, SqliteTargetStore]:
    """Open legacy and target stores using the global CLI selection."""
    legacy_uri, target_uri = resolve_store_binding()
    if not legacy_uri or not target_uri:
        raise ValueError("Both --legacy and --target store URIs are required")
    legacy = open_legacy_store(legacy_uri)
    try:
        target = open_target_store(target_uri)
    except Exception:
        legacy.close()
        raise
    return legacy, target
