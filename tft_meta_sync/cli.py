"""
TFT Meta Sync — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Build the cache store / orchestrator.
  4. Run the action (async work goes through ``asyncio.run``).
  5. Report the result to stdout.

Install and run::

    pip install -e .
    tft-meta-sync --help
    tft-meta-sync init-db
    tft-meta-sync validate-config
    tft-meta-sync sync --all
    tft-meta-sync sync --domain items --source metatft --force
    tft-meta-sync show team_comps --limit 5
    tft-meta-sync cache-status
    tft-meta-sync revalidate team_comps
    tft-meta-sync clear-patch 14.3
    tft-meta-sync clear-cache --yes
    tft-meta-sync start-scheduler --interval 30
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="tft-meta-sync",
    help="TFT metagame data sync — provider ingestion with a local patch-aware cache.",
    add_completion=False,
)

_DOMAIN_HELP = "One of: team_comps, items, augments."


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None, db_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from pydantic import ValidationError

    from tft_meta_sync.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        config = load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except (ValidationError, ValueError) as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)

    if db_path:
        config = config.model_copy(
            update={"database": config.database.model_copy(update={"db_path": db_path})}
        )
    return config


def _configure_logging(config):
    """Set up logging from config."""
    from tft_meta_sync.utils.logging import configure_logging
    configure_logging(config.logging)


def _parse_domain(value: str):
    from tft_meta_sync.models.domain import Domain

    try:
        return Domain(value)
    except ValueError:
        typer.echo(f"[ERROR] Unknown domain '{value}'. {_DOMAIN_HELP}", err=True)
        raise typer.Exit(code=1)


def _check_source(config, source: Optional[str]) -> None:
    from tft_meta_sync.models.domain import Source

    if source is None:
        return
    valid = {s.value for s in Source}
    if source not in valid:
        typer.echo(f"[ERROR] Unknown source '{source}'. One of: {', '.join(sorted(valid))}.", err=True)
        raise typer.Exit(code=1)
    if source != Source.COMBINED.value and source not in config.providers.enabled():
        typer.echo(f"[ERROR] Provider '{source}' is disabled in config.", err=True)
        raise typer.Exit(code=1)


def _open_store_or_exit(config):
    from tft_meta_sync.cache.store import CacheStore
    from tft_meta_sync.errors import CacheIOError

    store = CacheStore.from_config(config)
    try:
        store.initialize()
    except CacheIOError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    return store


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None, "--db-path", help="Override DB path from config (e.g. data/db/test.db)."
    ),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Create the cache database and apply the schema and pending migrations.

    Safe to run multiple times; all DDL uses IF NOT EXISTS.
    """
    from tft_meta_sync.db.connection import get_connection
    from tft_meta_sync.db.migrations import run_migrations
    from tft_meta_sync.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)

    target_path = config.database.db_path
    typer.echo(f"Initializing cache database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None, "--config", help="Path to TOML config file (default: config/default.toml)."
    ),
    show_full: bool = typer.Option(False, "--full", help="Print full config including all fields."),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)

    enabled = config.providers.enabled()
    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  Default source:    {config.sync.default_source}")
    typer.echo(f"  Merge precedence:  {', '.join(config.sync.merge_precedence)}")
    typer.echo(f"  Cache max age:     {config.cache.max_age_ms / 3_600_000:g}h")
    typer.echo(f"  Backups kept:      {config.cache.backup_retention_count}")
    typer.echo(f"  Refresh interval:  {config.scheduler.interval_minutes} min")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")
    typer.echo("")
    typer.echo("  Providers:")
    for name, cfg in enabled.items():
        key_state = "set" if cfg.resolve_api_key() else "not set"
        typer.echo(
            f"    {name:<14} {cfg.base_url}  rpm={cfg.requests_per_minute}  "
            f"retries={cfg.max_retries}  api key {key_state}"
        )
    if not enabled:
        typer.echo("    (none enabled, every read will come from the cache)")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("sync")
def sync(
    domain: Optional[str] = typer.Option(None, "--domain", "-d", help=_DOMAIN_HELP),
    sync_all: bool = typer.Option(False, "--all", help="Refresh every domain (items, augments, team comps)."),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Provider id or 'combined'."),
    patch: Optional[str] = typer.Option(None, "--patch", "-p", help="Pin a game patch (e.g. 14.3)."),
    force: bool = typer.Option(False, "--force", help="Ignore cache freshness and fetch."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Fetch metagame data from the providers into the local cache.

    \b
    With --domain, reads one domain through the cache (fetching only when the
    cached entry is missing or stale, or with --force).  With --all, every
    domain is force-refreshed and the run is recorded in sync_runs.

    \b
    Credential setup (.env, gitignored):
      METATFT_API_KEY=...
      TACTICS_TOOLS_API_KEY=...
    """
    from tft_meta_sync.sync.orchestrator import SyncOptions, build_orchestrator

    if not sync_all and domain is None:
        typer.echo("[ERROR] Pass --domain <name> or --all.", err=True)
        raise typer.Exit(code=1)

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    _check_source(config, source)
    target = _parse_domain(domain) if domain else None
    options = SyncOptions(source=source, patch=patch, force_refresh=force)

    async def _run():
        async with build_orchestrator(config) as orch:
            if sync_all:
                return await orch.refresh_all(options, trigger="cli"), None
            # Resolved before the read: a fresh orchestrator has no current patch yet.
            key = orch.resolve_key(target, options)
            data = await orch.get_data(target, options)
            return data, orch.last_outcome(key)

    result, report = asyncio.run(_run())

    if sync_all:
        run = result
        typer.echo(f"Sync run {run.run_slug[:8]}  source={run.source}  status={run.status}")
        for name, outcome in run.domain_outcomes.items():
            typer.echo(f"  {name:<11} {outcome}")
        typer.echo(f"  Records stored: {run.records_stored}")
        if run.error_message:
            typer.echo(f"  Errors: {run.error_message}")
        if run.status == "failed":
            typer.echo("[WARN] No domain could be fetched; cached data (if any) is unchanged.")
            raise typer.Exit(code=2)
        typer.echo("[OK] Sync complete.")
        return

    outcome = report.outcome.value if report else "unknown"
    typer.echo(f"{target.value}: {len(result)} record(s)  ({outcome})")
    if report and report.validation and not report.validation.is_valid:
        typer.echo(f"  Validation issues: {len(report.validation.errors)} (see log)")
    typer.echo("[OK] Done.")


@app.command("show")
def show(
    domain: str = typer.Argument(..., help=_DOMAIN_HELP),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Provider id or 'combined'."),
    patch: Optional[str] = typer.Option(None, "--patch", "-p", help="Cached patch (default: latest)."),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum records to print."),
    as_json: bool = typer.Option(False, "--json", help="Print the records as JSON."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Print cached records for a domain without contacting any provider."""
    from tft_meta_sync.errors import CacheIOError
    from tft_meta_sync.models.domain import LATEST_PATCH, CacheKey

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    _check_source(config, source)
    target = _parse_domain(domain)
    store = _open_store_or_exit(config)

    key = CacheKey(target, source or config.sync.default_source, patch or LATEST_PATCH)
    try:
        model = store.get(key)
    except CacheIOError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    if model is None:
        typer.echo(f"No cached data for {key}. Run: tft-meta-sync sync --domain {target.value}")
        raise typer.Exit(code=1)

    records = model.data[:limit]
    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    meta = model.metadata
    typer.echo(
        f"{key}  patch={meta.patch or '?'}  fetched={meta.timestamp}  "
        f"records={len(model.data)}"
    )
    for record in records:
        typer.echo(f"  {_describe(record)}")
    if len(model.data) > limit:
        typer.echo(f"  ... and {len(model.data) - limit} more.")


def _describe(record) -> str:
    from tft_meta_sync.models.domain import Augment, Item, TeamComp

    if isinstance(record, TeamComp):
        return (
            f"{record.name:<28} avg {record.avg_placement:.2f}  "
            f"play {record.play_rate:5.1f}%  win {record.win_rate:5.1f}%  "
            f"units={len(record.units)}"
        )
    if isinstance(record, Item):
        kind = {True: "component", False: "completed", None: "-"}[record.is_component]
        return f"{record.name:<28} {kind:<10} {', '.join(record.components)}"
    if isinstance(record, Augment):
        placement = f"avg {record.avg_placement:.2f}" if record.avg_placement is not None else ""
        return f"{record.name:<28} {record.tier:<10} {placement}"
    return repr(record)


@app.command("cache-status")
def cache_status(
    patch: Optional[str] = typer.Option(None, "--patch", "-p", help="Only entries for this patch."),
    runs: int = typer.Option(5, "--runs", help="Recent sync runs to list (0 to skip)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Show what the local cache holds and the most recent sync runs."""
    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    store = _open_store_or_exit(config)

    status = store.status(patch)
    typer.echo(f"Cache at {config.database.db_path}")
    if not status.is_available:
        typer.echo(f"  No cached data{f' for patch {patch}' if patch else ''}.")
    else:
        size = store.size()
        typer.echo(f"  Patch:         {status.patch or '?'}")
        typer.echo(f"  Last updated:  {status.last_updated}")
        typer.echo(f"  Schema:        {status.schema_version}")
        for name, present in status.data_types.items():
            typer.echo(f"  {name:<14} {'yes' if present else 'no'}")
        typer.echo(f"  Entries:       {size.entry_count} ({size.total_bytes / 1024:.1f} KiB)")
        patches = store.available_patches()
        if patches:
            typer.echo(f"  Patches:       {', '.join(patches)}")

    if runs > 0:
        recent = store.recent_sync_runs(runs)
        typer.echo("")
        typer.echo("Recent sync runs:" if recent else "No sync runs recorded.")
        for run in recent:
            typer.echo(
                f"  {run.started_at:%Y-%m-%d %H:%M}  {run.trigger:<9} {run.source:<13} "
                f"{run.status:<8} stored={run.records_stored}"
            )


@app.command("revalidate")
def revalidate(
    domain: str = typer.Argument(..., help=_DOMAIN_HELP),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Provider id or 'combined'."),
    patch: Optional[str] = typer.Option(None, "--patch", "-p", help="Cached patch (default: latest)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Re-run validation on cached data without fetching."""
    from tft_meta_sync.sync.orchestrator import SyncOptions, build_orchestrator

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    _check_source(config, source)
    target = _parse_domain(domain)

    async def _run():
        async with build_orchestrator(config) as orch:
            return orch.revalidate(target, SyncOptions(source=source, patch=patch))

    result = asyncio.run(_run())
    if result is None:
        typer.echo(f"No cached {target.value} to validate.")
        raise typer.Exit(code=1)
    if result.is_valid:
        typer.echo(f"[OK] {target.value}: no issues.")
        return
    typer.echo(f"[WARN] {target.value}: {len(result.errors)} issue(s).")
    for issue in result.errors[:10]:
        typer.echo(f"  {issue}")
    if len(result.errors) > 10:
        typer.echo(f"  ... and {len(result.errors) - 10} more.")


@app.command("clear-cache")
def clear_cache(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Delete every cached entry and backup."""
    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    if not yes:
        typer.confirm(f"Delete all cached data in {config.database.db_path}?", abort=True)
    store = _open_store_or_exit(config)
    removed = store.clear_all()
    typer.echo(f"[OK] Removed {removed} cache entr{'y' if removed == 1 else 'ies'}.")


@app.command("clear-patch")
def clear_patch(
    patch: str = typer.Argument(..., help="Patch to drop (e.g. 14.3)."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Delete cached entries (and their backups) for one patch."""
    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    store = _open_store_or_exit(config)
    removed = store.clear_patch(patch)
    typer.echo(f"[OK] Removed {removed} cache entr{'y' if removed == 1 else 'ies'} for patch {patch}.")


@app.command("start-scheduler")
def start_scheduler(
    interval: Optional[int] = typer.Option(
        None, "--interval", help="Minutes between refreshes (default from config)."
    ),
    skip_initial: bool = typer.Option(
        False, "--skip-initial", help="Wait one interval before the first refresh."
    ),
    source: Optional[str] = typer.Option(None, "--source", "-s", help="Provider id or 'combined'."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Refresh all domains on a fixed cadence.  Blocks until Ctrl-C."""
    from tft_meta_sync.scheduler import SyncScheduler
    from tft_meta_sync.sync.orchestrator import SyncOptions, build_orchestrator

    config = _load_config_or_exit(config_path, db_path)
    _configure_logging(config)
    _check_source(config, source)

    minutes = interval or config.scheduler.interval_minutes
    if minutes < 1:
        typer.echo("[ERROR] --interval must be >= 1.", err=True)
        raise typer.Exit(code=1)

    async def _run():
        async with build_orchestrator(config) as orch:
            scheduler = SyncScheduler(
                orch,
                interval_minutes=minutes,
                run_on_start=config.scheduler.run_on_start and not skip_initial,
                options=SyncOptions(source=source),
            )
            await scheduler.start()

    typer.echo(f"Scheduler running every {minutes} min. Ctrl-C to stop.")
    asyncio.run(_run())
    typer.echo("[OK] Scheduler stopped.")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
