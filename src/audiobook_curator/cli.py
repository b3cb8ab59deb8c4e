"""CLI entry point for the audiobook curator."""

import os
import signal
from pathlib import Path

import click
from loguru import logger

from .ai import get_client
from .cache import SqliteCache
from .collector import collect_groups
from .concurrency import CancelToken
from .config import CuratorConfig
from .errors import CuratorError
from .models import BatchResult, BookGroup, ScanMode
from .orchestrator import CuratorOrchestrator
from .progress import LoggingReporter

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Copy KEY=value lines from a .env file into os.environ (existing vars win)."""
    for raw in env_file.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        # Shell expansions like ${VAR:-x} are left to the shell
        if "${" in value:
            continue
        os.environ.setdefault(key, value)


def _print_group(group: BookGroup) -> None:
    md = group.metadata
    series = f" [{md.series} #{md.sequence}]" if md.series and md.sequence else (
        f" [{md.series}]" if md.series else ""
    )
    click.echo(f"{md.title} -- {md.author}{series}")
    click.echo(f"    genres: {', '.join(md.genres) or '-'}  year: {md.year or '-'}  "
               f"status: {group.scan_status}  changes: {group.total_changes}")
    for file in group.files:
        for field, change in sorted(file.changes.items()):
            click.echo(f"    {file.filename}: {field}: {change.old!r} -> {change.new!r}")


def _print_cover_options(group: BookGroup, candidates) -> None:
    click.echo(f"Covers for {group.metadata.title}:")
    if not candidates:
        click.echo("    (none found)")
    for candidate in candidates:
        marker = "*" if candidate.is_best else " "
        click.echo(
            f"  {marker} {candidate.quality_score:>3}  {candidate.source:<12} "
            f"{candidate.width}x{candidate.height}  {candidate.url}"
        )


def _print_batch(summary: str, result: BatchResult) -> int:
    click.echo(summary)
    for err in result.errors:
        click.echo(f"  - {err.path}: {err.error} ({err.category})")
    return result.failed


@click.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True, path_type=Path))
@click.option("--write", is_flag=True, help="Write reconciled tags back into the files.")
@click.option("--dry-run", is_flag=True, help="Show what would be written without writing.")
@click.option("--force", is_flag=True, help="Reconcile even when a sidecar or cache entry exists.")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ScanMode]),
    default=ScanMode.NORMAL.value,
    show_default=True,
    help="normal: use sidecars and cache; refresh: ignore sidecars; force_fresh: also clear the cache.",
)
@click.option("--workers", type=int, default=None, help="Worker threads (0 = auto).")
@click.option("--no-backup", is_flag=True, help="Do not copy files to <name>.backup before writing.")
@click.option("--sidecar", is_flag=True, help="Write metadata.json beside each book.")
@click.option("--cover-search", is_flag=True, help="List every cover candidate per book, best first.")
@click.option(
    "--cover-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Use this image as the cover (exactly one book).",
)
@click.option("--cover-url", default=None, help="Download this image as the cover (exactly one book).")
@click.option("--rename", is_flag=True, help="Rename files from the reconciled record.")
@click.option(
    "--template",
    default=None,
    help="Rename template: default, simple, series-first, audiobookshelf, plex, or a literal template.",
)
@click.option("--folder-template", default=None, help="Move files into this folder template (e.g. \"{author}/{title}\").")
@click.option("--clear-cache", is_flag=True, help="Empty the cache and exit.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def main(
    paths: tuple[Path, ...],
    write: bool,
    dry_run: bool,
    force: bool,
    mode: str,
    workers: int | None,
    no_backup: bool,
    sidecar: bool,
    cover_search: bool,
    cover_file: Path | None,
    cover_url: str | None,
    rename: bool,
    template: str | None,
    folder_template: str | None,
    clear_cache: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Scan audiobook folders, reconcile their metadata, and optionally write tags."""
    if not paths and not clear_cache:
        raise click.UsageError("Missing argument 'PATHS...'.")
    if cover_file and cover_url:
        raise click.UsageError("--cover-file and --cover-url are mutually exclusive.")

    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")

    # CLI flags go in as kwargs so they beat .env and the environment
    config_kwargs: dict[str, bool | int | str] = {
        "dry_run": dry_run,
        "force": force,
        "verbose": verbose,
    }
    if verbose:
        config_kwargs["log_level"] = "DEBUG"
    if workers is not None:
        config_kwargs["max_workers"] = workers
    if no_backup:
        config_kwargs["backup_tags"] = False
    if sidecar:
        config_kwargs["write_sidecar"] = True

    config = CuratorConfig(**config_kwargs)  # type: ignore[arg-type]
    config.setup_logging()
    config.ensure_dirs()

    try:
        cache = SqliteCache(config.cache_path)
    except CuratorError as e:
        raise click.ClickException(str(e)) from e

    scan_mode = ScanMode(mode)
    if clear_cache or scan_mode == ScanMode.FORCE_FRESH:
        cache.clear()
        if clear_cache:
            click.echo("Cache cleared.")
            return

    cancel = CancelToken()
    signal.signal(signal.SIGINT, lambda *_: cancel.cancel())

    orchestrator = CuratorOrchestrator(
        config,
        cache,
        progress=LoggingReporter(),
        cancel=cancel,
        ai_client=get_client(config.curator_llm_base_url, config.curator_llm_api_key),
    )

    log.info(f"Scanning {len(paths)} path(s): mode={scan_mode} write={write} dry_run={dry_run}")
    groups = collect_groups(paths, mode=scan_mode, cancel=cancel)
    if not groups:
        click.echo("No audiobooks found.")
        return

    try:
        processed = orchestrator.process_groups(groups, force=force or config.force)
        for group in groups:
            _print_group(group)

        if cover_file or cover_url:
            if len(groups) != 1:
                raise click.UsageError(f"--cover-file/--cover-url need exactly one book, found {len(groups)}.")
            if cover_file:
                orchestrator.set_cover_from_file(groups[0], cover_file)
            else:
                orchestrator.download_cover_from_url(groups[0], cover_url)
            click.echo(f"Cover set for {groups[0].metadata.title}.")

        if cover_search:
            for group in groups:
                _print_cover_options(group, orchestrator.search_cover_options(group))

        written = None
        if write or dry_run:
            written = orchestrator.write_groups(groups)

        renamed = None
        if rename:
            renamed = orchestrator.rename_groups(groups, template=template, folder_template=folder_template)
    except CuratorError as e:
        raise click.ClickException(str(e)) from e

    click.echo(
        f"\nReconciled {processed.completed}/{processed.total} book(s), "
        f"{processed.failed} failed, "
        f"{sum(g.total_changes for g in groups)} pending change(s)"
    )
    failed = 0
    if written is not None:
        verb = "Would write" if dry_run else "Wrote"
        failed += _print_batch(f"{verb} {written.completed}/{written.total} file(s), {written.failed} failed", written)
    if renamed is not None:
        verb = "Would rename" if dry_run else "Renamed"
        failed += _print_batch(f"{verb} {renamed.completed}/{renamed.total} file(s), {renamed.failed} failed", renamed)
    if failed:
        raise SystemExit(1)
