"""Bounded parallel batches for reconciliation and tag writing.

Reconcile, write and rename passes share one scheduling loop: submit up to worker_count tasks,
wait for the first to finish, record its outcome, report progress, and
top the pool back up. Cancellation stops new submissions; running tasks
always finish. Per-item failures never abort a batch, they are collected
into BatchResult.errors.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import TypeVar

from loguru import logger

from . import renamer
from .cache import Cache, book_key, cover_key, decode_cover, encode_cover
from .concurrency import CancelToken, OnceSet
from .config import CuratorConfig
from .covers import (
    candidate_from_image,
    cover_from_file,
    cover_from_url,
    cover_lookups,
    embedded_cover,
    search_covers,
)
from .errors import CacheError, CancelledError, FilePreconditionError, categorize_error
from .models import AudioFile, BatchResult, BookGroup, CoverCandidate, CoverImage, ScanStatus, WriteError
from .progress import ProgressReporter, report_progress
from .reconciler import Reconciler
from .sidecar import write_sidecar
from .tagging.writer import write_audio_file

log = logger.bind(stage="orchestrator")

T = TypeVar("T")

COVER_EXTENSIONS: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


class CuratorOrchestrator:
    """Runs reconcile and write batches over a bounded thread pool.

    Attributes:
        config: Curator configuration (worker count, backup, sidecar, dry run)
        cache: Shared key/value cache (cover bytes live here)
        progress: Progress sink, called after every finished item
        cancel: Cancellation flag checked before each submission
        reconciler: Merges sources into canonical records
    """

    def __init__(
        self,
        config: CuratorConfig,
        cache: Cache,
        progress: ProgressReporter | None = None,
        cancel: CancelToken | None = None,
        reconciler: Reconciler | None = None,
        ai_client=None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.progress = progress
        self.cancel = cancel or CancelToken()
        self.reconciler = reconciler or Reconciler(config, cache, ai_client=ai_client)

    # -- Passes --

    def process_groups(self, groups: Sequence[BookGroup], force: bool = False) -> BatchResult:
        """Reconcile every group. Raises CancelledError if cancelled before starting."""
        if self.cancel.cancelled:
            raise CancelledError("Processing cancelled before start")

        log.info(f"Processing {len(groups)} group(s) with {self.config.worker_count} worker(s)")
        result = self._run_pool(
            list(groups),
            lambda group: self.reconciler.reconcile(group, force=force),
            lambda group: (group.id, str(group.folder), group.name),
        )
        self._log_summary("Processing", result)
        return result

    def write_groups(self, groups: Sequence[BookGroup]) -> BatchResult:
        """Write every pending file of every group.

        The first file of a group to start also runs the group's one-time
        side effects (cover image, sidecar record).
        """
        if self.cancel.cancelled:
            raise CancelledError("Write cancelled before start")

        tasks = [(group, file) for group in groups for file in group.files if file.changes]
        once = OnceSet()
        log.info(f"Writing {len(tasks)} file(s) across {len(groups)} group(s)")

        result = self._run_pool(
            tasks,
            lambda task: self._write_one(task[0], task[1], once),
            lambda task: (task[1].id, str(task[1].path), task[1].filename),
        )
        self._log_summary("Write", result)
        return result

    def rename_groups(
        self,
        groups: Sequence[BookGroup],
        template: str | None = None,
        folder_template: str | None = None,
        library_root: Path | None = None,
    ) -> BatchResult:
        """Rename (and optionally move) every file from its group's record.

        template is a built-in template name or a literal template; it
        defaults to config.rename_template. Files already at their target are
        left alone and not counted.
        """
        if self.cancel.cancelled:
            raise CancelledError("Rename cancelled before start")

        file_template, default_folder = renamer.resolve_template(template or self.config.rename_template)
        folder_template = folder_template or self.config.rename_folder_template or default_folder
        if folder_template:
            renamer.validate_template(folder_template)

        tasks = [
            (group, plan)
            for group in groups
            for plan in renamer.plan_group(group, file_template, folder_template, library_root)
            if plan.changed
        ]
        # Empty folders are pruned up to here once their files have moved
        stop_at = {group.id: library_root or group.folder.parent for group in groups}
        claimed = OnceSet()
        log.info(f"Renaming {len(tasks)} file(s) across {len(groups)} group(s)")

        result = self._run_pool(
            tasks,
            lambda task: self._rename_one(task[1], claimed, stop_at[task[0].id]),
            lambda task: (task[1].file.id, str(task[1].file.path), task[1].file.filename),
        )
        self._log_summary("Rename", result)
        return result

    # -- Covers --

    def search_cover_options(self, group: BookGroup) -> list[CoverCandidate]:
        """Every cover candidate for group from every source, best first.

        Artwork embedded in the group's first file competes with the
        downloaded candidates.
        """
        md = group.metadata
        extra = []
        if group.files:
            image = embedded_cover(group.files[0].path)
            if image is not None:
                extra.append(candidate_from_image(image, md.title))

        lookups = cover_lookups(
            md.title,
            md.author if md.author != "Unknown" else "",
            asin=md.asin,
            isbn=md.isbn,
            timeout=self.config.source_timeout,
        )
        return search_covers(lookups, book_title=md.title, timeout=self.config.source_timeout, extra=extra)

    def set_cover_from_file(self, group: BookGroup, image_path: Path) -> CoverImage:
        """Use a local image as group's cover."""
        return self._store_cover(group, cover_from_file(image_path))

    def download_cover_from_url(self, group: BookGroup, url: str) -> CoverImage:
        """Use the image at url as group's cover. Raises SourceError on failure."""
        return self._store_cover(group, cover_from_url(url, timeout=self.config.source_timeout))

    def _store_cover(self, group: BookGroup, image: CoverImage) -> CoverImage:
        self.cache.set(cover_key(group.id), encode_cover(image.data, image.mime_type))
        group.metadata.cover_url = image.url
        group.metadata.cover_mime = image.mime_type
        if group.scan_status == ScanStatus.RECONCILED:
            self.cache.set(book_key(group.id), group.metadata.to_dict())
        log.info(f"Cover for {group.name!r} set from {image.source} ({image.width}x{image.height})")
        return image

    # -- Workers --

    def _write_one(self, group: BookGroup, file: AudioFile, once: OnceSet) -> None:
        if self.config.dry_run:
            log.info(f"[dry-run] {file.filename}: {', '.join(sorted(file.changes))}")
            return

        if once.claim(group.id):
            self._group_side_effects(group)

        write_audio_file(file, backup=self.config.backup_tags)

    def _rename_one(self, plan: renamer.RenamePlan, claimed: OnceSet, stop_at: Path) -> None:
        file = plan.file
        if not claimed.claim(str(plan.target)):
            raise FilePreconditionError(file.path, f"another file is already being renamed to {plan.target.name}")
        if self.config.dry_run:
            log.info(f"[dry-run] rename {file.path} -> {plan.target}")
            return

        file.path = renamer.move_file(file.path, plan.target, stop_at=stop_at)
        file.filename = file.path.name

    def _group_side_effects(self, group: BookGroup) -> None:
        """Save the cached cover and, when enabled, the sidecar record."""
        folder = group.folder
        if self.config.save_cover_to_folder:
            try:
                self._save_cover(group, folder)
            except (CacheError, OSError) as e:
                log.warning(f"Could not save cover for {group.name!r}: {e}")

        if self.config.write_sidecar:
            try:
                write_sidecar(folder, group.metadata)
            except OSError as e:
                log.warning(f"Could not write sidecar for {group.name!r}: {e}")

    def _save_cover(self, group: BookGroup, folder: Path) -> Path | None:
        decoded = decode_cover(self.cache.get(cover_key(group.id)))
        if decoded is None:
            return None
        data, mime_type = decoded
        target = folder / f"cover.{COVER_EXTENSIONS.get(mime_type, 'jpg')}"
        temp_file = target.with_name(target.name + ".tmp")
        temp_file.write_bytes(data)
        temp_file.replace(target)
        log.debug(f"Saved {target.name} for {group.name!r} ({len(data)} bytes)")
        return target

    # -- Scheduling --

    def _run_pool(
        self,
        items: list[T],
        work: Callable[[T], object],
        describe: Callable[[T], tuple[str, str, str]],
    ) -> BatchResult:
        """Run work over items on a bounded pool; describe gives (id, path, label)."""
        result = BatchResult(total=len(items))
        if not items:
            return result

        max_workers = min(self.config.worker_count, len(items))
        queued = list(items)
        active: dict[Future, T] = {}
        finished = 0

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            while queued or active:
                while queued and len(active) < max_workers:
                    if self.cancel.cancelled:
                        log.warning(f"Cancelled: {len(queued)} item(s) not started")
                        queued.clear()
                        break
                    item = queued.pop(0)
                    active[executor.submit(work, item)] = item

                if not active:
                    break

                done, _ = wait(active.keys(), return_when=FIRST_COMPLETED)
                for future in done:
                    item = active.pop(future)
                    item_id, path, label = describe(item)
                    error = future.exception()
                    if error is None:
                        result.completed += 1
                    else:
                        result.failed += 1
                        category = categorize_error(error)
                        result.errors.append(WriteError(item_id, path, str(error), category))
                        log.error(f"Failed: {label}: {error}")
                    finished += 1
                    report_progress(self.progress, finished, len(items), label)

        return result

    def _log_summary(self, what: str, result: BatchResult) -> None:
        log.info(
            f"{what} complete: {result.completed}/{result.total} succeeded, "
            f"{result.failed} failed"
        )
