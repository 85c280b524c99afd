"""Index updater: scans the store, renders index blocks and writes them back.

One :class:`IndexUpdater` owns all scheduling state of the engine: the
single-slot debounce timer, the periodic safety-net task, the health
check task and the guard that keeps update cycles from overlapping.
Everything runs on one asyncio event loop; awaiting document I/O is the
only point where other work can interleave.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from tagindex.blocks import has_marker, reconcile
from tagindex.fingerprint import string_hash
from tagindex.render import render_blocks
from tagindex.schema import IndexNote, IndexSchema
from tagindex.store import DocumentStoreError
from tagindex.tags import canonicalize, is_well_formed, last_component, normalize_tags

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from tagindex.config import IndexSettings
    from tagindex.store import DocumentRef, DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Timings:
    """Delays and limits of the update loop, in seconds unless noted."""

    debounce: float = 1.0
    modified_index_delay: float = 3.0
    recent_save_window: float = 2.0
    recent_save_retention: float = 5.0
    max_retries: int = 3
    retry_base_delay: float = 0.5
    health_check_interval: float = 30.0
    stall_multiplier: int = 10
    escalate_after_failures: int = 3
    startup_delay: float = 0.5


class ChangeKind(Enum):
    CREATED = "created"
    DELETED = "deleted"
    RENAMED = "renamed"
    MODIFIED = "modified"
    METADATA = "metadata"


@dataclass(frozen=True)
class ChangeEvent:
    """A change notification from the document store."""

    kind: ChangeKind
    doc: DocumentRef


@dataclass
class UpdateResult:
    """Outcome of one update cycle."""

    skipped: bool = False
    notes_processed: int = 0
    notes_written: int = 0
    failures: list[str] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0


class IndexWriteError(Exception):
    """Raised when an index note could not be written within the retry budget."""


class IndexUpdater:
    """Keeps the index blocks of a document store up to date."""

    def __init__(
        self,
        store: DocumentStore,
        settings: IndexSettings,
        *,
        timings: Timings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.settings = settings
        self.timings = timings or Timings()
        self._clock = clock

        self.previous_fingerprint = ""
        self.last_successful_update: float | None = None
        self.consecutive_failures = 0

        self._updating = False
        self._closed = False
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._health_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._recently_modified: dict[str, float] = {}

    @property
    def is_updating(self) -> bool:
        return self._updating

    @property
    def is_scheduled(self) -> bool:
        return self._debounce_handle is not None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def document_tags(self, doc: DocumentRef) -> list[str]:
        """Canonical, de-duplicated tags of *doc* in declaration order."""
        raw = self.store.get_frontmatter_tags(doc)
        tags: list[str] = []
        for tag in map(canonicalize, normalize_tags(raw, doc.path)):
            if not tag:
                continue
            if not is_well_formed(tag):
                logger.warning("%s has malformed tag %r, ignored", doc.path, tag)
                continue
            tags.append(tag)
        return list(dict.fromkeys(tags))

    def _index_kind(self, tag: str) -> str | None:
        component = last_component(tag)
        if self.settings.index_tag and component == self.settings.index_tag:
            return "index"
        if self.settings.meta_index_tag and component == self.settings.meta_index_tag:
            return "meta"
        return None

    def has_index_tags(self, doc: DocumentRef) -> bool:
        return any(self._index_kind(tag) for tag in self.document_tags(doc))

    async def _read_for_scan(self, doc: DocumentRef) -> str | None:
        try:
            return await self.store.read_text(doc)
        except DocumentStoreError as exc:
            logger.error("Failed to read %s during scan: %s", doc.path, exc)
            return None

    async def scan(self) -> IndexSchema:
        """Build the tag tree and the list of index notes for the current store state."""
        settings = self.settings
        schema = IndexSchema()
        root = schema.root

        for doc in self.store.list_documents(settings.exclude_folders):
            note = IndexNote(doc)
            tags = self.document_tags(doc)
            has_priority = bool(settings.priority_tag) and settings.priority_tag in tags

            for tag in tags:
                kind = self._index_kind(tag)
                if kind is None:
                    root.add_document(tag, doc, has_priority)
                    continue
                carrier = canonicalize(tag.rpartition("/")[0])
                if kind == "index":
                    note.index_tags.append(carrier)
                else:
                    note.meta_index_tags.append(carrier)
                root.add_document(carrier, doc, has_priority, is_index=True)

            if tags and settings.show_note_title:
                title = self.store.get_frontmatter_title(doc)
                if title:
                    schema.titles[doc.path] = title

            if note.is_carrier:
                schema.index_notes.append(note)
                text = await self._read_for_scan(doc)
                if text is not None:
                    schema.note_contents[doc.path] = string_hash(text)
            else:
                # Notes that lost their index tags may still hold blocks to clean up.
                text = await self._read_for_scan(doc)
                if text is not None and has_marker(text):
                    schema.index_notes.append(note)
                    schema.note_contents[doc.path] = string_hash(text)

        root.sort_all()
        return schema

    # ------------------------------------------------------------------
    # Updating
    # ------------------------------------------------------------------

    async def update(self) -> UpdateResult | None:
        """Run one update cycle.

        Returns ``None`` when another cycle is already running (the request
        is dropped), otherwise an :class:`UpdateResult`.  Errors never
        propagate out of this method.
        """
        if self._updating:
            logger.debug("Update already in progress, request dropped")
            return None

        self._updating = True
        started = time.perf_counter()
        result = UpdateResult()
        try:
            schema = await self.scan()
            fingerprint = schema.fingerprint()
            if fingerprint == self.previous_fingerprint:
                result.skipped = True
                self.last_successful_update = self._clock()
                return result

            self._prune_recently_modified()
            notes = list(schema.index_notes)
            outcomes = await asyncio.gather(*(self._process_note(n, schema) for n in notes))

            result.notes_processed = len(notes)
            result.notes_written = sum(1 for o in outcomes if o is True)
            result.failures = [n.doc.path for n, o in zip(notes, outcomes) if o is None]

            # Hashes of the written texts are in the schema now, so the next
            # scan of an unchanged store reproduces this fingerprint.
            self.previous_fingerprint = "" if result.failures else schema.fingerprint()
            self.last_successful_update = self._clock()
            self.consecutive_failures = 0
            logger.info(
                "Index update completed: %d notes, %d written, %d failed",
                result.notes_processed,
                result.notes_written,
                len(result.failures),
            )
        except Exception as exc:
            logger.exception("Failed to update indices")
            result.error = str(exc)
            self.consecutive_failures += 1
        finally:
            self._updating = False
            result.duration_ms = (time.perf_counter() - started) * 1000
        return result

    async def _process_note(self, note: IndexNote, schema: IndexSchema) -> bool | None:
        """Render and write one note; ``None`` means it failed and was skipped."""
        try:
            blocks = render_blocks(
                note, schema.root, self.store, show_title=self.settings.show_note_title
            )
            return await self._write_with_retry(note, blocks, schema)
        except Exception as exc:
            logger.error("Failed to update index in %s: %s", note.doc.path, exc)
            return None

    async def _write_with_retry(
        self,
        note: IndexNote,
        blocks: list[tuple[str, str]],
        schema: IndexSchema,
    ) -> bool:
        doc = note.doc
        modified_at = self._recently_modified.get(doc.path)
        if modified_at is not None:
            elapsed = self._clock() - modified_at
            if elapsed < self.timings.recent_save_window:
                await asyncio.sleep(self.timings.recent_save_window - elapsed)

        results: list[str] = []

        def apply(text: str) -> str:
            updated = reconcile(text, blocks)
            results.append(updated)
            return updated

        retries = self.timings.max_retries
        last_error: Exception | None = None
        for attempt in range(1, retries + 1):
            results.clear()
            try:
                written = await self.store.transform_text(doc, apply)
            except (DocumentStoreError, OSError) as exc:
                last_error = exc
                logger.warning("Attempt %d/%d failed for %s: %s", attempt, retries, doc.path, exc)
                if attempt < retries:
                    await asyncio.sleep(self.timings.retry_base_delay * 2 ** (attempt - 1))
                continue
            if results and not note.is_carrier and not has_marker(results[-1]):
                # Cleaned up for good: the next scan will not list it.
                schema.note_contents.pop(doc.path, None)
                schema.index_notes.remove(note)
            elif results:
                schema.note_contents[doc.path] = string_hash(results[-1])
            return written

        msg = f"Failed to update index after {retries} attempts: {last_error}"
        raise IndexWriteError(msg) from last_error

    async def stale_notes(self) -> list[str]:
        """Paths of index notes whose text differs from what an update would write.

        Nothing is written; unreadable notes count as stale.
        """
        schema = await self.scan()
        stale: list[str] = []
        for note in schema.index_notes:
            blocks = render_blocks(
                note, schema.root, self.store, show_title=self.settings.show_note_title
            )
            try:
                text = await self.store.read_text(note.doc)
            except DocumentStoreError as exc:
                logger.warning("%s", exc)
                stale.append(note.doc.path)
                continue
            if reconcile(text, blocks) != text:
                stale.append(note.doc.path)
        return stale

    def _prune_recently_modified(self) -> None:
        cutoff = self._clock() - self.timings.recent_save_retention
        for path, stamp in list(self._recently_modified.items()):
            if stamp < cutoff:
                del self._recently_modified[path]

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule_update(self, delay: float | None = None) -> None:
        """Request an update after *delay* seconds, replacing any pending request."""
        if self._closed:
            return
        if delay is None:
            delay = self.timings.debounce
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(delay, self._fire_scheduled_update)

    def _fire_scheduled_update(self) -> None:
        self._debounce_handle = None
        if self._updating:
            logger.debug("Scheduled update skipped, another update is running")
            return
        self._spawn(self.update())

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.settings.update_interval_seconds)
            if not self._updating:
                self._spawn(self.update())

    async def _run_health_checks(self) -> None:
        while True:
            await asyncio.sleep(self.timings.health_check_interval)
            self.perform_health_check()

    def perform_health_check(self) -> bool:
        """Detect a stalled engine and try to recover; return ``True`` when healthy."""
        if self.last_successful_update is None:
            return True
        idle = self._clock() - self.last_successful_update
        max_idle = self.timings.stall_multiplier * self.settings.update_interval_seconds
        if idle <= max_idle:
            return True

        logger.warning("Index system appears stalled, last successful update %.0f s ago", idle)
        if self.consecutive_failures > self.timings.escalate_after_failures:
            logger.error(
                "Index system has failed %d times in a row, consider restarting it",
                self.consecutive_failures,
            )
        else:
            logger.info("Attempting recovery update")
            self.schedule_update()
        return False

    def start(self) -> None:
        """Start the periodic and health-check tasks and schedule the first update.

        Must be called from inside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._closed = False
        self._periodic_task = loop.create_task(self._run_periodic())
        self._health_task = loop.create_task(self._run_health_checks())
        self.schedule_update(self.timings.startup_delay)

    def close(self) -> None:
        """Cancel timers and background tasks; running document writes finish on their own."""
        self._closed = True
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        for task in (self._periodic_task, self._health_task):
            if task is not None:
                task.cancel()
        self._periodic_task = None
        self._health_task = None
        self._recently_modified.clear()

    async def wait_idle(self) -> None:
        """Wait until every update started by the scheduler has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def on_created(self, doc: DocumentRef) -> None:
        self.schedule_update()

    def on_deleted(self, doc: DocumentRef) -> None:
        self._recently_modified.pop(doc.path, None)
        self.schedule_update()

    def on_renamed(self, doc: DocumentRef) -> None:
        self.schedule_update()

    def on_metadata_changed(self, doc: DocumentRef) -> None:
        self.schedule_update()

    def on_modified(self, doc: DocumentRef) -> None:
        """Handle a content change of *doc*.

        Index notes get a longer delay so the update does not race the
        editor's own save; other notes only trigger an update when they
        contain index markers that may need cleaning up.
        """
        self._recently_modified[doc.path] = self._clock()
        if self.has_index_tags(doc):
            self.schedule_update(self.timings.modified_index_delay)
        else:
            self._spawn(self._check_stale_markers(doc))

    async def _check_stale_markers(self, doc: DocumentRef) -> None:
        try:
            text = await self.store.read_text(doc)
        except DocumentStoreError as exc:
            logger.debug("Cannot read %s for marker check: %s", doc.path, exc)
            return
        if has_marker(text):
            self.schedule_update()

    def notify(self, event: ChangeEvent) -> None:
        """Dispatch a :class:`ChangeEvent` to the matching handler."""
        handlers = {
            ChangeKind.CREATED: self.on_created,
            ChangeKind.DELETED: self.on_deleted,
            ChangeKind.RENAMED: self.on_renamed,
            ChangeKind.MODIFIED: self.on_modified,
            ChangeKind.METADATA: self.on_metadata_changed,
        }
        handlers[event.kind](event.doc)
