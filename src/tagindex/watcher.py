"""File watcher: turn vault filesystem changes into updater notifications."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, awatch

from tagindex.store import MARKDOWN_SUFFIX, DocumentRef
from tagindex.updater import ChangeEvent, ChangeKind

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable, Iterable

    from tagindex.store import Vault
    from tagindex.updater import IndexUpdater

logger = logging.getLogger(__name__)

# The updater debounces on its own; this only batches bursts of OS events.
DEFAULT_DEBOUNCE_MS = 200


def filter_changes(
    changes: Iterable[tuple[Change, str]],
    root: Path,
    excluded: Iterable[str] = (),
) -> list[tuple[Change, str]]:
    """Keep Markdown changes inside *root*, as ``(change, vault-relative path)``.

    Temp files, files below hidden directories and paths starting with one
    of the *excluded* prefixes are dropped.
    """
    prefixes = tuple(p for p in excluded if p)
    result: list[tuple[Change, str]] = []

    for change, path_str in changes:
        p = Path(path_str)

        if p.name.startswith(("~", ".")) or p.name.endswith(".tmp"):
            continue
        if p.suffix != MARKDOWN_SUFFIX:
            continue

        try:
            rel = p.relative_to(root)
        except ValueError:
            continue

        if any(part.startswith(".") for part in rel.parts[:-1]):
            continue

        rel_path = rel.as_posix()
        if prefixes and rel_path.startswith(prefixes):
            continue

        result.append((change, rel_path))

    return result


def changes_to_events(vault: Vault, relevant: Iterable[tuple[Change, str]]) -> list[ChangeEvent]:
    """Translate filtered changes into :class:`ChangeEvent` objects.

    A batch holding exactly one deletion and one addition of a file with
    the same name is reported as a rename.  Modifications also produce a
    metadata event when the document's frontmatter changed.
    """
    relevant = list(relevant)
    added = [path for change, path in relevant if change == Change.added]
    deleted = [path for change, path in relevant if change == Change.deleted]

    events: list[ChangeEvent] = []
    if len(added) == 1 and len(deleted) == 1:
        new, old = DocumentRef.from_path(added[0]), DocumentRef.from_path(deleted[0])
        if new.name == old.name:
            vault.forget(old)
            events.append(ChangeEvent(ChangeKind.RENAMED, new))
            relevant = [(c, p) for c, p in relevant if p not in (new.path, old.path)]

    for change, path in relevant:
        doc = DocumentRef.from_path(path)
        if change == Change.added:
            events.append(ChangeEvent(ChangeKind.CREATED, doc))
        elif change == Change.deleted:
            vault.forget(doc)
            events.append(ChangeEvent(ChangeKind.DELETED, doc))
        else:
            if vault.refresh_metadata(doc):
                events.append(ChangeEvent(ChangeKind.METADATA, doc))
            events.append(ChangeEvent(ChangeKind.MODIFIED, doc))
    return events


async def watch_vault(
    vault: Vault,
    updater: IndexUpdater,
    *,
    debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    stop_event: asyncio.Event | None = None,
    callback: Callable[[list[ChangeEvent]], None] | None = None,
) -> None:
    """Feed vault changes to *updater* until *stop_event* is set.

    The updater's own timers must already be running (see
    :meth:`IndexUpdater.start`).
    """
    excluded = updater.settings.exclude_folders
    async for batch in awatch(vault.root, debounce=debounce_ms, stop_event=stop_event):
        relevant = filter_changes(batch, vault.root, excluded)
        if not relevant:
            continue

        events = changes_to_events(vault, relevant)
        logger.debug("%d change(s) in %d file(s)", len(events), len(relevant))
        for event in events:
            updater.notify(event)

        if callback is not None:
            callback(events)
