"""Shared test fixtures for tagindex."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
import yaml

from tagindex.config import IndexSettings
from tagindex.store import DocumentRef, DocumentStoreError
from tagindex.updater import Timings

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path


class MemoryStore:
    """In-memory document store that records every write."""

    def __init__(self) -> None:
        self.texts: dict[str, str] = {}
        self.tags: dict[str, Any] = {}
        self.titles: dict[str, str] = {}
        self.writes: list[str] = []
        self.reads: list[str] = []
        self.failing_writes: dict[str, int] = {}

    def add(
        self,
        path: str,
        text: str = "",
        *,
        tags: Any = None,
        title: str | None = None,
    ) -> DocumentRef:
        self.texts[path] = text
        if tags is not None:
            self.tags[path] = tags
        if title is not None:
            self.titles[path] = title
        return DocumentRef.from_path(path)

    def doc(self, path: str) -> DocumentRef:
        return DocumentRef.from_path(path)

    def list_documents(self, excluded_prefixes: Iterable[str] = ()) -> list[DocumentRef]:
        prefixes = tuple(p for p in excluded_prefixes if p)
        return [
            DocumentRef.from_path(path)
            for path in sorted(self.texts)
            if not (prefixes and path.startswith(prefixes))
        ]

    async def read_text(self, doc: DocumentRef) -> str:
        self.reads.append(doc.path)
        if doc.path not in self.texts:
            msg = f"Cannot read {doc.path}: no such document"
            raise DocumentStoreError(msg)
        return self.texts[doc.path]

    async def transform_text(self, doc: DocumentRef, fn: Callable[[str], str]) -> bool:
        remaining = self.failing_writes.get(doc.path, 0)
        if remaining:
            self.failing_writes[doc.path] = remaining - 1
            msg = f"Cannot write {doc.path}: simulated failure"
            raise DocumentStoreError(msg)
        text = await self.read_text(doc)
        updated = fn(text)
        if updated == text:
            return False
        self.texts[doc.path] = updated
        self.writes.append(doc.path)
        return True

    def get_frontmatter_tags(self, doc: DocumentRef) -> Any:
        return self.tags.get(doc.path)

    def get_frontmatter_title(self, doc: DocumentRef) -> str | None:
        return self.titles.get(doc.path)

    def make_link(self, from_doc: DocumentRef, to_doc: DocumentRef, display: str) -> str:
        return f"[[{to_doc.path.removesuffix('.md')}|{display}]]"


FAST_TIMINGS = Timings(
    debounce=0.01,
    modified_index_delay=0.03,
    recent_save_window=0.0,
    recent_save_retention=5.0,
    max_retries=3,
    retry_base_delay=0.0,
    health_check_interval=0.05,
    startup_delay=0.0,
)


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def settings() -> IndexSettings:
    return IndexSettings()


@pytest.fixture()
def fast_timings() -> Timings:
    return FAST_TIMINGS


def write_note(
    root: Path,
    rel_path: str,
    body: str = "",
    *,
    tags: list[str] | None = None,
    title: str | None = None,
) -> Path:
    """Write a Markdown note with optional YAML frontmatter below *root*."""
    meta: dict[str, Any] = {}
    if tags is not None:
        meta["tags"] = tags
    if title is not None:
        meta["title"] = title
    text = body
    if meta:
        text = "---\n" + yaml.safe_dump(meta, sort_keys=False) + "---\n" + body
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture()
def tmp_vault(tmp_path: Path) -> Path:
    """Create a small vault with one index note and two tagged notes."""
    write_note(tmp_path, "Index.md", "# Index\n", tags=["ai/idx"])
    write_note(tmp_path, "notes/backprop.md", "Gradients.\n", tags=["ai"], title="Backprop")
    write_note(tmp_path, "notes/attention.md", "Heads.\n", tags=["ai/transformers"])
    return tmp_path


@pytest.fixture()
def make_note() -> Callable[..., Path]:
    return write_note
