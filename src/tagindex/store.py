"""Document store collaborator and the filesystem Vault implementation.

The indexing engine only talks to a :class:`DocumentStore`.  :class:`Vault`
implements it over a directory of Markdown files whose metadata lives in a
YAML frontmatter block.
"""

from __future__ import annotations

import asyncio
import logging
import os
import posixpath
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import yaml

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".md"

_FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\n(.*?)^---[ \t]*(?:\n|\Z)",
    re.DOTALL | re.MULTILINE,
)


class DocumentStoreError(Exception):
    """Raised when a document cannot be read or written."""


@dataclass(frozen=True)
class DocumentRef:
    """Handle to one document: vault-relative POSIX path and file name."""

    path: str
    name: str

    @classmethod
    def from_path(cls, path: str) -> DocumentRef:
        return cls(path=path, name=posixpath.basename(path))

    @property
    def stem(self) -> str:
        return self.name.rsplit(".", 1)[0] if "." in self.name else self.name


class DocumentStore(Protocol):
    """Narrow interface the indexing engine needs from a document store."""

    def list_documents(self, excluded_prefixes: Iterable[str] = ()) -> list[DocumentRef]: ...

    async def read_text(self, doc: DocumentRef) -> str: ...

    async def transform_text(self, doc: DocumentRef, fn: Callable[[str], str]) -> bool:
        """Atomically replace the text of *doc* with ``fn(text)``.

        Returns ``True`` when the document was written.
        """
        ...

    def get_frontmatter_tags(self, doc: DocumentRef) -> Any: ...

    def get_frontmatter_title(self, doc: DocumentRef) -> str | None: ...

    def make_link(self, from_doc: DocumentRef, to_doc: DocumentRef, display: str) -> str: ...


def parse_frontmatter(text: str, source: str = "<text>") -> dict[str, Any]:
    """Parse the leading YAML frontmatter block of *text*.

    Returns an empty dict when there is no block, when the YAML is
    malformed, or when it does not describe a mapping.
    """
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return {}
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Malformed frontmatter in %s: %s", source, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Frontmatter in %s is not a mapping, ignoring it", source)
        return {}
    return data


@dataclass
class _MetaEntry:
    mtime_ns: int
    size: int
    frontmatter: dict[str, Any]


class Vault:
    """A directory of Markdown documents.

    Frontmatter is parsed lazily and cached per document; an entry is
    reused while the file's mtime and size are unchanged.
    """

    def __init__(self, root: Path, *, link_style: str = "wiki") -> None:
        self.root = root.resolve()
        self.link_style = link_style
        self._meta: dict[str, _MetaEntry] = {}

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _abs(self, doc: DocumentRef) -> Path:
        return self.root / doc.path

    def doc_for_path(self, path: Path | str) -> DocumentRef | None:
        """Map a filesystem path to a :class:`DocumentRef`, if it is a vault document."""
        p = Path(path)
        if p.suffix != MARKDOWN_SUFFIX:
            return None
        try:
            rel = p.resolve().relative_to(self.root) if p.is_absolute() else p
        except ValueError:
            return None
        return DocumentRef.from_path(rel.as_posix())

    def list_documents(self, excluded_prefixes: Iterable[str] = ()) -> list[DocumentRef]:
        """List Markdown documents, skipping hidden directories and excluded prefixes.

        Exclusion is a plain prefix match on the vault-relative path.
        """
        prefixes = tuple(p for p in excluded_prefixes if p)
        docs: list[DocumentRef] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            rel_dir = Path(dirpath).relative_to(self.root)
            for filename in sorted(filenames):
                if not filename.endswith(MARKDOWN_SUFFIX) or filename.startswith("."):
                    continue
                rel = (rel_dir / filename).as_posix()
                if prefixes and rel.startswith(prefixes):
                    continue
                docs.append(DocumentRef(path=rel, name=filename))
        return docs

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def _read(self, doc: DocumentRef) -> str:
        try:
            return self._abs(doc).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Cannot read {doc.path}: {exc}"
            raise DocumentStoreError(msg) from exc

    def _write(self, doc: DocumentRef, text: str) -> None:
        target = self._abs(doc)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tagindex-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(text)
            os.replace(tmp_name, target)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            msg = f"Cannot write {doc.path}: {exc}"
            raise DocumentStoreError(msg) from exc

    def _transform(self, doc: DocumentRef, fn: Callable[[str], str]) -> bool:
        text = self._read(doc)
        updated = fn(text)
        if updated == text:
            return False
        self._write(doc, updated)
        return True

    async def read_text(self, doc: DocumentRef) -> str:
        return await asyncio.to_thread(self._read, doc)

    async def transform_text(self, doc: DocumentRef, fn: Callable[[str], str]) -> bool:
        """Read, transform and write *doc*; the write is skipped when nothing changed."""
        return await asyncio.to_thread(self._transform, doc, fn)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def frontmatter(self, doc: DocumentRef) -> dict[str, Any]:
        """Return the cached frontmatter of *doc*, re-parsing it when the file changed."""
        try:
            stat = self._abs(doc).stat()
        except OSError:
            logger.debug("Cannot stat %s", doc.path)
            self._meta.pop(doc.path, None)
            return {}

        entry = self._meta.get(doc.path)
        if entry is not None and entry.mtime_ns == stat.st_mtime_ns and entry.size == stat.st_size:
            return entry.frontmatter

        try:
            text = self._read(doc)
        except DocumentStoreError as exc:
            logger.warning("%s", exc)
            return {}
        data = parse_frontmatter(text, doc.path)
        self._meta[doc.path] = _MetaEntry(stat.st_mtime_ns, stat.st_size, data)
        return data

    def refresh_metadata(self, doc: DocumentRef) -> bool:
        """Re-read the frontmatter of *doc*; return ``True`` if it differs from the cache."""
        previous = self._meta.pop(doc.path, None)
        current = self.frontmatter(doc)
        return previous is None or previous.frontmatter != current

    def forget(self, doc: DocumentRef) -> None:
        self._meta.pop(doc.path, None)

    def get_frontmatter_tags(self, doc: DocumentRef) -> Any:
        return self.frontmatter(doc).get("tags")

    def get_frontmatter_title(self, doc: DocumentRef) -> str | None:
        title = self.frontmatter(doc).get("title")
        if isinstance(title, str) and title:
            return title
        return None

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def make_link(self, from_doc: DocumentRef, to_doc: DocumentRef, display: str) -> str:
        """Link from *from_doc* to *to_doc* in the configured link style."""
        if self.link_style == "markdown":
            base = posixpath.dirname(from_doc.path) or "."
            rel = posixpath.relpath(to_doc.path, base)
            return f"[{display}]({quote(rel)})"
        target = to_doc.path.removesuffix(MARKDOWN_SUFFIX)
        return f"[[{target}|{display}]]"
