"""Tag hierarchy tree: one :class:`Node` per canonical tag path."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tagindex.fingerprint import string_hash
from tagindex.tags import (
    canonicalize,
    format_as_heading,
    is_descendant_of,
    last_component,
    name_to_heading,
    next_component,
    sort_key,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from tagindex.store import DocumentRef

logger = logging.getLogger(__name__)


def _by_name(doc: DocumentRef) -> tuple[str, str]:
    return sort_key(doc.name)


class Node:
    """A tag path in the hierarchy, owning its documents and child nodes.

    Documents are kept in four buckets: ``priority_docs``, ``regular_docs``,
    ``index_docs`` and ``index_priority_docs``.  A document whose name
    matches the node's own tag component becomes the ``header_doc``.
    """

    def __init__(self, tag_path: str = "") -> None:
        self.tag_path = canonicalize(tag_path)
        self.header_doc: DocumentRef | None = None
        self.priority_docs: list[DocumentRef] = []
        self.regular_docs: list[DocumentRef] = []
        self.index_docs: list[DocumentRef] = []
        self.index_priority_docs: list[DocumentRef] = []
        self.children: list[Node] = []

    def __repr__(self) -> str:
        return f"Node({self.tag_path!r}, children={len(self.children)})"

    @property
    def tag_component(self) -> str:
        return last_component(self.tag_path)

    @property
    def heading(self) -> str:
        return format_as_heading(self.tag_component)

    def contains(self, doc: DocumentRef) -> bool:
        """Check whether *doc* is already registered in any bucket of this node."""
        if self.header_doc is not None and self.header_doc.path == doc.path:
            return True
        buckets = (self.priority_docs, self.regular_docs, self.index_docs, self.index_priority_docs)
        return any(d.path == doc.path for bucket in buckets for d in bucket)

    def _child(self, component: str) -> Node | None:
        for child in self.children:
            if child.tag_component == component:
                return child
        return None

    def _release(self, doc: DocumentRef) -> None:
        """Drop *doc* from the header slot and the non-index buckets."""
        if self.header_doc is not None and self.header_doc.path == doc.path:
            self.header_doc = None
        self.priority_docs = [d for d in self.priority_docs if d.path != doc.path]
        self.regular_docs = [d for d in self.regular_docs if d.path != doc.path]

    def _classify(self, doc: DocumentRef, has_priority: bool, is_index: bool) -> None:
        # Index registration wins over a plain tag on the same node,
        # whichever order the tags were declared in.
        if is_index:
            self._release(doc)
        if self.contains(doc):
            logger.debug("%s already registered under %r", doc.path, self.tag_path)
            return
        if is_index and has_priority:
            self.index_priority_docs.append(doc)
        elif is_index:
            self.index_docs.append(doc)
        elif self.header_doc is None and name_to_heading(doc.name) == self.heading:
            self.header_doc = doc
        elif has_priority:
            self.priority_docs.append(doc)
        else:
            self.regular_docs.append(doc)

    def add_document(
        self,
        tag_path: str,
        doc: DocumentRef,
        has_priority: bool = False,
        is_index: bool = False,
    ) -> bool:
        """Register *doc* at *tag_path*, creating intermediate nodes as needed.

        Returns ``False`` (and logs) when *tag_path* is neither this node's
        path nor one of its descendants.
        """
        tag_path = canonicalize(tag_path)
        if tag_path == self.tag_path:
            self._classify(doc, has_priority, is_index)
            return True
        if not is_descendant_of(tag_path, self.tag_path):
            logger.error(
                "Cannot add %s at %r: not below node %r", doc.path, tag_path, self.tag_path
            )
            return False

        component = next_component(tag_path, self.tag_path)
        if not component.strip():
            logger.error("Cannot add %s at %r: blank path component", doc.path, tag_path)
            return False
        child = self._child(component)
        if child is None:
            child_path = f"{self.tag_path}/{component}" if self.tag_path else component
            child = Node(child_path)
            self.children.append(child)
        return child.add_document(tag_path, doc, has_priority, is_index)

    def find_node(self, tag_path: str) -> Node | None:
        """Return the node at *tag_path*, or ``None`` when no such node exists."""
        tag_path = canonicalize(tag_path)
        if tag_path == self.tag_path:
            return self
        if not is_descendant_of(tag_path, self.tag_path):
            logger.error("Did not find node at path %r below %r", tag_path, self.tag_path)
            return None
        component = next_component(tag_path, self.tag_path)
        child = self._child(component) if component.strip() else None
        return child.find_node(tag_path) if child is not None else None

    def sort_all(self) -> None:
        """Sort every bucket by document name and children by heading, recursively."""
        self.priority_docs.sort(key=_by_name)
        self.regular_docs.sort(key=_by_name)
        self.index_docs.sort(key=_by_name)
        self.index_priority_docs.sort(key=_by_name)
        self.children.sort(key=lambda child: sort_key(child.heading))
        for child in self.children:
            child.sort_all()

    def all_documents(self) -> list[DocumentRef]:
        """Documents this node contains: priority, regular, then the header document."""
        docs = self.priority_docs + self.regular_docs
        if self.header_doc is not None:
            docs.append(self.header_doc)
        return docs

    def iter_nodes(self) -> Iterator[Node]:
        """Yield this node and all descendants, depth-first."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def fingerprint(self) -> str:
        """Hash of document paths, tag path and child fingerprints of the subtree."""
        to_hash = (
            ",".join(d.path for d in self.all_documents())
            + self.tag_path
            + ",".join(child.fingerprint() for child in self.children)
        )
        return string_hash(to_hash)
