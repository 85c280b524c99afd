"""Scan output: index-note descriptors and the whole-state fingerprint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tagindex.fingerprint import string_hash
from tagindex.tags import last_component, sort_key
from tagindex.tree import Node

if TYPE_CHECKING:
    from tagindex.store import DocumentRef


def _by_last_component(tag: str) -> tuple[str, str]:
    return sort_key(last_component(tag))


@dataclass
class IndexNote:
    """A document that renders index or meta-index blocks (or holds stale ones)."""

    doc: DocumentRef
    index_tags: list[str] = field(default_factory=list)
    meta_index_tags: list[str] = field(default_factory=list)

    @property
    def is_carrier(self) -> bool:
        return bool(self.index_tags or self.meta_index_tags)

    def sort_tags(self) -> None:
        self.index_tags.sort(key=_by_last_component)
        self.meta_index_tags.sort(key=_by_last_component)

    def fingerprint(self) -> str:
        self.sort_tags()
        to_hash = (
            f"INDEX:{len(self.index_tags)}{','.join(self.index_tags)}"
            f"META:{len(self.meta_index_tags)}{','.join(self.meta_index_tags)}"
        )
        return string_hash(to_hash)


@dataclass
class IndexSchema:
    """Everything one scan produced.

    ``note_contents`` maps each index note's path to a hash of its raw
    text so that hand edits inside index blocks count as changes.
    ``titles`` maps indexed document paths to their title property when
    titles are shown in the index.
    """

    root: Node = field(default_factory=Node)
    index_notes: list[IndexNote] = field(default_factory=list)
    note_contents: dict[str, str] = field(default_factory=dict)
    titles: dict[str, str] = field(default_factory=dict)

    def fingerprint(self) -> str:
        structure = self.root.fingerprint() + ",".join(n.fingerprint() for n in self.index_notes)
        contents = "|".join(f"{path}:{h}" for path, h in sorted(self.note_contents.items()))
        titles = "|".join(f"{path}:{title}" for path, title in sorted(self.titles.items()))
        return string_hash(structure + "||CONTENT||" + contents + "||TITLES||" + titles)
