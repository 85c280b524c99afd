"""Index and meta-index rendering.

Output is a block-quote callout, one list line per document::

    > [!example] Deep learning
    > - [[notes/Backprop|Backprop]]: Gradients by hand
    > - **Transformers**
    > \t- [[notes/Attention|Attention]]
    >
    > ^indexof-deep-learning
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tagindex.tags import format_as_heading, name_to_heading, sort_key, to_block_reference

if TYPE_CHECKING:
    from tagindex.schema import IndexNote
    from tagindex.store import DocumentRef, DocumentStore
    from tagindex.tree import Node

MAX_TITLE_LENGTH = 50
INDENT = "\t"


def _title_suffix(store: DocumentStore, doc: DocumentRef, show_title: bool) -> str:
    if not show_title:
        return ""
    title = store.get_frontmatter_title(doc)
    if not title:
        return ""
    title = " ".join(title.splitlines())
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH] + "..."
    return ": " + title


def _link(store: DocumentStore, target: DocumentRef, doc: DocumentRef) -> str:
    return store.make_link(target, doc, name_to_heading(doc.name))


def render_index(
    node: Node,
    target: DocumentRef,
    store: DocumentStore,
    *,
    show_title: bool = True,
    indent: int = 0,
) -> str:
    """Render the nested list of documents below *node* as seen from *target*.

    *target* itself is never listed.  Priority documents come first and are
    bold; each child node contributes a bold heading line (its header
    document's link when it has one) followed by its own list, one
    indentation level deeper.
    """
    tabs = INDENT * indent
    priority_paths = {d.path for d in node.priority_docs}
    lines: list[str] = []

    for doc in node.priority_docs + node.regular_docs + node.index_docs:
        if doc.path == target.path:
            continue
        bold = "**" if doc.path in priority_paths else ""
        link = _link(store, target, doc)
        title = _title_suffix(store, doc, show_title)
        lines.append(f"> {tabs}- {bold}{link}{title}{bold}\n")

    text = "".join(lines)
    for child in node.children:
        label = _link(store, target, child.header_doc) if child.header_doc else child.heading
        text += f"> {tabs}- **{label}**\n"
        text += render_index(child, target, store, show_title=show_title, indent=indent + 1)
    return text


def render_meta_index(
    node: Node,
    target: DocumentRef,
    store: DocumentStore,
    *,
    show_title: bool = True,
) -> str:
    """Render a flat summary of the index documents one level below *node*."""
    regular: dict[str, DocumentRef] = {}
    priority: dict[str, DocumentRef] = {}
    for child in node.children:
        for doc in child.index_docs:
            if doc.path != target.path:
                regular.setdefault(doc.path, doc)
        for doc in child.index_priority_docs:
            if doc.path != target.path:
                priority.setdefault(doc.path, doc)

    text = ""
    for callout, docs in (("tldr", priority), ("example", regular)):
        for doc in sorted(docs.values(), key=lambda d: sort_key(d.name)):
            link = _link(store, target, doc)
            title = _title_suffix(store, doc, show_title)
            text += f"> \n> > [!{callout}] {link}{title}\n"
    return text


def render_blocks(
    note: IndexNote,
    root: Node,
    store: DocumentStore,
    *,
    show_title: bool = True,
) -> list[tuple[str, str]]:
    """Build the ``(block_reference, block_text)`` pairs *note* should contain.

    Index tags come first, then meta-index tags, each group ordered by the
    tag's last component.
    """
    note.sort_tags()
    blocks: list[tuple[str, str]] = []

    for tag in note.index_tags:
        text = f"> [!example] {format_as_heading(tag)}\n"
        source = root.find_node(tag)
        if source is not None:
            text += render_index(source, note.doc, store, show_title=show_title)
        reference = to_block_reference(tag)
        blocks.append((reference, f"{text}> \n> {reference}"))

    for tag in note.meta_index_tags:
        title = f"Meta-index of: {format_as_heading(tag)}" if tag else "Meta-index"
        text = f"> [!example] {title}\n"
        source = root.find_node(tag)
        if source is not None:
            text += render_meta_index(source, note.doc, store, show_title=show_title)
        reference = to_block_reference(tag)
        blocks.append((reference, f"{text}> \n> {reference}"))

    return blocks
