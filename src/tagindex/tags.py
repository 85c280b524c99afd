"""Tag paths: canonical form, decomposition, headings and block references."""

from __future__ import annotations

import locale
import logging
import re
import unicodedata
from typing import Any

from tagindex.fingerprint import string_hash

logger = logging.getLogger(__name__)

ROOT_BLOCK_REFERENCE = "^indexof-root000"

_EDGE_SLASH_RE = re.compile(r"^/|/$")
_NON_LETTER_RUN_RE = re.compile(r"[^a-zA-Z]+")
_BLOCK_PREFIX = "^indexof-"
_DIGIT_LETTERS = str.maketrans("0123456789", "abcdefghij")

# Characters kept by the sortable projection; everything else is dropped
# before collation so emoji and exotic symbols do not affect ordering.
_SORTABLE_EXTRA = " \r\n@£$¥èéùìòÇØøÅåΔΦΓΛΩΠΘΣΞÆæßÉ!\"#$%&'()*+,-./:;<=>?¡ÄÖÑÜ§¿äöñüà^{}[~]|€\\"
_UNSORTABLE_RE = re.compile("[^A-Za-z0-9" + re.escape(_SORTABLE_EXTRA) + "]")


def canonicalize(raw: Any) -> str:
    """Return the canonical form of a tag path.

    ``None`` maps to the empty string; other non-strings are coerced with
    ``str()``.  The result is trimmed, lower-cased and has one leading and
    one trailing ``/`` removed.
    """
    if raw is None:
        return ""
    if not isinstance(raw, str):
        try:
            raw = str(raw)
        except Exception:  # arbitrary __str__ implementations
            return ""
    return _EDGE_SLASH_RE.sub("", raw.strip().lower())


def last_component(path: str) -> str:
    """Return the last ``/``-delimited segment of *path*."""
    return path.split("/")[-1]


def is_descendant_of(path: str, ancestor: str) -> bool:
    """Check whether *path* lies strictly below *ancestor* in the hierarchy.

    Both arguments must already be canonical.  Every non-empty path is a
    descendant of the root (empty) path.
    """
    if path == ancestor:
        return False
    if not ancestor:
        return bool(path)
    return path.startswith(ancestor + "/")


def next_component(path: str, ancestor: str) -> str:
    """Return the component of *path* immediately below *ancestor*."""
    rest = path[len(ancestor) :] if ancestor else path
    return canonicalize(rest).split("/")[0]


def _capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:]


def format_as_heading(path: str) -> str:
    """Turn a tag path into a human-readable heading.

    Components are split on ``_``; a word preceded by a doubled underscore
    (or a leading underscore) is an acronym and rendered upper-case.

    >>> format_as_heading("comparisons__ml")
    'Comparisons ML'
    >>> format_as_heading("ai/deep_learning")
    'Ai / Deep learning'
    """
    headings: list[str] = []
    for component in path.split("/"):
        parts = component.split("_")
        words: list[str] = []
        for index, word in enumerate(parts):
            if not word:
                continue
            if index > 0 and parts[index - 1] == "":
                words.append(word.upper())
            else:
                words.append(word)
        headings.append(_capitalize_first(" ".join(words)))
    return " / ".join(headings)


def name_to_heading(name: str) -> str:
    """Heading for a document file name: text before the first dot, capitalized."""
    return _capitalize_first(name.split(".")[0])


def to_block_reference(path: str) -> str:
    """Return the block reference marker used to identify the index of *path*."""
    if not path:
        return ROOT_BLOCK_REFERENCE
    reference = "^" + _NON_LETTER_RUN_RE.sub("-", "indexof-" + path)
    if reference != _BLOCK_PREFIX:
        return reference
    # No ASCII letters in the path (``2024``, ``日本``): spell its hash in letters.
    digits = string_hash(path).replace("-", "n")
    return _BLOCK_PREFIX + "tag" + digits.translate(_DIGIT_LETTERS)


def is_well_formed(path: str) -> bool:
    """Check that no ``/``-delimited component of *path* is blank."""
    return all(part.strip() for part in path.split("/"))


def sortable(text: str) -> str:
    """Project *text* onto the allow-listed characters used for ordering."""
    return _UNSORTABLE_RE.sub("", text).strip().lower()


def _fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def sort_key(text: str) -> tuple[str, str]:
    """Collation key of the sortable projection of *text*.

    Accents are folded for the primary key so ``élan`` sorts between
    ``eagle`` and ``zeta`` even under the ``C`` collation locale; the
    unfolded text breaks ties.
    """
    projected = sortable(text)
    return locale.strxfrm(_fold_accents(projected)), locale.strxfrm(projected)


def normalize_tags(value: Any, source: str = "<unknown>") -> list[str]:
    """Normalize a frontmatter ``tags`` payload to a list of strings.

    Accepts a comma-joined string, a list/tuple of scalars, or ``None``.
    Anything else is reported and treated as no tags.
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, (list, tuple)):
        tags: list[str] = []
        for item in value:
            if item is None:
                continue
            text = item if isinstance(item, str) else str(item)
            text = text.strip()
            if text:
                tags.append(text)
        return tags
    logger.warning("%s has invalid tags format: %r", source, value)
    return []
