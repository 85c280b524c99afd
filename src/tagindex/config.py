"""Index settings and their YAML config file (``.tagindex/config.yml``)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

import yaml

from tagindex.tags import canonicalize

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_DIR = ".tagindex"
CONFIG_FILE = "config.yml"

LINK_STYLES = frozenset({"wiki", "markdown"})


class ConfigError(Exception):
    """Raised when the config file exists but cannot be read or parsed."""


@dataclass
class IndexSettings:
    """User-facing settings of the index engine."""

    index_tag: str = "idx"
    meta_index_tag: str = "meta_idx"
    priority_tag: str = ""
    exclude_folders: list[str] = field(default_factory=list)
    show_note_title: bool = True
    update_interval_seconds: int = 120  # safety-net full update period
    link_style: str = "wiki"

    def __post_init__(self) -> None:
        self.index_tag = canonicalize(self.index_tag)
        self.meta_index_tag = canonicalize(self.meta_index_tag)
        self.priority_tag = canonicalize(self.priority_tag)
        self.exclude_folders = [f for f in self.exclude_folders if f]


_EXPECTED_TYPES: dict[str, type | tuple[type, ...]] = {
    "index_tag": str,
    "meta_index_tag": str,
    "priority_tag": str,
    "exclude_folders": list,
    "show_note_title": bool,
    "update_interval_seconds": int,
    "link_style": str,
}


def config_path(vault_root: Path) -> Path:
    return vault_root / CONFIG_DIR / CONFIG_FILE


def settings_from_dict(data: dict[str, Any]) -> IndexSettings:
    """Build settings from a parsed config mapping.

    Unknown keys and values of the wrong type are reported and ignored;
    the default is used for every key that is missing or invalid.
    """
    known = {f.name for f in fields(IndexSettings)}
    kwargs: dict[str, Any] = {}

    for key, value in data.items():
        if key not in known:
            logger.warning("Unknown config key %r ignored", key)
            continue
        expected = _EXPECTED_TYPES[key]
        # bool is a subclass of int; reject it where a number is expected.
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            logger.warning("Config key %r has invalid value %r, using default", key, value)
            continue
        kwargs[key] = value

    if "exclude_folders" in kwargs:
        kwargs["exclude_folders"] = [str(f) for f in kwargs["exclude_folders"] if f]
    if kwargs.get("link_style", "wiki") not in LINK_STYLES:
        logger.warning("Unknown link_style %r, using 'wiki'", kwargs["link_style"])
        kwargs.pop("link_style")
    if kwargs.get("update_interval_seconds", 1) < 1:
        logger.warning("update_interval_seconds must be positive, using default")
        kwargs.pop("update_interval_seconds")

    return IndexSettings(**kwargs)


def load_settings(vault_root: Path) -> IndexSettings:
    """Load settings from ``<vault>/.tagindex/config.yml``.

    A missing file yields the defaults.  An unreadable file or invalid
    YAML raises :class:`ConfigError`.
    """
    path = config_path(vault_root)
    if not path.is_file():
        return IndexSettings()

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read {path}: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        return IndexSettings()
    if not isinstance(data, dict):
        msg = f"{path} must contain a mapping"
        raise ConfigError(msg)
    return settings_from_dict(data)
