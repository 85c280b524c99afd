"""Tests for tagindex.config — settings and the YAML config file."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from tagindex.config import (
    ConfigError,
    IndexSettings,
    config_path,
    load_settings,
    settings_from_dict,
)

if TYPE_CHECKING:
    from pathlib import Path


def _write_config(root: Path, text: str) -> None:
    path = config_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestIndexSettings:
    def test_defaults(self) -> None:
        settings = IndexSettings()
        assert settings.index_tag == "idx"
        assert settings.meta_index_tag == "meta_idx"
        assert settings.priority_tag == ""
        assert settings.exclude_folders == []
        assert settings.show_note_title is True
        assert settings.update_interval_seconds == 120
        assert settings.link_style == "wiki"

    def test_tags_are_canonicalized(self) -> None:
        settings = IndexSettings(index_tag=" /IDX/ ", priority_tag="Star")
        assert settings.index_tag == "idx"
        assert settings.priority_tag == "star"


class TestSettingsFromDict:
    def test_known_keys(self) -> None:
        settings = settings_from_dict(
            {"index_tag": "toc", "exclude_folders": ["templates/", ""], "link_style": "markdown"}
        )
        assert settings.index_tag == "toc"
        assert settings.exclude_folders == ["templates/"]
        assert settings.link_style == "markdown"

    def test_unknown_key_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="tagindex.config"):
            settings = settings_from_dict({"colour": "blue"})
        assert settings == IndexSettings()
        assert "colour" in caplog.text

    def test_wrong_type_uses_default(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="tagindex.config"):
            settings = settings_from_dict({"update_interval_seconds": "soon"})
        assert settings.update_interval_seconds == 120
        assert "update_interval_seconds" in caplog.text

    def test_bool_is_not_an_interval(self) -> None:
        assert settings_from_dict({"update_interval_seconds": True}).update_interval_seconds == 120

    def test_non_positive_interval_uses_default(self) -> None:
        assert settings_from_dict({"update_interval_seconds": 0}).update_interval_seconds == 120

    def test_unknown_link_style(self) -> None:
        assert settings_from_dict({"link_style": "html"}).link_style == "wiki"


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert load_settings(tmp_path) == IndexSettings()

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "")
        assert load_settings(tmp_path) == IndexSettings()

    def test_reads_yaml(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "priority_tag: star\nshow_note_title: false\n")
        settings = load_settings(tmp_path)
        assert settings.priority_tag == "star"
        assert settings.show_note_title is False

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "index_tag: [unclosed\n")
        with pytest.raises(ConfigError, match="Cannot read"):
            load_settings(tmp_path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "- a\n- b\n")
        with pytest.raises(ConfigError, match="must contain a mapping"):
            load_settings(tmp_path)
