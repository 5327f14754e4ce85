"""Tests for project configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from calcblocks.project import (
    CONFIG_FILENAME,
    DEFAULT_CONFIG,
    Settings,
    load_project_config,
    load_settings,
    write_default_config,
)


class TestLoadProjectConfig:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        assert load_project_config(tmp_path) == DEFAULT_CONFIG

    def test_user_values_override(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("locale: en-US\nmax_formula_length: 500\n")
        cfg = load_project_config(tmp_path)
        assert cfg["locale"] == "en-US"
        assert cfg["max_formula_length"] == 500
        assert cfg["currency"] == "EUR"

    def test_formatting_block_flattened(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "formatting:\n  locale: fr-FR\n  currency: USD\n"
        )
        cfg = load_project_config(tmp_path)
        assert cfg["locale"] == "fr-FR"
        assert cfg["currency"] == "USD"
        assert "formatting" not in cfg

    def test_flat_key_wins(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "locale: de-AT\nformatting:\n  locale: fr-FR\n"
        )
        assert load_project_config(tmp_path)["locale"] == "de-AT"

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("")
        assert load_project_config(tmp_path) == DEFAULT_CONFIG

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_project_config(tmp_path)


class TestSettings:
    def test_defaults(self) -> None:
        settings = load_settings()
        assert settings.locale == "de-DE"
        assert settings.max_nesting_depth == 256
        assert len(settings.chart_labels) == 12

    def test_from_project(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(
            "currency: GBP\nchart_labels: [Q1, Q2, Q3, Q4]\nlogging_fsync: true\n"
        )
        settings = load_settings(tmp_path)
        assert settings.currency == "GBP"
        assert settings.chart_labels == ["Q1", "Q2", "Q3", "Q4"]

    def test_unknown_keys_ignored(self) -> None:
        settings = Settings.from_config({"locale": "en-GB", "something_else": 1})
        assert settings.locale == "en-GB"


class TestWriteDefaultConfig:
    def test_writes_defaults(self, tmp_path: Path) -> None:
        path = write_default_config(tmp_path / "proj")
        assert path.name == CONFIG_FILENAME
        assert yaml.safe_load(path.read_text()) == DEFAULT_CONFIG

    def test_refuses_overwrite(self, tmp_path: Path) -> None:
        write_default_config(tmp_path)
        with pytest.raises(FileExistsError):
            write_default_config(tmp_path)
