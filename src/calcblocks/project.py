"""Project-level configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

CONFIG_FILENAME = "calcblocks.yaml"

DEFAULT_CHART_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

DEFAULT_CONFIG = {
    "locale": "de-DE",
    "currency": "EUR",
    "max_formula_length": 2000,
    "max_nesting_depth": 256,
    "chart_before_fallback": 1000,
    "chart_after_fallback": 2500,
    "chart_labels": DEFAULT_CHART_LABELS,
    "logging_enabled": True,
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
    "logging_max_bytes": None,
}


def _flatten_formatting_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``formatting:`` block into flat config keys.

    Supports::

        formatting:
          locale: en-US
          currency: USD

    Maps to ``locale`` and ``currency``.  Flat keys win when both are set.
    """
    fmt = user_config.pop("formatting", None)
    if not isinstance(fmt, dict):
        return user_config
    for key in ("locale", "currency"):
        if key in fmt:
            user_config.setdefault(key, fmt[key])
    return user_config


def load_project_config(project_dir: Path) -> dict[str, Any]:
    """Load project configuration from ``calcblocks.yaml``, with defaults.

    Args:
        project_dir: Directory holding the config file.

    Returns:
        Merged configuration dict.

    Raises:
        ValueError: If the file exists but is not a YAML mapping.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = project_dir / CONFIG_FILENAME
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        user_config = _flatten_formatting_block(user_config)
        config.update(user_config)
    return config


class Settings(BaseModel):
    """Typed view of the configuration used by sessions and the CLI."""

    locale: str = DEFAULT_CONFIG["locale"]
    currency: str = DEFAULT_CONFIG["currency"]
    max_formula_length: int = DEFAULT_CONFIG["max_formula_length"]
    max_nesting_depth: int = DEFAULT_CONFIG["max_nesting_depth"]
    chart_before_fallback: float = DEFAULT_CONFIG["chart_before_fallback"]
    chart_after_fallback: float = DEFAULT_CONFIG["chart_after_fallback"]
    chart_labels: list[str] = Field(default_factory=lambda: list(DEFAULT_CHART_LABELS))

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Settings:
        return cls(**{k: v for k, v in config.items() if k in cls.model_fields})


def load_settings(project_dir: Path | None = None) -> Settings:
    """Settings for *project_dir*, or the defaults when no directory is given."""
    if project_dir is None:
        return Settings()
    return Settings.from_config(load_project_config(project_dir))


def write_default_config(project_dir: Path) -> Path:
    """Write a ``calcblocks.yaml`` with the defaults.

    Raises:
        FileExistsError: If the config file already exists.
    """
    config_path = project_dir / CONFIG_FILENAME
    if config_path.exists():
        raise FileExistsError(f"{config_path} already exists")
    project_dir.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.dump(DEFAULT_CONFIG, sort_keys=False))
    return config_path
