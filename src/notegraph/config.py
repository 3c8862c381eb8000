"""Per-vault configuration.

Settings are read from an optional TOML file inside the vault's cache
directory::

    # <vault>/.notegraph/config.toml
    [notegraph]
    cache_file = "notes-cache.json"
    companions = true
    exclude = ["templates", "archive"]

Environment variables (all optional; direct kwargs take precedence) are read
through :class:`EnvSettings`:
    NOTEGRAPH_CACHE_DIR    – name of the cache directory inside the vault
    NOTEGRAPH_CACHE_FILE   – cache file name inside the cache directory
    NOTEGRAPH_COMPANIONS   – boolean; ``0``/``false``/``off`` disables PDF companions
    NOTEGRAPH_SKIP_HIDDEN  – boolean; whether dot-folders are skipped

A value that does not parse (``NOTEGRAPH_COMPANIONS=flase``) raises a
``ValidationError``, which is a ``ValueError``.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.toml"


class EnvSettings(BaseSettings):
    """``NOTEGRAPH_*`` environment overrides; unset variables stay ``None``."""

    cache_dir: str | None = None
    cache_file: str | None = None
    companions: bool | None = None
    skip_hidden: bool | None = None

    model_config = SettingsConfigDict(
        env_prefix="NOTEGRAPH_",
        env_ignore_empty=True,
        extra="ignore",
    )


@dataclass
class GraphConfig:
    cache_dir: str = ".notegraph"
    cache_file: str = "notes-cache.json"
    note_suffix: str = ".md"
    #: Treat ``*.pdf.md`` notes with a ``source:`` key as PDF companions
    companions: bool = True
    skip_hidden: bool = True
    #: Vault-relative folders that are never scanned
    exclude: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GraphConfig":
        section = data.get("notegraph", data)
        known = {f.name for f in fields(cls)}
        unknown = set(section) - known
        if unknown:
            raise ValueError(f"Unknown notegraph setting(s): {', '.join(sorted(unknown))}")
        values = dict(section)
        if "exclude" in values:
            if not isinstance(values["exclude"], list):
                raise ValueError("'exclude' must be a list of folder names")
            values["exclude"] = [str(v).strip("/") for v in values["exclude"]]
        return cls(**values)

    @classmethod
    def load(cls, vault_dir: Path | str, **overrides: Any) -> "GraphConfig":
        """Build the configuration for *vault_dir*.

        Precedence: keyword overrides, then environment, then the vault's
        ``config.toml``, then defaults.
        """
        env = EnvSettings()
        cache_dir = overrides.get("cache_dir") or env.cache_dir or cls.cache_dir
        config_path = Path(vault_dir) / cache_dir / CONFIG_FILE_NAME

        data: dict[str, Any] = {}
        if config_path.is_file():
            with open(config_path, "rb") as fh:
                data = tomllib.load(fh)
            logger.debug("Loaded notegraph config from %s", config_path)
        config = cls.from_dict(data)

        for key, value in env.model_dump(exclude_none=True).items():
            setattr(config, key, value)

        for key, value in overrides.items():
            if not hasattr(config, key):
                raise ValueError(f"Unknown notegraph setting: {key}")
            setattr(config, key, value)
        return config

    def cache_path(self, vault_dir: Path | str) -> Path:
        return Path(vault_dir) / self.cache_dir / self.cache_file

    def is_excluded(self, rel_path: str) -> bool:
        parts = rel_path.split("/")
        if self.skip_hidden and any(part.startswith(".") for part in parts):
            return True
        return any(rel_path == folder or rel_path.startswith(folder + "/") for folder in self.exclude)
