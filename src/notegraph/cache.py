"""On-disk cache of parsed note metadata, keyed by modification time.

Cache file layout (``<vault>/.notegraph/notes-cache.json``)::

    {
      "version": 1,
      "vaultPath": "/abs/path/to/vault",
      "notes": {
        "folder/note.md": { "id": ..., "title": ..., "mtime": ..., ... }
      }
    }

An entry is valid for a file iff the stored ``mtime`` equals the file's
current mtime. A file whose ``version`` or ``vaultPath`` does not match is
treated as no cache at all.

The file is always rewritten whole (temp file + atomic rename), never
patched, so an interrupted save leaves the previous cache intact.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from notegraph.note import Block, Heading, Note, TaskStats

logger = logging.getLogger(__name__)

CACHE_VERSION = 1


def _vault_key(vault_path: Path | str) -> str:
    return str(Path(vault_path).resolve())


@dataclass
class CacheEntry:
    """Derived metadata of one note file, stamped with its mtime."""

    id: str
    path: str
    title: str
    mtime: int
    outgoing_links: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    blocks: list[Block] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)
    source_pdf: str | None = None
    task_stats: TaskStats = field(default_factory=TaskStats)
    created_at: float = 0.0
    modified_at: float = 0.0
    version: int = CACHE_VERSION

    @classmethod
    def from_note(cls, note: Note, mtime: int) -> "CacheEntry":
        return cls(
            id=note.id,
            path=note.path,
            title=note.title,
            mtime=mtime,
            outgoing_links=list(note.outgoing_links),
            tags=list(note.tags),
            headings=list(note.headings),
            blocks=list(note.blocks),
            frontmatter=note.frontmatter,
            source_pdf=note.source_pdf,
            task_stats=note.task_stats,
            created_at=note.created_at,
            modified_at=note.modified_at,
        )

    def to_note(self) -> Note:
        """Rebuild a :class:`Note` without content (loaded lazily later)."""
        return Note(
            id=self.id,
            path=self.path,
            title=self.title,
            content=None,
            outgoing_links=list(self.outgoing_links),
            tags=list(self.tags),
            headings=list(self.headings),
            blocks=list(self.blocks),
            frontmatter=self.frontmatter,
            source_pdf=self.source_pdf,
            task_stats=self.task_stats,
            created_at=self.created_at,
            modified_at=self.modified_at,
        )

    def is_valid_for(self, mtime: int) -> bool:
        return self.version == CACHE_VERSION and self.mtime == mtime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "title": self.title,
            "mtime": self.mtime,
            "outgoingLinks": list(self.outgoing_links),
            "tags": list(self.tags),
            "headings": [h.to_dict() for h in self.headings],
            "blocks": [b.to_dict() for b in self.blocks],
            "frontmatter": self.frontmatter,
            "sourcePdf": self.source_pdf,
            "taskStats": self.task_stats.to_dict(),
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        return cls(
            id=data["id"],
            path=data["path"],
            title=data["title"],
            mtime=int(data["mtime"]),
            outgoing_links=list(data.get("outgoingLinks", [])),
            tags=list(data.get("tags", [])),
            headings=[Heading(**h) for h in data.get("headings", [])],
            blocks=[Block(**b) for b in data.get("blocks", [])],
            frontmatter=dict(data.get("frontmatter") or {}),
            source_pdf=data.get("sourcePdf"),
            task_stats=TaskStats.from_dict(data.get("taskStats") or {}),
            created_at=float(data.get("createdAt", 0.0)),
            modified_at=float(data.get("modifiedAt", 0.0)),
            version=int(data.get("version", CACHE_VERSION)),
        )


class NotesCache:
    """Reads and writes the metadata cache file of one vault."""

    def __init__(self, cache_path: Path | str) -> None:
        self.cache_path = Path(cache_path)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load_sync(self, vault_path: Path | str) -> dict[str, CacheEntry] | None:
        try:
            raw = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No notes cache at %s, starting cold", self.cache_path)
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable notes cache %s: %s", self.cache_path, exc)
            return None

        if not isinstance(raw, dict) or raw.get("version") != CACHE_VERSION:
            logger.info("Notes cache version mismatch, ignoring %s", self.cache_path)
            return None
        if raw.get("vaultPath") != _vault_key(vault_path):
            logger.info("Notes cache belongs to another vault, ignoring %s", self.cache_path)
            return None

        try:
            entries = {
                path: CacheEntry.from_dict(data) for path, data in (raw.get("notes") or {}).items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Corrupt notes cache %s: %s", self.cache_path, exc)
            return None
        logger.debug("Loaded %d cached notes from %s", len(entries), self.cache_path)
        return entries

    async def load(self, vault_path: Path | str) -> dict[str, CacheEntry] | None:
        """Return the cached entries keyed by relative path, or ``None``."""
        return await asyncio.to_thread(self.load_sync, vault_path)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_sync(self, vault_path: Path | str, entries: Mapping[str, CacheEntry]) -> bool:
        payload = {
            "version": CACHE_VERSION,
            "vaultPath": _vault_key(vault_path),
            "notes": {path: entry.to_dict() for path, entry in sorted(entries.items())},
        }
        tmp_name: str | None = None
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".notes-cache-", suffix=".tmp", dir=self.cache_path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False)
            os.replace(tmp_name, self.cache_path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save notes cache %s: %s", self.cache_path, exc)
            if tmp_name:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            return False
        logger.debug("Saved %d notes to %s", len(entries), self.cache_path)
        return True

    async def save(self, vault_path: Path | str, entries: Mapping[str, CacheEntry]) -> bool:
        """Persist *entries*; failures are logged and reported as ``False``."""
        return await asyncio.to_thread(self.save_sync, vault_path, dict(entries))
