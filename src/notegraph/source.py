"""File-system collaborators consumed by the graph engine.

:class:`VaultSource` is the narrow interface the engine needs: file listing
with modification times, a batch content reader, and a single-file
reader/writer. Every method is a coroutine and may fail per path without
failing the whole call. :class:`LocalVaultSource` implements it over a local
directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from notegraph.config import GraphConfig
from notegraph.note import normalise_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    path: str           # vault-relative, POSIX separators
    mtime: int          # nanoseconds; cache validity key
    created_at: float   # epoch seconds
    modified_at: float  # epoch seconds


@runtime_checkable
class VaultSource(Protocol):
    """Common interface shared by all vault back ends."""

    async def list_files(self) -> list[FileStat]:
        """Return every note file with its current modification time."""
        ...

    async def stat(self, path: str) -> FileStat | None:
        """Stat a single note file, or ``None`` when it is gone."""
        ...

    async def read_many(self, paths: Sequence[str]) -> dict[str, str | None]:
        """Read several files; unreadable paths map to ``None``."""
        ...

    async def read(self, path: str) -> str | None:
        ...

    async def write(self, path: str, content: str) -> None:
        ...


def _stat_result(rel_path: str, st: os.stat_result) -> FileStat:
    created = getattr(st, "st_birthtime", None) or st.st_ctime
    return FileStat(path=rel_path, mtime=st.st_mtime_ns, created_at=created, modified_at=st.st_mtime)


class LocalVaultSource:
    """:class:`VaultSource` over a directory on the local file system."""

    def __init__(self, root: Path | str, config: GraphConfig | None = None) -> None:
        self.root = Path(root)
        self.config = config or GraphConfig()

    def _full(self, rel_path: str) -> Path:
        return self.root / normalise_path(rel_path)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _scan(self) -> list[FileStat]:
        files: list[FileStat] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = normalise_path(os.path.relpath(dirpath, self.root))
            rel_dir = "" if rel_dir == "." else rel_dir
            dirnames[:] = sorted(
                d for d in dirnames if not self.config.is_excluded(f"{rel_dir}/{d}" if rel_dir else d)
            )
            for name in sorted(filenames):
                if not name.endswith(self.config.note_suffix):
                    continue
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                if self.config.is_excluded(rel_path):
                    continue
                try:
                    st = os.stat(os.path.join(dirpath, name))
                except OSError:
                    # deleted between listing and stat
                    logger.debug("Skipping %s: stat failed", rel_path)
                    continue
                files.append(_stat_result(rel_path, st))
        return files

    async def list_files(self) -> list[FileStat]:
        return await asyncio.to_thread(self._scan)

    async def stat(self, path: str) -> FileStat | None:
        try:
            st = await asyncio.to_thread(os.stat, self._full(path))
        except OSError:
            return None
        return _stat_result(normalise_path(path), st)

    # ------------------------------------------------------------------
    # Reading / writing
    # ------------------------------------------------------------------

    def _read_one(self, path: str) -> str | None:
        try:
            return self._full(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return None

    def _read_batch(self, paths: Sequence[str]) -> dict[str, str | None]:
        return {path: self._read_one(path) for path in paths}

    async def read_many(self, paths: Sequence[str]) -> dict[str, str | None]:
        return await asyncio.to_thread(self._read_batch, list(paths))

    async def read(self, path: str) -> str | None:
        return await asyncio.to_thread(self._read_one, path)

    def _write_one(self, path: str, content: str) -> None:
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content, encoding="utf-8")

    async def write(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write_one, path, content)
