"""GraphEngine: the note graph of one open vault.

The engine owns the note collection, its backlink index and the metadata
cache. The note list is never patched in place: every mutation builds a new
list and recomputes ``incoming_links`` for all notes, so callers should always
read :attr:`GraphEngine.notes` again after a mutation instead of holding on to
an old list.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Mapping

from notegraph.backlinks import link_edges, reindex
from notegraph.cache import CacheEntry, NotesCache
from notegraph.config import GraphConfig
from notegraph.db import NoteTable
from notegraph.layout import LayoutEdge, LayoutNode, LayoutOptions, Position, compute_layout
from notegraph.note import Block, Heading, Note, normalise_path, note_id_for_path
from notegraph.parser import extract_title, parse_content
from notegraph.resolver import LinkTable, find_anchor
from notegraph.source import FileStat, LocalVaultSource, VaultSource
from notegraph.tasks import VaultTaskStats, vault_task_stats

logger = logging.getLogger(__name__)


class UnknownNoteError(KeyError):
    """Raised when an operation names a note id that is not in the vault."""


@dataclass(frozen=True)
class LoadReport:
    from_cache: int = 0
    parsed: int = 0
    unreadable: int = 0

    @property
    def total(self) -> int:
        return self.from_cache + self.parsed + self.unreadable


class GraphEngine:
    """Loads, indexes and mutates the notes of a single vault."""

    def __init__(
        self,
        vault_dir: Path | str,
        *,
        config: GraphConfig | None = None,
        source: VaultSource | None = None,
        cache: NotesCache | None = None,
    ) -> None:
        self.vault_dir = Path(vault_dir)
        self.config = config or GraphConfig.load(self.vault_dir)
        self.source: VaultSource = source or LocalVaultSource(self.vault_dir, self.config)
        self.cache = cache or NotesCache(self.config.cache_path(self.vault_dir))
        self.last_load = LoadReport()
        self._notes: list[Note] = []
        self._by_id: dict[str, Note] = {}
        self._links = LinkTable()
        self._entries: dict[str, CacheEntry] = {}
        self._save_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def notes(self) -> list[Note]:
        return self._notes

    @property
    def cache_entries(self) -> dict[str, CacheEntry]:
        return dict(self._entries)

    def _publish(self, notes: list[Note]) -> None:
        """Swap the note list, id index and link table together."""
        self._notes = notes
        self._by_id = {note.id: note for note in notes}
        self._links = LinkTable(notes)

    def _replace_notes(self, notes: Iterable[Note]) -> None:
        self._publish(reindex(list(notes)))

    def get(self, note_id: str) -> Note:
        try:
            return self._by_id[note_id]
        except KeyError:
            raise UnknownNoteError(note_id) from None

    def get_by_path(self, path: str) -> Note | None:
        return self._by_id.get(note_id_for_path(path))

    # ------------------------------------------------------------------
    # Note construction
    # ------------------------------------------------------------------

    def _companion_source(self, path: str, frontmatter: Mapping[str, Any]) -> str | None:
        """``folder/paper.pdf`` for a ``folder/paper.pdf.md`` companion note."""
        if not self.config.companions or not path.lower().endswith(".pdf.md"):
            return None
        source = frontmatter.get("source")
        if not isinstance(source, str) or not source.strip():
            return None
        folder = str(PurePosixPath(path).parent)
        source = normalise_path(source.strip())
        return source if folder == "." else f"{folder}/{source}"

    def build_note(self, path: str, content: str, stat: FileStat | None = None) -> Note:
        """Parse *content* into a fresh :class:`Note` (``incoming_links`` empty)."""
        path = normalise_path(path)
        parsed = parse_content(content)
        now = time.time()
        return Note(
            id=note_id_for_path(path),
            path=path,
            title=extract_title(content, PurePosixPath(path).name),
            content=content,
            outgoing_links=parsed.links,
            tags=parsed.tags,
            headings=parsed.headings,
            blocks=parsed.blocks,
            frontmatter=parsed.frontmatter,
            source_pdf=self._companion_source(path, parsed.frontmatter),
            task_stats=parsed.tasks.stats(),
            created_at=stat.created_at if stat else now,
            modified_at=stat.modified_at if stat else now,
        )

    @staticmethod
    def _bare_note(stat: FileStat) -> Note:
        """Placeholder for a file whose content could not be read."""
        return Note(
            id=note_id_for_path(stat.path),
            path=stat.path,
            title=extract_title("", PurePosixPath(stat.path).name),
            created_at=stat.created_at,
            modified_at=stat.modified_at,
        )

    # ------------------------------------------------------------------
    # Vault load / cache reconciliation
    # ------------------------------------------------------------------

    async def load(self) -> list[Note]:
        """(Re-)load the vault, parsing only files whose mtime changed.

        The returned list is complete: it is only published once every file
        has been restored from the cache or parsed. The cache is then saved
        in the background.
        """
        await self.flush()
        started = time.perf_counter()
        files, cached = await asyncio.gather(
            self.source.list_files(), self.cache.load(self.vault_dir)
        )
        cached = cached or {}

        stale = [f for f in files if not (f.path in cached and cached[f.path].is_valid_for(f.mtime))]
        contents = await self.source.read_many([f.path for f in stale]) if stale else {}

        notes: list[Note] = []
        entries: dict[str, CacheEntry] = {}
        from_cache = parsed = unreadable = 0
        for stat in files:
            entry = cached.get(stat.path)
            if entry is not None and entry.is_valid_for(stat.mtime):
                entries[stat.path] = entry
                notes.append(entry.to_note())
                from_cache += 1
                continue
            content = contents.get(stat.path)
            if content is None:
                notes.append(self._bare_note(stat))
                unreadable += 1
                continue
            note = self.build_note(stat.path, content, stat)
            entries[stat.path] = CacheEntry.from_note(note, stat.mtime)
            notes.append(note)
            parsed += 1

        self._entries = entries
        self._replace_notes(notes)
        self.last_load = LoadReport(from_cache=from_cache, parsed=parsed, unreadable=unreadable)
        logger.info(
            "Loaded %d notes from %s (%d cached, %d parsed, %d unreadable) in %.0f ms",
            len(notes), self.vault_dir, from_cache, parsed, unreadable,
            (time.perf_counter() - started) * 1000,
        )
        self.schedule_save()
        return self._notes

    async def save_cache(self) -> bool:
        """Write the current cache entries; failures are logged, not raised."""
        return await self.cache.save(self.vault_dir, self._entries)

    def schedule_save(self) -> None:
        """Save the cache in the background without blocking the caller.

        Saves started from the same loop run one after another in call order,
        so the file on disk always ends up with the latest entries.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; cache save deferred to save_cache()")
            return
        previous = self._save_task
        if previous is not None and (previous.done() or previous.get_loop() is not loop):
            previous = None
        self._save_task = loop.create_task(self._save_after(previous))

    async def _save_after(self, previous: asyncio.Task | None) -> bool:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        return await self.save_cache()

    async def flush(self) -> None:
        """Wait for background cache saves started from the current loop."""
        task = self._save_task
        if task is None:
            return
        if task.get_loop() is not asyncio.get_running_loop():
            self._save_task = None
            return
        await task

    async def load_content(self, note_id: str) -> str | None:
        """Return the note's content, reading it from disk on first use."""
        note = self.get(note_id)
        if note.content is not None:
            return note.content
        content = await self.source.read(note.path)
        if content is None:
            return None
        self._publish([replace(n, content=content) if n.id == note_id else n for n in self._notes])
        return content

    # ------------------------------------------------------------------
    # Mutations (each one replaces the whole note list)
    # ------------------------------------------------------------------

    def add_note(self, path: str, content: str, stat: FileStat | None = None) -> Note:
        """Add the note at *path*, replacing any note already stored there."""
        note = self.build_note(path, content, stat)
        if note.id in self._by_id:
            notes = [note if n.id == note.id else n for n in self._notes]
        else:
            notes = [*self._notes, note]
        if stat is not None:
            self._entries[note.path] = CacheEntry.from_note(note, stat.mtime)
        else:
            self._entries.pop(note.path, None)
        self._replace_notes(notes)
        return self._by_id[note.id]

    def update_content(self, note_id: str, content: str) -> Note:
        """Re-parse *note_id* from new *content* (e.g. after an edit)."""
        old = self.get(note_id)
        note = replace(self.build_note(old.path, content), created_at=old.created_at)
        self._entries.pop(old.path, None)
        self._replace_notes(note if n.id == note_id else n for n in self._notes)
        return self._by_id[note_id]

    def remove_note(self, note_id: str) -> None:
        old = self.get(note_id)
        self._entries.pop(old.path, None)
        self._replace_notes(n for n in self._notes if n.id != note_id)

    def rename_note(self, note_id: str, new_path: str) -> Note:
        """Move *note_id* to *new_path*; its id changes with the path."""
        old = self.get(note_id)
        new_path = normalise_path(new_path)
        new_id = note_id_for_path(new_path)
        if new_id != note_id and new_id in self._by_id:
            raise ValueError(f"A note already exists at {new_path}")

        new_name = PurePosixPath(new_path).name
        if old.content is not None:
            title = extract_title(old.content, new_name)
        elif old.title == extract_title("", old.filename):
            title = extract_title("", new_name)
        else:
            title = old.title
        renamed = replace(
            old,
            id=new_id,
            path=new_path,
            title=title,
            source_pdf=self._companion_source(new_path, old.frontmatter),
        )
        self._entries.pop(old.path, None)
        self._replace_notes(renamed if n.id == note_id else n for n in self._notes)
        return self._by_id[new_id]

    async def refresh_file(self, path: str) -> Note | None:
        """Re-read one file after a create/change event."""
        path = normalise_path(path)
        stat = await self.source.stat(path)
        if stat is None:
            self.forget_file(path)
            return None
        content = await self.source.read(path)
        if content is None:
            logger.warning("Could not refresh %s; keeping previous state", path)
            return self.get_by_path(path)
        note = self.add_note(path, content, stat)
        self.schedule_save()
        return note

    def forget_file(self, path: str) -> None:
        """Drop the note for a deleted file, if any."""
        note = self.get_by_path(path)
        if note is not None:
            self.remove_note(note.id)
        self._entries.pop(normalise_path(path), None)
        self.schedule_save()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve(self, raw_ref: str) -> Note | None:
        return self._links.lookup(raw_ref)

    def resolve_anchor(self, raw_ref: str) -> Heading | Block | None:
        note, anchor = self._links.locate(raw_ref)
        return find_anchor(note, anchor) if note is not None else None

    def backlinks(self, note_id: str) -> list[Note]:
        """Notes that link to *note_id*."""
        return [self._by_id[s] for s in self.get(note_id).incoming_links]

    def outgoing(self, note_id: str) -> list[Note]:
        """Resolved link targets of *note_id*; unresolved references are skipped."""
        targets: dict[str, Note] = {}
        for link in self.get(note_id).outgoing_links:
            target = self._links.lookup(link)
            if target is not None and target.id != note_id:
                targets.setdefault(target.id, target)
        return list(targets.values())

    def unresolved_links(self, note_id: str) -> list[str]:
        return [link for link in self.get(note_id).outgoing_links if self._links.lookup(link) is None]

    def edges(self) -> list[tuple[str, str]]:
        """Return ``(source_id, target_id)`` pairs for every resolved link."""
        return link_edges(self._notes, self._links)

    def tags(self) -> dict[str, list[str]]:
        """Map each tag to the ids of the notes carrying it."""
        index: dict[str, list[str]] = {}
        for note in self._notes:
            for tag in note.tags:
                index.setdefault(tag, []).append(note.id)
        return index

    def notes_with_tag(self, tag: str) -> list[Note]:
        return [n for n in self._notes if tag in n.tags]

    def task_stats(self) -> VaultTaskStats:
        return vault_task_stats(self._notes)

    def table(self) -> NoteTable:
        """DuckDB query table over the current note metadata."""
        return NoteTable(self._notes, edges=self.edges())

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def layout_nodes(
        self,
        note_ids: Iterable[str] | None = None,
        geometry: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> list[LayoutNode]:
        """Build layout input for *note_ids* (default: every note).

        *geometry* carries canvas state per note id: ``x``, ``y``, ``width``,
        ``height``, ``pinned``, ``color``, ``root``.
        """
        geometry = geometry or {}
        ids = list(note_ids) if note_ids is not None else [n.id for n in self._notes]
        degree: dict[str, int] = {}
        for source, target in self.edges():
            degree[source] = degree.get(source, 0) + 1
            degree[target] = degree.get(target, 0) + 1

        nodes: list[LayoutNode] = []
        for note_id in ids:
            note = self.get(note_id)
            geo = geometry.get(note_id, {})
            nodes.append(
                LayoutNode(
                    id=note_id,
                    x=float(geo.get("x", 0.0)),
                    y=float(geo.get("y", 0.0)),
                    width=float(geo.get("width", 240.0)),
                    height=float(geo.get("height", 140.0)),
                    pinned=bool(geo.get("pinned", False)),
                    title=note.title,
                    tags=tuple(note.tags),
                    folder=note.folder,
                    color=geo.get("color"),
                    degree=degree.get(note_id, 0),
                    root=bool(geo.get("root", False)),
                )
            )
        return nodes

    def layout(
        self,
        algorithm: str,
        note_ids: Iterable[str] | None = None,
        *,
        geometry: Mapping[str, Mapping[str, Any]] | None = None,
        options: LayoutOptions | None = None,
    ) -> dict[str, Position]:
        """Arrange *note_ids* (default: all notes) with *algorithm*."""
        nodes = self.layout_nodes(note_ids, geometry)
        selected = {node.id for node in nodes}
        edges = [
            LayoutEdge(source, target)
            for source, target in self.edges()
            if source in selected and target in selected
        ]
        return compute_layout(algorithm, nodes, edges, options)
