"""NoteTable: SQL view over the note graph's metadata.

Uses DuckDB (in-memory) as a query engine over note metadata, frontmatter
properties and the resolved link graph. Results come back as :mod:`polars`
DataFrames.

Usage::

    with engine.table() as table:
        df = table.query("SELECT id, title FROM notes WHERE 'python' = ANY(tags)")
        open_tasks = table.table_view(filter_tag="project", order_by="tasks_open DESC")
        board = table.kanban_view(group_by="status")
        lonely = table.orphans()

Tables:

``notes``
    ``id, path, title, folder, tags, outgoing, incoming, backlinks,
    frontmatter (JSON), source_pdf, tasks_total, tasks_completed,
    tasks_critical, tasks_overdue, tasks_open, created_at, modified_at``
``links``
    ``source, target`` (resolved ids, one row per edge)
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Iterable, Sequence

import duckdb
import polars as pl

if TYPE_CHECKING:
    from notegraph.note import Note


class NoteTable:
    """In-memory DuckDB database over a snapshot of the note list."""

    def __init__(
        self, notes: Sequence["Note"], edges: Iterable[tuple[str, str]] | None = None
    ) -> None:
        self.conn: duckdb.DuckDBPyConnection = duckdb.connect(":memory:")
        self.refresh(notes, edges)

    # ------------------------------------------------------------------
    # Build / refresh
    # ------------------------------------------------------------------

    def refresh(
        self, notes: Sequence["Note"], edges: Iterable[tuple[str, str]] | None = None
    ) -> None:
        """(Re-)populate both tables from *notes* and their resolved *edges*.

        Without explicit *edges* the links table is derived from each note's
        ``incoming_links``.
        """
        self._create_schema()
        self._load_notes(notes)
        if edges is None:
            edges = [(source, note.id) for note in notes for source in note.incoming_links]
        rows = list(edges)
        if rows:
            self.conn.executemany("INSERT INTO links VALUES (?, ?)", rows)

    def _create_schema(self) -> None:
        self.conn.execute("""
            CREATE OR REPLACE TABLE notes (
                id              VARCHAR PRIMARY KEY,
                path            VARCHAR,
                title           VARCHAR,
                folder          VARCHAR,
                tags            VARCHAR[],
                outgoing        VARCHAR[],
                incoming        VARCHAR[],
                backlinks       INTEGER,
                frontmatter     JSON,
                source_pdf      VARCHAR,
                tasks_total     INTEGER,
                tasks_completed INTEGER,
                tasks_critical  INTEGER,
                tasks_overdue   INTEGER,
                tasks_open      INTEGER,
                created_at      DOUBLE,
                modified_at     DOUBLE
            )
        """)
        self.conn.execute("""
            CREATE OR REPLACE TABLE links (
                source VARCHAR,
                target VARCHAR
            )
        """)

    def _load_notes(self, notes: Sequence["Note"]) -> None:
        rows = [
            (
                note.id,
                note.path,
                note.title,
                note.folder,
                list(note.tags),
                list(note.outgoing_links),
                list(note.incoming_links),
                len(note.incoming_links),
                json.dumps(note.frontmatter),
                note.source_pdf,
                note.task_stats.total,
                note.task_stats.completed,
                note.task_stats.critical,
                note.task_stats.overdue,
                note.task_stats.total - note.task_stats.completed,
                note.created_at,
                note.modified_at,
            )
            for note in notes
        ]
        if rows:
            placeholders = ",".join("?" * 17)
            self.conn.executemany(f"INSERT OR REPLACE INTO notes VALUES ({placeholders})", rows)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] | None = None) -> pl.DataFrame:
        """Run a raw SQL query and return a Polars DataFrame."""
        return self.conn.execute(sql, params or []).pl()

    # ------------------------------------------------------------------
    # Pre-built views
    # ------------------------------------------------------------------

    def table_view(
        self,
        *,
        filter_tag: str | None = None,
        folder: str | None = None,
        search: str | None = None,
        columns: list[str] | None = None,
        order_by: str = "title",
    ) -> pl.DataFrame:
        """Return notes as a Polars DataFrame, optionally filtered.

        Parameters
        ----------
        filter_tag:
            Only include notes that carry this tag.
        folder:
            Only include notes directly inside this folder (``""`` = root).
        search:
            Case-insensitive substring filter on the title.
        columns:
            Which columns to include. Defaults to ``id, title, tags, folder``.
        order_by:
            Column name to sort by.
        """
        cols = ", ".join(columns) if columns else "id, title, tags, folder"
        where_clauses: list[str] = []
        params: list[Any] = []

        if filter_tag:
            where_clauses.append("list_contains(tags, ?::VARCHAR)")
            params.append(filter_tag)
        if folder is not None:
            where_clauses.append("folder = ?")
            params.append(folder)
        if search:
            where_clauses.append("title ILIKE ?")
            params.append(f"%{search}%")

        where = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        safe_order = order_by.replace(";", "").replace("'", "")
        sql = f"SELECT {cols} FROM notes {where} ORDER BY {safe_order}, id"
        return self.conn.execute(sql, params).pl()

    def kanban_view(self, group_by: str = "status") -> dict[str, list[dict[str, Any]]]:
        """Group notes by a frontmatter property for a kanban-style view.

        Notes without the property are grouped under ``"(none)"``.
        """
        safe_key = group_by.replace("'", "").replace(";", "")
        df = self.conn.execute(
            f"""
            SELECT
                id, title, tags,
                COALESCE(
                    json_extract_string(frontmatter, '$.{safe_key}'),
                    '(none)'
                ) AS group_val
            FROM notes
            ORDER BY group_val, title, id
            """
        ).pl()

        groups: dict[str, list[dict[str, Any]]] = {}
        for row in df.to_dicts():
            gv = str(row.pop("group_val"))
            groups.setdefault(gv, []).append(row)
        return groups

    def tag_counts(self) -> pl.DataFrame:
        """Return a tag → count table sorted by frequency."""
        return self.conn.execute(
            """
            SELECT tag, COUNT(*) AS note_count
            FROM (SELECT unnest(tags) AS tag FROM notes)
            GROUP BY tag
            ORDER BY note_count DESC, tag
            """
        ).pl()

    def orphans(self) -> list[str]:
        """Ids of notes with neither resolved outgoing nor incoming links."""
        rows = self.conn.execute(
            """
            SELECT id FROM notes
            WHERE id NOT IN (SELECT source FROM links)
              AND id NOT IN (SELECT target FROM links)
            ORDER BY id
            """
        ).fetchall()
        return [r[0] for r in rows]

    def most_linked(self, limit: int = 10) -> pl.DataFrame:
        """Notes ordered by backlink count."""
        return self.conn.execute(
            f"""
            SELECT target AS id, COUNT(*) AS backlinks
            FROM links
            GROUP BY target
            ORDER BY backlinks DESC, id
            LIMIT {int(limit)}
            """
        ).pl()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def frontmatter_keys(self) -> list[str]:
        """Return all frontmatter property names present across all notes."""
        rows = self.conn.execute(
            "SELECT DISTINCT unnest(json_keys(frontmatter)) AS k FROM notes ORDER BY k"
        ).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "NoteTable":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
