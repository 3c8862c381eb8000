"""Unit tests for notegraph.engine.GraphEngine."""

import asyncio
import os
import textwrap
from pathlib import Path

import pytest

import notegraph.engine as engine_module
from notegraph.cache import NotesCache
from notegraph.config import GraphConfig
from notegraph.engine import GraphEngine, UnknownNoteError
from notegraph.resolver import LinkTable

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _write_note(directory: Path, name: str, content: str) -> Path:
    path = directory / f"{name}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


def _load(engine: GraphEngine):
    async def run():
        notes = await engine.load()
        await engine.flush()
        return notes

    return asyncio.run(run())


def _bump_mtime(path: Path) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))


def _assert_symmetric(engine: GraphEngine) -> None:
    table = LinkTable(engine.notes)
    for target in engine.notes:
        expected = set()
        for source in engine.notes:
            hits = {h.id for h in map(table.lookup, source.outgoing_links) if h is not None}
            if source.id != target.id and target.id in hits:
                expected.add(source.id)
        assert set(target.incoming_links) == expected


@pytest.fixture()
def vault_dir(tmp_path: Path) -> Path:
    _write_note(tmp_path, "A", """\
        # A

        [[B]]
    """)
    _write_note(tmp_path, "B", """\
        ---
        tags: [project]
        created: 2024-01-05
        ---
        # B

        - [ ] Call dentist (@[[2030-01-01]] 09:00)
        - [x] Book flights #urgent
        ## Details
        Key fact ^fact
    """)
    _write_note(tmp_path, "notes/C", """\
        No heading here. #project #idea
        Links to [[A]] and [[Missing]].
    """)
    return tmp_path


@pytest.fixture()
def engine(vault_dir: Path) -> GraphEngine:
    eng = GraphEngine(vault_dir, config=GraphConfig())
    _load(eng)
    return eng


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    def test_all_notes_loaded(self, engine: GraphEngine):
        assert [n.id for n in engine.notes] == ["A.md", "B.md", "notes/C.md"]

    def test_titles(self, engine: GraphEngine):
        assert engine.get("A.md").title == "A"
        assert engine.get("notes/C.md").title == "C"

    def test_backlinks(self, engine: GraphEngine):
        assert engine.get("A.md").incoming_links == ["notes/C.md"]
        assert engine.get("B.md").incoming_links == ["A.md"]
        assert engine.get("notes/C.md").incoming_links == []

    def test_task_stats(self, engine: GraphEngine):
        stats = engine.get("B.md").task_stats
        assert stats.total == 2
        assert stats.completed == 1
        assert stats.overdue == 0

    def test_report_counts_parsed_files(self, engine: GraphEngine):
        assert engine.last_load.parsed == 3
        assert engine.last_load.from_cache == 0

    def test_cache_file_written(self, engine: GraphEngine, vault_dir: Path):
        assert (vault_dir / ".notegraph" / "notes-cache.json").is_file()
        assert set(engine.cache_entries) == {"A.md", "B.md", "notes/C.md"}

    def test_hidden_directories_are_skipped(self, vault_dir: Path):
        _write_note(vault_dir, ".trash/old", "# Old")
        eng = GraphEngine(vault_dir, config=GraphConfig())
        _load(eng)
        assert eng.get_by_path(".trash/old.md") is None


class TestCacheReuse:
    def test_unchanged_files_are_not_parsed(self, engine: GraphEngine, vault_dir: Path, monkeypatch):
        calls: list[str] = []
        real_parse = engine_module.parse_content

        def spy(content, **kwargs):
            calls.append(content)
            return real_parse(content, **kwargs)

        monkeypatch.setattr(engine_module, "parse_content", spy)
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)

        assert calls == []
        assert second.last_load.from_cache == 3
        assert [n.to_dict() for n in second.notes] == [n.to_dict() for n in engine.notes]
        assert all(n.content is None for n in second.notes)

    def test_changed_file_is_reparsed(self, engine: GraphEngine, vault_dir: Path):
        path = _write_note(vault_dir, "B", "# B renamed heading\n\n[[A]]\n")
        _bump_mtime(path)
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)

        assert second.last_load.parsed == 1
        assert second.last_load.from_cache == 2
        assert second.get("B.md").title == "B renamed heading"
        assert "B.md" in second.get("A.md").incoming_links

    def test_deleted_file_disappears(self, engine: GraphEngine, vault_dir: Path):
        (vault_dir / "notes" / "C.md").unlink()
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)
        assert [n.id for n in second.notes] == ["A.md", "B.md"]
        assert second.get("A.md").incoming_links == []

    def test_lazy_content(self, engine: GraphEngine, vault_dir: Path):
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)
        content = asyncio.run(second.load_content("A.md"))
        assert content == "# A\n\n[[B]]\n"
        assert second.get("A.md").is_loaded

    def test_loaded_content_is_visible_through_resolve(self, engine: GraphEngine, vault_dir: Path):
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)
        asyncio.run(second.load_content("A.md"))
        assert second.resolve("A") is second.get("A.md")
        assert second.resolve("A").content == "# A\n\n[[B]]\n"
        assert [n.id for n in second.outgoing("notes/C.md")] == ["A.md"]
        assert second.outgoing("notes/C.md")[0].is_loaded

    def test_touched_file_is_reparsed_and_mtime_updated(self, engine: GraphEngine, vault_dir: Path):
        path = vault_dir / "B.md"
        _bump_mtime(path)
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)

        assert second.last_load.parsed == 1
        assert second.last_load.from_cache == 2
        assert second.cache_entries["B.md"].mtime == path.stat().st_mtime_ns
        assert second.get("B.md").title == "B"

        third = GraphEngine(vault_dir, config=GraphConfig())
        _load(third)
        assert third.last_load.from_cache == 3


class _SlowFirstSaveCache(NotesCache):
    def __init__(self, cache_path: Path) -> None:
        super().__init__(cache_path)
        self.events: list[str] = []

    async def save(self, vault_path, entries) -> bool:
        number = len(self.events) // 2 + 1
        self.events.append(f"start {number}")
        await asyncio.sleep(0.05 if number == 1 else 0)
        self.events.append(f"end {number}")
        return True


class TestBackgroundSaves:
    def test_saves_run_in_call_order(self, vault_dir: Path):
        cache = _SlowFirstSaveCache(vault_dir / ".notegraph" / "notes-cache.json")
        eng = GraphEngine(vault_dir, config=GraphConfig(), cache=cache)

        async def run():
            eng.schedule_save()
            eng.schedule_save()
            await eng.flush()

        asyncio.run(run())
        assert cache.events == ["start 1", "end 1", "start 2", "end 2"]

    def test_latest_entries_reach_disk(self, engine: GraphEngine, vault_dir: Path):
        _write_note(vault_dir, "D", "# D\n")
        _write_note(vault_dir, "E", "# E\n")

        async def run():
            await engine.refresh_file("D.md")
            await engine.refresh_file("E.md")
            await engine.flush()

        asyncio.run(run())
        stored = engine.cache.load_sync(vault_dir)
        assert {"D.md", "E.md"} <= set(stored)

    def test_schedule_without_loop_is_a_no_op(self, engine: GraphEngine):
        engine.schedule_save()
        asyncio.run(engine.flush())


class TestUnreadableFiles:
    def test_unreadable_file_becomes_bare_note(self, vault_dir: Path):
        (vault_dir / "broken.md").write_bytes(b"\xff\xfe\x00 not utf-8 \xc3")
        eng = GraphEngine(vault_dir, config=GraphConfig())
        _load(eng)

        note = eng.get("broken.md")
        assert note.title == "broken"
        assert note.content is None
        assert note.outgoing_links == []
        assert eng.last_load.unreadable == 1
        assert "broken.md" not in eng.cache_entries


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestMutations:
    def test_add_note(self, engine: GraphEngine):
        engine.add_note("D.md", "# D\n[[B]] and [[A]]")
        assert engine.get("B.md").incoming_links == ["A.md", "D.md"]
        assert "D.md" in engine.get("A.md").incoming_links
        _assert_symmetric(engine)

    def test_add_note_replaces_existing_path(self, engine: GraphEngine):
        engine.add_note("A.md", "# A\nno links")
        assert [n.id for n in engine.notes].count("A.md") == 1
        assert engine.get("B.md").incoming_links == []

    def test_update_content(self, engine: GraphEngine):
        engine.update_content("notes/C.md", "now links [[B]]")
        assert engine.get("A.md").incoming_links == []
        assert engine.get("B.md").incoming_links == ["A.md", "notes/C.md"]
        _assert_symmetric(engine)

    def test_remove_note(self, engine: GraphEngine):
        engine.remove_note("B.md")
        assert engine.get_by_path("B.md") is None
        assert engine.unresolved_links("A.md") == ["B"]
        _assert_symmetric(engine)

    def test_rename_keeps_backlinks_when_title_matches(self, engine: GraphEngine):
        renamed = engine.rename_note("B.md", "archive/B-old.md")
        assert renamed.id == "archive/B-old.md"
        assert renamed.title == "B"
        assert renamed.incoming_links == ["A.md"]
        with pytest.raises(UnknownNoteError):
            engine.get("B.md")

    def test_rename_untitled_note_updates_title(self, engine: GraphEngine):
        renamed = engine.rename_note("notes/C.md", "notes/Zeta.md")
        assert renamed.title == "Zeta"
        # C's link to A still counts
        assert engine.get("A.md").incoming_links == ["notes/Zeta.md"]

    def test_rename_cached_note_without_content(self, engine: GraphEngine, vault_dir: Path):
        second = GraphEngine(vault_dir, config=GraphConfig())
        _load(second)
        renamed = second.rename_note("notes/C.md", "notes/Omega.md")
        assert renamed.title == "Omega"
        assert renamed.content is None

    def test_rename_onto_existing_note_fails(self, engine: GraphEngine):
        with pytest.raises(ValueError):
            engine.rename_note("A.md", "B.md")

    def test_unknown_id(self, engine: GraphEngine):
        with pytest.raises(UnknownNoteError):
            engine.update_content("nope.md", "x")
        with pytest.raises(KeyError):
            engine.remove_note("nope.md")

    def test_mutation_chain_keeps_index_symmetric(self, engine: GraphEngine):
        engine.add_note("D.md", "[[notes/C]] [[A]]")
        engine.rename_note("A.md", "moved/A.md")
        engine.update_content("B.md", "[[D]] [[C]]")
        engine.remove_note("notes/C.md")
        engine.add_note("notes/C.md", "# C\n[[B]]")
        _assert_symmetric(engine)
        assert engine.get("D.md").incoming_links == ["B.md"]


class TestFileEvents:
    def test_refresh_new_file(self, engine: GraphEngine, vault_dir: Path):
        _write_note(vault_dir, "E", "# E\nsee [[A]]")
        note = asyncio.run(engine.refresh_file("E.md"))
        assert note is not None
        assert "E.md" in engine.get("A.md").incoming_links
        assert "E.md" in engine.cache_entries

    def test_refresh_deleted_file_forgets_it(self, engine: GraphEngine, vault_dir: Path):
        (vault_dir / "A.md").unlink()
        assert asyncio.run(engine.refresh_file("A.md")) is None
        assert engine.get_by_path("A.md") is None
        assert "A.md" not in engine.cache_entries

    def test_forget_file(self, engine: GraphEngine):
        engine.forget_file("notes/C.md")
        assert engine.get("A.md").incoming_links == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_resolve(self, engine: GraphEngine):
        assert engine.resolve("b").id == "B.md"
        assert engine.resolve("notes/C").id == "notes/C.md"
        assert engine.resolve("Missing") is None

    def test_hash_in_title_resolves_whole(self, engine: GraphEngine):
        note = engine.add_note("csharp.md", "# C# Basics\n\n## Setup\n")
        assert engine.resolve("C# Basics") is note
        assert engine.resolve_anchor("C# Basics") is None
        assert engine.resolve_anchor("csharp#Setup").text == "Setup"

    def test_resolve_anchor(self, engine: GraphEngine):
        assert engine.resolve_anchor("B#details").text == "Details"
        assert engine.resolve_anchor("B#^fact").content == "Key fact"

    def test_backlinks_and_outgoing(self, engine: GraphEngine):
        assert [n.id for n in engine.backlinks("B.md")] == ["A.md"]
        assert [n.id for n in engine.outgoing("notes/C.md")] == ["A.md"]
        assert engine.unresolved_links("notes/C.md") == ["Missing"]

    def test_edges(self, engine: GraphEngine):
        assert engine.edges() == [("A.md", "B.md"), ("notes/C.md", "A.md")]

    def test_tags(self, engine: GraphEngine):
        tags = engine.tags()
        assert tags["project"] == ["B.md", "notes/C.md"]
        assert [n.id for n in engine.notes_with_tag("idea")] == ["notes/C.md"]

    def test_vault_task_stats(self, engine: GraphEngine):
        stats = engine.task_stats()
        assert stats.total == 2
        assert stats.open == 1

    def test_frontmatter_is_json_safe(self, engine: GraphEngine):
        assert engine.get("B.md").frontmatter["created"] == "2024-01-05"


class TestCompanions:
    def test_pdf_companion_links(self, vault_dir: Path):
        _write_note(vault_dir, "papers/attention.pdf", """\
            ---
            source: attention.pdf
            ---
            Notes on the paper.
        """)
        _write_note(vault_dir, "reading", "Read [[attention.pdf]]")
        eng = GraphEngine(vault_dir, config=GraphConfig())
        _load(eng)

        companion = eng.get("papers/attention.pdf.md")
        assert companion.source_pdf == "papers/attention.pdf"
        assert companion.title == "attention"
        assert companion.incoming_links == ["reading.md"]

    def test_companions_disabled(self, vault_dir: Path):
        _write_note(vault_dir, "papers/attention.pdf", "---\nsource: attention.pdf\n---\n")
        eng = GraphEngine(vault_dir, config=GraphConfig(companions=False))
        _load(eng)
        assert eng.get("papers/attention.pdf.md").source_pdf is None


# ---------------------------------------------------------------------------
# Layout and table
# ---------------------------------------------------------------------------


class TestLayoutAndTable:
    def test_layout_covers_requested_notes(self, engine: GraphEngine):
        positions = engine.layout("hierarchical")
        assert set(positions) == {"A.md", "B.md", "notes/C.md"}
        # C -> A -> B
        assert positions["notes/C.md"][1] < positions["A.md"][1] < positions["B.md"][1]

    def test_layout_subset_keeps_pinned(self, engine: GraphEngine):
        positions = engine.layout(
            "grid",
            ["A.md", "B.md"],
            geometry={"A.md": {"x": 999, "y": 7, "pinned": True}},
        )
        assert positions["A.md"] == (999.0, 7.0)
        assert set(positions) == {"A.md", "B.md"}

    def test_unknown_algorithm(self, engine: GraphEngine):
        with pytest.raises(ValueError):
            engine.layout("spiral")

    def test_table(self, engine: GraphEngine):
        with engine.table() as table:
            df = table.query("SELECT id FROM notes ORDER BY id")
            assert df["id"].to_list() == ["A.md", "B.md", "notes/C.md"]
            assert table.orphans() == []
