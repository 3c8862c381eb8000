"""Unit tests for notegraph.resolver."""

from notegraph.note import Block, Heading, Note
from notegraph.resolver import LinkTable, find_anchor, resolve_anchor, resolve_link, split_anchor


def _note(path: str, title: str, **kwargs) -> Note:
    return Note(id=path, path=path, title=title, **kwargs)


class TestSplitAnchor:
    def test_plain(self):
        assert split_anchor("Note") == ("Note", None)

    def test_heading(self):
        assert split_anchor("Note#Setup") == ("Note", "Setup")

    def test_block(self):
        assert split_anchor("Note#^abc") == ("Note", "^abc")

    def test_trailing_hash(self):
        assert split_anchor("Note#") == ("Note", None)


class TestResolveLink:
    def test_two_note_vault(self):
        a = _note("A.md", "A", outgoing_links=["B"])
        b = _note("B.md", "B")
        assert resolve_link("B", [a, b]) is b

    def test_title_match_is_case_insensitive(self):
        note = _note("notes/meeting-2024.md", "Weekly Meeting")
        assert resolve_link("weekly meeting", [note]) is note

    def test_path_without_extension(self):
        note = _note("projects/alpha.md", "Project Alpha")
        assert resolve_link("projects/alpha", [note]) is note

    def test_bare_filename(self):
        note = _note("projects/alpha.md", "Project Alpha")
        assert resolve_link("Alpha", [note]) is note

    def test_title_beats_filename(self):
        by_title = _note("x.md", "alpha")
        by_filename = _note("alpha.md", "Something Else")
        assert resolve_link("alpha", [by_filename, by_title]) is by_title

    def test_last_registered_wins_within_a_tier(self):
        first = _note("one.md", "Duplicate")
        second = _note("two.md", "Duplicate")
        assert resolve_link("Duplicate", [first, second]) is second

    def test_anchor_is_ignored_for_lookup(self):
        note = _note("guide.md", "Guide")
        assert resolve_link("Guide#Setup", [note]) is note

    def test_hash_in_title_matches_before_anchor(self):
        csharp = _note("csharp.md", "C# Basics")
        c = _note("C.md", "C")
        assert resolve_link("C# Basics", [csharp, c]) is csharp
        assert resolve_link("c# basics", [c, csharp]) is csharp
        assert resolve_link("C#Intro", [csharp, c]) is c

    def test_pdf_reference_finds_companion(self):
        companion = _note("papers/attention.pdf.md", "Attention", source_pdf="papers/attention.pdf")
        other = _note("other.md", "Other")
        assert resolve_link("attention.pdf", [companion, other]) is companion
        assert resolve_link("papers/attention.pdf", [companion, other]) is companion

    def test_unresolved_returns_none(self):
        assert resolve_link("Missing", [_note("a.md", "A")]) is None

    def test_empty_reference(self):
        assert resolve_link("", [_note("a.md", "A")]) is None
        assert resolve_link("#only-anchor", [_note("a.md", "A")]) is None

    def test_no_substring_fallback(self):
        assert resolve_link("Alp", [_note("alpha.md", "Alpha")]) is None


class TestLinkTable:
    def test_lookup_matches_resolve_link(self):
        notes = [_note("a.md", "Alpha"), _note("dir/b.md", "Beta")]
        table = LinkTable(notes)
        for ref in ("Alpha", "dir/b", "b", "nope"):
            assert table.lookup(ref) is resolve_link(ref, notes)


    def test_locate_keeps_anchor_only_when_it_was_stripped(self):
        csharp = _note("csharp.md", "C# Basics")
        guide = _note("guide.md", "Guide")
        table = LinkTable([csharp, guide])
        assert table.locate("C# Basics") == (csharp, None)
        assert table.locate("Guide#Setup") == (guide, "Setup")
        assert table.locate("Nowhere") == (None, None)


class TestResolveAnchor:
    def test_heading(self):
        heading = Heading(level=2, text="Setup", line=4)
        note = _note("guide.md", "Guide", headings=[heading])
        assert resolve_anchor("Guide#setup", note) == heading

    def test_block(self):
        block = Block(id="abc", line=7, content="claim")
        note = _note("guide.md", "Guide", blocks=[block])
        assert resolve_anchor("Guide#^abc", note) == block

    def test_missing_anchor(self):
        note = _note("guide.md", "Guide")
        assert resolve_anchor("Guide#Nowhere", note) is None
        assert resolve_anchor("Guide", note) is None

    def test_find_anchor(self):
        heading = Heading(level=1, text="Intro", line=1)
        note = _note("guide.md", "Guide", headings=[heading])
        assert find_anchor(note, "intro") == heading
        assert find_anchor(note, None) is None
