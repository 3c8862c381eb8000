"""Link resolution: map a raw ``[[reference]]`` to the note it denotes.

Matching priority (first tier that matches wins):

1. binary-document references (``[[paper.pdf]]``) match the companion note
   whose ``source_pdf`` has the same file name, then the same full path;
2. note title;
3. note path without extension (``folder/note``);
4. bare file name without extension (``note``).

A reference is first looked up as written, so titles such as ``C# Basics``
resolve to their note. Only when that misses is the text after ``#`` taken
as a heading or block anchor and dropped from the lookup key.

All comparisons are case-insensitive. There is no fuzzy or substring
fallback: an unresolved reference is a normal state (the target note may
simply not exist yet).

:class:`LinkTable` is shared by :func:`resolve_link` and the batch backlink
pass in :mod:`notegraph.backlinks`, so both apply the exact same policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from notegraph.note import Block, Heading, Note

#: Extensions of non-note documents that take part in the graph via companions
BINARY_DOCUMENT_EXTENSIONS = (".pdf",)


def split_anchor(raw_ref: str) -> tuple[str, str | None]:
    """Split ``Target#Heading`` / ``Target#^block`` into ``(target, anchor)``."""
    target, sep, anchor = raw_ref.partition("#")
    return target.strip(), (anchor.strip() or None) if sep else None


def _basename(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def is_document_reference(ref: str) -> bool:
    return ref.lower().endswith(BINARY_DOCUMENT_EXTENSIONS)


class LinkTable:
    """Normalised lookup keys → note, one dictionary per matching tier.

    Building the table is O(n); each lookup is O(1). When two notes register
    the same key within a tier, the one registered last wins.
    """

    def __init__(self, notes: Iterable["Note"] = ()) -> None:
        self.by_document_name: dict[str, "Note"] = {}
        self.by_document_path: dict[str, "Note"] = {}
        self.by_title: dict[str, "Note"] = {}
        self.by_path: dict[str, "Note"] = {}
        self.by_filename: dict[str, "Note"] = {}
        for note in notes:
            self.register(note)

    def register(self, note: "Note") -> None:
        if note.source_pdf:
            self.by_document_name[_basename(note.source_pdf).lower()] = note
            self.by_document_path[note.source_pdf.lower()] = note
        self.by_title[note.title.lower()] = note
        self.by_path[note.path_without_extension.lower()] = note
        self.by_filename[note.stem.lower()] = note

    def lookup(self, raw_ref: str) -> "Note | None":
        return self.locate(raw_ref)[0]

    def locate(self, raw_ref: str) -> tuple["Note | None", str | None]:
        """Return the matching note and the anchor left over, if any."""
        whole = self._match(raw_ref.strip().lower())
        if whole is not None:
            return whole, None
        if "#" not in raw_ref:
            return None, None
        target, anchor = split_anchor(raw_ref)
        return self._match(target.lower()), anchor

    def _match(self, key: str) -> "Note | None":
        if not key:
            return None
        if is_document_reference(key):
            match = self.by_document_name.get(_basename(key)) or self.by_document_path.get(key)
            if match is not None:
                return match
        for tier in (self.by_title, self.by_path, self.by_filename):
            match = tier.get(key)
            if match is not None:
                return match
        return None


def resolve_link(raw_ref: str, notes: Iterable["Note"]) -> "Note | None":
    """Return the note *raw_ref* points at, or ``None`` when nothing matches."""
    return LinkTable(notes).lookup(raw_ref)


def resolve_anchor(raw_ref: str, note: "Note") -> "Heading | Block | None":
    """Resolve the ``#Heading`` or ``#^block`` part of *raw_ref* inside *note*."""
    _target, anchor = split_anchor(raw_ref)
    return find_anchor(note, anchor)


def find_anchor(note: "Note", anchor: str | None) -> "Heading | Block | None":
    """Find a heading (``Setup``) or block (``^abc``) anchor inside *note*."""
    if not anchor:
        return None
    if anchor.startswith("^"):
        block_id = anchor[1:]
        return next((b for b in note.blocks if b.id == block_id), None)
    wanted = anchor.lower()
    return next((h for h in note.headings if h.text.lower() == wanted), None)
