"""Backlink index: who links *to* each note.

:func:`reindex` recomputes every note's ``incoming_links`` from scratch in a
single O(notes + links) pass. It is called after every mutation of the note
set; nothing ever patches ``incoming_links`` in place.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, Sequence

from notegraph.resolver import LinkTable

if TYPE_CHECKING:
    from notegraph.note import Note


def link_edges(notes: Sequence["Note"], table: LinkTable | None = None) -> list[tuple[str, str]]:
    """Return resolved ``(source_id, target_id)`` pairs, without self links.

    Several links between the same pair collapse into one edge.
    """
    table = table or LinkTable(notes)
    seen: set[tuple[str, str]] = set()
    edges: list[tuple[str, str]] = []
    for note in notes:
        for link in note.outgoing_links:
            target = table.lookup(link)
            if target is None or target.id == note.id:
                continue
            edge = (note.id, target.id)
            if edge not in seen:
                seen.add(edge)
                edges.append(edge)
    return edges


def backlink_map(notes: Sequence["Note"]) -> dict[str, list[str]]:
    """Map every note id to the ids of the notes linking to it."""
    incoming: dict[str, list[str]] = {note.id: [] for note in notes}
    for source, target in link_edges(notes):
        incoming.setdefault(target, []).append(source)
    return incoming


def reindex(notes: Sequence["Note"]) -> list["Note"]:
    """Return new notes with ``incoming_links`` fully recomputed.

    The input notes are never mutated.
    """
    incoming = backlink_map(notes)
    return [replace(note, incoming_links=incoming.get(note.id, [])) for note in notes]
