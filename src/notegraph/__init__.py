"""notegraph: note graph engine for markdown vaults."""

from notegraph.backlinks import link_edges, reindex
from notegraph.cache import CacheEntry, NotesCache
from notegraph.config import GraphConfig
from notegraph.db import NoteTable
from notegraph.engine import GraphEngine, LoadReport, UnknownNoteError
from notegraph.layout import LayoutEdge, LayoutNode, LayoutOptions, compute_layout
from notegraph.note import Block, Heading, Note, TaskStats
from notegraph.parser import extract_title, parse_content, parse_tags, parse_wikilinks
from notegraph.resolver import LinkTable, find_anchor, resolve_anchor, resolve_link
from notegraph.source import FileStat, LocalVaultSource, VaultSource
from notegraph.tasks import extract_tasks, vault_task_stats

__all__ = [
    "Note",
    "Heading",
    "Block",
    "TaskStats",
    "GraphEngine",
    "LoadReport",
    "UnknownNoteError",
    "GraphConfig",
    "parse_content",
    "parse_wikilinks",
    "parse_tags",
    "extract_title",
    "extract_tasks",
    "vault_task_stats",
    "LinkTable",
    "resolve_link",
    "find_anchor",
    "resolve_anchor",
    "link_edges",
    "reindex",
    "CacheEntry",
    "NotesCache",
    "FileStat",
    "VaultSource",
    "LocalVaultSource",
    "LayoutNode",
    "LayoutEdge",
    "LayoutOptions",
    "compute_layout",
    "NoteTable",
]
