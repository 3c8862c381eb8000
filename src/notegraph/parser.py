"""WikiLink, tag, heading, block, callout and YAML-frontmatter parser.

Every function here is pure and total: malformed markup degrades to "no
match" instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

import yaml

from notegraph.note import Block, Heading
from notegraph.tasks import TaskSummary, extract_tasks

# [[Target]] or [[Target|Alias]]
_WIKILINK_RE = re.compile(r"\[\[([^\]|]+)(?:\|[^\]]*)?\]\]")
# Inline #tags (not inside code-spans, URLs or headings)
_TAG_RE = re.compile(r"(?<![`\w/#&])#([\w/-]+)")
# YAML front-matter block
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(?:(.*?)\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_TITLE_RE = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)
_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+)$")
_BLOCK_RE = re.compile(r"\s?\^([A-Za-z0-9_-]+)\s*$")
_CALLOUT_RE = re.compile(
    r"^>[ \t]*\[!(\w+)\](?:[ \t]+([^\n]+))?[ \t]*(?:\n|\Z)((?:>[^\n]*(?:\n|\Z))*)",
    re.MULTILINE,
)
_EXTERNAL_LINK_RE = re.compile(r"\[([^\]]*)\]\((https?://[^)\s]+)\)")
_EMBED_IMAGE_RE = re.compile(r"!\[\[([^\]|]+\.(?:png|jpe?g|gif|webp|svg))(?:\|[^\]]*)?\]\]", re.IGNORECASE)
_MD_IMAGE_RE = re.compile(r"!\[[^\]]*\]\(([^)\s]+\.(?:png|jpe?g|gif|webp|svg))\)", re.IGNORECASE)

#: Callout types shown as card previews
CARD_CALLOUT_TYPES = ("summary", "tldr", "abstract", "note", "info")
_BLOCK_PREVIEW_CHARS = 100


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Callout:
    type: str
    title: str
    content: str


@dataclass(frozen=True)
class ExternalLink:
    url: str
    text: str
    line: int


@dataclass(frozen=True)
class ImageRef:
    file_name: str
    line: int


@dataclass
class ParsedContent:
    """Everything :func:`parse_content` extracts from one note."""

    links: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    blocks: list[Block] = field(default_factory=list)
    tasks: TaskSummary = field(default_factory=TaskSummary)
    external_links: list[ExternalLink] = field(default_factory=list)
    first_image: ImageRef | None = None
    first_card_callout: Callout | None = None
    frontmatter: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Front-matter
# ---------------------------------------------------------------------------


def _jsonable(value: Any) -> Any:
    """Coerce YAML scalars (dates, times, …) into JSON-safe values."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (date, time)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split YAML front-matter from body text.

    Returns ``(metadata_dict, body)``; ``metadata_dict`` is empty when there
    is no front-matter block or it is not a valid YAML mapping.
    """
    match = _FRONTMATTER_RE.match(content)
    if not match:
        return {}, content
    try:
        meta = yaml.safe_load(match.group(1) or "") or {}
    except yaml.YAMLError:
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return _jsonable(meta), content[match.end() :]


def frontmatter_tags(frontmatter: dict[str, Any]) -> list[str]:
    """Return ``tags`` from front-matter as a list of strings."""
    raw = frontmatter.get("tags")
    if not raw:
        return []
    if isinstance(raw, str):
        items: list[Any] = raw.split(",")
    elif isinstance(raw, list):
        items = raw
    else:
        items = [raw]
    tags = [str(t).strip().strip("\"'").lstrip("#") for t in items if t is not None]
    return [t for t in tags if t]


# ---------------------------------------------------------------------------
# Inline references
# ---------------------------------------------------------------------------


def parse_wikilinks(text: str) -> list[str]:
    """Return all ``[[WikiLink]]`` targets found in *text* (de-duped, ordered)."""
    seen: set[str] = set()
    result: list[str] = []
    for m in _WIKILINK_RE.finditer(text):
        target = m.group(1).strip()
        if target and target not in seen:
            seen.add(target)
            result.append(target)
    return result


def parse_inline_tags(text: str) -> list[str]:
    """Return all ``#tag`` values found in *text* (de-duped, ordered)."""
    seen: set[str] = set()
    result: list[str] = []
    for m in _TAG_RE.finditer(text):
        tag = m.group(1)
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def parse_tags(content: str) -> list[str]:
    """Front-matter tags followed by inline body tags, de-duplicated."""
    meta, body = parse_frontmatter(content)
    return list(dict.fromkeys(frontmatter_tags(meta) + parse_inline_tags(body)))


def parse_headings(content: str) -> list[Heading]:
    headings: list[Heading] = []
    for line_no, line in enumerate(content.split("\n"), start=1):
        m = _HEADING_RE.match(line)
        if m:
            headings.append(Heading(level=len(m.group(1)), text=m.group(2).strip(), line=line_no))
    return headings


def parse_blocks(content: str) -> list[Block]:
    """Return every line ending in a ``^block-id`` anchor."""
    blocks: list[Block] = []
    for line_no, line in enumerate(content.split("\n"), start=1):
        m = _BLOCK_RE.search(line)
        if m:
            text = line[: m.start()].strip()[:_BLOCK_PREVIEW_CHARS]
            blocks.append(Block(id=m.group(1), line=line_no, content=text))
    return blocks


def parse_callouts(content: str) -> list[Callout]:
    """Return the card-preview callouts (``> [!summary] …``) in *content*.

    Callouts whose type is not in :data:`CARD_CALLOUT_TYPES` are skipped.
    """
    callouts: list[Callout] = []
    for m in _CALLOUT_RE.finditer(content):
        kind = m.group(1).lower()
        if kind not in CARD_CALLOUT_TYPES:
            continue
        lines = [re.sub(r"^>\s?", "", line).strip() for line in m.group(3).split("\n")]
        callouts.append(
            Callout(
                type=kind,
                title=(m.group(2) or "").strip() or kind.capitalize(),
                content=" ".join(line for line in lines if line),
            )
        )
    return callouts


def parse_external_links(content: str) -> list[ExternalLink]:
    links: list[ExternalLink] = []
    for line_no, line in enumerate(content.split("\n"), start=1):
        for m in _EXTERNAL_LINK_RE.finditer(line):
            links.append(ExternalLink(url=m.group(2), text=m.group(1) or "Link", line=line_no))
    return links


def parse_first_image(content: str) -> ImageRef | None:
    for line_no, line in enumerate(content.split("\n"), start=1):
        m = _EMBED_IMAGE_RE.search(line) or _MD_IMAGE_RE.search(line)
        if m:
            return ImageRef(file_name=m.group(1), line=line_no)
    return None


def extract_title(content: str, filename: str) -> str:
    """First ``# H1`` in *content*, else *filename* without its note suffix."""
    m = _TITLE_RE.search(content)
    if m and m.group(1).strip():
        return m.group(1).strip()
    name = filename.rsplit("/", 1)[-1]
    for suffix in (".pdf.md", ".md"):
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return name


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_content(content: str, *, now: datetime | None = None) -> ParsedContent:
    """Extract every typed reference from a note's raw text."""
    frontmatter, body = parse_frontmatter(content)
    callouts = parse_callouts(content)
    return ParsedContent(
        links=parse_wikilinks(content),
        tags=list(dict.fromkeys(frontmatter_tags(frontmatter) + parse_inline_tags(body))),
        headings=parse_headings(content),
        blocks=parse_blocks(content),
        tasks=extract_tasks(content, now=now),
        external_links=parse_external_links(content),
        first_image=parse_first_image(content),
        first_card_callout=callouts[0] if callouts else None,
        frontmatter=frontmatter,
    )
