"""Core Note dataclass and its anchor types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath
from typing import Any


def normalise_path(path: str) -> str:
    """Return *path* as a vault-relative POSIX path (``a/b.md``)."""
    cleaned = str(path).replace("\\", "/").strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def note_id_for_path(path: str) -> str:
    """Stable identifier for the note at *path*: the normalised path itself."""
    return normalise_path(path)


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    line: int  # 1-based

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Block:
    id: str
    line: int  # 1-based
    content: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TaskStats:
    """Cached per-note task counts."""

    total: int = 0
    completed: int = 0
    critical: int = 0
    overdue: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskStats":
        return cls(
            total=int(data.get("total", 0)),
            completed=int(data.get("completed", 0)),
            critical=int(data.get("critical", 0)),
            overdue=int(data.get("overdue", 0)),
        )


@dataclass
class Note:
    """A single markdown note in the vault."""

    id: str
    path: str
    title: str
    #: Raw markdown; ``None`` until loaded when restored from the cache
    content: str | None = None
    #: Raw ``[[WikiLink]]`` targets, de-duplicated, in order of appearance
    outgoing_links: list[str] = field(default_factory=list)
    #: Ids of notes linking here. Derived by :func:`notegraph.backlinks.reindex`
    incoming_links: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    blocks: list[Block] = field(default_factory=list)
    frontmatter: dict[str, Any] = field(default_factory=dict)
    #: Vault-relative path of the PDF this note is the companion of
    source_pdf: str | None = None
    task_stats: TaskStats = field(default_factory=TaskStats)
    created_at: float = 0.0
    modified_at: float = 0.0

    @property
    def filename(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def stem(self) -> str:
        """Filename without its final extension."""
        name = self.filename
        return name.rsplit(".", 1)[0] if "." in name else name

    @property
    def path_without_extension(self) -> str:
        parent = str(PurePosixPath(self.path).parent)
        return self.stem if parent == "." else f"{parent}/{self.stem}"

    @property
    def folder(self) -> str:
        parent = str(PurePosixPath(self.path).parent)
        return "" if parent == "." else parent

    @property
    def is_loaded(self) -> bool:
        return self.content is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "title": self.title,
            "outgoing_links": list(self.outgoing_links),
            "incoming_links": list(self.incoming_links),
            "tags": list(self.tags),
            "headings": [h.to_dict() for h in self.headings],
            "blocks": [b.to_dict() for b in self.blocks],
            "frontmatter": self.frontmatter,
            "source_pdf": self.source_pdf,
            "task_stats": self.task_stats.to_dict(),
            "created_at": self.created_at,
            "modified_at": self.modified_at,
        }
