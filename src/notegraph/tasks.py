"""Checkbox task detection and task statistics.

Every GitHub-style checkbox item in a note body becomes a trackable task.

Supported patterns (matched line-by-line)
-----------------------------------------
- ``- [ ] Call dentist``                       : open task
- ``* [x] Call dentist``                       : completed task (``x`` or ``X``)
- ``- [ ] Call dentist (@[[2030-01-01]] 09:00)``: task with a due date
- ``- [ ] Call dentist (@[[2030-01-01]])``      : due at midnight

A task is *critical* when its text carries one of the urgency markers
(``#critical``, ``#urgent``, ``@urgent``, ``!!``, ``[!]``, …) and *overdue*
when it is still open and its due date lies strictly before ``now``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from notegraph.note import TaskStats

if TYPE_CHECKING:
    from notegraph.note import Note

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

# Markdown task item: "- [ ] text" or "* [x] text"
_TASK_RE = re.compile(r"^\s*[-*]\s*\[([ xX])\]\s*(.+)$")
# Reminder suffix: (@[[YYYY-MM-DD]] HH:MM) or (@[[YYYY-MM-DD]])
_DUE_RE = re.compile(r"\(@\[\[(\d{4}-\d{2}-\d{2})\]\](?:\s*(\d{1,2}:\d{2}))?\)")

_CRITICAL_PATTERNS = (
    re.compile(r"#critical", re.IGNORECASE),
    re.compile(r"#kritisch", re.IGNORECASE),
    re.compile(r"#urgent", re.IGNORECASE),
    re.compile(r"#dringend", re.IGNORECASE),
    re.compile(r"@critical", re.IGNORECASE),
    re.compile(r"@urgent", re.IGNORECASE),
    re.compile(r"@dringend", re.IGNORECASE),
    re.compile(r"!{2,}"),
    re.compile(r"\[!\]"),
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class Task:
    text: str          # task text with checkbox and due-date marker removed
    completed: bool
    line: int          # 1-based line number
    due_date: datetime | None = None
    is_overdue: bool = False
    is_critical: bool = False

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "completed": self.completed,
            "line": self.line,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_overdue": self.is_overdue,
            "is_critical": self.is_critical,
        }


@dataclass
class TaskSummary:
    tasks: list[Task] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def completed(self) -> int:
        return sum(1 for t in self.tasks if t.completed)

    @property
    def pending(self) -> list[Task]:
        return [t for t in self.tasks if not t.completed]

    @property
    def critical(self) -> int:
        """Critical tasks that are still open."""
        return sum(1 for t in self.pending if t.is_critical)

    @property
    def overdue(self) -> int:
        return sum(1 for t in self.pending if t.is_overdue)

    @property
    def has_overdue(self) -> bool:
        return self.overdue > 0

    @property
    def next_due(self) -> datetime | None:
        """Earliest due date among open tasks."""
        dates = [t.due_date for t in self.pending if t.due_date is not None]
        return min(dates) if dates else None

    def stats(self) -> TaskStats:
        return TaskStats(
            total=self.total,
            completed=self.completed,
            critical=self.critical,
            overdue=self.overdue,
        )


@dataclass(frozen=True)
class VaultTaskStats:
    total: int = 0
    completed: int = 0
    critical: int = 0
    overdue: int = 0

    @property
    def open(self) -> int:
        return self.total - self.completed

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "open": self.open,
            "critical": self.critical,
            "overdue": self.overdue,
        }


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


def parse_due_date(text: str) -> datetime | None:
    """Return the due date encoded in *text*, or ``None``."""
    m = _DUE_RE.search(text)
    if not m:
        return None
    try:
        year, month, day = (int(part) for part in m.group(1).split("-"))
        hours, minutes = 0, 0
        if m.group(2):
            hours, minutes = (int(part) for part in m.group(2).split(":"))
        return datetime(year, month, day, hours, minutes)
    except ValueError:
        # e.g. 2030-02-30 or 25:00
        return None


def is_critical(text: str) -> bool:
    return any(p.search(text) for p in _CRITICAL_PATTERNS)


def extract_tasks(content: str, *, now: datetime | None = None) -> TaskSummary:
    """Scan *content* for checkbox items and return a :class:`TaskSummary`."""
    now = now or datetime.now()
    summary = TaskSummary()
    for line_no, line in enumerate(content.split("\n"), start=1):
        m = _TASK_RE.match(line)
        if not m:
            continue
        completed = m.group(1).lower() == "x"
        full_text = m.group(2)
        due = parse_due_date(full_text)
        summary.tasks.append(
            Task(
                text=_DUE_RE.sub("", full_text).strip(),
                completed=completed,
                line=line_no,
                due_date=due,
                is_overdue=due is not None and not completed and due < now,
                is_critical=is_critical(full_text),
            )
        )
    return summary


def task_stats_for(content: str, *, now: datetime | None = None) -> TaskStats:
    """Task counts stored in the cache so dashboards never re-parse content."""
    return extract_tasks(content, now=now).stats()


def vault_task_stats(notes: Iterable["Note"], *, now: datetime | None = None) -> VaultTaskStats:
    """Aggregate task counts over *notes*.

    Cached ``task_stats`` are preferred; notes whose stats are empty but whose
    content is loaded are parsed on the fly.
    """
    total = completed = critical = overdue = 0
    for note in notes:
        stats = note.task_stats
        if stats.total == 0 and note.content:
            stats = task_stats_for(note.content, now=now)
        total += stats.total
        completed += stats.completed
        critical += stats.critical
        overdue += stats.overdue
    return VaultTaskStats(total=total, completed=completed, critical=critical, overdue=overdue)
