"""Injectable store for the analysis history shown in the dashboard."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Protocol

from defectfit.config import MAX_HISTORY_ENTRIES
from defectfit.logging import get_logger

log = get_logger(__name__, component="history")


@dataclass(frozen=True)
class HistoryEntry:
    source: str
    record_count: int
    total_items: int
    total_defects: int
    best_distribution: Optional[str] = None
    hypothesis_accepted: Optional[bool] = None
    significance_level: Optional[float] = None
    file_name: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True)
class HistoryFilter:
    source: Optional[str] = None
    best_distribution: Optional[str] = None
    hypothesis_accepted: Optional[bool] = None
    since: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, entry: HistoryEntry) -> bool:
        if self.source is not None and entry.source != self.source:
            return False
        if self.best_distribution is not None and entry.best_distribution != self.best_distribution:
            return False
        if self.hypothesis_accepted is not None and entry.hypothesis_accepted != self.hypothesis_accepted:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        return True


class HistoryStore(Protocol):
    def record(self, entry: HistoryEntry) -> None: ...

    def query(self, filter: Optional[HistoryFilter] = None) -> List[HistoryEntry]: ...


def entry_from_analysis(records, result, source: str = "analysis_completed", file_name: Optional[str] = None) -> HistoryEntry:
    """Summarise one completed analysis for the history."""
    return HistoryEntry(
        source=source,
        record_count=len(records),
        total_items=sum(r.total for r in records),
        total_defects=sum(r.defects for r in records),
        best_distribution=result.best_distribution.value,
        hypothesis_accepted=result.hypothesis_accepted,
        significance_level=result.significance_level,
        file_name=file_name,
    )


def _select(entries: List[HistoryEntry], filter: Optional[HistoryFilter]) -> List[HistoryEntry]:
    # Newest first.
    selected = [e for e in reversed(entries) if filter is None or filter.matches(e)]
    if filter is not None and filter.limit is not None:
        selected = selected[: filter.limit]
    return selected


class InMemoryHistoryStore:
    """History kept for the lifetime of the process, oldest entries dropped first."""

    def __init__(self, max_entries: int = MAX_HISTORY_ENTRIES) -> None:
        self.max_entries = max_entries
        self._entries: List[HistoryEntry] = []

    def record(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)
        del self._entries[: max(0, len(self._entries) - self.max_entries)]

    def query(self, filter: Optional[HistoryFilter] = None) -> List[HistoryEntry]:
        return _select(self._entries, filter)

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileHistoryStore:
    """History persisted as a JSON list on disk."""

    def __init__(self, path, max_entries: int = MAX_HISTORY_ENTRIES) -> None:
        self.path = Path(path)
        self.max_entries = max_entries

    def _load(self) -> List[HistoryEntry]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return [HistoryEntry(**item) for item in raw]
        except (json.JSONDecodeError, TypeError) as exc:
            log.warning("History file unreadable, starting empty", extra={"path": str(self.path), "error": str(exc)})
            return []

    def record(self, entry: HistoryEntry) -> None:
        entries = self._load()
        entries.append(entry)
        entries = entries[-self.max_entries:]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps([asdict(e) for e in entries], indent=2), encoding="utf-8")
        log.info("History entry recorded", extra={"history_id": entry.id, "history_size": len(entries)})

    def query(self, filter: Optional[HistoryFilter] = None) -> List[HistoryEntry]:
        return _select(self._load(), filter)
