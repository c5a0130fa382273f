"""Search history and saved searches, optionally persisted to a JSON state file."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import ulid
from loguru import logger

from .models import SearchFilters


@dataclass
class SavedSearch:
    """A named query plus filter panel state."""
    name: str
    query: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    id: str = field(default_factory=lambda: str(ulid.ULID()))
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: Optional[datetime] = None

    def mark_as_used(self, when: Optional[datetime] = None) -> None:
        self.last_used_at = when or datetime.now()

    @property
    def description(self) -> str:
        parts = []
        if self.query:
            parts.append(f'"{self.query}"')
        summary = self.filters.summary()
        if summary:
            parts.append(summary)
        return " with ".join(parts) if parts else "All items"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "filters": self.filters.to_dict(),
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedSearch":
        last_used = data.get("last_used_at")
        return cls(
            id=data["id"],
            name=data["name"],
            query=data.get("query", ""),
            filters=SearchFilters.from_dict(data.get("filters") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_used_at=datetime.fromisoformat(last_used) if last_used else None,
        )


class SearchHistory:
    """
    Recent queries, most recent first, without duplicates.

    Saved searches live alongside the history. When ``state_path`` is set,
    every change is written back to it.
    """

    def __init__(self, limit: int = 20, state_path: Optional[Path] = None):
        self.limit = limit
        self.state_path = state_path
        self.entries: List[str] = []
        self.saved_searches: List[SavedSearch] = []

    # History

    def add(self, query: str) -> None:
        query = query.strip()
        if not query:
            return
        if query in self.entries:
            self.entries.remove(query)
        self.entries.insert(0, query)
        del self.entries[self.limit:]
        self._persist()

    def clear(self) -> None:
        self.entries.clear()
        self._persist()

    def matching(self, partial: str, limit: int) -> List[str]:
        partial = partial.lower()
        return [q for q in self.entries if partial in q.lower()][:limit]

    # Saved searches

    def save_search(self, name: str, query: str, filters: SearchFilters) -> SavedSearch:
        saved = SavedSearch(name=name, query=query, filters=filters)
        self.saved_searches.append(saved)
        self._persist()
        logger.info(f"Saved search {name!r}")
        return saved

    def delete_search(self, saved: SavedSearch) -> bool:
        before = len(self.saved_searches)
        self.saved_searches = [s for s in self.saved_searches if s.id != saved.id]
        removed = len(self.saved_searches) != before
        if removed:
            self._persist()
        return removed

    def touch(self, saved: SavedSearch) -> None:
        saved.mark_as_used()
        self._persist()

    # Persistence

    def load(self) -> None:
        """Load history and saved searches from ``state_path`` if it exists."""
        if self.state_path is None or not self.state_path.exists():
            return
        with open(self.state_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.entries = list(data.get("history", []))[:self.limit]
        self.saved_searches = [SavedSearch.from_dict(item) for item in data.get("saved_searches", [])]
        logger.debug(
            f"Loaded {len(self.entries)} history entries and "
            f"{len(self.saved_searches)} saved searches from {self.state_path}"
        )

    def _persist(self) -> None:
        if self.state_path is None:
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "history": self.entries,
            "saved_searches": [s.to_dict() for s in self.saved_searches],
        }
        with open(self.state_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
