from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional


MONTH_ABBREVIATIONS: tuple[str, ...] = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)
MONTH_NUMBERS: dict[str, int] = {name: i + 1 for i, name in enumerate(MONTH_ABBREVIATIONS)}

# Persisted field names, in schema order (excluding `id`).
ENTRY_FIELDS: tuple[str, ...] = (
    "year",
    "month",
    "investment",
    "added",
    "principal",
    "totalInvestment",
    "returnPercent",
    "profit",
    "total",
)

CalendarKey = tuple[int, int]


class EntryKind(str, Enum):
    TARGET = "targets"
    ACTUAL = "actuals"


def month_name(month: int) -> str:
    if not 1 <= int(month) <= 12:
        return ""
    return MONTH_ABBREVIATIONS[int(month) - 1]


@dataclass(frozen=True)
class Entry:
    """
    One month of either the projection (target) or reported performance (actual).

    Targets and actuals share this shape; which one an entry is depends only on
    the collection it lives in.

    Firestore path:
      users/{uid}/targets/{id}
      users/{uid}/actuals/{id}
    """

    year: int
    month: int
    investment: float = 0.0
    added: float = 0.0
    principal: float = 0.0
    total_investment: float = 0.0
    return_percent: float = 0.0
    profit: float = 0.0
    total: float = 0.0
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not 1 <= int(self.month) <= 12:
            raise ValueError(f"month must be in [1, 12], got {self.month!r}")

    @property
    def key(self) -> CalendarKey:
        return (int(self.year), int(self.month))

    def with_id(self, entry_id: str) -> "Entry":
        return replace(self, id=entry_id)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "year": int(self.year),
            "month": int(self.month),
            "investment": self.investment,
            "added": self.added,
            "principal": self.principal,
            "totalInvestment": self.total_investment,
            "returnPercent": self.return_percent,
            "profit": self.profit,
            "total": self.total,
        }
        if self.id is not None:
            doc["id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], *, doc_id: Optional[str] = None) -> "Entry":
        entry_id = doc.get("id") or doc_id
        return cls(
            id=str(entry_id) if entry_id is not None else None,
            year=int(doc["year"]),
            month=int(doc["month"]),
            investment=doc.get("investment", 0),
            added=doc.get("added", 0),
            principal=doc.get("principal", 0),
            total_investment=doc.get("totalInvestment", 0),
            return_percent=doc.get("returnPercent", 0),
            profit=doc.get("profit", 0),
            total=doc.get("total", 0),
        )


def sort_entries(entries: list[Entry]) -> list[Entry]:
    return sorted(entries, key=lambda e: e.key)


@dataclass
class DisplayRow:
    """
    A target joined with the matching actual's investment/added/total.

    Ephemeral and never persisted. The actual fields are None when not yet entered.
    """

    target: Entry
    actual_investment: Optional[float] = None
    actual_added: Optional[float] = None
    actual_total: Optional[float] = None

    @property
    def year(self) -> int:
        return int(self.target.year)

    @property
    def month(self) -> int:
        return int(self.target.month)

    @property
    def key(self) -> CalendarKey:
        return self.target.key
