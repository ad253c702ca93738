"""
Data model for Autopilot Memory.

A Memory lives twice: as a markdown file (the source of truth) and as a row
in a per-scope vector index. The types here are shared by both sides.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Scope = Literal["user", "project"]
ScopeSelector = Literal["user", "project", "all"]

CATEGORIES = ("preference", "convention", "pattern", "correction", "workflow")
SCOPES = ("user", "project")
SCOPE_SELECTORS = ("user", "project", "all")

DEFAULT_CATEGORY = "pattern"
DEFAULT_SCOPE = "project"
DEFAULT_IMPORTANCE = 0.5


def new_memory_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """ISO-8601 timestamp in UTC with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 string for ordering purposes.

    Unparsable values sort as the oldest possible time.
    """
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DimensionMismatchError(ValueError):
    """Two vectors (or a vector and an index) disagree on dimensionality."""


class IndexWriteError(RuntimeError):
    """The memory file was written but its index row could not be inserted."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.file_path = file_path


@dataclass
class Memory:
    """A single memory with its header fields and content."""
    id: str
    content: str
    category: str = DEFAULT_CATEGORY
    scope: str = DEFAULT_SCOPE
    importance: float = DEFAULT_IMPORTANCE
    tags: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)

    def to_row(self, embedding: List[float]) -> "IndexRow":
        return IndexRow(
            id=self.id,
            content=self.content,
            category=self.category,
            scope=self.scope,
            importance=self.importance,
            tags=list(self.tags),
            created_at=self.created_at,
            embedding=list(embedding),
        )


@dataclass
class IndexRow:
    """A Memory as stored in the vector index."""
    id: str
    content: str
    category: str
    scope: str
    importance: float
    tags: List[str]
    created_at: str
    embedding: List[float]

    def payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("embedding")
        return data


@dataclass
class SearchHit:
    """A raw nearest-neighbor candidate as returned by the index."""
    payload: Dict[str, Any]
    distance: float


@dataclass
class SearchResult:
    id: str
    content: str
    category: str
    scope: str
    importance: float
    similarity_score: float
    created_at: str
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StoreResult:
    stored: bool
    duplicate: bool
    id: Optional[str] = None
    file: Optional[str] = None


@dataclass
class ItemFailure:
    """One item that a best-effort loop could not process."""
    id: str
    stage: str
    error: str


@dataclass
class PartialResult:
    """
    Outcome of a best-effort loop.

    ``succeeded`` counts the items that went through; ``failures`` lists the
    rest so callers can tell a full success from a partial one.
    """
    succeeded: int = 0
    failures: List[ItemFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures

    def fail(self, item_id: str, stage: str, error: Exception) -> None:
        self.failures.append(ItemFailure(id=item_id, stage=stage, error=str(error)))


@dataclass
class DeleteResult:
    found: List[SearchResult]
    deleted: int
    failures: List[ItemFailure] = field(default_factory=list)


@dataclass
class RebuildResult:
    indexed: int
    scopes: List[str]


@dataclass
class RecentMemory:
    content: str
    category: str
    scope: str
    created_at: str


@dataclass
class MemoryStats:
    total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_scope: Dict[str, int] = field(default_factory=dict)
    most_recent: List[RecentMemory] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
