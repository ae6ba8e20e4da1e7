"""Core types for fetchkit."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    Literal,
    TypeVar,
)

if TYPE_CHECKING:
    from fetchkit.errors import FetchKitError

T = TypeVar("T")

# Duration type alias
Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds

Disposer = Callable[[], None]


class Status(str, Enum):
    """Lifecycle state shared by every controller."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """A cached value with metadata."""

    key: str
    value: T
    stored_at: int  # Unix timestamp ms
    ttl: int  # ms

    def age(self, now: int) -> int:
        return now - self.stored_at

    def is_fresh(self, now: int) -> bool:
        """True while the entry is inside its own ttl."""
        return self.age(now) < self.ttl


@dataclass(frozen=True, slots=True)
class FetchState(Generic[T]):
    """Snapshot of a single-resource fetch."""

    data: T | None = None
    loading: bool = False
    error: "FetchKitError | None" = None
    last_fetched_at: int | None = None
    status: Status = Status.IDLE


@dataclass(frozen=True, slots=True)
class PageState(Generic[T]):
    """Accumulated pages of a list resource."""

    items: tuple[T, ...] = ()
    cursor: Any = None
    has_more: bool = True
    page_size: int = 20
    page: int = 0
    loading: bool = False
    error: "FetchKitError | None" = None
    status: Status = Status.IDLE
    last_updated_at: int | None = None

    @property
    def next_request(self) -> "PageRequest":
        return PageRequest(self.page_size, self.cursor)


@dataclass(frozen=True, slots=True)
class OptimisticRecord(Generic[T]):
    """Confirmed baseline plus the speculative value shown while pending."""

    baseline: T
    pending: T
    is_pending: bool = False
    version: int = 0


@dataclass(slots=True)
class SyncSubscription(Generic[T]):
    """Bookkeeping for an active background sync."""

    interval_ms: int
    last_sync_at: int = 0
    on_change: Callable[[T, T], Any] | None = None


# -----------------------------------------------------------------------------
# Remote store value objects
# -----------------------------------------------------------------------------

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"]
SortDirection = Literal["asc", "desc"]
WriteType = Literal["set", "update", "delete"]


@dataclass(frozen=True, slots=True)
class QueryConstraint:
    """A filter predicate on a single document field."""

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class SortSpec:
    """Ordering on a single document field."""

    field: str
    direction: SortDirection = "asc"


@dataclass(frozen=True, slots=True)
class LimitSpec:
    """Upper bound on the number of documents returned."""

    count: int


Constraint = QueryConstraint | SortSpec | LimitSpec


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Page size and the opaque cursor of the previous page."""

    page_size: int
    cursor: Any = None


@dataclass(frozen=True, slots=True)
class PageResult(Generic[T]):
    """One page returned by a page function or the remote store."""

    data: list[T]
    has_more: bool
    cursor: Any = None


@dataclass(frozen=True, slots=True)
class DocumentRef:
    """Location of a document in the remote store."""

    collection_path: str
    id: str

    @property
    def path(self) -> str:
        return f"{self.collection_path}/{self.id}"


@dataclass(frozen=True, slots=True)
class BatchOperation:
    """A single write inside an atomic batch."""

    type: WriteType
    ref: DocumentRef
    data: dict[str, Any] | None = field(default=None)

    def __post_init__(self) -> None:
        if self.type not in ("set", "update", "delete"):
            raise ValueError(f"Unknown write type: {self.type!r}")
        if self.type != "delete" and self.data is None:
            raise ValueError(f"{self.type} operation on {self.ref.path} needs data")


# -----------------------------------------------------------------------------
# Offline write queue and cache statistics
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class QueuedWrite:
    """A batch held back while offline, replayed in order on reconnect."""

    id: str
    operations: tuple[BatchOperation, ...]
    queued_at: int  # Unix timestamp ms
    retry_count: int = 0
    max_retries: int = 3


@dataclass(frozen=True, slots=True)
class WriteQueueStatus:
    """Snapshot reported to write queue listeners."""

    is_online: bool
    pending: int
    syncing: bool = False
    last_sync_at: int | None = None


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Lookup counters of a cache store."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    @property
    def miss_rate(self) -> float:
        total = self.hits + self.misses
        return self.misses / total if total else 0.0
