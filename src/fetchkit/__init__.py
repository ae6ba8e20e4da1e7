"""fetchkit - Resilient async data access: fetch, cache, paginate, sync."""

from contextlib import suppress

# Adapters (async only)
from fetchkit.adapters import (
    AsyncCacheStore,
    AsyncMemoryCacheStore,
    AsyncMemoryRemoteStore,
    AsyncOfflineStore,
    AsyncRemoteStore,
    MemoryOfflineStore,
    SqliteOfflineStore,
    TransactionHandle,
)
from fetchkit.connectivity import ConnectivityMonitor
from fetchkit.documents import CollectionController, DocumentController

# Duration parsing
from fetchkit.duration import parse_duration

# Errors
from fetchkit.errors import (
    CancellationError,
    FetchKitError,
    OfflineUnavailableError,
    RateLimitError,
    RemoteValidationError,
    TransientNetworkError,
    classify_error,
)

# Controllers
from fetchkit.fetch import FetchController, FetchOptions
from fetchkit.infinite import InfiniteQueryController
from fetchkit.lifecycle import GenerationRegistry
from fetchkit.optimistic import OptimisticUpdateController
from fetchkit.pager import RemoteCollectionPager
from fetchkit.prefetch import PrefetchCache

# Query builders
from fetchkit.query import (
    build_constraints,
    limit_to,
    order_by,
    where,
    where_equal,
    where_greater,
    where_in,
    where_less,
)
from fetchkit.signals import OnlineStatus, Signal
from fetchkit.sync import BackgroundSyncController

# Core types
from fetchkit.types import (
    BatchOperation,
    CacheEntry,
    CacheStats,
    DocumentRef,
    Duration,
    FetchState,
    LimitSpec,
    OptimisticRecord,
    PageRequest,
    PageResult,
    PageState,
    QueryConstraint,
    QueuedWrite,
    SortSpec,
    Status,
    WriteQueueStatus,
)
from fetchkit.write_queue import OfflineWriteQueue
from fetchkit.writes import BatchExecutor, TransactionExecutor

# Optional adapter imports - only available when dependencies are installed
with suppress(ImportError):
    from fetchkit.adapters import AsyncRedisCacheStore

with suppress(ImportError):
    from fetchkit.adapters import AsyncHttpRemoteStore

__version__ = "0.1.0"

__all__ = [
    "AsyncCacheStore",
    "AsyncHttpRemoteStore",
    "AsyncMemoryCacheStore",
    "AsyncMemoryRemoteStore",
    "AsyncOfflineStore",
    "AsyncRedisCacheStore",
    "AsyncRemoteStore",
    "BackgroundSyncController",
    "BatchExecutor",
    "BatchOperation",
    "CacheEntry",
    "CacheStats",
    "CancellationError",
    "CollectionController",
    "ConnectivityMonitor",
    "DocumentController",
    "DocumentRef",
    "Duration",
    "FetchController",
    "FetchKitError",
    "FetchOptions",
    "FetchState",
    "GenerationRegistry",
    "InfiniteQueryController",
    "LimitSpec",
    "MemoryOfflineStore",
    "OfflineUnavailableError",
    "OfflineWriteQueue",
    "OnlineStatus",
    "OptimisticRecord",
    "OptimisticUpdateController",
    "PageRequest",
    "PageResult",
    "PageState",
    "PrefetchCache",
    "QueryConstraint",
    "QueuedWrite",
    "RateLimitError",
    "RemoteCollectionPager",
    "RemoteValidationError",
    "Signal",
    "SortSpec",
    "SqliteOfflineStore",
    "Status",
    "TransactionExecutor",
    "TransactionHandle",
    "TransientNetworkError",
    "WriteQueueStatus",
    "build_constraints",
    "classify_error",
    "limit_to",
    "order_by",
    "parse_duration",
    "where",
    "where_equal",
    "where_greater",
    "where_in",
    "where_less",
]
