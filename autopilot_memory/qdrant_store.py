"""
Qdrant Vector Store - the derived, searchable index over the memory corpus.

This module provides:
- IndexRegistry: one cached client per storage location, opened on first use
- IndexTable: the ``memories`` collection of one location (search, insert,
  delete-by-id, count, scan)
- Destructive drop-and-recreate for index rebuilds

Qdrant runs in local (file-based) mode, so no server is required. A local
Qdrant path may only be opened by one client per process, which is why
clients are cached by resolved path.

Qdrant reports cosine *similarity*; the engine works with cosine *distance*
(0 = identical, 2 = opposite), so hits are converted at this boundary.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    VectorParams,
)

from .models import DimensionMismatchError, IndexRow, SearchHit
from .scopes import StorageLocation

logger = logging.getLogger(__name__)

COLLECTION_MEMORIES = "memories"

# Errors that mean "no data" on read paths
BACKEND_READ_ERRORS = (ResponseHandlingException, UnexpectedResponse, RuntimeError, ValueError, OSError)


def point_id(memory_id: str) -> str:
    """
    Qdrant point id for a memory id.

    Point ids must be UUIDs. Only an id already in canonical UUID form is
    used as-is; anything else (including ``{...}`` or upper-case spellings of
    a UUID, which are distinct memory ids) maps to a stable UUID5. The real
    id always lives in the payload.
    """
    try:
        canonical = str(uuid.UUID(memory_id))
    except ValueError:
        canonical = None
    if canonical == memory_id:
        return canonical
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"autopilot-memory:{memory_id}"))


def _id_filter(memory_id: str) -> Filter:
    return Filter(must=[FieldCondition(key="id", match=MatchValue(value=memory_id))])


def _to_points(rows: Sequence[IndexRow]) -> List[PointStruct]:
    dims = {len(row.embedding) for row in rows}
    if len(dims) > 1:
        raise DimensionMismatchError(f"Rows have mixed embedding dimensions: {sorted(dims)}")
    return [
        PointStruct(id=point_id(row.id), vector=row.embedding, payload=row.payload())
        for row in rows
    ]


def _collection_names(client: QdrantClient) -> List[str]:
    return [c.name for c in client.get_collections().collections]


def _create_if_absent_sync(client: QdrantClient, rows: Sequence[IndexRow]) -> bool:
    """Create the collection with ``rows``. Returns False if it already existed."""
    if COLLECTION_MEMORIES in _collection_names(client):
        return False
    points = _to_points(rows)
    logger.info(f"Creating collection: {COLLECTION_MEMORIES}")
    client.create_collection(
        collection_name=COLLECTION_MEMORIES,
        vectors_config=VectorParams(size=len(rows[0].embedding), distance=Distance.COSINE),
    )
    client.upsert(collection_name=COLLECTION_MEMORIES, points=points, wait=True)
    return True


def _replace_sync(client: QdrantClient, rows: Sequence[IndexRow]) -> None:
    points = _to_points(rows) if rows else []
    if not client.delete_collection(collection_name=COLLECTION_MEMORIES):
        logger.debug("No existing collection to drop")
    if not rows:
        return
    client.create_collection(
        collection_name=COLLECTION_MEMORIES,
        vectors_config=VectorParams(size=len(rows[0].embedding), distance=Distance.COSINE),
    )
    client.upsert(collection_name=COLLECTION_MEMORIES, points=points, wait=True)


class IndexHandle:
    """
    An open Qdrant client for one location plus the lazily opened table.

    Backend calls on a handle are serialized: local-mode Qdrant is not meant
    to be driven from several threads at once.
    """

    def __init__(self, path: str, client: QdrantClient):
        self.path = path
        self.client = client
        self.table: Optional["IndexTable"] = None
        self._lock = asyncio.Lock()

    async def call(self, fn: Callable, *args, **kwargs) -> Any:
        async with self._lock:
            return await asyncio.to_thread(fn, *args, **kwargs)


class IndexTable:
    """The ``memories`` collection of one storage location."""

    def __init__(self, handle: IndexHandle, name: str = COLLECTION_MEMORIES):
        self.handle = handle
        self.name = name
        self._dimension: Optional[int] = None

    async def dimension(self) -> int:
        if self._dimension is None:
            info = await self.handle.call(self.handle.client.get_collection, self.name)
            self._dimension = info.config.params.vectors.size
        return self._dimension

    async def _check_dimension(self, vector: Sequence[float]) -> None:
        expected = await self.dimension()
        if len(vector) != expected:
            raise DimensionMismatchError(
                f"Vector has dimension {len(vector)}, index {self.handle.path} expects {expected}"
            )

    async def search(
        self,
        query_vector: List[float],
        limit: int,
        category: Optional[str] = None,
    ) -> List[SearchHit]:
        """
        Nearest rows by cosine distance, closest first.

        The category filter is applied before the limit.
        """
        await self._check_dimension(query_vector)
        query_filter = None
        if category:
            query_filter = Filter(must=[FieldCondition(key="category", match=MatchValue(value=category))])

        response = await self.handle.call(
            self.handle.client.query_points,
            collection_name=self.name,
            query=query_vector,
            query_filter=query_filter,
            limit=limit,
            with_payload=True,
        )
        return [
            SearchHit(payload=dict(point.payload or {}), distance=1.0 - point.score)
            for point in response.points
        ]

    async def add(self, rows: Sequence[IndexRow]) -> None:
        if not rows:
            return
        await self._check_dimension(rows[0].embedding)
        points = _to_points(rows)
        await self.handle.call(
            self.handle.client.upsert, collection_name=self.name, points=points, wait=True
        )

    async def delete_by_id(self, memory_id: str) -> None:
        """Delete rows whose payload id equals ``memory_id``. No-op if none match."""
        await self.handle.call(
            self.handle.client.delete,
            collection_name=self.name,
            points_selector=FilterSelector(filter=_id_filter(memory_id)),
            wait=True,
        )

    async def count(self) -> int:
        result = await self.handle.call(self.handle.client.count, collection_name=self.name, exact=True)
        return result.count

    async def scan(self, fields: Sequence[str], batch_size: int = 256) -> List[Dict[str, Any]]:
        """All rows, projected to ``fields``."""
        rows: List[Dict[str, Any]] = []
        offset = None
        while True:
            points, offset = await self.handle.call(
                self.handle.client.scroll,
                collection_name=self.name,
                limit=batch_size,
                offset=offset,
                with_payload=list(fields),
                with_vectors=False,
            )
            rows.extend(dict(point.payload or {}) for point in points)
            if offset is None:
                return rows


class IndexRegistry:
    """
    Process-scoped cache of index handles, keyed by resolved index path.

    Handles are created on first access and live until ``close``. Creation
    is guarded so concurrent first access yields a single client.
    """

    def __init__(self):
        self._handles: Dict[str, IndexHandle] = {}
        self._lock = asyncio.Lock()

    async def open(self, location: StorageLocation) -> IndexHandle:
        key = location.key
        handle = self._handles.get(key)
        if handle is not None:
            return handle

        async with self._lock:
            # Double-check after acquiring lock
            handle = self._handles.get(key)
            if handle is None:
                await asyncio.to_thread(location.index_path.mkdir, parents=True, exist_ok=True)
                client = await asyncio.to_thread(QdrantClient, path=key)
                handle = IndexHandle(key, client)
                self._handles[key] = handle
                logger.info(f"Opened {location.scope} index at: {key}")
        return handle

    async def get_table(self, location: StorageLocation) -> Optional[IndexTable]:
        """The location's table, or None if it does not exist (never raises)."""
        try:
            handle = await self.open(location)
            if handle.table is not None:
                return handle.table
            names = await handle.call(_collection_names, handle.client)
        except BACKEND_READ_ERRORS as e:
            logger.debug(f"Index at {location.index_path} unavailable: {e}")
            return None

        if COLLECTION_MEMORIES not in names:
            return None
        handle.table = IndexTable(handle)
        return handle.table

    async def create_if_absent(
        self, location: StorageLocation, rows: Sequence[IndexRow]
    ) -> Tuple[IndexTable, bool]:
        """
        Create the table from ``rows`` unless it exists.

        An existing table is returned as-is and ``rows`` are ignored; the
        second element tells whether this call created the table.
        """
        table = await self.get_table(location)
        if table is not None:
            return table, False
        if not rows:
            raise ValueError("Cannot create an index without rows (dimension unknown)")

        handle = await self.open(location)
        created = await handle.call(_create_if_absent_sync, handle.client, list(rows))
        if created:
            logger.info(f"Created {location.scope} index with {len(rows)} row(s)")
        handle.table = IndexTable(handle)
        return handle.table, created

    async def drop_and_recreate(self, location: StorageLocation, rows: Sequence[IndexRow]) -> None:
        """Replace the location's table with one holding exactly ``rows``."""
        handle = await self.open(location)
        await handle.call(_replace_sync, handle.client, list(rows))
        self.invalidate(location)

    def invalidate(self, location: StorageLocation) -> None:
        """Forget the cached table so the next access reopens it."""
        handle = self._handles.get(location.key)
        if handle is not None:
            handle.table = None

    async def close(self) -> None:
        async with self._lock:
            for handle in self._handles.values():
                await asyncio.to_thread(handle.client.close)
            self._handles.clear()
