"""
Memory Engine - the core of Autopilot Memory.

This module handles:
- Hybrid search (vector recall + keyword/importance re-ranking) across scopes
- Storing memories with near-duplicate rejection
- Deleting memories from both the index and the markdown corpus
- Rebuilding a scope's index from its markdown files
- Aggregate statistics

The markdown files are the source of truth; the vector index is derived
from them and can always be rebuilt. The two are in sync right after a
store, delete or rebuild, not continuously: files may be edited by hand.
"""

import logging
from typing import Dict, List, Optional, Sequence

from .config import Settings, settings as default_settings
from .markdown import MemoryCorpus
from .models import (
    CATEGORIES,
    SCOPE_SELECTORS,
    SCOPES,
    DeleteResult,
    DimensionMismatchError,
    IndexWriteError,
    Memory,
    MemoryStats,
    PartialResult,
    RebuildResult,
    RecentMemory,
    SearchHit,
    SearchResult,
    StoreResult,
    new_memory_id,
    parse_timestamp,
)
from .qdrant_store import BACKEND_READ_ERRORS, IndexRegistry
from .scopes import ScopeResolver, StorageLocation
from .similarity import (
    DUPLICATE_THRESHOLD,
    OVERFETCH_FACTOR,
    distance_to_similarity,
    query_terms,
    rank_results,
    score_hit,
)
from .vectors import EmbeddingProvider

logger = logging.getLogger(__name__)

# Neighbors inspected for near-duplicate rejection
DUPLICATE_NEIGHBORS = 5

# Candidates shown (and removed on confirm) by a delete-by-query
DELETE_PREVIEW_LIMIT = 20

# Entries listed under most_recent in stats
RECENT_COUNT = 10

STATS_FIELDS = ("content", "category", "scope", "created_at")


def _check_scope(scope: str, allowed: Sequence[str]) -> None:
    if scope not in allowed:
        raise ValueError(f"Invalid scope {scope!r}. Must be one of: {', '.join(allowed)}")


class MemoryEngine:
    """
    Keeps the markdown corpus and the per-scope vector indexes in agreement
    and answers queries over them.

    One engine owns one IndexRegistry; share the engine, not the registry,
    between concurrent requests.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        embedder: Optional[EmbeddingProvider] = None,
        registry: Optional[IndexRegistry] = None,
        corpus: Optional[MemoryCorpus] = None,
    ):
        self.config = config or default_settings
        self.scopes = ScopeResolver(self.config)
        self.embedder = embedder or EmbeddingProvider(self.config.embedding_model)
        self.registry = registry or IndexRegistry()
        self.corpus = corpus or MemoryCorpus()

    async def close(self) -> None:
        await self.registry.close()

    async def _nearest(
        self,
        location: StorageLocation,
        vector: List[float],
        limit: int,
        category: Optional[str] = None,
    ) -> List[SearchHit]:
        """Nearest rows of one location; a missing or unreadable index yields nothing."""
        table = await self.registry.get_table(location)
        if table is None:
            return []
        try:
            return await table.search(vector, limit, category)
        except DimensionMismatchError:
            raise
        except BACKEND_READ_ERRORS as e:
            logger.debug(f"Search on {location.scope} index returned no data: {e}")
            return []

    # =========================================================================
    # Retrieval
    # =========================================================================

    async def search(
        self,
        query: str,
        scope: str = "all",
        limit: int = 10,
        category: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Hybrid search across the locations of ``scope``.

        Each candidate's similarity (1 - cosine distance) gets +0.02 per query
        term found in its content, capped at 1.0. Results are ordered by
        ``score * (0.7 + 0.3 * importance)``, deduplicated by content and
        capped at ``limit``.
        """
        _check_scope(scope, SCOPE_SELECTORS)
        if limit < 1:
            return []

        query_vector = await self.embedder.embed(query)
        terms = query_terms(query)

        candidates: List[SearchResult] = []
        for location in self.scopes.locations(scope, cwd):
            hits = await self._nearest(location, query_vector, limit * OVERFETCH_FACTOR, category)
            candidates.extend(score_hit(hit, terms) for hit in hits)

        return rank_results(candidates, limit)

    # =========================================================================
    # Mutation
    # =========================================================================

    async def store(
        self,
        content: str,
        category: str,
        scope: str,
        importance: float = 0.5,
        tags: Optional[List[str]] = None,
        cwd: Optional[str] = None,
    ) -> StoreResult:
        """
        Store a memory unless a near-duplicate exists in the same scope.

        Writes the markdown file first, then the index row. If the index
        write fails the file stays behind (a rebuild picks it up) and the
        failure is raised as IndexWriteError.
        """
        _check_scope(scope, SCOPES)
        if category not in CATEGORIES:
            raise ValueError(f"Invalid category {category!r}. Must be one of: {', '.join(CATEGORIES)}")
        if not 0.0 <= importance <= 1.0:
            raise ValueError("importance must be between 0 and 1")
        content = content.strip()
        if not content:
            raise ValueError("content must not be empty")

        location = self.scopes.location(scope, cwd)
        embedding = await self.embedder.embed(content)

        for neighbor in await self._nearest(location, embedding, DUPLICATE_NEIGHBORS):
            if distance_to_similarity(neighbor.distance) > DUPLICATE_THRESHOLD:
                logger.info(f"Skipped near-duplicate {scope} memory: {content[:50]}...")
                return StoreResult(stored=False, duplicate=True)

        memory = Memory(
            id=new_memory_id(),
            content=content,
            category=category,
            scope=scope,
            importance=float(importance),
            tags=list(tags or []),
        )
        path = await self.corpus.write(location.corpus_dir, memory)
        row = memory.to_row(embedding)

        try:
            table = await self.registry.get_table(location)
            if table is None:
                table, created = await self.registry.create_if_absent(location, [row])
                if not created:
                    await table.add([row])
            else:
                await table.add([row])
        except Exception as e:
            rollback = await self.delete_by_ids([memory.id], scope, cwd)
            if not rollback.complete:
                logger.warning(f"Rollback of memory {memory.id} incomplete: {rollback.failures}")
            raise IndexWriteError(
                f"Memory file written to {path} but indexing failed: {e}. Run a rebuild to index it.",
                file_path=str(path),
            ) from e

        logger.info(f"Stored {scope}/{category}: {content[:50]}...", extra={"scope": scope, "memory_id": memory.id})
        return StoreResult(stored=True, duplicate=False, id=memory.id, file=str(path))

    async def delete_by_ids(
        self,
        ids: Sequence[str],
        scope: str,
        cwd: Optional[str] = None,
    ) -> PartialResult:
        """
        Best-effort removal of index rows by id, used to roll back writes.

        Every id is attempted; failures are collected, not raised. Ids with
        no row (or no index at all) count as removed.
        """
        outcome = PartialResult()
        table = await self.registry.get_table(self.scopes.location(scope, cwd))
        if table is None:
            outcome.succeeded = len(ids)
            return outcome

        for memory_id in ids:
            try:
                await table.delete_by_id(memory_id)
            except Exception as e:
                logger.debug(f"Could not remove index row {memory_id}: {e}")
                outcome.fail(memory_id, "index", e)
            else:
                outcome.succeeded += 1
        return outcome

    async def delete(
        self,
        query: str,
        scope: str,
        confirm: bool = False,
        cwd: Optional[str] = None,
    ) -> DeleteResult:
        """
        Delete the memories of one scope that match ``query``.

        Without ``confirm`` this is a dry run returning the candidates. With
        it, each candidate's index row and file are removed independently;
        ``deleted`` counts candidates whose index row was removed and
        ``failures`` lists what could not be removed.
        """
        _check_scope(scope, SCOPES)
        found = await self.search(query, scope=scope, limit=DELETE_PREVIEW_LIMIT, cwd=cwd)
        if not confirm or not found:
            return DeleteResult(found=found, deleted=0)

        location = self.scopes.location(scope, cwd)
        table = await self.registry.get_table(location)
        if table is None:
            return DeleteResult(found=found, deleted=0)

        outcome = PartialResult()
        for memory in found:
            try:
                await table.delete_by_id(memory.id)
            except Exception as e:
                logger.warning(f"Failed to delete index row {memory.id}: {e}", extra={"memory_id": memory.id})
                outcome.fail(memory.id, "index", e)
                continue
            outcome.succeeded += 1

            try:
                removed = await self.corpus.delete_by_id(location.corpus_dir, memory.id)
            except OSError as e:
                logger.warning(f"Failed to delete memory file for {memory.id}: {e}", extra={"memory_id": memory.id})
                outcome.fail(memory.id, "file", e)
                continue
            if not removed:
                outcome.fail(memory.id, "file", FileNotFoundError("no memory file with this id"))

        logger.info(f"Deleted {outcome.succeeded}/{len(found)} {scope} memories matching {query!r}")
        return DeleteResult(found=found, deleted=outcome.succeeded, failures=outcome.failures)

    # =========================================================================
    # Rebuild
    # =========================================================================

    async def rebuild_index(self, scope: str = "all", cwd: Optional[str] = None) -> RebuildResult:
        """
        Make each index an exact image of the markdown corpus.

        Files are grouped by the scope recorded in their header, which wins
        over the directory they were found in. Each group replaces its
        location's index wholesale. A requested scope whose corpus has no
        memories gets an empty index.
        """
        _check_scope(scope, SCOPE_SELECTORS)
        requested = self.scopes.locations(scope, cwd)
        memories = await self.corpus.scan(location.corpus_dir for location in requested)

        groups: Dict[str, Dict[str, Memory]] = {location.scope: {} for location in requested}
        for memory in memories:
            group = groups.setdefault(memory.scope, {})
            if memory.id in group:
                logger.warning(f"Duplicate memory id {memory.id} in {memory.scope} corpus; keeping the first")
                continue
            group[memory.id] = memory

        indexed = 0
        processed = []
        for memory_scope, group in groups.items():
            location = self.scopes.location(memory_scope, cwd)
            batch = list(group.values())
            embeddings = await self.embedder.embed_batch([m.content for m in batch])
            rows = [m.to_row(e) for m, e in zip(batch, embeddings)]
            await self.registry.drop_and_recreate(location, rows)
            logger.info(f"Rebuilt {memory_scope} index with {len(rows)} memories")
            indexed += len(rows)
            processed.append(memory_scope)

        return RebuildResult(indexed=indexed, scopes=processed)

    # =========================================================================
    # Stats
    # =========================================================================

    async def stats(self, scope: str = "all", cwd: Optional[str] = None) -> MemoryStats:
        """Counts by category and scope plus the most recently created memories."""
        _check_scope(scope, SCOPE_SELECTORS)
        stats = MemoryStats()
        recent: List[RecentMemory] = []

        for location in self.scopes.locations(scope, cwd):
            table = await self.registry.get_table(location)
            if table is None:
                continue
            try:
                count = await table.count()
                rows = await table.scan(STATS_FIELDS, batch_size=self.config.scan_batch_size)
            except BACKEND_READ_ERRORS as e:
                logger.debug(f"Skipping {location.scope} index in stats: {e}")
                continue

            stats.total += count
            for row in rows:
                category = str(row.get("category", ""))
                row_scope = str(row.get("scope", ""))
                stats.by_category[category] = stats.by_category.get(category, 0) + 1
                stats.by_scope[row_scope] = stats.by_scope.get(row_scope, 0) + 1
                recent.append(RecentMemory(
                    content=str(row.get("content", "")),
                    category=category,
                    scope=row_scope,
                    created_at=str(row.get("created_at", "")),
                ))

        recent.sort(key=lambda m: parse_timestamp(m.created_at), reverse=True)
        stats.most_recent = recent[:RECENT_COUNT]
        return stats
