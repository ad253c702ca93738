"""
Autopilot Memory Server - scoped memory for AI assistants over MCP.

Memories are markdown files under ~/.claude/memory (user scope) or
<project>/.claude/memory (project scope), indexed in a local Qdrant store
for hybrid semantic + keyword search.

5 Tools:
- memory_search: Hybrid search across user and/or project memories
- memory_store: Store a memory (rejects near-duplicates)
- memory_forget: Preview or delete memories matching a query
- memory_stats: Counts by category and scope, most recent entries
- memory_index: Rebuild the vector index from the markdown files
"""

import logging
import os
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .config import settings
from .logging_config import setup_logging, with_request_id
from .memory import MemoryEngine
from .models import CATEGORIES, SCOPE_SELECTORS, SCOPES
from .similarity import DUPLICATE_THRESHOLD

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("autopilot-memory")

MAX_SEARCH_LIMIT = 100

# Engine is created lazily on first tool call, inside the server's event loop
_engine: Optional[MemoryEngine] = None


def get_engine() -> MemoryEngine:
    global _engine
    if _engine is None:
        _engine = MemoryEngine(settings)
    return _engine


def _working_directory() -> str:
    """Directory anchoring the project scope for tool calls."""
    return settings.project_dir or os.getcwd()


def _error(operation: str, error: Exception) -> Dict[str, Any]:
    logger.warning(f"{operation} failed: {error}")
    return {"error": f"Error {operation}", "message": str(error)}


def _invalid(message: str) -> Dict[str, Any]:
    return {"error": "INVALID_ARGUMENT", "message": message}


def _validate_scope(scope: str, allowed) -> Optional[Dict[str, Any]]:
    if scope not in allowed:
        return _invalid(f"scope must be one of: {', '.join(allowed)}")
    return None


def _validate_category(category: Optional[str]) -> Optional[Dict[str, Any]]:
    if category is not None and category not in CATEGORIES:
        return _invalid(f"category must be one of: {', '.join(CATEGORIES)}")
    return None


# ============================================================================
# Tool 1: MEMORY_SEARCH
# ============================================================================
@mcp.tool()
@with_request_id
async def memory_search(
    query: str,
    scope: str = "all",
    limit: int = 10,
    category: Optional[str] = None,
) -> Any:
    """
    Hybrid search across all memories (vector similarity + keyword matching).
    Use this to find relevant memories, preferences, conventions, and patterns.

    Args:
        query: Search query text
        scope: Which memories to search: 'user', 'project', or 'all'
        limit: Maximum number of results to return (1-100)
        category: Filter results to one of preference, convention, pattern,
                  correction, workflow

    Returns:
        Matching memories with similarity scores, best first
    """
    invalid = _validate_scope(scope, SCOPE_SELECTORS) or _validate_category(category)
    if invalid:
        return invalid
    if not 1 <= limit <= MAX_SEARCH_LIMIT:
        return _invalid(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")

    try:
        results = await get_engine().search(
            query, scope=scope, limit=limit, category=category, cwd=_working_directory()
        )
    except Exception as e:
        return _error("searching memories", e)

    if not results:
        return {"results": [], "message": "No memories found matching the query."}
    return [r.to_dict() for r in results]


# ============================================================================
# Tool 2: MEMORY_STORE
# ============================================================================
@mcp.tool()
@with_request_id
async def memory_store(
    content: str,
    category: str,
    scope: str,
    importance: float,
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Store a new memory with automatic deduplication. Memories are persisted as
    markdown files and indexed in a vector database for semantic search.

    Args:
        content: The memory content to store
        category: One of preference, convention, pattern, correction, workflow
        scope: 'user' = global across all projects, 'project' = specific to current project
        importance: Importance score from 0 (low) to 1 (critical)
        tags: Tags for organizing the memory

    Returns:
        The stored memory's id and file, or a note that a similar memory exists
    """
    invalid = _validate_scope(scope, SCOPES) or _validate_category(category)
    if invalid:
        return invalid
    if not 0.0 <= importance <= 1.0:
        return _invalid("importance must be between 0 and 1")

    try:
        result = await get_engine().store(
            content,
            category=category,
            scope=scope,
            importance=importance,
            tags=tags or [],
            cwd=_working_directory(),
        )
    except Exception as e:
        return _error("storing memory", e)

    if result.duplicate:
        return {
            "stored": False,
            "duplicate": True,
            "message": (
                "Memory not stored: a very similar memory already exists "
                f"(similarity > {DUPLICATE_THRESHOLD})."
            ),
        }
    return {
        "stored": True,
        "id": result.id,
        "file": result.file,
        "category": category,
        "scope": scope,
    }


# ============================================================================
# Tool 3: MEMORY_INDEX
# ============================================================================
@mcp.tool()
@with_request_id
async def memory_index(scope: str = "all") -> Dict[str, Any]:
    """
    Rebuild the vector search index from markdown memory files on disk.
    Use this after manually editing memory files or to repair a corrupted index.

    Args:
        scope: Which scope(s) to re-index: 'user', 'project', or 'all'
    """
    invalid = _validate_scope(scope, SCOPE_SELECTORS)
    if invalid:
        return invalid

    try:
        result = await get_engine().rebuild_index(scope=scope, cwd=_working_directory())
    except Exception as e:
        return _error("rebuilding index", e)

    return {"success": True, "indexed": result.indexed, "scopes": result.scopes}


# ============================================================================
# Tool 4: MEMORY_STATS
# ============================================================================
@mcp.tool()
@with_request_id
async def memory_stats(scope: str = "all") -> Dict[str, Any]:
    """
    Return analytics about stored memories including counts by category and
    scope, and the most recent entries.

    Args:
        scope: Which scope(s) to include: 'user', 'project', or 'all'
    """
    invalid = _validate_scope(scope, SCOPE_SELECTORS)
    if invalid:
        return invalid

    try:
        stats = await get_engine().stats(scope=scope, cwd=_working_directory())
    except Exception as e:
        return _error("getting stats", e)
    return stats.to_dict()


# ============================================================================
# Tool 5: MEMORY_FORGET
# ============================================================================
@mcp.tool()
@with_request_id
async def memory_forget(query: str, scope: str, confirm: bool = False) -> Dict[str, Any]:
    """
    Delete specific memories. First searches for matching memories, then
    deletes them if confirm is true. Use confirm=false to preview what would
    be deleted.

    Args:
        query: Search query to find memories to delete
        scope: Which scope to delete from: 'user' or 'project'
        confirm: True to actually delete, False to preview matches
    """
    invalid = _validate_scope(scope, SCOPES)
    if invalid:
        return invalid

    try:
        result = await get_engine().delete(query, scope=scope, confirm=confirm, cwd=_working_directory())
    except Exception as e:
        return _error("deleting memories", e)

    if not confirm:
        return {
            "preview": True,
            "matches": len(result.found),
            "memories": [m.to_dict() for m in result.found],
            "message": "Set confirm=true to delete these memories.",
        }
    return {
        "deleted": result.deleted,
        "total_matches": len(result.found),
        "failures": [vars(f) for f in result.failures],
    }


def main():
    """Run the MCP server over stdio."""
    setup_logging(settings.log_level, settings.structured_logging)
    logger.info("Starting autopilot-memory server...")
    logger.info(f"Project directory: {_working_directory()}")

    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")


if __name__ == "__main__":
    main()
