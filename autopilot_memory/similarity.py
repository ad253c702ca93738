"""
Ranking for hybrid search.

Vector search is only the recall stage. Candidates are re-scored here with
a small keyword boost and an importance weight, merged across scopes,
deduplicated by content and capped.
"""

import json
from typing import Any, Dict, Iterable, List

from .models import SearchHit, SearchResult

# Over-fetch from the index because re-ranking changes the order
OVERFETCH_FACTOR = 3

# Boost per query term found verbatim in the content
KEYWORD_BOOST = 0.02

# rank = score * (BASE_WEIGHT + IMPORTANCE_WEIGHT * importance)
BASE_WEIGHT = 0.7
IMPORTANCE_WEIGHT = 0.3

# Similarity above which new content counts as a duplicate
DUPLICATE_THRESHOLD = 0.92


def query_terms(query: str) -> List[str]:
    """Distinct lower-cased whitespace tokens of a query, in order."""
    seen: Dict[str, None] = {}
    for term in query.lower().split():
        seen.setdefault(term, None)
    return list(seen)


def keyword_boost(content: str, terms: Iterable[str]) -> float:
    lowered = content.lower()
    return KEYWORD_BOOST * sum(1 for term in terms if term in lowered)


def distance_to_similarity(distance: float) -> float:
    """Cosine distance (0 = identical, 2 = opposite) to similarity."""
    return 1.0 - distance


def _tags(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(tag) for tag in value]
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return []
        return [str(tag) for tag in decoded] if isinstance(decoded, list) else []
    return []


def score_hit(hit: SearchHit, terms: List[str]) -> SearchResult:
    payload = hit.payload
    content = str(payload.get("content", ""))
    similarity = distance_to_similarity(hit.distance)
    return SearchResult(
        id=str(payload.get("id", "")),
        content=content,
        category=str(payload.get("category", "")),
        scope=str(payload.get("scope", "")),
        importance=float(payload.get("importance", 0.5)),
        similarity_score=min(similarity + keyword_boost(content, terms), 1.0),
        created_at=str(payload.get("created_at", "")),
        tags=_tags(payload.get("tags")),
    )


def rank_key(result: SearchResult) -> float:
    return result.similarity_score * (BASE_WEIGHT + IMPORTANCE_WEIGHT * result.importance)


def rank_results(results: List[SearchResult], limit: int) -> List[SearchResult]:
    """
    Order by rank key (stable, so ties keep candidate order), drop repeated
    content keeping the best-ranked copy, and cap at ``limit``.
    """
    ranked = sorted(results, key=rank_key, reverse=True)
    seen = set()
    deduped = []
    for result in ranked:
        if result.content in seen:
            continue
        seen.add(result.content)
        deduped.append(result)
        if len(deduped) >= limit:
            break
    return deduped
