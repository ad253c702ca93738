"""
Markdown corpus - the human-editable source of truth for memories.

Each memory is one file under ``<scope root>/memory/<category>/``:

    ---
    id: 0b6f...
    category: convention
    scope: project
    importance: 0.8
    tags: ["style", "python"]
    created_at: "2026-01-05T10:22:31.104Z"
    ---

    Use snake_case for module names.

Every header line is a one-entry YAML mapping. Lines are read one at a time
so a bad line or value only costs that field, which then falls back to its
default; only a file without a header block is unparsable. Fields may appear
in any order.
"""

import asyncio
import logging
import math
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import yaml

from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_IMPORTANCE,
    DEFAULT_SCOPE,
    SCOPES,
    Memory,
    new_memory_id,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 60
SLUG_SUFFIX_LENGTH = 8

_HEADER_RE = re.compile(r"^---\n(.*?)\n---\n\n?(.*)$", re.DOTALL)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Characters that always force a quoted value, even where YAML would accept them bare
_ALWAYS_QUOTE = ('"', "'", "\\")


# =============================================================================
# Value encoding
# =============================================================================

def _load_line(line: str) -> Any:
    # BaseLoader keeps every scalar a string; HEADER_SCHEMA does the typing
    return yaml.load(line, Loader=yaml.BaseLoader)


def double_quoted(value: str) -> str:
    """A YAML double-quoted scalar on a single line, control characters escaped."""
    dumped = yaml.safe_dump(value, default_style='"', allow_unicode=True, width=float("inf"))
    return dumped.split("\n", 1)[0]


def _reads_back(value: str) -> bool:
    try:
        return _load_line(f"v: {value}") == {"v": value}
    except yaml.YAMLError:
        return False


def quote_if_needed(value: str) -> str:
    """Leave a header value bare only if it reads back unchanged."""
    if value and _reads_back(value) and not any(c in value for c in _ALWAYS_QUOTE):
        return value
    return double_quoted(value)


def _parse_string(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _parse_float(value: Any) -> float:
    return float(_parse_string(value))


def _parse_tags(value: Any) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(tag, str) for tag in value):
        raise TypeError("tags must be a list of strings")
    return list(value)


def _is_iso_timestamp(value: str) -> bool:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


# =============================================================================
# Header schema
# =============================================================================

@dataclass(frozen=True)
class HeaderField:
    """How one header key is parsed, validated and defaulted."""
    name: str
    parse: Callable[[Any], Any]
    default: Callable[[], Any]
    valid: Callable[[Any], bool] = lambda value: True


HEADER_SCHEMA: Tuple[HeaderField, ...] = (
    HeaderField("id", _parse_string, new_memory_id, lambda v: bool(v)),
    HeaderField("category", _parse_string, lambda: DEFAULT_CATEGORY, lambda v: bool(v)),
    HeaderField("scope", _parse_string, lambda: DEFAULT_SCOPE, lambda v: v in SCOPES),
    HeaderField(
        "importance", _parse_float, lambda: DEFAULT_IMPORTANCE,
        lambda v: math.isfinite(v) and 0.0 <= v <= 1.0,
    ),
    HeaderField("tags", _parse_tags, list),
    HeaderField("created_at", _parse_string, utc_now_iso, _is_iso_timestamp),
)


def _read_header(block: str) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    for line in block.split("\n"):
        if not line.strip():
            continue
        try:
            entry = _load_line(line)
        except yaml.YAMLError as e:
            logger.debug(f"Ignoring unreadable header line {line!r}: {e}")
            continue
        if isinstance(entry, dict):
            raw.update(entry)
    return raw


def _apply_schema(raw: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for spec in HEADER_SCHEMA:
        value = None
        if spec.name in raw:
            try:
                value = spec.parse(raw[spec.name])
                if not spec.valid(value):
                    value = None
            except (TypeError, ValueError):
                value = None
        values[spec.name] = value if value is not None else spec.default()
    return values


def parse_memory_file(text: str) -> Optional[Memory]:
    """
    Parse the text of a memory file.

    Returns None when the file has no header block.
    """
    match = _HEADER_RE.match(text.replace("\r\n", "\n"))
    if not match:
        return None
    header, body = match.groups()
    values = _apply_schema(_read_header(header))
    return Memory(content=body.strip(), **values)


def format_memory_file(memory: Memory) -> str:
    tags = ", ".join(double_quoted(tag) for tag in memory.tags)
    lines = [
        "---",
        f"id: {quote_if_needed(memory.id)}",
        f"category: {quote_if_needed(memory.category)}",
        f"scope: {quote_if_needed(memory.scope)}",
        f"importance: {float(memory.importance)!r}",
        f"tags: [{tags}]",
        f"created_at: {double_quoted(memory.created_at)}",
        "---",
    ]
    return "\n".join(lines) + f"\n\n{memory.content.strip()}\n"


def slugify(text: str) -> str:
    """
    Filename stem for a memory.

    The content-derived part is cosmetic; the random suffix keeps names
    unique. Files are never looked up by name.
    """
    base = _NON_ALNUM_RE.sub("-", text.lower()).strip("-")[:SLUG_MAX_LENGTH]
    suffix = uuid.uuid4().hex[:SLUG_SUFFIX_LENGTH]
    return f"{base}-{suffix}" if base else suffix


# =============================================================================
# Corpus operations
# =============================================================================

class MemoryCorpus:
    """
    Reads and writes memory files.

    All public methods are coroutines; filesystem work runs in a worker
    thread so it does not block the event loop.
    """

    async def write(self, corpus_dir: Path, memory: Memory) -> Path:
        return await asyncio.to_thread(self._write_sync, corpus_dir, memory)

    async def scan(self, corpus_dirs: Iterable[Path]) -> List[Memory]:
        return await asyncio.to_thread(self._scan_sync, list(corpus_dirs))

    async def delete_by_id(self, corpus_dir: Path, memory_id: str) -> bool:
        return await asyncio.to_thread(self._delete_by_id_sync, corpus_dir, memory_id)

    def _write_sync(self, corpus_dir: Path, memory: Memory) -> Path:
        directory = corpus_dir / memory.category
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{slugify(memory.content)}.md"
        path.write_text(format_memory_file(memory), encoding="utf-8")
        logger.debug(f"Wrote memory file {path}")
        return path

    def _iter_files(self, corpus_dir: Path) -> List[Path]:
        if not corpus_dir.is_dir():
            return []
        return sorted(p for p in corpus_dir.rglob("*.md") if p.is_file())

    def _scan_sync(self, corpus_dirs: List[Path]) -> List[Memory]:
        memories = []
        for corpus_dir in corpus_dirs:
            for path in self._iter_files(corpus_dir):
                try:
                    parsed = parse_memory_file(path.read_text(encoding="utf-8"))
                except (OSError, UnicodeDecodeError) as e:
                    logger.debug(f"Skipping unreadable memory file {path}: {e}")
                    continue
                if parsed is None:
                    logger.debug(f"Skipping memory file without header: {path}")
                    continue
                memories.append(parsed)
        return memories

    def _delete_by_id_sync(self, corpus_dir: Path, memory_id: str) -> bool:
        needles = {memory_id, quote_if_needed(memory_id)}
        for path in self._iter_files(corpus_dir):
            try:
                raw = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            # Cheap substring check before a full parse
            if not any(needle in raw for needle in needles):
                continue
            parsed = parse_memory_file(raw)
            if parsed is not None and parsed.id == memory_id:
                path.unlink()
                logger.debug(f"Deleted memory file {path}")
                return True
        return False
