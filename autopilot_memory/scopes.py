"""
Scope resolution - maps a logical scope to physical storage locations.

The user scope lives under ~/.claude (or AUTOPILOT_MEMORY_USER_ROOT), the
project scope under <working directory>/.claude. Each location holds the
markdown corpus in ``memory/`` and the vector index in ``memory/.vectordb``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .config import Settings, settings as default_settings

MEMORY_DIRNAME = "memory"
INDEX_DIRNAME = ".vectordb"


@dataclass(frozen=True)
class StorageLocation:
    """The physical root (corpus + index) backing one scope resolution."""
    scope: str
    root: Path

    @property
    def corpus_dir(self) -> Path:
        return self.root / MEMORY_DIRNAME

    @property
    def index_path(self) -> Path:
        return self.corpus_dir / INDEX_DIRNAME

    @property
    def key(self) -> str:
        """Cache key for the index handle of this location."""
        return str(self.index_path.resolve())


class ScopeResolver:
    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings

    def location(self, scope: str, cwd: Optional[str] = None) -> StorageLocation:
        """The single primary location for an explicit user/project scope."""
        if scope == "user":
            return StorageLocation("user", self.config.get_user_root())
        return StorageLocation("project", self.config.get_project_root(cwd))

    def locations(self, scope: str, cwd: Optional[str] = None) -> List[StorageLocation]:
        """Ordered locations to consult: user first, then project."""
        resolved = []
        if scope in ("user", "all"):
            resolved.append(self.location("user", cwd))
        if scope in ("project", "all"):
            resolved.append(self.location("project", cwd))
        return resolved
