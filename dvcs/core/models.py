"""
dvcs.core.models — Pydantic schemas for the repository data model.

Objects are content-addressed by the SHA-1 of their *compressed* bytes.
Commits are addressed by:
    hash = SHA-1( author || email || message || parent_hash )

The fields are concatenated with no delimiter, so two different field
splits of the same byte string share a digest.  This is kept for
compatibility with existing repositories.
"""

from __future__ import annotations

import hashlib
import os
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, computed_field

DVCS_DIR_NAME = ".dvcs"
REPO_DB_NAME = "repo.db"
STAGING_DB_NAME = "staging.db"
DEFAULT_BRANCH = "default"
NULL_COMMIT = "0" * 40


# ---------------------------------------------------------------------------
# Repository discovery
# ---------------------------------------------------------------------------

def discover_dvcs_root(start: Path | None = None) -> Path | None:
    """
    Walk up from *start* (default: CWD) looking for a ``.dvcs/`` directory.

    Returns the **project root** (parent of ``.dvcs/``), or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / DVCS_DIR_NAME).is_dir():
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class MetadataKey(StrEnum):
    """The only names allowed in the staging ``Metadata`` table."""
    CURRENT_BRANCH = "CurrentBranch"
    CURRENT_COMMIT = "CurrentCommit"
    REMOTE = "Remote"


class MergePolicy(StrEnum):
    """How a transfer reconciles a table between two repository stores."""
    ADDITIVE = "additive"       # first write wins, existing rows untouched
    OVERWRITE = "overwrite"     # last write wins, source replaces destination


class TransferDirection(StrEnum):
    TO_LOCAL = "to_local"       # pull: remote -> local
    TO_REMOTE = "to_remote"     # push: local -> remote


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------

class HashedContent(BaseModel):
    """Output of the content hasher."""
    hash: str
    content: bytes
    size: int = 0               # uncompressed bytes consumed


class StoredObject(BaseModel):
    """A whole-file snapshot, staged or committed."""
    hash: str
    path: str
    size: int
    content: bytes = b""


class Commit(BaseModel):
    hash: str = ""
    parent_hash: str = NULL_COMMIT
    author: str
    email: str
    message: str

    def compute_hash(self) -> str:
        """Derive the commit digest from its fields and parent."""
        data = f"{self.author}{self.email}{self.message}{self.parent_hash}"
        self.hash = hashlib.sha1(data.encode("utf-8")).hexdigest()
        return self.hash

    @computed_field  # type: ignore[prop-decorator]
    @property
    def short_hash(self) -> str:
        return self.hash[:12] if self.hash else ""

    @property
    def is_root(self) -> bool:
        return self.parent_hash == NULL_COMMIT


class Branch(BaseModel):
    """A named pointer to the tip of a commit chain."""
    name: str
    head_commit: str | None = None


class Session(BaseModel):
    """
    The working copy's session state, persisted as three rows of the
    staging ``Metadata`` table.

    Loaded once per operation and passed explicitly to the stores.
    """
    current_branch: str = DEFAULT_BRANCH
    current_commit: str = NULL_COMMIT
    remote: str | None = None

    def as_rows(self) -> list[tuple[str, str]]:
        rows = [
            (MetadataKey.CURRENT_BRANCH.value, self.current_branch),
            (MetadataKey.CURRENT_COMMIT.value, self.current_commit),
        ]
        if self.remote:
            rows.append((MetadataKey.REMOTE.value, self.remote))
        return rows

    @classmethod
    def from_rows(cls, rows: dict[str, str]) -> "Session":
        return cls(
            current_branch=rows.get(MetadataKey.CURRENT_BRANCH, DEFAULT_BRANCH),
            current_commit=rows.get(MetadataKey.CURRENT_COMMIT, NULL_COMMIT),
            remote=rows.get(MetadataKey.REMOTE) or None,
        )


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------

class DVCSOperationResponse(BaseModel):
    """Unified response envelope for all engine operations."""
    success: bool
    operation: str
    message: str = ""
    error: str | None = None            # exception class name on failure
    commit_hash: str | None = None
    branch: str | None = None
    detail: dict[str, Any] = Field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class DVCSConfig(BaseModel):
    """Runtime configuration for one working copy."""
    project_root: Path = Path(".")
    dvcs_root: Path = Path(DVCS_DIR_NAME)
    repo_db_path: Path = Path(DVCS_DIR_NAME) / REPO_DB_NAME
    staging_db_path: Path = Path(DVCS_DIR_NAME) / STAGING_DB_NAME
    default_branch: str = DEFAULT_BRANCH
    compression_level: int = -1         # zlib.Z_DEFAULT_COMPRESSION
    author: str = ""
    email: str = ""

    @property
    def is_initialized(self) -> bool:
        return self.repo_db_path.is_file() and self.staging_db_path.is_file()

    @classmethod
    def for_project(cls, project_root: Path | None = None, **overrides: Any) -> "DVCSConfig":
        """
        Build a config anchored to a specific project directory.

        Resolution order (highest priority first):
          1. Explicit ``overrides`` keyword arguments
          2. Environment variables (DVCS_COMPRESSION_LEVEL, DVCS_AUTHOR, …)
          3. Built-in defaults

        If *project_root* is ``None``, :func:`discover_dvcs_root` is used to
        walk up from CWD.  If still not found, CWD is used.
        """
        if project_root is None:
            project_root = discover_dvcs_root()
        if project_root is None:
            project_root = Path.cwd()
        project_root = Path(project_root).resolve()

        level = overrides.pop("compression_level", None)
        if level is None:
            level = int(os.getenv("DVCS_COMPRESSION_LEVEL", "-1"))

        root = project_root / DVCS_DIR_NAME
        return cls(
            project_root=project_root,
            dvcs_root=root,
            repo_db_path=root / REPO_DB_NAME,
            staging_db_path=root / STAGING_DB_NAME,
            compression_level=level,
            author=overrides.pop("author", None) or os.getenv("DVCS_AUTHOR", ""),
            email=overrides.pop("email", None) or os.getenv("DVCS_EMAIL", ""),
            **overrides,
        )
