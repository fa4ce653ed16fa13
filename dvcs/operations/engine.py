"""
dvcs.operations.engine — The repository operations.

init / add / commit / revert work on the local working copy;
create_branch / checkout_branch move session state; set_remote / push /
pull synchronise two repository stores.

Every operation returns a ``DVCSOperationResponse`` and never raises: store
failures are caught here, logged and reported with ``success=False``.
"""

from __future__ import annotations

import functools
import logging
import os
import sqlite3
import zlib
from pathlib import Path
from typing import Any, Callable

from dvcs.core.database import RepositoryStores, is_repository_store
from dvcs.core.errors import (
    BranchExists,
    BranchNotFound,
    DVCSError,
    EmptyRepository,
    EnvironmentFailure,
    HashingFailed,
    InvalidRemote,
    MissingInformation,
    NoRemoteConfigured,
    NotAFile,
    ObjectNotFound,
    OutsideRepository,
    StorageFailure,
    UncommittedChanges,
    UnencodableText,
)
from dvcs.core.hasher import hash_stream, inflate
from dvcs.core.models import (
    NULL_COMMIT,
    REPO_DB_NAME,
    Branch,
    Commit,
    DVCSConfig,
    DVCSOperationResponse,
    Session,
    StoredObject,
    TransferDirection,
)

logger = logging.getLogger("dvcs.operations")


def _require_utf8(text: str, what: str) -> None:
    # OS paths and argv decode undecodable bytes to lone surrogates
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise UnencodableText(f"fatal: {what} {text!a} is not valid UTF-8") from exc


def _failure(operation: str, exc: Exception) -> DVCSOperationResponse:
    if isinstance(exc, DVCSError):
        err = exc
    elif isinstance(exc, sqlite3.Error):
        err = StorageFailure(f"Storage error: {exc}")
    elif isinstance(exc, UnicodeError):
        err = UnencodableText(f"Invalid text: {exc}")
    else:
        err = EnvironmentFailure(f"Filesystem error: {exc}")
    logger.warning("%s failed [%s]: %s", operation, err.kind, err.message)
    return DVCSOperationResponse(
        success=False, operation=operation, message=err.message, error=err.kind
    )


def operation(name: str) -> Callable:
    """Convert engine failures raised inside an operation into a response."""

    def decorator(fn: Callable[..., DVCSOperationResponse]) -> Callable[..., DVCSOperationResponse]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> DVCSOperationResponse:
            try:
                return fn(*args, **kwargs)
            except (DVCSError, sqlite3.Error, OSError, UnicodeError) as exc:
                return _failure(name, exc)

        return wrapper

    return decorator


@operation("init")
def init_repository(config: DVCSConfig) -> DVCSOperationResponse:
    """Create an empty repository at ``config.project_root``."""
    RepositoryStores.initialize(config).close()
    return DVCSOperationResponse(
        success=True,
        operation="init",
        branch=config.default_branch,
        message=f"initialized empty repository: {config.project_root}",
    )


class DVCSEngine:
    """
    Owns both stores of one working copy and exposes the repository
    operations.  Session state is re-read from the staging store at the
    start of each operation and handed explicitly to the stores.
    """

    def __init__(self, config: DVCSConfig, db: RepositoryStores) -> None:
        self.config = config
        self.db = db

    @classmethod
    def open(cls, config: DVCSConfig) -> "DVCSEngine":
        """Open an existing working copy; raises ``NotInitialized``."""
        return cls(config, RepositoryStores(config))

    # -- Public accessors --------------------------------------------------

    @property
    def session(self) -> Session:
        return self.db.staging.load_session()

    @property
    def active_branch(self) -> str:
        return self.session.current_branch

    @property
    def head_hash(self) -> str | None:
        bp = self.db.repo.get_branch(self.active_branch)
        return bp.head_commit if bp else None

    # ======================================================================
    # ADD
    # ======================================================================

    @operation("add")
    def add(self, file_path: str | Path) -> DVCSOperationResponse:
        """Stage a snapshot of *file_path*."""
        cwd = Path.cwd().resolve()
        abs_path = (cwd / Path(file_path)).resolve()
        if not abs_path.is_file():
            raise NotAFile(f"fatal: pathspec '{file_path}' did not match any files")
        if not (abs_path.is_relative_to(cwd) and abs_path.is_relative_to(self.config.project_root)):
            raise OutsideRepository(f"fatal: '{abs_path}' is outside repository")
        if abs_path.is_relative_to(self.config.dvcs_root):
            raise OutsideRepository(f"fatal: '{abs_path}' is inside the repository metadata")
        rel_path = abs_path.relative_to(self.config.project_root).as_posix()
        _require_utf8(rel_path, "path")

        try:
            with abs_path.open("rb") as fh:
                hashed = hash_stream(fh, self.config.compression_level)
        except OSError as exc:
            raise HashingFailed(f"Cannot read '{file_path}': {exc}") from exc
        if hashed is None:
            raise HashingFailed(f"Cannot hash '{file_path}'")

        self.db.staging.put_object(
            StoredObject(hash=hashed.hash, path=rel_path, size=hashed.size, content=hashed.content)
        )
        logger.info("ADD %s as %s (%d bytes)", rel_path, hashed.hash[:12], hashed.size)

        return DVCSOperationResponse(
            success=True,
            operation="add",
            message=f"Staged {rel_path}",
            detail={"hash": hashed.hash, "path": rel_path, "size": hashed.size},
        )

    # ======================================================================
    # COMMIT
    # ======================================================================

    @operation("commit")
    def commit(self, author: str, email: str, message: str) -> DVCSOperationResponse:
        """Fold the staging area into a new commit on the current branch."""
        if not (author and email and message):
            raise MissingInformation("Can't commit. Missing information")
        for what, text in (("author", author), ("email", email), ("message", message)):
            _require_utf8(text, what)

        session = self.session
        commit = Commit(
            parent_hash=session.current_commit,
            author=author,
            email=email,
            message=message,
        )
        commit.compute_hash()
        introduced = self.db.commit_staged(session, commit)

        logger.info(
            "COMMIT %s on %s (%d object(s)): %s",
            commit.short_hash, session.current_branch, introduced, message[:60],
        )
        return DVCSOperationResponse(
            success=True,
            operation="commit",
            commit_hash=commit.hash,
            branch=session.current_branch,
            message=f"[{session.current_branch} {commit.short_hash}] {message[:80]}",
            detail={"parent": commit.parent_hash, "objects": introduced},
        )

    # ======================================================================
    # REVERT
    # ======================================================================

    @operation("revert")
    def revert(self) -> DVCSOperationResponse:
        """Drop every uncommitted object."""
        dropped = self.db.staging.clear_objects()
        logger.info("REVERT dropped %d staged object(s)", dropped)
        return DVCSOperationResponse(
            success=True,
            operation="revert",
            message=f"Dropped {dropped} staged object(s)",
            detail={"dropped": dropped},
        )

    # ======================================================================
    # BRANCHES
    # ======================================================================

    @operation("branch_create")
    def create_branch(self, name: str) -> DVCSOperationResponse:
        """Create *name* at the current commit without switching to it."""
        if not name:
            raise MissingInformation("Branch name is required")
        if self.db.repo.get_branch(name) is not None:
            raise BranchExists(f"Branch '{name}' already exists.")
        if self.db.repo.count_commits() == 0:
            raise EmptyRepository(f"Can't create branch '{name}' in empty repository.")

        head = self.session.current_commit
        self.db.repo.insert_branch(Branch(name=name, head_commit=head))
        logger.info("BRANCH '%s' at %s", name, head[:12])

        return DVCSOperationResponse(
            success=True,
            operation="branch_create",
            commit_hash=head,
            branch=name,
            message=f"Created branch '{name}' at {head[:12]}",
        )

    @operation("branch_checkout")
    def checkout_branch(self, name: str) -> DVCSOperationResponse:
        """Make *name* the current branch; refuses while changes are staged."""
        bp = self.db.repo.get_branch(name)
        if bp is None:
            raise BranchNotFound(f"Can't checkout branch '{name}'. It doesn't exist.")
        if self.db.staging.count_objects() > 0:
            raise UncommittedChanges(
                f"Can't checkout '{name}' branch. Uncommitted changes detected."
            )

        session = self.session
        session.current_branch = name
        session.current_commit = bp.head_commit or NULL_COMMIT
        self.db.staging.save_session(session)
        logger.info("CHECKOUT '%s' at %s", name, session.current_commit[:12])

        return DVCSOperationResponse(
            success=True,
            operation="branch_checkout",
            commit_hash=session.current_commit,
            branch=name,
            message=f"Switched to branch '{name}'",
        )

    @operation("branches")
    def branches(self) -> DVCSOperationResponse:
        """All branches, with their heads, marking the active one."""
        active = self.active_branch
        listing = [
            {
                "name": b.name,
                "head": b.head_commit,
                "active": b.name == active,
                "commits": len(self.db.repo.branch_history(b.name)),
            }
            for b in self.db.repo.list_branches()
        ]
        return DVCSOperationResponse(
            success=True,
            operation="branches",
            branch=active,
            message=f"{len(listing)} branch(es)",
            detail={"branches": listing},
        )

    # ======================================================================
    # REMOTE / TRANSFER
    # ======================================================================

    @operation("set_remote")
    def set_remote(self, remote_path: str | Path) -> DVCSOperationResponse:
        """
        Record the repository to push to and pull from.

        *remote_path* is resolved against the repository root and may name
        either a repository store file or a working copy directory.
        """
        candidate = (self.config.project_root / Path(remote_path)).resolve()
        if candidate.is_dir():
            candidate = candidate / self.config.dvcs_root.name / REPO_DB_NAME
        if not is_repository_store(candidate):
            raise InvalidRemote(f"Remote must be a dvcs repository: '{remote_path}'")
        if candidate == self.config.repo_db_path.resolve():
            raise InvalidRemote("Remote can't be the local repository")

        try:
            stored = os.path.relpath(candidate, self.config.dvcs_root)
        except ValueError:
            # different drive on Windows
            stored = str(candidate)

        session = self.session
        session.remote = stored
        self.db.staging.save_session(session)
        logger.info("REMOTE set to %s", candidate)

        return DVCSOperationResponse(
            success=True,
            operation="set_remote",
            message=f"Remote set to {candidate}",
            detail={"remote": str(candidate)},
        )

    @operation("pull")
    def pull(self) -> DVCSOperationResponse:
        """Bring in every commit, object and branch head of the remote."""
        return self._transfer("pull", TransferDirection.TO_LOCAL)

    @operation("push")
    def push(self) -> DVCSOperationResponse:
        """Send every local commit, object and branch head to the remote."""
        return self._transfer("push", TransferDirection.TO_REMOTE)

    def _transfer(self, name: str, direction: TransferDirection) -> DVCSOperationResponse:
        remote = self._remote_path(self.session)
        written = self.db.transfer(direction, remote)
        logger.info("%s %s: %s", name.upper(), remote, written)
        return DVCSOperationResponse(
            success=True,
            operation=name,
            message=f"{name.capitalize()} complete ({sum(written.values())} row(s) written)",
            detail={"remote": str(remote), "written": written},
        )

    def _remote_path(self, session: Session) -> Path:
        if not session.remote:
            raise NoRemoteConfigured("No remote configured. Use set_remote first.")
        remote = (self.config.dvcs_root / session.remote).resolve()
        if not is_repository_store(remote):
            raise InvalidRemote(f"Remote '{remote}' is not a dvcs repository")
        return remote

    # ======================================================================
    # INSPECTION
    # ======================================================================

    @operation("status")
    def status(self) -> DVCSOperationResponse:
        session = self.session
        staged = self.db.staging.list_objects()
        remote = str((self.config.dvcs_root / session.remote).resolve()) if session.remote else None
        return DVCSOperationResponse(
            success=True,
            operation="status",
            commit_hash=session.current_commit,
            branch=session.current_branch,
            message=f"On branch {session.current_branch}",
            detail={
                "remote": remote,
                "staged": [o.model_dump(exclude={"content"}) for o in staged],
            },
        )

    @operation("log")
    def log(self, limit: int = 20) -> DVCSOperationResponse:
        """Commit history from the current commit back to the root."""
        session = self.session
        commits = self.db.repo.get_ancestors(session.current_commit, limit=limit)
        entries = [
            {
                "hash": c.hash,
                "short": c.short_hash,
                "parent": c.parent_hash,
                "author": c.author,
                "email": c.email,
                "message": c.message,
                "objects": [o.path for o in self.db.repo.objects_for_commit(c.hash)],
            }
            for c in commits
        ]
        return DVCSOperationResponse(
            success=True,
            operation="log",
            commit_hash=session.current_commit,
            branch=session.current_branch,
            message=f"{len(entries)} commit(s)",
            detail={"commits": entries},
        )

    @operation("show")
    def show(self, object_hash: str) -> DVCSOperationResponse:
        """Inflate a committed object."""
        obj = self.db.repo.get_object(object_hash)
        if obj is None:
            raise ObjectNotFound(f"Object '{object_hash}' not found")
        try:
            data = inflate(obj.content)
        except zlib.error as exc:
            raise StorageFailure(f"Object '{obj.hash}' is corrupt: {exc}") from exc
        return DVCSOperationResponse(
            success=True,
            operation="show",
            message=obj.path,
            detail={"hash": obj.hash, "path": obj.path, "size": obj.size, "data": data},
        )

    def close(self) -> None:
        self.db.close()
