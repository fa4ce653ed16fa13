"""
dvcs.core.database — The two SQLite stores behind a working copy.

Repository store (``.dvcs/repo.db``): objects, commit graph, branch heads
and the append-only branch/commit log.  Durable history.

Staging store (``.dvcs/staging.db``): objects added since the last commit
plus the three session metadata rows.

Operations that must touch both stores, or two repositories, run on one
connection with the second file ATTACHed, inside a single transaction.
SQLite commits attached databases atomically as long as neither uses WAL,
so neither store enables it.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from dvcs.core.errors import (
    AlreadyInitialized,
    EnvironmentFailure,
    NotInitialized,
    StorageFailure,
)
from dvcs.core.models import (
    Branch,
    Commit,
    DVCSConfig,
    MergePolicy,
    MetadataKey,
    Session,
    StoredObject,
    TransferDirection,
)

logger = logging.getLogger("dvcs.database")

# ---------------------------------------------------------------------------
# SQL DDL
# ---------------------------------------------------------------------------

_REPO_SCHEMA = (
    """CREATE TABLE {schema}.Objects(
        Hash    TEXT    NOT NULL PRIMARY KEY,
        Path    TEXT    NOT NULL,
        Size    INTEGER NOT NULL,
        Content BLOB)""",
    """CREATE TABLE {schema}.Commits(
        Hash        TEXT NOT NULL PRIMARY KEY,
        ParentHash  TEXT,
        Author      TEXT NOT NULL,
        Email       TEXT NOT NULL,
        Message     TEXT NOT NULL)""",
    """CREATE TABLE {schema}.CommitsObjects(
        ObjectHash TEXT NOT NULL,
        CommitHash TEXT NOT NULL,
        FOREIGN KEY (ObjectHash) REFERENCES Objects(Hash),
        FOREIGN KEY (CommitHash) REFERENCES Commits(Hash))""",
    """CREATE TABLE {schema}.Branches(
        Name        TEXT NOT NULL PRIMARY KEY,
        HeadCommit  TEXT,
        FOREIGN KEY (HeadCommit) REFERENCES Commits(Hash))""",
    """CREATE TABLE {schema}.BranchesCommits(
        BranchName TEXT NOT NULL,
        CommitHash TEXT NOT NULL,
        FOREIGN KEY (BranchName) REFERENCES Branches(Name),
        FOREIGN KEY (CommitHash) REFERENCES Commits(Hash))""",
    "CREATE INDEX {schema}.idx_commits_objects_commit ON CommitsObjects(CommitHash)",
    "CREATE INDEX {schema}.idx_branches_commits_branch ON BranchesCommits(BranchName)",
)

_STAGING_SCHEMA = (
    """CREATE TABLE {schema}.Objects(
        Hash    TEXT    NOT NULL PRIMARY KEY,
        Path    TEXT    NOT NULL,
        Size    INTEGER NOT NULL,
        Content BLOB)""",
    """CREATE TABLE {schema}.Metadata(
        Name   TEXT NOT NULL PRIMARY KEY
               CHECK(Name IN ('CurrentBranch', 'CurrentCommit', 'Remote')),
        Value  TEXT NOT NULL)""",
)


# ---------------------------------------------------------------------------
# Per-table merge policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TableSpec:
    """A repository table and how a transfer reconciles it."""
    name: str
    columns: tuple[str, ...]
    key: tuple[str, ...]
    policy: MergePolicy

    def merge_sql(self, source: str, destination: str = "main") -> str:
        cols = ", ".join(self.columns)
        if self.policy is MergePolicy.OVERWRITE:
            return (
                f"INSERT OR REPLACE INTO {destination}.{self.name} ({cols}) "
                f"SELECT {cols} FROM {source}.{self.name}"
            )
        src_cols = ", ".join(f"s.{c}" for c in self.columns)
        match = " AND ".join(f"d.{k} = s.{k}" for k in self.key)
        return (
            f"INSERT INTO {destination}.{self.name} ({cols}) "
            f"SELECT DISTINCT {src_cols} FROM {source}.{self.name} AS s "
            f"WHERE NOT EXISTS (SELECT 1 FROM {destination}.{self.name} AS d WHERE {match})"
        )


# Order matters: rows are written parents-first.
REPOSITORY_TABLES: tuple[TableSpec, ...] = (
    TableSpec("Objects", ("Hash", "Path", "Size", "Content"), ("Hash",), MergePolicy.ADDITIVE),
    TableSpec(
        "Commits",
        ("Hash", "ParentHash", "Author", "Email", "Message"),
        ("Hash",),
        MergePolicy.ADDITIVE,
    ),
    TableSpec(
        "CommitsObjects",
        ("ObjectHash", "CommitHash"),
        ("ObjectHash", "CommitHash"),
        MergePolicy.ADDITIVE,
    ),
    TableSpec("Branches", ("Name", "HeadCommit"), ("Name",), MergePolicy.OVERWRITE),
    TableSpec(
        "BranchesCommits",
        ("BranchName", "CommitHash"),
        ("BranchName", "CommitHash"),
        MergePolicy.ADDITIVE,
    ),
)


# ---------------------------------------------------------------------------
# Connections and transactions
# ---------------------------------------------------------------------------

def _connect(db_path: Path, readonly: bool = False) -> sqlite3.Connection:
    if readonly:
        conn = sqlite3.connect(
            f"{db_path.resolve().as_uri()}?mode=ro", uri=True, isolation_level=None
        )
    else:
        conn = sqlite3.connect(str(db_path), isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _atomic(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


@contextmanager
def joined_transaction(primary: Path, **attached: Path) -> Iterator[sqlite3.Connection]:
    """
    Open *primary* as ``main``, ATTACH each keyword as a named schema and
    run the body as one all-or-nothing transaction across every file.
    """
    conn = _connect(primary)
    try:
        for alias, path in attached.items():
            conn.execute(f"ATTACH DATABASE ? AS {alias}", (str(path),))
        with _atomic(conn):
            yield conn
        for alias in attached:
            conn.execute(f"DETACH DATABASE {alias}")
    finally:
        conn.close()


def is_repository_store(db_path: Path) -> bool:
    """True if *db_path* opens read-only and holds every repository table."""
    if not db_path.is_file():
        return False
    try:
        conn = _connect(db_path, readonly=True)
        try:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        finally:
            conn.close()
    except sqlite3.DatabaseError as exc:
        logger.debug("%s is not a repository store: %s", db_path, exc)
        return False
    names = {r["name"] for r in rows}
    return all(t.name in names for t in REPOSITORY_TABLES)


# ---------------------------------------------------------------------------
# Repository store
# ---------------------------------------------------------------------------

class RepositoryStore:
    """Read access to the commit graph, objects and branch directory."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn = _connect(db_path)

    # -- Commits -----------------------------------------------------------

    def count_commits(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM Commits").fetchone()[0]

    def get_commit(self, commit_hash: str) -> Commit | None:
        """Fetch a commit by full or short (prefix) hash."""
        row = self._conn.execute(
            "SELECT * FROM Commits WHERE Hash = ?", (commit_hash,)
        ).fetchone()
        if row is None and commit_hash:
            row = self._conn.execute(
                "SELECT * FROM Commits WHERE substr(Hash, 1, ?) = ? LIMIT 1",
                (len(commit_hash), commit_hash),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_commit(row)

    def get_ancestors(self, commit_hash: str, limit: int = 100) -> list[Commit]:
        """Walk the parent chain backwards, returning up to *limit* commits."""
        visited: list[Commit] = []
        seen: set[str] = set()
        h: str | None = commit_hash
        while h and h not in seen and len(visited) < limit:
            seen.add(h)
            c = self.get_commit(h)
            if c is None:
                break
            visited.append(c)
            h = None if c.is_root else c.parent_hash
        return visited

    # -- Objects -----------------------------------------------------------

    def get_object(self, object_hash: str) -> StoredObject | None:
        row = self._conn.execute(
            "SELECT * FROM Objects WHERE Hash = ?", (object_hash,)
        ).fetchone()
        if row is None and object_hash:
            row = self._conn.execute(
                "SELECT * FROM Objects WHERE substr(Hash, 1, ?) = ? LIMIT 1",
                (len(object_hash), object_hash),
            ).fetchone()
        return _row_to_object(row) if row else None

    def objects_for_commit(self, commit_hash: str) -> list[StoredObject]:
        """Objects introduced by *commit_hash* (content not loaded)."""
        rows = self._conn.execute(
            """SELECT o.Hash, o.Path, o.Size FROM Objects AS o
               JOIN CommitsObjects AS co ON co.ObjectHash = o.Hash
               WHERE co.CommitHash = ? ORDER BY o.Path""",
            (commit_hash,),
        ).fetchall()
        return [StoredObject(hash=r["Hash"], path=r["Path"], size=r["Size"]) for r in rows]

    # -- Branches ----------------------------------------------------------

    def get_branch(self, name: str) -> Branch | None:
        row = self._conn.execute(
            "SELECT * FROM Branches WHERE Name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return Branch(name=row["Name"], head_commit=row["HeadCommit"])

    def list_branches(self) -> list[Branch]:
        rows = self._conn.execute("SELECT * FROM Branches ORDER BY Name").fetchall()
        return [Branch(name=r["Name"], head_commit=r["HeadCommit"]) for r in rows]

    def insert_branch(self, branch: Branch) -> None:
        with _atomic(self._conn):
            self._conn.execute(
                "INSERT INTO Branches (Name, HeadCommit) VALUES (?, ?)",
                (branch.name, branch.head_commit),
            )

    def branch_history(self, name: str) -> list[str]:
        """Every commit ever attached to *name*, oldest first."""
        rows = self._conn.execute(
            "SELECT CommitHash FROM BranchesCommits WHERE BranchName = ? ORDER BY rowid",
            (name,),
        ).fetchall()
        return [r["CommitHash"] for r in rows]

    # -- Helpers -----------------------------------------------------------

    def table_counts(self) -> dict[str, int]:
        return {
            t.name: self._conn.execute(f"SELECT COUNT(*) FROM {t.name}").fetchone()[0]
            for t in REPOSITORY_TABLES
        }

    @staticmethod
    def _row_to_commit(row: sqlite3.Row) -> Commit:
        return Commit(
            hash=row["Hash"],
            parent_hash=row["ParentHash"],
            author=row["Author"],
            email=row["Email"],
            message=row["Message"],
        )

    def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Staging store
# ---------------------------------------------------------------------------

class StagingStore:
    """Uncommitted objects and the persisted session."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn = _connect(db_path)

    # -- Objects -----------------------------------------------------------

    def put_object(self, obj: StoredObject) -> None:
        with _atomic(self._conn):
            self._conn.execute(
                "INSERT OR REPLACE INTO Objects (Hash, Path, Size, Content) VALUES (?, ?, ?, ?)",
                (obj.hash, obj.path, obj.size, obj.content),
            )

    def count_objects(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM Objects").fetchone()[0]

    def list_objects(self) -> list[StoredObject]:
        rows = self._conn.execute(
            "SELECT Hash, Path, Size FROM Objects ORDER BY Path"
        ).fetchall()
        return [StoredObject(hash=r["Hash"], path=r["Path"], size=r["Size"]) for r in rows]

    def clear_objects(self) -> int:
        with _atomic(self._conn):
            cursor = self._conn.execute("DELETE FROM Objects")
        return cursor.rowcount

    # -- Session -----------------------------------------------------------

    def load_session(self) -> Session:
        rows = self._conn.execute("SELECT Name, Value FROM Metadata").fetchall()
        return Session.from_rows({r["Name"]: r["Value"] for r in rows})

    def save_session(self, session: Session) -> None:
        with _atomic(self._conn):
            self._conn.executemany(
                "INSERT OR REPLACE INTO Metadata (Name, Value) VALUES (?, ?)",
                session.as_rows(),
            )
            if not session.remote:
                self._conn.execute(
                    "DELETE FROM Metadata WHERE Name = ?", (MetadataKey.REMOTE.value,)
                )

    def close(self) -> None:
        self._conn.close()


def _row_to_object(row: sqlite3.Row) -> StoredObject:
    return StoredObject(
        hash=row["Hash"],
        path=row["Path"],
        size=row["Size"],
        content=row["Content"] or b"",
    )


# ---------------------------------------------------------------------------
# Working copy — unified façade
# ---------------------------------------------------------------------------

class RepositoryStores:
    """
    Unified façade over the repository and staging stores.

    Provides the multi-store transactions used by the operations layer
    (commit, checkout, transfer).
    """

    def __init__(self, config: DVCSConfig) -> None:
        if not config.is_initialized:
            raise NotInitialized(f"Not a dvcs repository: '{config.project_root}'")
        self.config = config
        try:
            self.repo = RepositoryStore(config.repo_db_path)
            self.staging = StagingStore(config.staging_db_path)
        except sqlite3.Error as exc:
            raise StorageFailure(f"Cannot open repository stores: {exc}") from exc

    # -- Initialisation ----------------------------------------------------

    @classmethod
    def initialize(cls, config: DVCSConfig) -> "RepositoryStores":
        """
        Create ``.dvcs/`` with both stores, a ``default`` branch with no
        head and a fresh session.  Leaves nothing behind on failure.
        """
        if config.dvcs_root.exists():
            raise AlreadyInitialized(
                f"Repository already initialized in '{config.project_root}'"
            )
        try:
            config.dvcs_root.mkdir()
        except OSError as exc:
            raise EnvironmentFailure(f"Cannot create '{config.dvcs_root}': {exc}") from exc

        try:
            session = Session(current_branch=config.default_branch)
            with joined_transaction(config.repo_db_path, Staging=config.staging_db_path) as conn:
                for stmt in _REPO_SCHEMA:
                    conn.execute(stmt.format(schema="main"))
                for stmt in _STAGING_SCHEMA:
                    conn.execute(stmt.format(schema="Staging"))
                conn.execute("INSERT INTO main.Branches (Name) VALUES (?)", (config.default_branch,))
                conn.executemany(
                    "INSERT INTO Staging.Metadata (Name, Value) VALUES (?, ?)",
                    session.as_rows(),
                )
        except (sqlite3.Error, OSError) as exc:
            shutil.rmtree(config.dvcs_root, ignore_errors=True)
            raise StorageFailure(f"Cannot create repository stores: {exc}") from exc

        logger.info("Initialised empty repository in %s", config.project_root)
        return cls(config)

    # -- Multi-store operations --------------------------------------------

    def commit_staged(self, session: Session, commit: Commit) -> int:
        """
        Fold every staged object into *commit* and advance the session's
        branch.  Returns the number of objects the commit introduced.
        """
        with joined_transaction(
            self.config.repo_db_path, Staging=self.config.staging_db_path
        ) as conn:
            staged = conn.execute("SELECT COUNT(*) FROM Staging.Objects").fetchone()[0]
            conn.execute(
                """INSERT OR IGNORE INTO main.Objects (Hash, Path, Size, Content)
                   SELECT Hash, Path, Size, Content FROM Staging.Objects"""
            )
            conn.execute(
                """INSERT OR IGNORE INTO main.Commits (Hash, ParentHash, Author, Email, Message)
                   VALUES (?, ?, ?, ?, ?)""",
                (commit.hash, commit.parent_hash, commit.author, commit.email, commit.message),
            )
            conn.execute(
                """INSERT INTO main.CommitsObjects (ObjectHash, CommitHash)
                   SELECT Hash, ? FROM Staging.Objects""",
                (commit.hash,),
            )
            conn.execute(
                "INSERT INTO main.BranchesCommits (BranchName, CommitHash) VALUES (?, ?)",
                (session.current_branch, commit.hash),
            )
            conn.execute(
                "INSERT OR REPLACE INTO main.Branches (Name, HeadCommit) VALUES (?, ?)",
                (session.current_branch, commit.hash),
            )
            conn.execute("DELETE FROM Staging.Objects")
            conn.execute(
                "INSERT OR REPLACE INTO Staging.Metadata (Name, Value) VALUES (?, ?)",
                (MetadataKey.CURRENT_COMMIT.value, commit.hash),
            )
        return staged

    def transfer(self, direction: TransferDirection, remote_db: Path) -> dict[str, int]:
        """
        Merge one repository store into another, table by table, according
        to each table's :class:`MergePolicy`.  Returns rows written per table.
        """
        if direction is TransferDirection.TO_LOCAL:
            source, destination = remote_db, self.config.repo_db_path
        else:
            source, destination = self.config.repo_db_path, remote_db

        written: dict[str, int] = {}
        with joined_transaction(destination, Source=source) as conn:
            for table in REPOSITORY_TABLES:
                cursor = conn.execute(table.merge_sql("Source"))
                written[table.name] = max(cursor.rowcount, 0)
        logger.debug("Transfer %s %s -> %s: %s", direction.value, source, destination, written)
        return written

    def close(self) -> None:
        self.repo.close()
        self.staging.close()
