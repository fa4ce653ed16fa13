from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from dvcs.core.models import DVCSConfig
from dvcs.operations.engine import DVCSEngine, init_repository


def open_engine(root: Path) -> DVCSEngine:
    config = DVCSConfig.for_project(project_root=root)
    assert init_repository(config).success
    return DVCSEngine.open(config)


def rows(db_path: Path, query: str, params: tuple = ()) -> list[tuple]:
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute(query, params).fetchall()
    finally:
        conn.close()


def write_and_commit(engine: DVCSEngine, name: str, text: str, message: str) -> str:
    (engine.config.project_root / name).write_text(text, encoding="utf-8")
    assert engine.add(engine.config.project_root / name).success
    result = engine.commit("Author", "author@example.com", message)
    assert result.success, result.message
    return result.commit_hash


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    root = tmp_path / "work"
    root.mkdir()
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def engine(workdir):
    eng = open_engine(workdir)
    yield eng
    eng.close()


@pytest.fixture
def committed(engine):
    """A repository holding one commit of an empty ``test.txt``."""
    (engine.config.project_root / "test.txt").write_bytes(b"")
    assert engine.add("test.txt").success
    assert engine.commit("Author", "Email", "Message").success
    return engine
