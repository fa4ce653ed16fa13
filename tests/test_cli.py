from __future__ import annotations

import pytest
from click.testing import CliRunner

from conftest import rows
from dvcs.cli import main


@pytest.fixture
def runner():
    return CliRunner()


def test_full_workflow(runner, workdir):
    assert runner.invoke(main, ["init"]).exit_code == 0
    (workdir / "hello.txt").write_text("hello, world\n", encoding="utf-8")

    assert runner.invoke(main, ["add", "hello.txt"]).exit_code == 0
    assert runner.invoke(main, ["commit", "Ada", "ada@example.com", "first"]).exit_code == 0
    assert runner.invoke(main, ["branch_create", "feature"]).exit_code == 0
    assert runner.invoke(main, ["branch_checkout", "feature"]).exit_code == 0

    for cmd in (["status"], ["log"], ["branches"]):
        result = runner.invoke(main, cmd)
        assert result.exit_code == 0, result.output

    (obj_hash,) = rows(workdir / ".dvcs" / "repo.db", "SELECT Hash FROM Objects")[0]
    shown = runner.invoke(main, ["show", obj_hash])
    assert shown.exit_code == 0
    assert shown.output == "hello, world\n"


def test_failures_exit_non_zero(runner, workdir):
    assert runner.invoke(main, ["status"]).exit_code == 1

    runner.invoke(main, ["init"])
    assert runner.invoke(main, ["init"]).exit_code == 1
    assert runner.invoke(main, ["add", "missing.txt"]).exit_code == 1
    assert runner.invoke(main, ["branch_create", "b"]).exit_code == 1
    assert runner.invoke(main, ["push"]).exit_code == 1
    assert runner.invoke(main, ["show", "abc"]).exit_code == 1


def test_commit_falls_back_to_configured_identity(runner, workdir, monkeypatch):
    monkeypatch.setenv("DVCS_AUTHOR", "Env Author")
    monkeypatch.setenv("DVCS_EMAIL", "env@example.com")
    runner.invoke(main, ["init"])
    (workdir / "a.txt").write_text("a", encoding="utf-8")
    runner.invoke(main, ["add", "a.txt"])

    assert runner.invoke(main, ["commit"]).exit_code == 1
    assert runner.invoke(main, ["commit", "", "", "from env"]).exit_code == 0
    assert rows(workdir / ".dvcs" / "repo.db", "SELECT Author, Email FROM Commits") == [
        ("Env Author", "env@example.com")
    ]


def test_push_and_pull_between_working_copies(runner, workdir, tmp_path, monkeypatch):
    other = tmp_path / "other"
    other.mkdir()
    runner.invoke(main, ["init", "--path", str(other)])
    runner.invoke(main, ["init"])
    (workdir / "a.txt").write_text("a", encoding="utf-8")
    runner.invoke(main, ["add", "a.txt"])
    runner.invoke(main, ["commit", "A", "a@x", "m"])

    assert runner.invoke(main, ["set_remote", "../other"]).exit_code == 0
    assert runner.invoke(main, ["push"]).exit_code == 0
    assert rows(other / ".dvcs" / "repo.db", "SELECT COUNT(*) FROM Commits") == [(1,)]

    monkeypatch.chdir(other)
    assert runner.invoke(main, ["set_remote", "../work"]).exit_code == 0
    assert runner.invoke(main, ["pull"]).exit_code == 0
    assert runner.invoke(main, ["revert"]).exit_code == 0
