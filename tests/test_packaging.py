from __future__ import annotations

import tomllib
from pathlib import Path

import dvcs

ROOT = Path(__file__).resolve().parent.parent


def _project() -> dict:
    return tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))["project"]


def test_version_comes_from_pyproject():
    assert dvcs.__version__ == _project()["version"]


def test_readme_if_declared_is_a_readme():
    readme = _project().get("readme")
    if readme is not None:
        assert (ROOT / readme).is_file()
        assert Path(readme).stem.upper() == "README"
