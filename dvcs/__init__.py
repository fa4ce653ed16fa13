"""
dvcs — a minimal distributed version-control engine.

File snapshots are stored as content-addressed objects, grouped into
parent-linked commits under named branches, and exchanged between two
repositories by additive push/pull.
"""

from pathlib import Path
import tomllib
from importlib.metadata import version, PackageNotFoundError

def _resolve_version() -> str:
    """Resolve the dvcs version.

    Priority:
    1) Local source checkout version from pyproject.toml (if present)
    2) Installed package metadata
    3) Safe fallback
    """
    pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            data = {}
        ver = data.get("project", {}).get("version")
        if isinstance(ver, str) and ver.strip():
            return ver.strip()

    try:
        return version("dvcs")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _resolve_version()
