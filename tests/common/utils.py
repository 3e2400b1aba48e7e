from __future__ import annotations

import textwrap
from pathlib import Path


def project_root(start: Path | None = None) -> Path:
    marker_files = {"pyproject.toml", "setup.cfg", ".git"}
    path = (start or Path(__file__)).resolve()
    for parent in [path, *path.parents]:
        if any((parent / marker).exists() for marker in marker_files):
            return parent
    raise RuntimeError("Cannot determine project root; missing marker file?")


ROOT = project_root(Path(__file__))
JAFFLE_SHOP = ROOT / "examples" / "jaffle_shop"


def write_files(base: Path, files: dict[str, str]) -> Path:
    """Write `{relative_path: content}` below `base` (content is dedented)."""
    for rel, content in files.items():
        p = base / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
    return base
