# tests/unit/cli/test_bootstrap_unit.py
from __future__ import annotations

import os
from pathlib import Path

import pytest
import typer

from dagsmith.cli import bootstrap
from dagsmith.errors import CompileError, ConfigError, ModelExecutionError

# ---------------------------------------------------------------------------
# _parse_cli_vars
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_parse_cli_vars_key_value_pairs():
    out = bootstrap._parse_cli_vars(["limit=5", "day=2025-10-01", "name=abc", "flag=true"])
    assert out["limit"] == 5
    assert str(out["day"]) == "2025-10-01"
    assert out["name"] == "abc"
    assert out["flag"] is True


@pytest.mark.unit
def test_parse_cli_vars_yaml_mapping_and_later_wins():
    out = bootstrap._parse_cli_vars(["{limit: 5, methods: [card, cash]}", "limit=7"])
    assert out == {"limit": 7, "methods": ["card", "cash"]}


@pytest.mark.unit
@pytest.mark.parametrize("item", ["novalue", "{unclosed: ["])
def test_parse_cli_vars_rejects_garbage(item):
    with pytest.raises(typer.BadParameter):
        bootstrap._parse_cli_vars([item])


# ---------------------------------------------------------------------------
# _resolve_project_path
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_resolve_project_path_accepts_models_or_seeds(tmp_path: Path):
    (tmp_path / "seeds").mkdir()
    assert bootstrap._resolve_project_path(str(tmp_path)) == tmp_path.resolve()


@pytest.mark.unit
def test_resolve_project_path_errors(tmp_path: Path):
    with pytest.raises(typer.BadParameter, match="not found"):
        bootstrap._resolve_project_path(str(tmp_path / "missing"))

    f = tmp_path / "file.txt"
    f.write_text("x", encoding="utf-8")
    with pytest.raises(typer.BadParameter, match="not a directory"):
        bootstrap._resolve_project_path(str(f))

    with pytest.raises(typer.BadParameter, match="Invalid project"):
        bootstrap._resolve_project_path(str(tmp_path))


# ---------------------------------------------------------------------------
# _load_dotenv_layered
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_dotenv_layers_and_process_env_wins(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    proj = tmp_path / "proj"
    proj.mkdir()
    (tmp_path / ".env").write_text("LAYER_A=cwd\nLAYER_B=cwd\n", encoding="utf-8")
    (proj / ".env").write_text("LAYER_B=project\nLAYER_C=project\n", encoding="utf-8")
    (proj / ".env.dev").write_text("LAYER_C=dev\n", encoding="utf-8")
    (proj / ".env.dev.local").write_text("LAYER_D=dev-local\n", encoding="utf-8")
    (proj / ".env.prod").write_text("LAYER_D=prod\n", encoding="utf-8")
    for key in ("LAYER_A", "LAYER_B", "LAYER_C", "LAYER_D"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LAYER_PRESET", "shell")
    (proj / ".env.local").write_text("LAYER_PRESET=file\n", encoding="utf-8")

    bootstrap._load_dotenv_layered(proj, "dev")
    try:
        assert os.environ["LAYER_A"] == "cwd"
        assert os.environ["LAYER_B"] == "project"
        assert os.environ["LAYER_C"] == "dev"
        assert os.environ["LAYER_D"] == "dev-local"
        assert os.environ["LAYER_PRESET"] == "shell"
    finally:
        for key in ("LAYER_A", "LAYER_B", "LAYER_C", "LAYER_D"):
            os.environ.pop(key, None)


# ---------------------------------------------------------------------------
# exit code mapping
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "exc, code",
    [
        (ConfigError("bad"), bootstrap.EXIT_STATIC),
        (CompileError("cycle"), bootstrap.EXIT_STATIC),
        (ModelExecutionError("m", "m", "boom"), bootstrap.EXIT_RUNTIME),
    ],
)
def test_static_errors_exit_codes(exc, code):
    with pytest.raises(typer.Exit) as info, bootstrap.static_errors():
        raise exc
    assert info.value.exit_code == code


@pytest.mark.unit
def test_check_engine():
    assert bootstrap._check_engine(None) is None
    assert bootstrap._check_engine("postgres") == "postgres"
    with pytest.raises(typer.BadParameter, match="--engine"):
        bootstrap._check_engine("oracle")


@pytest.mark.unit
def test_prepare_context_builds_target(tmp_path: Path, monkeypatch):
    for key in ("DAGSMITH_ENGINE", "DAGSMITH_JOBS", "DAGSMITH_DUCKDB_PATH", "DAGSMITH_DUCKDB_SCHEMA"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    proj = tmp_path / "proj"
    (proj / "models").mkdir(parents=True)
    (proj / "models" / "a.sql").write_text("select 1 as id", encoding="utf-8")

    ctx = bootstrap._prepare_context(str(proj), "dev", None, ["x=1"], jobs=3)
    assert ctx.jobs == 3
    assert ctx.cli_vars == {"x": 1}
    assert ctx.target.engine == "duckdb"
    assert ctx.target.schema == "main"
    assert ctx.target_dir == proj.resolve() / "target"
    assert set(ctx.defs.nodes) == {"a"}
