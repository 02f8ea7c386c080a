from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest


@pytest.fixture(scope="session")
def repo_root() -> Path:
    # tests/workflow/ -> tests -> repo_root
    return Path(__file__).resolve().parents[2]


@pytest.fixture(scope="session")
def venv_python(repo_root: Path) -> str:
    # Prefer the project venv; fall back to the running interpreter
    win_path = repo_root / ".venv" / "Scripts" / "python.exe"
    posix_path = repo_root / ".venv" / "bin" / "python"
    if win_path.exists():
        return str(win_path)
    if posix_path.exists():
        return str(posix_path)
    return sys.executable


@pytest.fixture(scope="session")
def tmp_dir(repo_root: Path) -> Path:
    d = repo_root / ".pytest-tmp"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def tmp_db_url(tmp_dir: Path) -> str:
    db_file = tmp_dir / "bmark_manager_e2e.db"
    # Ensure a clean slate for each test function that uses this fixture
    if db_file.exists():
        db_file.unlink()
    # Relative to the repo root; scripts anchor relative sqlite paths there
    rel = Path(".pytest-tmp") / db_file.name
    return f"sqlite:///./{rel.as_posix()}"


def run_cli(args: list[str], cwd: Path, env: dict | None = None) -> subprocess.CompletedProcess:
    # Execute a command without invoking a shell to avoid quoting issues
    merged_env = {k: v for k, v in os.environ.items() if not k.startswith("BMARK_")}
    # Ensure Python can import modules from the repo root (db/, marks/, etc.)
    py_path = merged_env.get("PYTHONPATH", "")
    sep = ";" if os.name == "nt" else ":"
    if str(cwd) not in (py_path.split(sep) if py_path else []):
        merged_env["PYTHONPATH"] = (py_path + (sep if py_path else "") + str(cwd))
    if env:
        merged_env.update(env)
    return subprocess.run(args, cwd=str(cwd), capture_output=True, text=True, env=merged_env)


@pytest.fixture
def cli(repo_root: Path):
    def _runner(argv: list[str], env: dict | None = None):
        return run_cli(argv, repo_root, env=env)
    return _runner


@pytest.fixture
def seeded_db(cli, venv_python: str, tmp_db_url: str) -> str:
    """Schema, the shipped rule table and a few marks in a fresh file DB."""
    steps = [
        ["scripts/00_bootstrap/bootstrap_db.py", "--db-url", tmp_db_url, "--use-metadata"],
        ["scripts/20_loaders/load_size_rules.py", "--db-url", tmp_db_url, "--commit"],
        ["scripts/20_loaders/load_free_marks.py", "--db-url", tmp_db_url, "--series", "ogk", "--end", "5", "--commit"],
    ]
    for step in steps:
        cp = cli([venv_python] + step)
        assert cp.returncode == 0, f"{step[0]} failed:\n{cp.stdout}\n{cp.stderr}"
    return tmp_db_url
