"""Project metadata checks for pyproject.toml."""

from __future__ import annotations

import tomllib
from pathlib import Path

_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _project() -> dict:
    with _PYPROJECT.open("rb") as handle:
        return tomllib.load(handle)["project"]


def test_project_declares_runtime_dependencies() -> None:
    dependencies = " ".join(_project()["dependencies"])

    assert "PyYAML" in dependencies
    assert "tabulate" in dependencies


def test_project_exposes_console_script() -> None:
    assert _project()["scripts"]["asmscan"] == "asmscan.cli:main"


def test_project_has_no_long_description_file() -> None:
    assert "readme" not in _project()
