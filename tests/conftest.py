from __future__ import annotations

from pathlib import Path

import pytest

from tests._fixtures.assembly_builder import AssemblyTreeBuilder


@pytest.fixture
def tree(tmp_path: Path) -> AssemblyTreeBuilder:
    """Provide a scan root that tests can populate with assemblies."""
    return AssemblyTreeBuilder(tmp_path)
