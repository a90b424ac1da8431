import ast
import pathlib
import sys

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = pathlib.Path(__file__).resolve().parent.parent
DIST_FOR_IMPORT = {"dotenv": "python-dotenv"}


def _third_party_imports():
    names = set()
    for path in (ROOT / "sdr").rglob("*.py"):
        for node in ast.walk(ast.parse(path.read_text(encoding="utf-8"))):
            if isinstance(node, ast.Import):
                names.update(alias.name.split(".")[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
                names.add(node.module.split(".")[0])
    return {n for n in names if n != "sdr" and n not in sys.stdlib_module_names}


def test_declared_dependencies_match_imports():
    project = tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))["project"]

    declared = set(project["dependencies"])

    assert {DIST_FOR_IMPORT.get(name, name) for name in _third_party_imports()} == declared
    assert project["optional-dependencies"]["test"] == ["pytest"]
