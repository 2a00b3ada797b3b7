"""Architectural tests for the draft synchronization service.

All tests are static/AST-based to avoid runtime side effects. They pin the
layering: routes delegate to the logic layer, SQL lives only in the
repository, the resolver never relies on a native upsert, and no module
creates a database engine at import time.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
PKG_DIR = PROJECT_ROOT / "draftsync"
ROUTES_DIR = PKG_DIR / "routes"
LOGIC_DIR = PKG_DIR / "logic"
CLIENT_DIR = PKG_DIR / "client"


def py_files_under(*roots: Path) -> list[Path]:
    files: list[Path] = []
    for root in roots:
        if not root.exists():
            continue
        for p in root.rglob("*.py"):
            if "__pycache__" in p.parts:
                continue
            files.append(p)
    return files


@dataclass
class ParsedModule:
    path: Path
    tree: ast.AST
    source: str


def parse_module_safe(path: Path) -> Optional[ParsedModule]:
    try:
        code = path.read_text(encoding="utf-8")
    except OSError:
        return None
    try:
        return ParsedModule(path=path, tree=ast.parse(code, filename=str(path)), source=code)
    except SyntaxError:
        return None


def parse_many(files: Iterable[Path]) -> list[ParsedModule]:
    result: list[ParsedModule] = []
    for f in files:
        pm = parse_module_safe(f)
        if pm is not None:
            result.append(pm)
    return result


def imported_modules(tree: ast.AST) -> set[str]:
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            names.add(node.module)
    return names


def string_constants(tree: ast.AST) -> list[str]:
    return [n.value for n in ast.walk(tree) if isinstance(n, ast.Constant) and isinstance(n.value, str)]


def test_all_package_modules_parse():
    files = py_files_under(PKG_DIR)

    assert files, "package sources not found"
    assert len(parse_many(files)) == len(files)


def test_routes_do_not_touch_sql():
    for pm in parse_many(py_files_under(ROUTES_DIR)):
        imports = imported_modules(pm.tree)
        assert "draftsync.logic.repository_responses" not in imports, pm.path
        for s in string_constants(pm.tree):
            upper = s.upper()
            assert "INSERT INTO" not in upper and "UPDATE RESPONSES" not in upper, pm.path


def test_sql_lives_only_in_repository():
    repo_path = LOGIC_DIR / "repository_responses.py"
    for pm in parse_many(py_files_under(LOGIC_DIR)):
        if pm.path == repo_path:
            continue
        for s in string_constants(pm.tree):
            assert "FROM responses" not in s and "INTO responses" not in s, pm.path


def test_no_native_upsert_anywhere():
    for pm in parse_many(py_files_under(PKG_DIR)):
        for s in string_constants(pm.tree):
            assert "ON CONFLICT" not in s.upper(), pm.path
        for node in ast.walk(pm.tree):
            if isinstance(node, ast.Attribute):
                assert node.attr != "on_conflict_do_update", pm.path


def test_resolver_uses_update_then_insert():
    pm = parse_module_safe(LOGIC_DIR / "draft_resolver.py")
    assert pm is not None
    calls = [
        node.func.attr
        for node in sorted(
            (n for n in ast.walk(pm.tree) if isinstance(n, ast.Call) and isinstance(n.func, ast.Attribute)),
            key=lambda n: n.lineno,
        )
    ]

    assert "update_draft" in calls
    assert "insert_draft" in calls
    assert calls.index("update_draft") < calls.index("insert_draft")


def test_no_engine_created_at_import_time():
    for pm in parse_many(py_files_under(PKG_DIR)):
        for stmt in pm.tree.body:  # type: ignore[attr-defined]
            if not isinstance(stmt, (ast.Assign, ast.AnnAssign, ast.Expr)):
                continue
            for node in ast.walk(stmt):
                if isinstance(node, ast.Call):
                    func = node.func
                    name = func.id if isinstance(func, ast.Name) else getattr(func, "attr", "")
                    assert name not in {"create_engine", "build_engine", "create_app"}, pm.path


def test_client_does_not_import_server_layers():
    forbidden = {"sqlalchemy", "fastapi", "draftsync.routes", "draftsync.db", "draftsync.logic.repository_responses"}
    for pm in parse_many(py_files_under(CLIENT_DIR)):
        for name in imported_modules(pm.tree):
            assert not any(name == f or name.startswith(f + ".") for f in forbidden), (pm.path, name)


def test_logic_layer_is_framework_free():
    for pm in parse_many(py_files_under(LOGIC_DIR)):
        for name in imported_modules(pm.tree):
            assert not name.startswith(("fastapi", "starlette", "httpx")), (pm.path, name)


def test_no_bare_except_in_package():
    for pm in parse_many(py_files_under(PKG_DIR)):
        for node in ast.walk(pm.tree):
            if isinstance(node, ast.ExceptHandler):
                assert node.type is not None, pm.path
