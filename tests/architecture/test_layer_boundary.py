"""
Import-boundary enforcement for the layered packages.

Dependency direction (an arrow means "may import"):

    wms_services -> wms_config -> wms_modules -> wms_engines -> wms_kernel

1. Kernel purity      -- wms_kernel/** imports no outer layer; only
                         wms_kernel/db/** may touch SQLAlchemy.
2. Engine purity      -- wms_engines/** may not import DB drivers, ORM,
                         kernel db, modules, config or services, and may
                         not read the wall clock or environment.
3. Module boundary    -- wms_modules/** may not import config or services;
                         only orm.py files and the registry touch the DB.
4. Config internals   -- only wms_config/ imports wms_config.loader.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _relative(path: Path) -> str:
    return path.relative_to(ROOT).as_posix()


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *path*."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _extract_attribute_refs(path: Path) -> list[tuple[int, str]]:
    """Two-level attribute references such as ``datetime.now``."""
    tree = ast.parse(path.read_text(), filename=str(path))
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(files: list[Path], forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in files:
        for lineno, module in _extract_imports(path):
            if _matches_any(module, forbidden):
                found.append(f"  {_relative(path)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# 1. Kernel
# ---------------------------------------------------------------------------


class TestKernelBoundary:

    OUTER_LAYERS = ("wms_engines", "wms_modules", "wms_config", "wms_services")

    def test_kernel_imports_no_outer_layer(self):
        violations = _violations(_python_files("wms_kernel"), self.OUTER_LAYERS)
        assert not violations, "Kernel imports an outer layer:\n" + "\n".join(violations)

    def test_only_kernel_db_touches_sqlalchemy(self):
        files = [p for p in _python_files("wms_kernel") if "db" not in p.relative_to(ROOT).parts]
        violations = _violations(files, ("sqlalchemy", "psycopg2"))
        assert not violations, "Kernel domain imports the ORM:\n" + "\n".join(violations)


# ---------------------------------------------------------------------------
# 2. Engines
# ---------------------------------------------------------------------------


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "yaml",
        "wms_kernel.db",
        "wms_modules",
        "wms_config",
        "wms_services",
    )

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations(_python_files("wms_engines"), self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Engine purity violation -- wms_engines/** must not import DB "
            "drivers, ORM, modules, config or services:\n" + "\n".join(violations)
        )

    def test_no_impure_calls_in_engines(self):
        violations = [
            f"  {_relative(path)}:{lineno} calls '{qualname}'"
            for path in _python_files("wms_engines")
            for lineno, qualname in _extract_attribute_refs(path)
            if qualname in self.FORBIDDEN_CALLS
        ]
        assert not violations, (
            "Engines must take time from a Clock, not the wall clock:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# 3. Modules
# ---------------------------------------------------------------------------


class TestModuleBoundary:

    DB_FILES = {"orm.py", "_orm_registry.py"}

    def test_modules_do_not_import_config_or_services(self):
        violations = _violations(_python_files("wms_modules"), ("wms_config", "wms_services"))
        assert not violations, "Module imports an outer layer:\n" + "\n".join(violations)

    def test_only_orm_files_touch_the_database(self):
        files = [p for p in _python_files("wms_modules") if p.name not in self.DB_FILES]
        violations = _violations(files, ("sqlalchemy", "wms_kernel.db"))
        assert not violations, (
            "Lifecycle code must stay database-free:\n" + "\n".join(violations)
        )


# ---------------------------------------------------------------------------
# 4. Config
# ---------------------------------------------------------------------------


class TestConfigCentralization:

    def test_no_external_import_of_loader(self):
        files = [
            p for package in ("wms_kernel", "wms_engines", "wms_modules", "wms_services")
            for p in _python_files(package)
        ]
        violations = _violations(files, ("wms_config.loader",))
        assert not violations, (
            "Only wms_config/ may import its loader:\n" + "\n".join(violations)
        )

    def test_services_are_not_imported_by_anything_inside(self):
        files = [
            p for package in ("wms_kernel", "wms_engines", "wms_modules", "wms_config")
            for p in _python_files(package)
        ]
        violations = _violations(files, ("wms_services",))
        assert not violations, "wms_services is the outermost layer:\n" + "\n".join(violations)
