"""Import allowlist scan over candidate source files."""

from __future__ import annotations

import ast
import re
from collections.abc import Iterable

from code_acceptance.agent.pipeline.models import SourceFile

_IMPORT_LINE = re.compile(r"^\s*(?:from\s+([\w.]+)\s+import|import\s+([\w.]+))", re.MULTILINE)


def is_import_allowed(module: str, allowed: Iterable[str]) -> bool:
    """Return whether ``module`` is an allowed entry or lives under one.

    ``pkg`` allows ``pkg`` and ``pkg.sub``; ``pkg.*`` allows only submodules.
    """
    for entry in allowed:
        if entry.endswith(".*"):
            if module.startswith(entry[:-1]):
                return True
            continue
        if module == entry or module.startswith(f"{entry}."):
            return True
    return False


def _imported_modules(source: str) -> list[tuple[int, str]]:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return [
            (source.count("\n", 0, match.start()) + 1, match.group(1) or match.group(2))
            for match in _IMPORT_LINE.finditer(source)
        ]
    modules: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            modules.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            modules.append((node.lineno, node.module))
    return modules


def scan_disallowed_imports(
    files: Iterable[SourceFile],
    allowed: Iterable[str],
    first_party: Iterable[str] = (),
) -> list[str]:
    """Return one violation per import outside the allowlist.

    Relative imports and imports of the candidate's own top-level modules are
    always allowed.
    """
    allowed_entries = tuple(allowed) + tuple(first_party)
    violations: list[str] = []
    for item in files:
        if not item.path.endswith(".py"):
            continue
        for line, module in _imported_modules(item.content):
            if not is_import_allowed(module, allowed_entries):
                violations.append(f"Disallowed import: {module} in {item.path}:{line}")
    return violations
