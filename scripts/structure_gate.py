#!/usr/bin/env python3
from __future__ import annotations

import ast
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Limits:
    max_file_loc: int
    max_func_loc: int
    max_cc: int


REPO_ROOT = Path(__file__).resolve().parents[1]
PACKAGE = "bidi_driver"

# Protocol plumbing: keep these small and flat.
STRICT_FILES: dict[str, Limits] = {
    "bidi_driver/connection.py": Limits(max_file_loc=260, max_func_loc=50, max_cc=12),
    "bidi_driver/transport.py": Limits(max_file_loc=260, max_func_loc=50, max_cc=14),
    "bidi_driver/core/event_emitter.py": Limits(max_file_loc=200, max_func_loc=40, max_cc=10),
}

ALLOWLIST_FILES: dict[str, Limits] = {
    # The browser-side helper source is one large string literal.
    "bidi_driver/injected.py": Limits(max_file_loc=300, max_func_loc=40, max_cc=10),
    # Value codecs branch once per protocol value type.
    "bidi_driver/serializer.py": Limits(max_file_loc=300, max_func_loc=80, max_cc=40),
}

DEFAULT_LIMITS = Limits(max_file_loc=400, max_func_loc=80, max_cc=20)

# The object tree mirrors protocol state only; it must not reach up into the
# frame/realm layer, the reactor or the public facade.
CORE_FORBIDDEN_IMPORTS = ("frame", "realm", "wait_task", "reactor", "browser", "js_handle")

SKIP_DIRS = {".git", ".venv", ".pytest_cache", "__pycache__", "build", "dist"}


def _iter_python_files(root: Path) -> list[Path]:
    out: list[Path] = []
    for p in sorted(root.rglob("*.py")):
        if any(part in SKIP_DIRS for part in p.parts):
            continue
        out.append(p)
    return out


def _limits_for(rel: str) -> Limits:
    if rel in STRICT_FILES:
        return STRICT_FILES[rel]
    if rel in ALLOWLIST_FILES:
        return ALLOWLIST_FILES[rel]
    return DEFAULT_LIMITS


class _CcVisitor(ast.NodeVisitor):
    def __init__(self) -> None:
        self.cc = 1

    def _branch(self, node: ast.AST, weight: int = 1) -> None:
        self.cc += weight
        self.generic_visit(node)

    def visit_If(self, node: ast.If) -> None:  # noqa: N802
        self._branch(node)

    def visit_For(self, node: ast.For) -> None:  # noqa: N802
        self._branch(node)

    def visit_AsyncFor(self, node: ast.AsyncFor) -> None:  # noqa: N802
        self._branch(node)

    def visit_While(self, node: ast.While) -> None:  # noqa: N802
        self._branch(node)

    def visit_Try(self, node: ast.Try) -> None:  # noqa: N802
        self._branch(node, len(node.handlers))

    def visit_BoolOp(self, node: ast.BoolOp) -> None:  # noqa: N802
        self._branch(node, max(0, len(node.values) - 1))

    def visit_IfExp(self, node: ast.IfExp) -> None:  # noqa: N802
        self._branch(node)

    def visit_comprehension(self, node: ast.comprehension) -> None:  # noqa: N802
        self._branch(node, 1 + len(node.ifs))

    def visit_Match(self, node: ast.Match) -> None:  # noqa: N802
        self._branch(node, len(node.cases))

    # Nested definitions are measured on their own.
    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:  # noqa: N802
        return

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:  # noqa: N802
        return


def _cc_for(node: ast.FunctionDef | ast.AsyncFunctionDef) -> int:
    v = _CcVisitor()
    for child in node.body:
        v.visit(child)
    return v.cc


def _loc_for(node: ast.AST) -> int:
    lineno = getattr(node, "lineno", None)
    end_lineno = getattr(node, "end_lineno", None)
    if isinstance(lineno, int) and isinstance(end_lineno, int) and end_lineno >= lineno:
        return end_lineno - lineno + 1
    return 0


def _core_import_errors(rel: str, tree: ast.AST) -> list[str]:
    if not rel.startswith(f"{PACKAGE}/core/"):
        return []
    errors: list[str] = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.ImportFrom):
            continue
        module = node.module or ""
        if node.level == 2:
            target = module.split(".", 1)[0]
        elif node.level == 0 and module.startswith(f"{PACKAGE}."):
            target = module.split(".")[1]
        else:
            continue
        if target in CORE_FORBIDDEN_IMPORTS:
            errors.append(f"{rel}:{node.lineno}: core must not import {PACKAGE}.{target}")
    return errors


def check_files(paths: list[Path], root: Path) -> list[str]:
    errors: list[str] = []
    for path in paths:
        rel = path.relative_to(root).as_posix()
        limits = _limits_for(rel)

        try:
            source = path.read_text(encoding="utf-8")
        except OSError as e:
            errors.append(f"{rel}: failed to read ({e})")
            continue
        loc = len(source.splitlines())
        if loc > limits.max_file_loc:
            errors.append(f"{rel}: file too large (loc={loc}, max={limits.max_file_loc})")

        try:
            tree = ast.parse(source, filename=rel)
        except SyntaxError as e:
            errors.append(f"{rel}: syntax error ({e})")
            continue

        errors.extend(_core_import_errors(rel, tree))
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            fn = f"{rel}:{node.lineno} {node.name}"
            fn_loc = _loc_for(node)
            if fn_loc > limits.max_func_loc:
                errors.append(f"{fn}: function too large (loc={fn_loc}, max={limits.max_func_loc})")
            cc = _cc_for(node)
            if cc > limits.max_cc:
                errors.append(f"{fn}: cyclomatic too high (cc={cc}, max={limits.max_cc})")
    return errors


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    root = Path(args[0]).resolve() if args else REPO_ROOT
    errors = check_files(_iter_python_files(root / PACKAGE), root)

    if errors:
        print("== structure gate errors ==", file=sys.stderr)
        for e in errors:
            print(f"- {e}", file=sys.stderr)
        print(f"\nFAIL: structure gate ({len(errors)} error(s)).", file=sys.stderr)
        return 2

    print("OK: structure gate")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
