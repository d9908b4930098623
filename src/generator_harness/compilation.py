"""Immutable compilation snapshots over parsed Python source.

A ``Compilation`` is the unit every pipeline stage hands to the next: a set of
parsed syntax trees, a frozen reference set and the options used to parse and
compile them. Snapshots are never edited in place; every change returns a new
snapshot so each generator pass observes a fully consistent unit.
"""
from __future__ import annotations

import ast
import dataclasses
import hashlib
import logging
import sys
import warnings
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from types import CodeType
from typing import Iterable, Mapping

from src.generator_harness.references import MetadataReference

logger = logging.getLogger(__name__)

# Diagnostic identifiers
PARSE_ERROR_ID = "HG1001"
SYNTAX_WARNING_ID = "HG1002"
COMPILE_ERROR_ID = "HG1003"
UNRESOLVED_IMPORT_ID = "HG0246"
IMPLICIT_OPTIONAL_ID = "HG8625"

_ALWAYS_AVAILABLE = frozenset({"__future__", "__main__"})
_OPTIONAL_NAMES = frozenset({"Optional", "Any", "object"})


class DiagnosticSeverity(IntEnum):
    """Diagnostic severities, ordered so they can be compared."""
    HIDDEN = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


class OutputKind(str, Enum):
    """What an emitted artifact is loaded as."""
    MODULE = "module"
    SCRIPT = "script"


@dataclass(frozen=True)
class Location:
    """Position of a diagnostic inside a syntax tree."""
    path: str
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        return f"{self.path}({self.line},{self.column})"


@dataclass(frozen=True)
class Diagnostic:
    """A single compiler or generator message."""
    id: str
    message: str
    severity: DiagnosticSeverity
    location: Location | None = None

    def __str__(self) -> str:
        prefix = f"{self.location}: " if self.location else ""
        return f"{prefix}{self.severity.name.lower()} {self.id}: {self.message}"


@dataclass(frozen=True)
class ParseOptions:
    """Options controlling how source text becomes a syntax tree."""
    feature_version: tuple[int, int] | None = None
    features: tuple[tuple[str, str], ...] = ()

    def with_features(self, features: Mapping[str, str]) -> ParseOptions:
        merged = dict(self.features)
        merged.update(features)
        return dataclasses.replace(self, features=tuple(sorted(merged.items())))

    def get_feature(self, name: str, default: str | None = None) -> str | None:
        return dict(self.features).get(name, default)


@dataclass(frozen=True)
class CompilationOptions:
    """Options controlling compilation of syntax trees into code objects.

    ``nullable`` enables the implicit-Optional check: a parameter defaulting to
    ``None`` must be annotated with a type that admits ``None``.
    """
    output_kind: OutputKind = OutputKind.MODULE
    optimize: int = 0
    nullable: bool = True

    def with_nullable(self, nullable: bool) -> CompilationOptions:
        return dataclasses.replace(self, nullable=nullable)

    def with_optimize(self, optimize: int) -> CompilationOptions:
        return dataclasses.replace(self, optimize=optimize)


@dataclass(frozen=True)
class SyntaxTree:
    """Parsed source document; ``root`` is ``None`` when parsing failed."""
    path: str
    text: str
    root: ast.Module | None = field(default=None, compare=False, repr=False)
    options: ParseOptions = field(default_factory=ParseOptions)
    encoding: str | None = None
    diagnostics: tuple[Diagnostic, ...] = ()
    is_generated: bool = False

    @classmethod
    def parse(
        cls,
        text: str,
        path: str = "",
        options: ParseOptions | None = None,
        encoding: str | None = None,
        is_generated: bool = False,
    ) -> SyntaxTree:
        """Parse *text* into a tree, recording syntax errors as diagnostics."""
        options = options or ParseOptions()
        diagnostics: list[Diagnostic] = []
        root: ast.Module | None = None
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                root = ast.parse(
                    text, filename=path, feature_version=options.feature_version
                )
            except SyntaxError as exc:
                diagnostics.append(_syntax_error_diagnostic(exc, path, PARSE_ERROR_ID))
        diagnostics.extend(_warning_diagnostics(caught, path))
        return cls(
            path=path,
            text=text,
            root=root,
            options=options,
            encoding=encoding,
            diagnostics=tuple(diagnostics),
            is_generated=is_generated,
        )

    @property
    def module_name(self) -> str:
        return self.path.rsplit("/", 1)[-1].split(".", 1)[0]

    def get_text(self) -> str:
        return self.text

    def lines(self) -> list[str]:
        return self.text.splitlines()

    def with_encoding(self, encoding: str) -> SyntaxTree:
        return dataclasses.replace(self, encoding=encoding)

    def with_path(self, path: str) -> SyntaxTree:
        return dataclasses.replace(self, path=path)


@dataclass(frozen=True)
class Compilation:
    """Immutable snapshot of trees, references and options."""
    assembly_name: str
    syntax_trees: tuple[SyntaxTree, ...] = ()
    references: tuple[MetadataReference, ...] = ()
    options: CompilationOptions = field(default_factory=CompilationOptions)
    parse_options: ParseOptions = field(default_factory=ParseOptions)

    # ------------------------------------------------------------------
    # Snapshot edits
    # ------------------------------------------------------------------

    def add_syntax_trees(self, *trees: SyntaxTree) -> Compilation:
        return dataclasses.replace(self, syntax_trees=self.syntax_trees + tuple(trees))

    def remove_syntax_trees(self, *trees: SyntaxTree) -> Compilation:
        removed = {id(tree) for tree in trees}
        kept = tuple(t for t in self.syntax_trees if id(t) not in removed)
        return dataclasses.replace(self, syntax_trees=kept)

    def replace_syntax_tree(self, old: SyntaxTree, new: SyntaxTree) -> Compilation:
        """Return a snapshot with *old* swapped for *new* at the same position."""
        trees = list(self.syntax_trees)
        for index, tree in enumerate(trees):
            if tree is old:
                trees[index] = new
                return dataclasses.replace(self, syntax_trees=tuple(trees))
        raise ValueError(f"Syntax tree '{old.path}' is not part of this compilation")

    def with_references(self, references: Iterable[MetadataReference]) -> Compilation:
        return dataclasses.replace(self, references=tuple(references))

    def with_options(self, options: CompilationOptions) -> Compilation:
        return dataclasses.replace(self, options=options)

    @property
    def user_trees(self) -> tuple[SyntaxTree, ...]:
        return tuple(t for t in self.syntax_trees if not t.is_generated)

    @property
    def generated_trees(self) -> tuple[SyntaxTree, ...]:
        return tuple(t for t in self.syntax_trees if t.is_generated)

    def without_generated_trees(self) -> Compilation:
        return dataclasses.replace(self, syntax_trees=self.user_trees)

    def fingerprint(self) -> str:
        """Stable digest of everything a generator can observe."""
        digest = hashlib.sha256()
        digest.update(repr(self.options).encode())
        digest.update(repr(self.parse_options).encode())
        for reference in self.references:
            digest.update(reference.name.encode())
        for tree in self.user_trees:
            digest.update(tree.path.encode())
            digest.update(b"\0")
            digest.update(tree.text.encode("utf-8"))
            digest.update(b"\0")
        return digest.hexdigest()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def available_modules(self) -> frozenset[str]:
        """Top-level module names an import may resolve to."""
        names = set(sys.stdlib_module_names) | _ALWAYS_AVAILABLE
        names.update(reference.name for reference in self.references)
        names.update(tree.module_name for tree in self.syntax_trees)
        return frozenset(names)

    def compile_tree(self, tree: SyntaxTree) -> tuple[CodeType | None, list[Diagnostic]]:
        """Compile one tree, returning the code object and compiler messages."""
        if tree.root is None:
            return None, []
        diagnostics: list[Diagnostic] = []
        code: CodeType | None = None
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                code = compile(
                    tree.root,
                    tree.path,
                    "exec",
                    dont_inherit=True,
                    optimize=self.options.optimize,
                )
            except SyntaxError as exc:
                diagnostics.append(_syntax_error_diagnostic(exc, tree.path, COMPILE_ERROR_ID))
        diagnostics.extend(_warning_diagnostics(caught, tree.path))
        return code, diagnostics

    def get_diagnostics(self) -> list[Diagnostic]:
        """Collect parse, compile and semantic diagnostics for every tree."""
        available = self.available_modules()
        diagnostics: list[Diagnostic] = []
        for tree in self.syntax_trees:
            diagnostics.extend(tree.diagnostics)
            if tree.root is None:
                continue
            _, compile_diagnostics = self.compile_tree(tree)
            diagnostics.extend(compile_diagnostics)
            diagnostics.extend(_check_imports(tree, available))
            if self.options.nullable:
                diagnostics.extend(_check_implicit_optional(tree))
        return diagnostics


def _syntax_error_diagnostic(exc: SyntaxError, path: str, diagnostic_id: str) -> Diagnostic:
    return Diagnostic(
        id=diagnostic_id,
        message=exc.msg,
        severity=DiagnosticSeverity.ERROR,
        location=Location(path, exc.lineno or 0, exc.offset or 0),
    )


def _warning_diagnostics(caught: list[warnings.WarningMessage], path: str) -> list[Diagnostic]:
    return [
        Diagnostic(
            id=SYNTAX_WARNING_ID,
            message=f"{w.category.__name__}: {w.message}",
            severity=DiagnosticSeverity.WARNING,
            location=Location(path, w.lineno or 0, 0),
        )
        for w in caught
    ]


def _check_imports(tree: SyntaxTree, available: frozenset[str]) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    for node in ast.walk(tree.root):
        if isinstance(node, ast.Import):
            names = [alias.name for alias in node.names]
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            names = [node.module]
        else:
            continue
        for name in names:
            top_level = name.partition(".")[0]
            if top_level not in available:
                diagnostics.append(
                    Diagnostic(
                        id=UNRESOLVED_IMPORT_ID,
                        message=(
                            f"The module '{top_level}' could not be found "
                            f"(are you missing a reference?)"
                        ),
                        severity=DiagnosticSeverity.ERROR,
                        location=Location(tree.path, node.lineno, node.col_offset + 1),
                    )
                )
    return diagnostics


def _allows_none(annotation: ast.expr) -> bool:
    if isinstance(annotation, ast.Constant):
        # None itself, or a string annotation we do not evaluate
        return annotation.value is None or isinstance(annotation.value, str)
    if isinstance(annotation, ast.Name):
        return annotation.id in _OPTIONAL_NAMES
    if isinstance(annotation, ast.Attribute):
        return annotation.attr in _OPTIONAL_NAMES
    if isinstance(annotation, ast.BinOp) and isinstance(annotation.op, ast.BitOr):
        return _allows_none(annotation.left) or _allows_none(annotation.right)
    if isinstance(annotation, ast.Subscript):
        origin = annotation.value
        origin_name = origin.id if isinstance(origin, ast.Name) else getattr(origin, "attr", "")
        if origin_name == "Optional":
            return True
        members = annotation.slice.elts if isinstance(annotation.slice, ast.Tuple) else [annotation.slice]
        if origin_name == "Union":
            return any(_allows_none(member) for member in members)
        if origin_name == "Annotated" and members:
            return _allows_none(members[0])
    return False


def _check_implicit_optional(tree: SyntaxTree) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    for node in ast.walk(tree.root):
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            continue
        arguments = node.args
        positional = arguments.posonlyargs + arguments.args
        pairs = list(zip(positional[len(positional) - len(arguments.defaults):], arguments.defaults))
        pairs.extend(
            (arg, default)
            for arg, default in zip(arguments.kwonlyargs, arguments.kw_defaults)
            if default is not None
        )
        for arg, default in pairs:
            if arg.annotation is None:
                continue
            if isinstance(default, ast.Constant) and default.value is None and not _allows_none(arg.annotation):
                diagnostics.append(
                    Diagnostic(
                        id=IMPLICIT_OPTIONAL_ID,
                        message=(
                            f"Parameter '{arg.arg}' of '{node.name}' defaults to None "
                            f"but its annotation does not allow None"
                        ),
                        severity=DiagnosticSeverity.WARNING,
                        location=Location(tree.path, arg.lineno, arg.col_offset + 1),
                    )
                )
    return diagnostics
