"""Tests for compilation snapshots and diagnostics."""
from __future__ import annotations

import pytest

from src.generator_harness.compilation import (
    COMPILE_ERROR_ID,
    IMPLICIT_OPTIONAL_ID,
    PARSE_ERROR_ID,
    SYNTAX_WARNING_ID,
    UNRESOLVED_IMPORT_ID,
    CompilationOptions,
    Diagnostic,
    DiagnosticSeverity,
    Location,
    ParseOptions,
    SyntaxTree,
)


class TestSyntaxTree:
    """Tests for parsing source text."""

    def test_parse_valid_source(self):
        tree = SyntaxTree.parse("x = 1\n", path="Module.py")
        assert tree.root is not None
        assert tree.diagnostics == ()
        assert tree.module_name == "Module"

    def test_parse_error_is_recorded_not_raised(self):
        tree = SyntaxTree.parse("def broken(:\n", path="Broken.py")
        assert tree.root is None
        assert len(tree.diagnostics) == 1
        diagnostic = tree.diagnostics[0]
        assert diagnostic.id == PARSE_ERROR_ID
        assert diagnostic.severity == DiagnosticSeverity.ERROR
        assert diagnostic.location.path == "Broken.py"
        assert diagnostic.location.line == 1

    def test_module_name_ignores_generator_prefix(self):
        tree = SyntaxTree.parse("", path="Gen/Output.g.py")
        assert tree.module_name == "Output"

    def test_with_encoding_and_path_return_copies(self):
        tree = SyntaxTree.parse("x = 1\n", path="a.py")
        moved = tree.with_path("b.py").with_encoding("utf-8")
        assert tree.path == "a.py"
        assert tree.encoding is None
        assert moved.path == "b.py"
        assert moved.encoding == "utf-8"
        assert moved.root is tree.root


class TestParseOptions:
    def test_with_features_merges(self):
        options = ParseOptions().with_features({"a": "1"}).with_features({"b": "2"})
        assert options.get_feature("a") == "1"
        assert options.get_feature("b") == "2"
        assert options.get_feature("missing", "default") == "default"

    def test_with_features_does_not_mutate(self):
        options = ParseOptions()
        options.with_features({"a": "1"})
        assert options.features == ()


class TestDiagnostic:
    def test_str_includes_location_severity_and_id(self):
        diagnostic = Diagnostic(
            id="HG0001",
            message="something happened",
            severity=DiagnosticSeverity.ERROR,
            location=Location("File.py", 3, 5),
        )
        assert str(diagnostic) == "File.py(3,5): error HG0001: something happened"

    def test_severities_are_ordered(self):
        assert DiagnosticSeverity.HIDDEN < DiagnosticSeverity.INFO < DiagnosticSeverity.WARNING
        assert DiagnosticSeverity.WARNING < DiagnosticSeverity.ERROR


class TestCompilationSnapshots:
    """Snapshots are immutable; edits return new compilations."""

    def test_add_syntax_trees_leaves_original_untouched(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n"})
        extra = SyntaxTree.parse("b = 2\n", path="B.py")
        updated = compilation.add_syntax_trees(extra)
        assert len(compilation.syntax_trees) == 1
        assert [tree.path for tree in updated.syntax_trees] == ["A.py", "B.py"]

    def test_replace_syntax_tree_keeps_position(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n", "B.py": "b = 1\n"})
        replacement = SyntaxTree.parse("a = 2\n", path="A.py")
        updated = compilation.replace_syntax_tree(compilation.syntax_trees[0], replacement)
        assert updated.syntax_trees[0] is replacement
        assert updated.syntax_trees[1] is compilation.syntax_trees[1]

    def test_replace_unknown_tree_raises(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n"})
        stranger = SyntaxTree.parse("a = 1\n", path="A.py")
        with pytest.raises(ValueError, match="not part of this compilation"):
            compilation.replace_syntax_tree(stranger, stranger)

    def test_remove_syntax_trees(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n", "B.py": "b = 1\n"})
        updated = compilation.remove_syntax_trees(compilation.syntax_trees[0])
        assert [tree.path for tree in updated.syntax_trees] == ["B.py"]

    def test_generated_trees_are_separated(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n"})
        generated = SyntaxTree.parse("g = 1\n", path="Gen/G.py", is_generated=True)
        updated = compilation.add_syntax_trees(generated)
        assert updated.user_trees == compilation.syntax_trees
        assert updated.generated_trees == (generated,)
        assert updated.without_generated_trees().syntax_trees == compilation.syntax_trees

    def test_fingerprint_ignores_generated_trees(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n"})
        generated = SyntaxTree.parse("g = 1\n", path="Gen/G.py", is_generated=True)
        assert compilation.fingerprint() == compilation.add_syntax_trees(generated).fingerprint()

    def test_fingerprint_tracks_user_text(self, make_compilation):
        first = make_compilation({"A.py": "a = 1\n"})
        second = make_compilation({"A.py": "a = 2\n"})
        assert first.fingerprint() != second.fingerprint()

    def test_with_options_and_references(self, make_compilation):
        compilation = make_compilation({"A.py": "a = 1\n"})
        updated = compilation.with_options(CompilationOptions().with_nullable(False)).with_references([])
        assert updated.options.nullable is False
        assert updated.references == ()
        assert compilation.options.nullable is True


class TestCompilationDiagnostics:
    """Diagnostics reported for each tree of a compilation."""

    def test_clean_source_has_no_diagnostics(self, make_compilation):
        compilation = make_compilation({"A.py": "import json\nfrom fastapi import FastAPI\n"})
        assert compilation.get_diagnostics() == []

    def test_parse_errors_are_reported(self, make_compilation):
        compilation = make_compilation({"A.py": "x = (\n"})
        diagnostics = compilation.get_diagnostics()
        assert [d.id for d in diagnostics] == [PARSE_ERROR_ID]

    def test_compile_errors_are_reported(self, make_compilation):
        compilation = make_compilation({"A.py": "return 1\n"})
        diagnostics = compilation.get_diagnostics()
        assert [d.id for d in diagnostics] == [COMPILE_ERROR_ID]
        assert diagnostics[0].severity == DiagnosticSeverity.ERROR

    def test_compiler_warnings_are_reported(self, make_compilation):
        compilation = make_compilation({"A.py": "x = 1\nif x is 1:\n    pass\n"})
        diagnostics = compilation.get_diagnostics()
        assert any(d.id == SYNTAX_WARNING_ID for d in diagnostics)
        assert all(d.severity == DiagnosticSeverity.WARNING for d in diagnostics)

    def test_unresolved_import_is_an_error(self, make_compilation):
        compilation = make_compilation({"A.py": "import definitely_not_referenced_module\n"})
        diagnostics = compilation.get_diagnostics()
        assert [d.id for d in diagnostics] == [UNRESOLVED_IMPORT_ID]
        assert "definitely_not_referenced_module" in diagnostics[0].message
        assert diagnostics[0].location.line == 1

    def test_import_of_another_tree_resolves(self, make_compilation):
        compilation = make_compilation({"Models.py": "X = 1\n", "A.py": "from Models import X\n"})
        assert compilation.get_diagnostics() == []

    def test_relative_imports_are_not_checked(self, make_compilation):
        compilation = make_compilation({"A.py": "from . import sibling\n"})
        assert all(d.id != UNRESOLVED_IMPORT_ID for d in compilation.get_diagnostics())

    def test_implicit_optional_warns_when_nullable(self, make_compilation):
        source = "def f(name: str = None) -> None:\n    pass\n"
        diagnostics = make_compilation({"A.py": source}).get_diagnostics()
        assert [d.id for d in diagnostics] == [IMPLICIT_OPTIONAL_ID]
        assert diagnostics[0].severity == DiagnosticSeverity.WARNING

    @pytest.mark.parametrize(
        "annotation",
        ["Optional[str]", "str | None", "Union[str, None]", "Annotated[Optional[str], 1]", "Any", "'str'"],
    )
    def test_annotations_admitting_none_are_accepted(self, make_compilation, annotation):
        source = (
            "from typing import Annotated, Any, Optional, Union\n"
            f"def f(name: {annotation} = None) -> None:\n"
            "    pass\n"
        )
        assert make_compilation({"A.py": source}).get_diagnostics() == []

    def test_implicit_optional_ignored_when_nullable_disabled(self, make_compilation):
        source = "def f(name: str = None) -> None:\n    pass\n"
        compilation = make_compilation({"A.py": source}, options=CompilationOptions(nullable=False))
        assert compilation.get_diagnostics() == []

    def test_compile_tree_returns_code(self, make_compilation):
        compilation = make_compilation({"A.py": "value = 40 + 2\n"})
        code, diagnostics = compilation.compile_tree(compilation.syntax_trees[0])
        namespace: dict = {}
        exec(code, namespace)
        assert namespace["value"] == 42
        assert diagnostics == []

    def test_available_modules_include_references(self, make_compilation):
        compilation = make_compilation({"A.py": ""})
        available = compilation.available_modules()
        assert "fastapi" in available
        assert "json" in available
        assert "A" in available
