"""Tests for shared error classes."""
from __future__ import annotations

from pathlib import Path

import pytest

from src.generator_harness.compilation import Diagnostic, DiagnosticSeverity, Location
from src.shared.errors import (
    ArtifactFormatError,
    BaselineMismatchError,
    BaselineRegeneratedError,
    CompilationError,
    EmitError,
    EntryPointNotFoundError,
    GeneratorTimeoutError,
    HarnessError,
    ResponseVerificationError,
    ServiceNotRegisteredError,
    UnexpectedCountError,
)


def _diagnostic(diagnostic_id: str = "HG1001") -> Diagnostic:
    return Diagnostic(diagnostic_id, "bad things", DiagnosticSeverity.ERROR, Location("A.py", 1, 2))


class TestHarnessError:
    """Every harness error is an assertion failure."""

    @pytest.mark.parametrize(
        "error_type",
        [
            ArtifactFormatError,
            BaselineMismatchError,
            BaselineRegeneratedError,
            CompilationError,
            EmitError,
            EntryPointNotFoundError,
            GeneratorTimeoutError,
            ResponseVerificationError,
            ServiceNotRegisteredError,
            UnexpectedCountError,
        ],
    )
    def test_inherits_from_harness_error(self, error_type):
        assert issubclass(error_type, HarnessError)
        assert issubclass(error_type, AssertionError)


class TestCompilationError:
    def test_message_lists_diagnostics(self):
        err = CompilationError([_diagnostic(), _diagnostic("HG0246")])
        message = str(err)
        assert message.startswith("compile stage reported 2 diagnostic(s):")
        assert "A.py(1,2): error HG1001: bad things" in message
        assert "HG0246" in message
        assert err.stage == "compile"
        assert len(err.diagnostics) == 2

    def test_custom_stage(self):
        assert CompilationError([], stage="generator").stage == "generator"

    def test_emit_error_stage(self):
        err = EmitError([_diagnostic()])
        assert isinstance(err, CompilationError)
        assert err.stage == "emit"
        assert str(err).startswith("emit stage")


class TestOtherErrors:
    def test_generator_timeout(self):
        err = GeneratorTimeoutError("Gen", 2.5)
        assert str(err) == "Generator 'Gen' timed out after 2.5s"
        assert err.generator_name == "Gen"

    def test_entry_point_not_found(self):
        err = EntryPointNotFoundError("TestMapActions", "map_test_endpoints")
        assert "TestMapActions.map_test_endpoints" in str(err)

    def test_unexpected_count(self):
        assert str(UnexpectedCountError("endpoint", 3)) == "Expected exactly one endpoint, found 3"

    def test_service_not_registered_names_type(self):
        assert "Path" in str(ServiceNotRegisteredError(Path))

    def test_response_verification(self):
        err = ResponseVerificationError("body", "a", "b")
        assert str(err) == "Response body mismatch.\nExpected: 'a'\nActual: 'b'"
        assert err.expected == "a"
        assert err.actual == "b"

    def test_baseline_mismatch_names_file(self):
        err = BaselineMismatchError(Path("/tmp/x.generated.txt"), "Line 2 does not match.")
        assert str(err) == "Line 2 does not match.\nBaseline: /tmp/x.generated.txt"

    def test_baseline_regenerated_warns_against_merging(self):
        err = BaselineRegeneratedError("/tmp/x.generated.txt")
        assert "Do not merge" in str(err)
        assert err.baseline_path == "/tmp/x.generated.txt"
