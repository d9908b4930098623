"""Custom exception classes for the generator harness.

Every harness failure is an ``AssertionError`` so the invoking test reports
it as a failed assertion carrying the message below.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable


class HarnessError(AssertionError):
    """Base error for every harness failure."""

    pass


class CompilationError(HarnessError):
    """Raised when a compilation carries diagnostics above the allowed severity."""

    def __init__(self, diagnostics: Iterable[Any], stage: str = "compile") -> None:
        self.diagnostics = list(diagnostics)
        self.stage = stage
        details = "\n".join(str(d) for d in self.diagnostics)
        super().__init__(
            f"{stage} stage reported {len(self.diagnostics)} diagnostic(s):\n{details}"
        )


class EmitError(CompilationError):
    """Raised when emitting a compilation to an artifact fails."""

    def __init__(self, diagnostics: Iterable[Any]) -> None:
        super().__init__(diagnostics, stage="emit")


class GeneratorTimeoutError(HarnessError):
    """Raised when a generator pass exceeds its wall-clock budget."""

    def __init__(self, generator_name: str, timeout: float) -> None:
        self.generator_name = generator_name
        self.timeout = timeout
        super().__init__(f"Generator '{generator_name}' timed out after {timeout}s")


class ArtifactFormatError(HarnessError):
    """Raised when an emitted image cannot be loaded."""

    pass


class EntryPointNotFoundError(HarnessError):
    """Raised when the loaded module lacks the conventional entry point."""

    def __init__(self, type_name: str, method_name: str) -> None:
        self.type_name = type_name
        self.method_name = method_name
        super().__init__(
            f"Entry point '{type_name}.{method_name}' was not found as a public "
            f"static method in the loaded module"
        )


class UnexpectedCountError(HarnessError):
    """Raised when exactly one item was expected."""

    def __init__(self, subject: str, count: int) -> None:
        self.subject = subject
        self.count = count
        super().__init__(f"Expected exactly one {subject}, found {count}")


class ServiceNotRegisteredError(HarnessError):
    """Raised when a required service is missing from the service provider."""

    def __init__(self, service_type: Any) -> None:
        self.service_type = service_type
        name = getattr(service_type, "__qualname__", repr(service_type))
        super().__init__(f"No service for type '{name}' has been registered")


class ResponseVerificationError(HarnessError):
    """Raised when an exercised endpoint response does not match."""

    def __init__(self, subject: str, expected: Any, actual: Any) -> None:
        self.subject = subject
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Response {subject} mismatch.\nExpected: {expected!r}\nActual: {actual!r}"
        )


class BaselineMismatchError(HarnessError):
    """Raised when generated source differs from its baseline file."""

    def __init__(self, baseline_path: Path | str, message: str) -> None:
        self.baseline_path = str(baseline_path)
        super().__init__(f"{message}\nBaseline: {baseline_path}")


class BaselineRegeneratedError(HarnessError):
    """Raised after a baseline is rewritten so regeneration never passes silently."""

    def __init__(self, baseline_path: Path | str) -> None:
        self.baseline_path = str(baseline_path)
        super().__init__(
            f"Baseline regenerated at {baseline_path}. "
            f"REGENERATE_BASELINES=true. Do not merge changes with this set."
        )
