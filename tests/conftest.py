"""Shared test fixtures for the generator harness test suite."""
from __future__ import annotations

from pathlib import Path

import pytest

from src.generator_harness.compilation import (
    Compilation,
    CompilationOptions,
    ParseOptions,
    SyntaxTree,
)
from src.generator_harness.harness import PARSE_OPTIONS, GeneratorTestHarness
from src.generator_harness.references import MetadataReference
from src.generator_harness.services import ServiceCollection, ServiceProvider
from src.shared.config import HarnessConfig
from tests.fixtures import BASELINES_DIR
from tests.fixtures.validations_generator import ValidationsGenerator


_HARNESS_ENV = (
    "LOG_LEVEL",
    "REGENERATE_BASELINES",
    "BASELINE_ROOT",
    "TEST_WORKITEM_ROOT",
    "REFERENCE_BASE_DIR",
    "HOST_DISTRIBUTION",
    "GENERATOR_TIMEOUT_S",
)


@pytest.fixture(autouse=True)
def clean_harness_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure harness settings come from the test, not the shell."""
    for name in _HARNESS_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def harness_config() -> HarnessConfig:
    """Provide a config that reads baselines from the repository."""
    return HarnessConfig(baseline_root=str(BASELINES_DIR))


@pytest.fixture
def validations_harness(harness_config: HarnessConfig) -> GeneratorTestHarness:
    """Provide a harness driving the sample validations generator."""
    return GeneratorTestHarness(ValidationsGenerator(), harness_config)


@pytest.fixture
def framework_references() -> tuple[MetadataReference, ...]:
    """References for the web framework modules endpoint code imports."""
    references = [MetadataReference.from_module(name) for name in ("fastapi", "pydantic", "starlette", "src")]
    return tuple(reference for reference in references if reference is not None)


@pytest.fixture
def make_compilation(framework_references: tuple[MetadataReference, ...]):
    """Factory building a compilation from ``{path: text}`` documents."""

    def _make(
        documents: dict[str, str],
        options: CompilationOptions | None = None,
        parse_options: ParseOptions = PARSE_OPTIONS,
    ) -> Compilation:
        trees = tuple(
            SyntaxTree.parse(text, path=path, options=parse_options)
            for path, text in documents.items()
        )
        return Compilation(
            assembly_name="TestProject-fixture",
            syntax_trees=trees,
            references=framework_references,
            options=options or CompilationOptions(),
            parse_options=parse_options,
        )

    return _make


@pytest.fixture
def service_provider() -> ServiceProvider:
    """Provide an empty service provider."""
    return ServiceCollection().build_service_provider()


@pytest.fixture
def baseline_dir(tmp_path: Path) -> Path:
    """Provide an empty directory for baseline files."""
    path = tmp_path / "baselines"
    path.mkdir()
    return path
