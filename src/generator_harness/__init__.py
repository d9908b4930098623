"""Verification harness for source generators.

Assembles a compilation unit from endpoint fragments, runs a generator over
it, emits and loads the result, exercises the endpoints it registers and
compares the generated source with baseline files.
"""

from src.generator_harness.baseline import BaselineVerifier, compare_lines
from src.generator_harness.compilation import (
    Compilation,
    CompilationOptions,
    Diagnostic,
    DiagnosticSeverity,
    Location,
    ParseOptions,
    SyntaxTree,
)
from src.generator_harness.driver import (
    DriverState,
    EditLog,
    GeneratorDriver,
    GeneratorRunResult,
    IncrementalStepRunReason,
    SourceGenerator,
    as_source_generator,
)
from src.generator_harness.harness import GeneratorTestHarness
from src.generator_harness.http_context import HttpContext, RequestBodyDetectionFeature
from src.generator_harness.routing import Endpoint, EndpointRouteBuilder
from src.generator_harness.services import ServiceCollection, ServiceProvider, from_services

__version__ = "1.0.0"

__all__ = [
    "BaselineVerifier",
    "Compilation",
    "CompilationOptions",
    "Diagnostic",
    "DiagnosticSeverity",
    "DriverState",
    "EditLog",
    "Endpoint",
    "EndpointRouteBuilder",
    "GeneratorDriver",
    "GeneratorRunResult",
    "GeneratorTestHarness",
    "HttpContext",
    "IncrementalStepRunReason",
    "Location",
    "ParseOptions",
    "RequestBodyDetectionFeature",
    "ServiceCollection",
    "ServiceProvider",
    "SourceGenerator",
    "SyntaxTree",
    "as_source_generator",
    "compare_lines",
    "from_services",
]
