"""Generate-compile-load-verify harness for source generators.

``GeneratorTestHarness`` composes the pipeline stages:

1. Assemble a compilation unit from a fragment and the fixed template
2. Add it to the shared base project and build a compilation
3. Run the generator, once per edit for multi-fragment tests
4. Emit the compilation with embedded sources
5. Load the image into a fresh load context and invoke the entry point
6. Exercise the resulting endpoints with synthetic HTTP contexts
7. Compare the generated source against its baseline file

Every stage is awaited before the next one starts.
"""
from __future__ import annotations

import asyncio
import functools
import inspect
import io
import logging
import sys
import uuid
from typing import Any, Callable

from pydantic import TypeAdapter

from src.generator_harness import verification
from src.generator_harness.baseline import BaselineVerifier
from src.generator_harness.compilation import (
    Compilation,
    DiagnosticSeverity,
    ParseOptions,
    SyntaxTree,
)
from src.generator_harness.driver import (
    DriverState,
    EditLog,
    GeneratorDriver,
    GeneratorDriverOptions,
    GeneratorRunResult,
    SourceGenerator,
    as_source_generator,
)
from src.generator_harness.emitter import ArtifactEmitter
from src.generator_harness.http_context import HttpContext, RequestBodyDetectionFeature, TrackingStream
from src.generator_harness.loader import LoadContext
from src.generator_harness.project import Project, create_project
from src.generator_harness.references import DependencyManifest, MetadataReference, default_resolvers
from src.generator_harness.routing import ApplicationBuilder, Endpoint, EndpointRouteBuilder
from src.generator_harness.services import ServiceCollection, ServiceProvider
from src.generator_harness.template import get_map_action_string
from src.shared.config import HarnessConfig
from src.shared.constants import (
    ARTIFACT_PREFIX,
    DEFAULT_CLASS_NAME,
    DEFAULT_ENCODING,
    ENTRY_POINT_METHOD,
    HARNESS_SERVICE_NAME,
    INTERCEPTORS_FEATURE,
    INTERCEPTORS_NAMESPACE,
    JSON_CONTENT_TYPE,
    MAP_ACTIONS_DOCUMENT,
    MODELS_DOCUMENT,
)
from src.shared.errors import (
    CompilationError,
    EntryPointNotFoundError,
    GeneratorTimeoutError,
    HarnessError,
    UnexpectedCountError,
)
from src.shared.logging import setup_logging, trace_id_var

logger = logging.getLogger(__name__)

PARSE_OPTIONS = ParseOptions().with_features({INTERCEPTORS_FEATURE: INTERCEPTORS_NAMESPACE})

# Modules the template scaffold itself imports
_TEMPLATE_MODULES: tuple[str, ...] = (
    "fastapi",
    "pydantic",
    "starlette",
    EndpointRouteBuilder.__module__.partition(".")[0],
)


def _package_path(obj: Any) -> str | None:
    """Location of the top-level package that defines *obj*."""
    module_name = getattr(obj, "__module__", None) or type(obj).__module__
    top_level = sys.modules.get(module_name.partition(".")[0])
    if top_level is None:
        return None
    locations = list(getattr(top_level, "__path__", []) or [])
    if locations:
        return locations[0]
    return getattr(top_level, "__file__", None)


@functools.lru_cache(maxsize=None)
def get_base_project(
    distribution: str,
    reference_base_dir: str | None = None,
    excluded_paths: tuple[str, ...] = (),
) -> Project:
    """Build the base project once per distinct key and share it.

    The reference set is resolved a single time and never mutated.
    """
    manifest = DependencyManifest.load(distribution)
    template_references = [
        reference
        for reference in (MetadataReference.from_module(name) for name in _TEMPLATE_MODULES)
        if reference is not None
    ]
    return create_project(
        manifest,
        PARSE_OPTIONS,
        resolvers=default_resolvers(reference_base_dir),
        excluded_paths=excluded_paths,
        additional_references=template_references,
    )


def _single(items: list[Any], subject: str) -> Any:
    if len(items) != 1:
        raise UnexpectedCountError(subject, len(items))
    return items[0]


class GeneratorTestHarness:
    """Drives one generator through the full verification pipeline."""

    def __init__(
        self,
        generator: SourceGenerator | Callable[[Compilation], Any],
        config: HarnessConfig | None = None,
        *,
        class_name: str = DEFAULT_CLASS_NAME,
        generated_code_attribute: str | None = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.generator = as_source_generator(generator)
        self.class_name = class_name
        self.parse_options = PARSE_OPTIONS
        self.regenerate_baselines = self.config.regenerate_baselines
        self.generated_code_attribute = generated_code_attribute or getattr(
            self.generator, "generated_code_attribute", None
        )
        self.logger = setup_logging(HARNESS_SERVICE_NAME, self.config.log_level)
        self._emitter = ArtifactEmitter()

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    @property
    def base_project(self) -> Project:
        generator_path = _package_path(getattr(self.generator, "func", self.generator))
        return get_base_project(
            self.config.host_distribution,
            self.config.reference_base_dir,
            (generator_path,) if generator_path else (),
        )

    def get_map_action_string(self, sources: str) -> str:
        return get_map_action_string(sources, self.class_name)

    async def create_compilation(self, sources: str, for_model: bool = False) -> Compilation:
        """Add one document built from *sources* to the base project."""
        if for_model:
            project = self.base_project.add_document(MODELS_DOCUMENT, sources, DEFAULT_ENCODING)
        else:
            project = self.base_project.add_document(
                MAP_ACTIONS_DOCUMENT, self.get_map_action_string(sources), DEFAULT_ENCODING
            )
        return await project.get_compilation_async()

    def parse_update(self, sources: str) -> SyntaxTree:
        """Parse an edited fragment into its own standalone syntax tree."""
        return SyntaxTree.parse(
            self.get_map_action_string(sources),
            path=MAP_ACTIONS_DOCUMENT,
            options=self.parse_options,
            encoding=DEFAULT_ENCODING,
        )

    def create_driver(self) -> GeneratorDriver:
        return GeneratorDriver.create(
            [self.generator],
            parse_options=self.parse_options,
            driver_options=GeneratorDriverOptions(track_incremental_generator_steps=True),
        )

    async def _run_stage(self, func: Callable[..., Any], *args: Any) -> Any:
        timeout = self.config.generator_timeout_s
        if timeout is None:
            return await asyncio.to_thread(func, *args)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
        except asyncio.TimeoutError as exc:
            raise GeneratorTimeoutError(self.generator.name, timeout) from exc

    async def run_generator_states(
        self, sources: str, *updated_sources: str, for_model: bool = False
    ) -> list[DriverState]:
        """Run the generator once for *sources* and once per updated fragment."""
        trace_id_var.set(f"{ARTIFACT_PREFIX}-{uuid.uuid4()}")
        compilation = await self.create_compilation(sources, for_model=for_model)
        log = EditLog(compilation)
        for updated in updated_sources:
            log = log.append(self.parse_update(updated))
        states = await self._run_stage(log.replay, self.create_driver())
        logger.info(
            "Ran generator %s over %d edit(s)", self.generator.name, len(states),
        )
        return states

    async def run_generator_driver(
        self, sources: str, *updated_sources: str, for_model: bool = False
    ) -> tuple[GeneratorDriver, Compilation]:
        states = await self.run_generator_states(sources, *updated_sources, for_model=for_model)
        final = states[-1]
        return final.driver, final.compilation

    async def run_generator(
        self, sources: str, *updated_sources: str
    ) -> tuple[GeneratorRunResult, Compilation]:
        """Run the generator and enforce the zero-warning bar.

        Raises:
            CompilationError: When any diagnostic is ``WARNING`` or above.
        """
        driver, compilation = await self.run_generator_driver(sources, *updated_sources)
        diagnostics = driver.get_run_result().diagnostics + compilation.get_diagnostics()
        blocking = [d for d in diagnostics if d.severity >= DiagnosticSeverity.WARNING]
        if blocking:
            raise CompilationError(blocking, stage="generator")
        run_result = _single(list(driver.get_run_result().results), "generator run result")
        return run_result, compilation

    # ------------------------------------------------------------------
    # Emit, load and invoke
    # ------------------------------------------------------------------

    def get_endpoint_from_compilation(
        self, compilation: Compilation, service_provider: ServiceProvider | None = None
    ) -> Endpoint:
        return _single(self.get_endpoints_from_compilation(compilation, service_provider), "endpoint")

    def get_endpoints_from_compilation(
        self, compilation: Compilation, service_provider: ServiceProvider | None = None
    ) -> list[Endpoint]:
        """Emit, load and invoke the entry point; return the materialised endpoints.

        Raises:
            EmitError: When the compilation cannot be emitted.
            EntryPointNotFoundError: When the entry point is missing.
            UnexpectedCountError: Unless exactly one data source was registered.
        """
        artifact_name = f"{ARTIFACT_PREFIX}-{uuid.uuid4()}"
        result = self._emitter.emit_to_artifact(compilation, artifact_name)

        output = io.BytesIO(result.image)
        pdb = io.BytesIO(result.pdb)
        output.seek(0)
        pdb.seek(0)
        loaded = LoadContext(artifact_name).load_from_stream(output, pdb)

        handler = loaded.get_static_method(self.class_name, ENTRY_POINT_METHOD)
        if handler is None:
            raise EntryPointNotFoundError(self.class_name, ENTRY_POINT_METHOD)

        builder = EndpointRouteBuilder(
            ApplicationBuilder(service_provider or self.create_service_provider())
        )
        handler(builder)

        data_source = _single(builder.data_sources, "endpoint data source")
        # Reading endpoints triggers the lazy endpoint build
        return list(data_source.endpoints)

    # ------------------------------------------------------------------
    # Runtime exerciser
    # ------------------------------------------------------------------

    def create_service_provider(
        self, configure_services: Callable[[ServiceCollection], Any] | None = None
    ) -> ServiceProvider:
        services = ServiceCollection()
        services.add_singleton(logging.Logger, self.logger)
        if configure_services is not None:
            configure_services(services)
        return services.build_service_provider()

    def create_http_context(self, service_provider: ServiceProvider | None = None) -> HttpContext:
        context = HttpContext(request_services=service_provider or self.create_service_provider())
        context.response.body = io.BytesIO()
        return context

    def create_http_context_with_body(
        self, request_data: Any, service_provider: ServiceProvider | None = None
    ) -> HttpContext:
        """Context whose request body is *request_data* serialised as JSON."""
        context = self.create_http_context(service_provider)
        context.features.set(RequestBodyDetectionFeature(True))
        context.request.headers["Content-Type"] = JSON_CONTENT_TYPE

        request_body = TypeAdapter(type(request_data)).dump_json(request_data)
        context.request.body = TrackingStream(request_body)
        context.request.headers["Content-Length"] = str(len(request_body))
        return context

    get_response_body = staticmethod(verification.get_response_body)
    verify_response_body = staticmethod(verification.verify_response_body)
    verify_response_json_body = staticmethod(verification.verify_response_json_body)
    verify_response_json_node = staticmethod(verification.verify_response_json_node)

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def baseline_verifier(self) -> BaselineVerifier:
        return BaselineVerifier(
            self.config.resolve_baseline_root(),
            regenerate=self.regenerate_baselines,
            generated_code_attribute=self.generated_code_attribute,
        )

    async def verify_against_baseline_using_file(
        self, compilation: Compilation, test_name: str | None = None
    ) -> None:
        """Compare the last generated tree with the baseline named after the test."""
        if test_name is None:
            frame = inspect.currentframe()
            test_name = frame.f_back.f_code.co_name if frame and frame.f_back else "unknown"
        generated = compilation.generated_trees
        if not generated:
            raise HarnessError("The compilation contains no generated source to verify")
        await self.baseline_verifier().verify(generated[-1].get_text(), test_name)
