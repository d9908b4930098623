"""Generator driver: runs source generators over compilation snapshots.

A source generator is a black box with a single capability::

    generate(compilation) -> (updated_compilation, diagnostics)

The driver only ever adds the trees a generator contributes; user trees are
left untouched. Drivers are immutable: each run returns a new driver carrying
the per-generator state the next run compares against, which is how edits
applied through an ``EditLog`` are observed incrementally.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Sequence, runtime_checkable

from src.generator_harness.compilation import (
    Compilation,
    Diagnostic,
    DiagnosticSeverity,
    ParseOptions,
    SyntaxTree,
)

logger = logging.getLogger(__name__)

GENERATOR_EXCEPTION_ID = "HG8785"


class IncrementalStepRunReason(str, Enum):
    """Why a tracked generator step produced its output."""
    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    CACHED = "cached"


@runtime_checkable
class SourceGenerator(Protocol):
    """Capability interface every generator plugin implements."""

    name: str

    def generate(
        self, compilation: Compilation
    ) -> tuple[Compilation, Sequence[Diagnostic]]:
        """Return the compilation with generated trees added, plus diagnostics."""
        ...


class _CallableGenerator:
    """Adapts a plain function to the ``SourceGenerator`` protocol."""

    def __init__(self, func: Callable[[Compilation], Any], name: str) -> None:
        self.func = func
        self.name = name

    def generate(self, compilation: Compilation) -> tuple[Compilation, Sequence[Diagnostic]]:
        return self.func(compilation)

    def __repr__(self) -> str:
        return f"<generator {self.name}>"


def as_source_generator(
    generator: SourceGenerator | Callable[[Compilation], Any], name: str | None = None
) -> SourceGenerator:
    """Return *generator* as a ``SourceGenerator``, wrapping bare callables."""
    if isinstance(generator, SourceGenerator):
        return generator
    if not callable(generator):
        raise TypeError(f"{generator!r} is neither a SourceGenerator nor callable")
    return _CallableGenerator(generator, name or getattr(generator, "__name__", "generator"))


@dataclass(frozen=True)
class GeneratorDriverOptions:
    track_incremental_generator_steps: bool = False


@dataclass(frozen=True)
class IncrementalGeneratorRunStep:
    """One tracked step of a generator run."""
    name: str
    reason: IncrementalStepRunReason
    fingerprint: str
    output_count: int = 0


@dataclass(frozen=True)
class GeneratedSourceResult:
    hint_name: str
    source_text: str
    syntax_tree: SyntaxTree = field(compare=False, repr=False)


@dataclass(frozen=True)
class GeneratorRunResult:
    """Outcome of one generator within one driver run."""
    generator: SourceGenerator
    generated_sources: tuple[GeneratedSourceResult, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    exception: BaseException | None = None
    tracked_steps: tuple[IncrementalGeneratorRunStep, ...] = ()
    elapsed_s: float = 0.0

    @property
    def generated_trees(self) -> tuple[SyntaxTree, ...]:
        return tuple(source.syntax_tree for source in self.generated_sources)


@dataclass(frozen=True)
class GeneratorDriverRunResult:
    results: tuple[GeneratorRunResult, ...] = ()

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [d for result in self.results for d in result.diagnostics]

    @property
    def generated_trees(self) -> list[SyntaxTree]:
        return [tree for result in self.results for tree in result.generated_trees]


@dataclass(frozen=True)
class _GeneratorState:
    fingerprint: str
    result: GeneratorRunResult


@dataclass(frozen=True)
class GeneratorDriver:
    """Immutable driver; ``run_generators_and_update_compilation`` returns a new one."""
    generators: tuple[SourceGenerator, ...]
    parse_options: ParseOptions = field(default_factory=ParseOptions)
    driver_options: GeneratorDriverOptions = field(default_factory=GeneratorDriverOptions)
    states: tuple[_GeneratorState | None, ...] = ()
    run_result: GeneratorDriverRunResult | None = None

    @classmethod
    def create(
        cls,
        generators: Iterable[SourceGenerator | Callable[[Compilation], Any]],
        parse_options: ParseOptions | None = None,
        driver_options: GeneratorDriverOptions | None = None,
    ) -> GeneratorDriver:
        adapted = tuple(as_source_generator(generator) for generator in generators)
        return cls(
            generators=adapted,
            parse_options=parse_options or ParseOptions(),
            driver_options=driver_options or GeneratorDriverOptions(),
            states=(None,) * len(adapted),
        )

    def get_run_result(self) -> GeneratorDriverRunResult:
        if self.run_result is None:
            raise RuntimeError("The generator driver has not been run yet")
        return self.run_result

    def run_generators_and_update_compilation(
        self, compilation: Compilation
    ) -> tuple[GeneratorDriver, Compilation, list[Diagnostic]]:
        """Run every generator against *compilation*.

        Returns:
            The next driver, the compilation with generated trees appended, and
            the diagnostics the generators reported.
        """
        user_compilation = compilation.without_generated_trees()
        fingerprint = user_compilation.fingerprint()
        results: list[GeneratorRunResult] = []
        states: list[_GeneratorState] = []
        for index, generator in enumerate(self.generators):
            previous = self.states[index] if index < len(self.states) else None
            if previous is not None and previous.fingerprint == fingerprint:
                result = self._cached(previous.result, fingerprint)
            else:
                result = self._run_generator(generator, user_compilation, fingerprint, previous)
            results.append(result)
            states.append(_GeneratorState(fingerprint, result))

        run_result = GeneratorDriverRunResult(tuple(results))
        updated = user_compilation.add_syntax_trees(*run_result.generated_trees)
        driver = dataclasses.replace(self, states=tuple(states), run_result=run_result)
        return driver, updated, run_result.diagnostics

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _track(self, *steps: IncrementalGeneratorRunStep) -> tuple[IncrementalGeneratorRunStep, ...]:
        return steps if self.driver_options.track_incremental_generator_steps else ()

    def _cached(self, result: GeneratorRunResult, fingerprint: str) -> GeneratorRunResult:
        logger.debug("Generator %s input unchanged; reusing cached output", result.generator.name)
        return dataclasses.replace(
            result,
            elapsed_s=0.0,
            tracked_steps=self._track(
                IncrementalGeneratorRunStep("Compilation", IncrementalStepRunReason.CACHED, fingerprint),
                IncrementalGeneratorRunStep(
                    "SourceOutput",
                    IncrementalStepRunReason.CACHED,
                    fingerprint,
                    len(result.generated_sources),
                ),
            ),
        )

    def _run_generator(
        self,
        generator: SourceGenerator,
        compilation: Compilation,
        fingerprint: str,
        previous: _GeneratorState | None,
    ) -> GeneratorRunResult:
        input_reason = IncrementalStepRunReason.NEW if previous is None else IncrementalStepRunReason.MODIFIED
        started = time.perf_counter()
        try:
            updated, diagnostics = generator.generate(compilation)
        except Exception as exc:  # a failing generator is reported, never fatal to the driver
            logger.warning("Generator %s raised %s: %s", generator.name, type(exc).__name__, exc)
            diagnostic = Diagnostic(
                id=GENERATOR_EXCEPTION_ID,
                message=(
                    f"Generator '{generator.name}' failed to generate source. "
                    f"It will not contribute to the output and compilation errors may occur "
                    f"as a result. Exception was of type '{type(exc).__name__}' with message '{exc}'"
                ),
                severity=DiagnosticSeverity.WARNING,
            )
            return GeneratorRunResult(
                generator=generator,
                diagnostics=(diagnostic,),
                exception=exc,
                tracked_steps=self._track(
                    IncrementalGeneratorRunStep("Compilation", input_reason, fingerprint)
                ),
                elapsed_s=time.perf_counter() - started,
            )
        elapsed = time.perf_counter() - started

        known_paths = {tree.path for tree in compilation.syntax_trees}
        sources = tuple(
            GeneratedSourceResult(
                hint_name=tree.path,
                source_text=tree.text,
                syntax_tree=dataclasses.replace(
                    tree, path=f"{generator.name}/{tree.path}", is_generated=True
                ),
            )
            for tree in updated.syntax_trees
            if tree.path not in known_paths
        )

        output_reason = input_reason
        if previous is not None:
            before = [(s.hint_name, s.source_text) for s in previous.result.generated_sources]
            after = [(s.hint_name, s.source_text) for s in sources]
            if before == after:
                output_reason = IncrementalStepRunReason.UNCHANGED

        logger.info(
            "Generator %s produced %d source(s) and %d diagnostic(s) in %.3fs",
            generator.name, len(sources), len(diagnostics), elapsed,
        )
        return GeneratorRunResult(
            generator=generator,
            generated_sources=sources,
            diagnostics=tuple(diagnostics),
            tracked_steps=self._track(
                IncrementalGeneratorRunStep("Compilation", input_reason, fingerprint),
                IncrementalGeneratorRunStep("SourceOutput", output_reason, fingerprint, len(sources)),
            ),
            elapsed_s=elapsed,
        )


@dataclass(frozen=True)
class DriverState:
    """A driver paired with the compilation it produced for one edit."""
    driver: GeneratorDriver
    compilation: Compilation
    edit_index: int


@dataclass(frozen=True)
class EditLog:
    """Ordered log of edits applied to an initial compilation.

    Each edit replaces the first syntax tree of the previous input snapshot,
    simulating successive edits to the same source file. State *i* is derived
    only from state *i-1* and edit *i*.
    """
    initial: Compilation
    edits: tuple[SyntaxTree, ...] = ()

    def append(self, tree: SyntaxTree) -> EditLog:
        return dataclasses.replace(self, edits=self.edits + (tree,))

    def snapshots(self) -> list[Compilation]:
        """Return the input snapshot for every step, initial first."""
        snapshots = [self.initial]
        for tree in self.edits:
            current = snapshots[-1]
            snapshots.append(current.replace_syntax_tree(current.syntax_trees[0], tree))
        return snapshots

    def replay(self, driver: GeneratorDriver) -> list[DriverState]:
        """Run *driver* once per snapshot, in order."""
        states: list[DriverState] = []
        for index, snapshot in enumerate(self.snapshots()):
            driver, updated, _ = driver.run_generators_and_update_compilation(snapshot)
            states.append(DriverState(driver, updated, index))
        return states
