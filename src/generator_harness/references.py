"""Dependency manifest loading and metadata reference resolution.

The reference set of a compilation is derived from the dependency manifest of
the hosting distribution: the distribution itself plus every transitive
requirement, each listing the top-level modules it installs. Each library is
mapped to concrete paths by a chain of resolvers. Libraries no resolver can
place are skipped (and logged) rather than failing the whole resolution,
since some declared dependencies are optional at compile scope.
"""
from __future__ import annotations

import importlib.util
import logging
import os
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Iterable, Protocol, Sequence, runtime_checkable

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from src.shared.constants import REFS_DIRECTORY

logger = logging.getLogger(__name__)

_EXTENSION_SUFFIXES = (".so", ".pyd")


def normalize_name(name: str) -> str:
    """Normalise a distribution name the way package indexes compare them."""
    return canonicalize_name(name)


@dataclass(frozen=True)
class MetadataReference:
    """A resolved, importable top-level module the compilation may reference."""
    name: str
    path: str
    library: str = ""

    @classmethod
    def create_from_file(cls, path: str | Path, library: str = "") -> MetadataReference:
        """Build a reference from a module file or package directory."""
        path = Path(path)
        return cls(name=path.name.split(".", 1)[0], path=str(path), library=library)

    @classmethod
    def from_module(cls, module_name: str) -> MetadataReference | None:
        """Resolve a top-level module through the import system."""
        location = _locate_module(module_name)
        if location is None:
            return None
        return cls(name=module_name, path=str(location), library=module_name)


@dataclass
class CompilationLibrary:
    """One entry of a dependency manifest."""
    name: str
    version: str
    type: str
    assemblies: list[str] = field(default_factory=list)
    distribution: metadata.Distribution | None = field(
        default=None, repr=False, compare=False
    )

    def resolve_reference_paths(
        self, resolvers: Sequence[CompilationAssemblyResolver]
    ) -> list[str]:
        """Resolve this library through the first resolver that can place it.

        Returns an empty list when nothing matches; the caller skips it.
        """
        for resolver in resolvers:
            assemblies: list[str] = []
            if resolver.try_resolve_assembly_paths(self, assemblies):
                return assemblies
        logger.warning(
            "Skipping unresolved library %s %s (modules: %s)",
            self.name, self.version, ", ".join(self.assemblies) or "<none>",
        )
        return []


@runtime_checkable
class CompilationAssemblyResolver(Protocol):
    """Maps a manifest library to concrete file paths."""

    def try_resolve_assembly_paths(
        self, library: CompilationLibrary, assemblies: list[str]
    ) -> bool:
        """Append resolved paths to *assemblies* and return True on success."""
        ...


def _find_in_directory(directory: Path, module_name: str) -> Path | None:
    """Find a package directory, module file or extension module."""
    package = directory / module_name
    if package.is_dir():
        return package
    module = directory / f"{module_name}.py"
    if module.is_file():
        return module
    if directory.is_dir():
        for candidate in sorted(directory.glob(f"{module_name}.*")):
            if candidate.suffix in _EXTENSION_SUFFIXES and candidate.is_file():
                return candidate
    return None


def _locate_module(module_name: str) -> Path | None:
    try:
        spec = importlib.util.find_spec(module_name)
    except (ImportError, ValueError):
        return None
    if spec is None:
        return None
    if spec.submodule_search_locations:
        return Path(list(spec.submodule_search_locations)[0])
    if spec.origin and spec.origin not in ("built-in", "frozen"):
        return Path(spec.origin)
    return None


class AppLocalResolver:
    """Searches a ``refs`` subdirectory and then the base directory itself."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base_dir = Path(base_dir) if base_dir is not None else None

    @property
    def base_dir(self) -> Path:
        return self._base_dir if self._base_dir is not None else Path.cwd()

    def try_resolve_assembly_paths(
        self, library: CompilationLibrary, assemblies: list[str]
    ) -> bool:
        found = False
        for module_name in library.assemblies:
            for directory in (self.base_dir / REFS_DIRECTORY, self.base_dir):
                path = _find_in_directory(directory, module_name)
                if path is not None:
                    assemblies.append(str(path))
                    found = True
                    break
        return found


class InstalledPackageResolver:
    """Resolves libraries through the running interpreter's import system."""

    def try_resolve_assembly_paths(
        self, library: CompilationLibrary, assemblies: list[str]
    ) -> bool:
        found = False
        for module_name in library.assemblies:
            path = _locate_module(module_name)
            if path is not None:
                assemblies.append(str(path))
                found = True
        return found


def default_resolvers(base_dir: str | Path | None = None) -> list[CompilationAssemblyResolver]:
    return [AppLocalResolver(base_dir), InstalledPackageResolver()]


def _top_level_modules(dist: metadata.Distribution) -> list[str]:
    text = dist.read_text("top_level.txt")
    if text:
        return sorted({line.strip() for line in text.splitlines() if line.strip()})
    names: set[str] = set()
    for file in dist.files or []:
        parts = file.parts
        if not parts or parts[0] in ("..", "__pycache__"):
            continue
        if parts[0].endswith((".dist-info", ".egg-info", ".data")):
            continue
        if len(parts) == 1:
            if file.suffix == ".py" and not parts[0].startswith("__editable__"):
                names.add(file.stem)
        elif "." not in parts[0]:
            names.add(parts[0])
    return sorted(names)


def _requirement_names(dist: metadata.Distribution) -> list[str]:
    """Names of the requirements that apply to the running interpreter.

    Markers are evaluated with no extra selected, which drops both optional
    extras and requirements for other Python versions or platforms.
    """
    names: list[str] = []
    for line in dist.requires or []:
        try:
            requirement = Requirement(line)
        except InvalidRequirement:
            logger.debug("Ignoring unparsable requirement %r of %s", line, dist.metadata.get("Name"))
            continue
        if requirement.marker is not None and not requirement.marker.evaluate({"extra": ""}):
            continue
        names.append(requirement.name)
    return names


@dataclass
class DependencyManifest:
    """Transitive dependency closure of a hosting distribution."""
    root: str
    compile_libraries: list[CompilationLibrary] = field(default_factory=list)

    @classmethod
    def load(cls, distribution_name: str) -> DependencyManifest:
        """Walk *distribution_name* and its requirements breadth-first.

        Requirements whose environment marker does not hold (an ``extra``,
        another Python version) are not part of the compile scope. Missing
        distributions are skipped.
        """
        libraries: list[CompilationLibrary] = []
        seen: set[str] = set()
        queue: list[tuple[str, str]] = [(distribution_name, "project")]
        while queue:
            name, library_type = queue.pop(0)
            key = normalize_name(name)
            if key in seen:
                continue
            seen.add(key)
            try:
                dist = metadata.distribution(name)
            except metadata.PackageNotFoundError:
                logger.warning("Distribution %s is not installed; skipping", name)
                continue
            libraries.append(
                CompilationLibrary(
                    name=dist.metadata.get("Name", name),
                    version=dist.version,
                    type=library_type,
                    assemblies=_top_level_modules(dist),
                    distribution=dist,
                )
            )
            queue.extend((requirement, "package") for requirement in _requirement_names(dist))
        logger.debug(
            "Loaded dependency manifest for %s: %d libraries",
            distribution_name, len(libraries),
        )
        return cls(root=distribution_name, compile_libraries=libraries)


def _same_path(left: str | Path, right: str | Path) -> bool:
    return os.path.normcase(os.path.realpath(left)) == os.path.normcase(os.path.realpath(right))


def resolve_metadata_references(
    manifest: DependencyManifest,
    resolvers: Sequence[CompilationAssemblyResolver] | None = None,
    excluded_paths: Iterable[str | Path] = (),
) -> list[MetadataReference]:
    """Resolve every manifest library into metadata references.

    Paths equal to an entry of *excluded_paths* (the generator's own package)
    are left out so generated code cannot bind to the generator running
    in-process.
    """
    resolvers = list(resolvers) if resolvers is not None else default_resolvers()
    excluded = list(excluded_paths)
    references: list[MetadataReference] = []
    seen: set[str] = set()
    for library in manifest.compile_libraries:
        for path in library.resolve_reference_paths(resolvers):
            if any(_same_path(path, skip) for skip in excluded):
                logger.debug("Excluding generator reference %s", path)
                continue
            reference = MetadataReference.create_from_file(path, library=library.name)
            if reference.name in seen:
                continue
            seen.add(reference.name)
            references.append(reference)
    return references
