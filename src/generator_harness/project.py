"""In-memory projects: documents plus the options and references to compile them."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from src.generator_harness.compilation import (
    Compilation,
    CompilationOptions,
    OutputKind,
    ParseOptions,
    SyntaxTree,
)
from src.generator_harness.references import (
    CompilationAssemblyResolver,
    DependencyManifest,
    MetadataReference,
    resolve_metadata_references,
)
from src.shared.constants import ARTIFACT_PREFIX, DEFAULT_ENCODING

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Document:
    """A named source document of a project."""
    name: str
    text: str
    encoding: str = DEFAULT_ENCODING


@dataclass(frozen=True)
class Project:
    """Immutable project; every edit returns a new project."""
    name: str
    compilation_options: CompilationOptions = field(default_factory=CompilationOptions)
    parse_options: ParseOptions = field(default_factory=ParseOptions)
    metadata_references: tuple[MetadataReference, ...] = ()
    documents: tuple[Document, ...] = ()

    def add_document(self, name: str, text: str, encoding: str = DEFAULT_ENCODING) -> Project:
        return dataclasses.replace(
            self, documents=self.documents + (Document(name, text, encoding),)
        )

    def add_metadata_reference(self, reference: MetadataReference) -> Project:
        return dataclasses.replace(
            self, metadata_references=self.metadata_references + (reference,)
        )

    def with_compilation_options(self, options: CompilationOptions) -> Project:
        return dataclasses.replace(self, compilation_options=options)

    def with_parse_options(self, options: ParseOptions) -> Project:
        return dataclasses.replace(self, parse_options=options)

    def get_compilation(self) -> Compilation:
        """Parse every document into a fresh compilation snapshot."""
        trees = tuple(
            SyntaxTree.parse(
                document.text,
                path=document.name,
                options=self.parse_options,
                encoding=document.encoding,
            )
            for document in self.documents
        )
        return Compilation(
            assembly_name=self.name,
            syntax_trees=trees,
            references=self.metadata_references,
            options=self.compilation_options,
            parse_options=self.parse_options,
        )

    async def get_compilation_async(self) -> Compilation:
        return await asyncio.to_thread(self.get_compilation)


def create_project(
    manifest: DependencyManifest,
    parse_options: ParseOptions,
    *,
    resolvers: list[CompilationAssemblyResolver] | None = None,
    excluded_paths: Iterable[str | Path] = (),
    additional_references: Iterable[MetadataReference] = (),
    modify_compilation_options: Callable[[CompilationOptions], CompilationOptions] | None = None,
) -> Project:
    """Build a base project with zero documents and a complete reference set.

    Args:
        manifest: Dependency manifest of the hosting distribution.
        parse_options: Options every document is parsed with.
        resolvers: Resolver chain; defaults to app-local then installed lookup.
        excluded_paths: Paths never added as references (the generator's package).
        additional_references: References added verbatim after resolution.
        modify_compilation_options: Hook to adjust the default options.

    Returns:
        A ``Project`` named ``TestProject-<uuid>``.
    """
    project_name = f"{ARTIFACT_PREFIX}-{uuid.uuid4()}"
    compilation_options = CompilationOptions(output_kind=OutputKind.MODULE, nullable=True)
    if modify_compilation_options is not None:
        compilation_options = modify_compilation_options(compilation_options)

    references = resolve_metadata_references(manifest, resolvers, excluded_paths)
    known = {reference.name for reference in references}
    for reference in additional_references:
        if reference.name not in known:
            known.add(reference.name)
            references.append(reference)

    logger.info(
        "Created base project %s with %d metadata references",
        project_name, len(references),
    )
    return Project(
        name=project_name,
        compilation_options=compilation_options,
        parse_options=parse_options,
        metadata_references=tuple(references),
    )
