"""Emit compilations to in-memory images with embedded source text."""
from __future__ import annotations

import hashlib
import importlib.util
import json
import logging
import marshal
from dataclasses import asdict, dataclass

from src.generator_harness.compilation import Compilation, Diagnostic, DiagnosticSeverity
from src.shared.constants import DEFAULT_ENCODING, SYMBOLS_SUFFIX
from src.shared.errors import EmitError

logger = logging.getLogger(__name__)

IMAGE_MAGIC: bytes = importlib.util.MAGIC_NUMBER


@dataclass(frozen=True)
class EmitOptions:
    output_name_override: str | None = None
    pdb_file_path: str | None = None


@dataclass(frozen=True)
class EmbeddedText:
    """Source text carried by the debug image so tracebacks show real lines."""
    path: str
    encoding: str
    checksum: str
    text: str

    @classmethod
    def from_source(cls, path: str, text: str, encoding: str) -> EmbeddedText:
        buffer = text.encode(encoding)
        return cls(
            path=path,
            encoding=encoding,
            checksum=hashlib.sha256(buffer).hexdigest(),
            text=buffer.decode(encoding),
        )


@dataclass(frozen=True)
class EmitResult:
    success: bool
    diagnostics: tuple[Diagnostic, ...] = ()
    image: bytes = b""
    pdb: bytes = b""
    assembly_name: str = ""
    pdb_file_path: str = ""


def embed_sources(
    compilation: Compilation, artifact_name: str
) -> tuple[Compilation, list[EmbeddedText]]:
    """Give every tree a definite encoding and an artifact-scoped path.

    Trees without an explicit encoding default to UTF-8.
    """
    embedded: list[EmbeddedText] = []
    for tree in compilation.syntax_trees:
        encoding = tree.encoding or DEFAULT_ENCODING
        path = f"{artifact_name}/{tree.path}"
        canonical = tree.with_encoding(encoding).with_path(path)
        compilation = compilation.replace_syntax_tree(tree, canonical)
        embedded.append(EmbeddedText.from_source(path, tree.text, encoding))
    return compilation, embedded


def emit(
    compilation: Compilation,
    options: EmitOptions | None = None,
    embedded_texts: list[EmbeddedText] | None = None,
) -> EmitResult:
    """Compile every tree and serialise the code objects and embedded texts.

    Emission is skipped entirely when any diagnostic is an error.
    """
    options = options or EmitOptions()
    assembly_name = options.output_name_override or compilation.assembly_name
    pdb_file_path = options.pdb_file_path or f"{assembly_name}{SYMBOLS_SUFFIX}"
    diagnostics = compilation.get_diagnostics()
    if any(d.severity >= DiagnosticSeverity.ERROR for d in diagnostics):
        return EmitResult(success=False, diagnostics=tuple(diagnostics), assembly_name=assembly_name)

    entries: list[tuple[str, object]] = []
    for tree in compilation.syntax_trees:
        code, _ = compilation.compile_tree(tree)
        if code is None:
            return EmitResult(success=False, diagnostics=tuple(diagnostics), assembly_name=assembly_name)
        entries.append((tree.path, code))

    image = IMAGE_MAGIC + marshal.dumps(tuple(entries))
    symbols = {
        "assembly": assembly_name,
        "pdb_file_path": pdb_file_path,
        "documents": [asdict(text) for text in embedded_texts or []],
    }
    pdb = json.dumps(symbols, indent=2).encode(DEFAULT_ENCODING)
    return EmitResult(
        success=True,
        diagnostics=tuple(diagnostics),
        image=image,
        pdb=pdb,
        assembly_name=assembly_name,
        pdb_file_path=pdb_file_path,
    )


class ArtifactEmitter:
    """Emits finalized compilations, halting the pipeline on failure."""

    def emit_to_artifact(self, compilation: Compilation, artifact_name: str) -> EmitResult:
        """Emit *compilation* as *artifact_name* with embedded sources.

        Raises:
            EmitError: When a diagnostic exceeds ``WARNING`` or emit failed.
        """
        compilation, embedded = embed_sources(compilation, artifact_name)
        result = emit(
            compilation,
            EmitOptions(
                output_name_override=artifact_name,
                pdb_file_path=f"{artifact_name}{SYMBOLS_SUFFIX}",
            ),
            embedded_texts=embedded,
        )
        blocking = [d for d in result.diagnostics if d.severity > DiagnosticSeverity.WARNING]
        if blocking or not result.success:
            logger.error("Emit of %s failed with %d diagnostic(s)", artifact_name, len(blocking))
            raise EmitError(blocking or result.diagnostics)
        logger.info(
            "Emitted %s: image=%d bytes symbols=%d bytes documents=%d",
            artifact_name, len(result.image), len(result.pdb), len(embedded),
        )
        return result
