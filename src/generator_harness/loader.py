"""Dynamic loading of emitted images into isolated load contexts."""
from __future__ import annotations

import inspect
import json
import linecache
import logging
import marshal
import re
import sys
import types
import uuid
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable

from src.generator_harness.emitter import IMAGE_MAGIC
from src.shared.constants import DEFAULT_ENCODING
from src.shared.errors import ArtifactFormatError

logger = logging.getLogger(__name__)

_INVALID_IDENTIFIER_CHARS = re.compile(r"\W")


def _read_all(stream: BinaryIO | bytes | None) -> bytes:
    if stream is None:
        return b""
    if isinstance(stream, (bytes, bytearray)):
        return bytes(stream)
    return stream.read()


@dataclass
class LoadedModule:
    """A module loaded from an emitted image, bound to its load context."""
    name: str
    module: types.ModuleType
    context: LoadContext
    documents: tuple[str, ...] = ()

    def get_type(self, type_name: str) -> type | None:
        candidate = self.module.__dict__.get(type_name)
        return candidate if isinstance(candidate, type) else None

    def get_static_method(self, type_name: str, method_name: str) -> Callable[..., Any] | None:
        """Return a public static method of *type_name*, or None."""
        owner = self.get_type(type_name)
        if owner is None or method_name.startswith("_"):
            return None
        attribute = inspect.getattr_static(owner, method_name, None)
        if not isinstance(attribute, staticmethod):
            return None
        return getattr(owner, method_name)


class LoadContext:
    """Isolation boundary for dynamically loaded modules.

    Each context hands out module names derived from its own unique name, so
    repeated loads never collide in ``sys.modules``. Contexts are not
    unloaded; their modules live as long as the process.
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name or f"LoadContext-{uuid.uuid4()}"
        self._modules: dict[str, LoadedModule] = {}

    @property
    def modules(self) -> list[LoadedModule]:
        return list(self._modules.values())

    def _module_name(self, assembly: str) -> str:
        base = _INVALID_IDENTIFIER_CHARS.sub("_", assembly or self.name)
        if base in self._modules or base in sys.modules:
            base = f"{base}_{uuid.uuid4().hex}"
        return base

    def load_from_stream(
        self, image: BinaryIO | bytes, symbols: BinaryIO | bytes | None = None
    ) -> LoadedModule:
        """Load an image and its debug symbols, executing trees in order.

        Raises:
            ArtifactFormatError: When the image was not produced by this
                interpreter's emitter.
        """
        data = _read_all(image)
        if not data.startswith(IMAGE_MAGIC):
            raise ArtifactFormatError(
                f"Image header {data[:len(IMAGE_MAGIC)]!r} does not match {IMAGE_MAGIC!r}"
            )
        try:
            entries = marshal.loads(data[len(IMAGE_MAGIC):])
        except (EOFError, ValueError, TypeError) as exc:
            raise ArtifactFormatError(f"Image payload is unreadable: {exc}") from exc

        symbol_data = _read_all(symbols)
        debug_info: dict[str, Any] = (
            json.loads(symbol_data.decode(DEFAULT_ENCODING)) if symbol_data else {}
        )
        for document in debug_info.get("documents", []):
            text = document["text"]
            linecache.cache[document["path"]] = (
                len(text), None, text.splitlines(keepends=True), document["path"],
            )

        module_name = self._module_name(debug_info.get("assembly", ""))
        module = types.ModuleType(module_name)
        module.__file__ = f"<{module_name}>"
        sys.modules[module_name] = module
        try:
            for path, code in entries:
                logger.debug("Executing %s in %s", path, module_name)
                exec(code, module.__dict__)
        except BaseException:
            del sys.modules[module_name]
            raise

        loaded = LoadedModule(
            name=module_name,
            module=module,
            context=self,
            documents=tuple(path for path, _ in entries),
        )
        self._modules[module_name] = loaded
        logger.info("Loaded %s into %s (%d documents)", module_name, self.name, len(entries))
        return loaded
