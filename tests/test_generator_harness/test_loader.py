"""Tests for loading emitted images."""
from __future__ import annotations

import io
import linecache
import sys
import traceback

import pytest

from src.generator_harness.emitter import ArtifactEmitter
from src.generator_harness.loader import LoadContext
from src.shared.errors import ArtifactFormatError

_ACTIONS = '''\
class Actions:
    @staticmethod
    def entry(value):
        return value * 2

    @staticmethod
    def _hidden():
        return None

    def instance_method(self):
        return None

    @classmethod
    def class_method(cls):
        return None

    @staticmethod
    def explode():
        raise ValueError("exploded")
'''


@pytest.fixture
def emitted(make_compilation):
    compilation = make_compilation({"Models.py": "FACTOR = 3\n", "Actions.py": _ACTIONS})
    return ArtifactEmitter().emit_to_artifact(compilation, "TestProject-loader")


class TestLoadContext:
    def test_loads_all_trees_into_one_module(self, emitted):
        loaded = LoadContext().load_from_stream(io.BytesIO(emitted.image), io.BytesIO(emitted.pdb))
        assert loaded.module.FACTOR == 3
        assert loaded.get_type("Actions") is not None
        assert loaded.documents == ("TestProject-loader/Models.py", "TestProject-loader/Actions.py")

    def test_module_is_registered_uniquely(self, emitted):
        first = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        second = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        assert first.name != second.name
        assert sys.modules[first.name] is first.module
        assert sys.modules[second.name] is second.module

    def test_context_tracks_modules(self, emitted):
        context = LoadContext("isolated")
        loaded = context.load_from_stream(emitted.image, emitted.pdb)
        assert context.modules == [loaded]
        assert loaded.context is context

    def test_embedded_texts_feed_tracebacks(self, emitted):
        loaded = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        assert linecache.getline("TestProject-loader/Models.py", 1) == "FACTOR = 3\n"
        with pytest.raises(ValueError) as exc_info:
            loaded.get_static_method("Actions", "explode")()
        rendered = "".join(traceback.format_tb(exc_info.value.__traceback__))
        assert 'raise ValueError("exploded")' in rendered

    def test_bad_magic_is_rejected(self):
        with pytest.raises(ArtifactFormatError):
            LoadContext().load_from_stream(b"not an image")

    def test_truncated_payload_is_rejected(self, emitted):
        with pytest.raises(ArtifactFormatError):
            LoadContext().load_from_stream(emitted.image[:len(emitted.image) // 2])

    def test_failed_execution_unregisters_module(self, make_compilation):
        result = ArtifactEmitter().emit_to_artifact(
            make_compilation({"Boom.py": "raise RuntimeError('load failure')\n"}), "TestProject-boom"
        )
        before = set(sys.modules)
        with pytest.raises(RuntimeError, match="load failure"):
            LoadContext().load_from_stream(result.image, result.pdb)
        assert set(sys.modules) == before


class TestGetStaticMethod:
    def test_finds_public_static_method(self, emitted):
        loaded = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        entry = loaded.get_static_method("Actions", "entry")
        assert entry(21) == 42

    @pytest.mark.parametrize("method", ["_hidden", "instance_method", "class_method", "missing"])
    def test_rejects_other_members(self, emitted, method):
        loaded = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        assert loaded.get_static_method("Actions", method) is None

    def test_missing_type(self, emitted):
        loaded = LoadContext().load_from_stream(emitted.image, emitted.pdb)
        assert loaded.get_type("Nope") is None
        assert loaded.get_static_method("Nope", "entry") is None
