"""Tests for in-memory projects and base project creation."""
from __future__ import annotations

from pathlib import Path

import pytest

from src.generator_harness.compilation import CompilationOptions, ParseOptions
from src.generator_harness.project import Project, create_project
from src.generator_harness.references import (
    AppLocalResolver,
    CompilationLibrary,
    DependencyManifest,
    MetadataReference,
)


@pytest.fixture
def manifest(tmp_path: Path) -> DependencyManifest:
    (tmp_path / "runtime_pkg").mkdir()
    (tmp_path / "generator_pkg").mkdir()
    return DependencyManifest(
        root="host",
        compile_libraries=[
            CompilationLibrary("host", "1.0", "project", ["runtime_pkg", "generator_pkg"]),
        ],
    )


class TestCreateProject:
    def test_project_has_no_documents(self, manifest, tmp_path: Path):
        project = create_project(manifest, ParseOptions(), resolvers=[AppLocalResolver(tmp_path)])
        assert project.documents == ()
        assert project.name.startswith("TestProject-")

    def test_names_are_unique(self, manifest, tmp_path: Path):
        resolvers = [AppLocalResolver(tmp_path)]
        first = create_project(manifest, ParseOptions(), resolvers=resolvers)
        second = create_project(manifest, ParseOptions(), resolvers=resolvers)
        assert first.name != second.name

    def test_generator_package_is_excluded(self, manifest, tmp_path: Path):
        project = create_project(
            manifest,
            ParseOptions(),
            resolvers=[AppLocalResolver(tmp_path)],
            excluded_paths=[tmp_path / "generator_pkg"],
        )
        assert [reference.name for reference in project.metadata_references] == ["runtime_pkg"]

    def test_additional_references_are_appended_once(self, manifest, tmp_path: Path):
        extra = MetadataReference("fastapi", "/somewhere/fastapi", "fastapi")
        duplicate = MetadataReference("runtime_pkg", "/elsewhere/runtime_pkg", "other")
        project = create_project(
            manifest,
            ParseOptions(),
            resolvers=[AppLocalResolver(tmp_path)],
            additional_references=[extra, duplicate],
        )
        names = [reference.name for reference in project.metadata_references]
        assert names == ["runtime_pkg", "generator_pkg", "fastapi"]

    def test_nullable_is_enabled_by_default(self, manifest, tmp_path: Path):
        project = create_project(manifest, ParseOptions(), resolvers=[AppLocalResolver(tmp_path)])
        assert project.compilation_options.nullable is True

    def test_compilation_options_hook(self, manifest, tmp_path: Path):
        project = create_project(
            manifest,
            ParseOptions(),
            resolvers=[AppLocalResolver(tmp_path)],
            modify_compilation_options=lambda options: options.with_optimize(1),
        )
        assert project.compilation_options.optimize == 1

    def test_parse_options_are_kept(self, manifest, tmp_path: Path):
        options = ParseOptions().with_features({"interceptors_namespace": "generated"})
        project = create_project(manifest, options, resolvers=[AppLocalResolver(tmp_path)])
        assert project.parse_options.get_feature("interceptors_namespace") == "generated"


class TestProject:
    def test_add_document_returns_new_project(self):
        base = Project(name="TestProject-x")
        project = base.add_document("A.py", "a = 1\n")
        assert base.documents == ()
        assert [document.name for document in project.documents] == ["A.py"]

    def test_get_compilation_parses_documents(self):
        options = ParseOptions().with_features({"f": "v"})
        project = (
            Project(name="TestProject-x", parse_options=options)
            .with_compilation_options(CompilationOptions(nullable=False))
            .add_document("A.py", "a = 1\n")
        )
        compilation = project.get_compilation()
        assert compilation.assembly_name == "TestProject-x"
        assert compilation.syntax_trees[0].encoding == "utf-8"
        assert compilation.syntax_trees[0].options == options
        assert compilation.options.nullable is False

    @pytest.mark.asyncio
    async def test_get_compilation_async(self):
        project = Project(name="TestProject-x").add_document("A.py", "a = 1\n")
        compilation = await project.get_compilation_async()
        assert [tree.path for tree in compilation.syntax_trees] == ["A.py"]

    def test_shared_base_is_never_mutated(self):
        base = Project(name="TestProject-x").add_metadata_reference(MetadataReference("m", "/m"))
        base.add_document("A.py", "")
        base.add_document("B.py", "")
        assert base.documents == ()
        assert len(base.metadata_references) == 1
