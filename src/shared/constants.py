"""Shared constants used across the generator harness."""
from __future__ import annotations

# Application version
VERSION: str = "1.0.0"

# Service name used for structured logging
HARNESS_SERVICE_NAME: str = "generator-harness"

# Distribution whose dependency manifest seeds the reference set
HOST_DISTRIBUTION: str = "generator-harness"

# Template scaffold
DEFAULT_CLASS_NAME: str = "TestMapActions"
ENTRY_POINT_METHOD: str = "map_test_endpoints"
MAP_ACTIONS_DOCUMENT: str = "TestMapActions.py"
MODELS_DOCUMENT: str = "TestModels.py"

# Parse features
INTERCEPTORS_FEATURE: str = "interceptors_namespace"
INTERCEPTORS_NAMESPACE: str = "generated"

# Emitted artifacts
ARTIFACT_PREFIX: str = "TestProject"
SYMBOLS_SUFFIX: str = ".pdb"
DEFAULT_ENCODING: str = "utf-8"

# Reference probing
REFS_DIRECTORY: str = "refs"

# Baselines
BASELINE_SUFFIX: str = ".generated.txt"
GENERATED_CODE_PLACEHOLDER: str = "%GENERATEDCODEATTRIBUTE%"
WORKITEM_BASELINE_PATH: tuple[str, ...] = ("GeneratorHarness", "Baselines")

# Runtime exerciser
JSON_CONTENT_TYPE: str = "application/json"
