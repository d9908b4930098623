"""Test fixtures for the generator harness: a sample generator and baseline locations."""

from __future__ import annotations

from pathlib import Path

FIXTURES_DIR = Path(__file__).parent
BASELINES_DIR = FIXTURES_DIR.parent / "baselines"
