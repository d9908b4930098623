"""Golden-file comparison of generated source against stored baselines.

Baselines are plain UTF-8 files named ``<test name>.generated.txt``. One line
of generated output is environment dependent (the generated-code marker); it
is stored as ``%GENERATEDCODEATTRIBUTE%`` and substituted in both directions.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from src.shared.constants import BASELINE_SUFFIX, DEFAULT_ENCODING, GENERATED_CODE_PLACEHOLDER
from src.shared.errors import BaselineMismatchError, BaselineRegeneratedError

logger = logging.getLogger(__name__)


def normalize_lines(text: str) -> list[str]:
    """Split *text* into lines with trailing whitespace at the end removed."""
    return text.rstrip().splitlines()


def compare_lines(expected_lines: list[str], actual_text: str) -> tuple[bool, str]:
    """Compare baseline lines with generated text, line by line.

    Line counts are compared first; each line is then compared with
    surrounding whitespace trimmed. Line numbers in messages are 1-based.

    Returns:
        ``(True, "")`` when equal, else ``(False, message)``.
    """
    actual_lines = normalize_lines(actual_text)
    if len(expected_lines) != len(actual_lines):
        message = (
            f"Line numbers do not match. Expected: {len(expected_lines)} lines, "
            f"but generated {len(actual_lines)}"
        )
        for index, (expected, actual) in enumerate(zip(expected_lines, actual_lines)):
            if expected.strip() != actual.strip():
                return False, f"{message}. First difference at line {index + 1}"
        shorter = min(len(expected_lines), len(actual_lines))
        return False, f"{message}. First difference at line {shorter + 1}"

    for index, (expected, actual) in enumerate(zip(expected_lines, actual_lines)):
        expected_line = expected.strip()
        actual_line = actual.strip()
        if expected_line != actual_line:
            return False, (
                f"Line {index + 1} does not match.\n"
                f"Expected Line:\n"
                f"{expected_line}\n"
                f"Actual Line:\n"
                f"{actual}"
            )
    return True, ""


class BaselineVerifier:
    """Verifies generated sources against baseline files under *root*."""

    def __init__(
        self,
        root: Path | str,
        *,
        regenerate: bool = False,
        generated_code_attribute: str | None = None,
        suffix: str = BASELINE_SUFFIX,
    ) -> None:
        self.root = Path(root)
        self.regenerate = regenerate
        self.generated_code_attribute = generated_code_attribute
        self.suffix = suffix

    def baseline_path(self, test_name: str) -> Path:
        return self.root / f"{test_name}{self.suffix}"

    def _to_baseline(self, generated_text: str) -> str:
        text = generated_text
        if self.generated_code_attribute:
            text = text.replace(self.generated_code_attribute, GENERATED_CODE_PLACEHOLDER)
        return text + "\n"

    def _from_baseline(self, baseline_text: str) -> list[str]:
        text = baseline_text.rstrip()
        if self.generated_code_attribute:
            text = text.replace(GENERATED_CODE_PLACEHOLDER, self.generated_code_attribute)
        return text.splitlines()

    def _write(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding=DEFAULT_ENCODING)

    async def verify(self, generated_text: str, test_name: str) -> None:
        """Assert *generated_text* matches the baseline for *test_name*.

        In regenerate mode the baseline is rewritten instead and
        ``BaselineRegeneratedError`` is raised so the run cannot pass.

        Raises:
            BaselineMismatchError: On a missing baseline or any difference.
            BaselineRegeneratedError: Always, when regenerating.
        """
        path = self.baseline_path(test_name)
        if self.regenerate:
            await asyncio.to_thread(self._write, path, self._to_baseline(generated_text))
            logger.warning("Regenerated baseline %s", path)
            raise BaselineRegeneratedError(path)

        try:
            baseline = await asyncio.to_thread(path.read_text, encoding=DEFAULT_ENCODING)
        except FileNotFoundError as exc:
            raise BaselineMismatchError(
                path, "Baseline file not found. Run with REGENERATE_BASELINES=true to create it."
            ) from exc

        matches, message = compare_lines(self._from_baseline(baseline), generated_text)
        if not matches:
            raise BaselineMismatchError(path, message)
        logger.debug("Baseline %s matched", path)
