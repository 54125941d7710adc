"""MCP Tool: write-test-file - write generated tests to disk, one file per test_file."""

from __future__ import annotations

import logging
from pathlib import Path

from engine.context import AppContext
from models.schemas import TestCase, WriteTestFileRequest, WriteTestFileResponse, WrittenFile

logger = logging.getLogger("tools.write_test_file")


def render_test_file(tests: list[TestCase]) -> str:
    """Join test bodies; single-line imports are hoisted and deduplicated."""
    imports: list[str] = []
    bodies: list[str] = []
    for test in tests:
        body = []
        for line in test.code.splitlines():
            stripped = line.strip()
            if stripped.startswith("import ") and not line.startswith((" ", "\t")) and (
                stripped.endswith(";") or stripped.endswith(("'", '"'))
            ):
                if stripped not in imports:
                    imports.append(stripped)
            else:
                body.append(line)
        bodies.append("\n".join(body).strip("\n"))
    header = "\n".join(imports)
    parts = ([header] if header else []) + bodies
    return "\n\n".join(parts) + "\n"


def _group(tests: list[TestCase]) -> dict[str, list[TestCase]]:
    grouped: dict[str, list[TestCase]] = {}
    for test in tests:
        grouped.setdefault(test.test_file, []).append(test)
    return grouped


def execute(request: WriteTestFileRequest, ctx: AppContext) -> WriteTestFileResponse:
    tests = request.tests
    if not tests and request.revision_id:
        tests = ctx.state.get(request.revision_id).tests
    if not tests:
        return WriteTestFileResponse(status="failed", error="no tests to write")

    root = Path(request.project_root or ctx.project_root).resolve()
    response = WriteTestFileResponse()
    for test_file, group in _group(tests).items():
        target = (root / test_file).resolve()
        written = WrittenFile(file_path=str(target), tests=len(group))
        if not target.is_relative_to(root):
            written.success = False
            written.error = f"{test_file} is outside the project root"
        elif target.exists() and not request.overwrite:
            written.success = False
            written.error = "file exists (set overwrite=true to replace)"
        else:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(render_test_file(group), encoding="utf-8")
                logger.info("Wrote %d tests to %s", len(group), target)
            except OSError as exc:
                logger.error("Could not write %s: %s", target, exc)
                written.success = False
                written.error = str(exc)
        response.files.append(written)

    if not any(f.success for f in response.files):
        response.status = "failed"
    elif not all(f.success for f in response.files):
        response.status = "partial"
    return response
