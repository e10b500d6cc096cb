"""JSON Lines interchange for detector results.

The first line is an envelope describing the run; every following line is
one finding::

    {"adposture_version": "0.1.0", "tool": "adposture", "source": "privileges", ...}
    {"severity": "HIGH", "title": "Dormant Privileged Account: jdoe", ...}
"""
from __future__ import annotations

import io
import json
from typing import IO

from adposture.exceptions import MalformedSourceError
from adposture.models import DetectorResult, Finding, SourceType
from adposture.utils import build_envelope, dump_json_line

TOOL_NAME = "adposture"


def result_header(result: DetectorResult, *, generated_at: str | None = None) -> dict:
    return build_envelope(
        tool=TOOL_NAME,
        generated_at=generated_at,
        source=result.source.key,
        path=result.path,
        error=result.error,
        metadata=result.metadata,
    )


def write_result(
    result: DetectorResult,
    output_handle: IO,
    *,
    findings: list[Finding] | None = None,
    generated_at: str | None = None,
) -> None:
    """Stream ``result`` as JSON Lines; ``findings`` overrides the result's own list."""

    dump_json_line(result_header(result, generated_at=generated_at), output_handle)
    for finding in result.findings if findings is None else findings:
        dump_json_line(finding.as_dict(), output_handle)


def dumps_result(result: DetectorResult, **kwargs) -> str:
    buffer = io.StringIO()
    write_result(result, buffer, **kwargs)
    return buffer.getvalue()


def load_result_with_errors(
    text: str, *, source: SourceType | None = None
) -> tuple[DetectorResult, list[str]]:
    """Read a JSON Lines report back into a ``DetectorResult``.

    Finding lines that are not valid JSON or carry an unknown severity are
    skipped and returned as the second element. A missing or unreadable
    envelope line raises ``MalformedSourceError``.
    """

    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise MalformedSourceError("JSON Lines report is empty")

    try:
        header = json.loads(lines[0])
    except json.JSONDecodeError as exc:
        raise MalformedSourceError(f"JSON Lines report header is not valid JSON: {exc}") from exc
    if not isinstance(header, dict) or "adposture_version" not in header:
        raise MalformedSourceError("JSON Lines report does not start with an adposture header")

    if source is None:
        try:
            source = SourceType.from_key(str(header.get("source", "")))
        except ValueError as exc:
            raise MalformedSourceError(str(exc)) from exc

    result = DetectorResult(
        source=source,
        path=str(header.get("path") or ""),
        error=header.get("error"),
        metadata=header.get("metadata") or {},
    )

    dropped: list[str] = []
    for line in lines[1:]:
        try:
            data = json.loads(line)
            if not isinstance(data, dict):
                raise ValueError("finding line is not an object")
            result.findings.append(Finding.from_dict(data))
        except (TypeError, ValueError):
            dropped.append(line)
    return result, dropped


def load_result(text: str, *, source: SourceType | None = None) -> DetectorResult:
    result, _ = load_result_with_errors(text, source=source)
    return result
