"""Composite assessment: run detectors, reload reports and write the output set."""
from __future__ import annotations

import json
import os
import re
from datetime import datetime
from typing import Callable, Mapping

import click

from adposture import io_utils
from adposture.aggregate import Metrics
from adposture.azure_ad import run_azure_ad
from adposture.bloodhound import run_bloodhound
from adposture.config import DetectorConfig
from adposture.exceptions import MalformedSourceError, NoSourcesError
from adposture.executive import render_html
from adposture.misconfigs import run_misconfigs
from adposture.models import DetectorResult, SourceType
from adposture.pingcastle import run_pingcastle
from adposture.privileges import run_privileges
from adposture.report_jsonl import load_result_with_errors, write_result
from adposture.report_text import format_report, parse_report_with_errors

Runner = Callable[..., DetectorResult]

DETECTORS: dict[SourceType, Runner] = {
    SourceType.AD_MISCONFIGS: lambda source, now, config: run_misconfigs(source, now=now, config=config),
    SourceType.PRIVILEGES: lambda source, now, config: run_privileges(source, now=now, config=config),
    SourceType.AZURE_AD: lambda source, now, config: run_azure_ad(source, now=now, config=config),
    SourceType.BLOODHOUND: lambda source, now, config: run_bloodhound(source, now=now, config=config),
    SourceType.PINGCASTLE: lambda source, now, config: run_pingcastle(source),
}

SUMMARY_FILE = "summary.json"
EXECUTIVE_FILE = "executive-report.html"

_REPORT_NAME = re.compile(r"^report-(?P<stem>.+)\.(?P<ext>txt|jsonl)$")
# File-name fragments accepted for report sets written by other tooling.
_STEM_ALIASES = (
    ("misconfig", SourceType.AD_MISCONFIGS),
    ("privilege", SourceType.PRIVILEGES),
    ("azure", SourceType.AZURE_AD),
    ("bloodhound", SourceType.BLOODHOUND),
    ("pingcastle", SourceType.PINGCASTLE),
)


def report_title(source: SourceType) -> str:
    return f"{source.label} Assessment"


def source_for_stem(stem: str) -> SourceType | None:
    try:
        return SourceType.from_key(stem)
    except ValueError:
        pass
    lowered = stem.lower()
    for fragment, source in _STEM_ALIASES:
        if fragment in lowered:
            return source
    return None


def run_detector(
    source_type: SourceType,
    source: io_utils.InputSource,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    return DETECTORS[source_type](source, now, config or DetectorConfig())


def run_source(
    source_type: SourceType,
    path: str,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    """Run one detector on ``path``; an unreadable path becomes the result's error."""

    try:
        source = io_utils.resolve_input(
            path, allow_directory=source_type is SourceType.BLOODHOUND
        )
    except click.ClickException as exc:
        return DetectorResult(source=source_type, path=path, error=exc.format_message())

    try:
        return run_detector(source_type, source, now=now, config=config)
    finally:
        io_utils.close_inputs([source])


def run_sources(
    paths: Mapping[SourceType, str],
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> list[DetectorResult]:
    """Run every supplied detector sequentially, in ``SourceType`` order."""

    if not paths:
        raise NoSourcesError("No data sources supplied")
    return [
        run_source(source_type, paths[source_type], now=now, config=config)
        for source_type in SourceType
        if source_type in paths
    ]


def require_assessed(results: list[DetectorResult]) -> list[DetectorResult]:
    """Return ``results`` unless none of them could be assessed.

    Raises ``NoSourcesError`` naming each failed source.
    """

    if any(result.assessed for result in results):
        return results
    details = "; ".join(f"{result.source.label}: {result.error}" for result in results)
    message = "No assessments completed successfully"
    raise NoSourcesError(f"{message} ({details})" if details else message)


def _read_report(path: str, source: SourceType, extension: str) -> DetectorResult:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            text = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedSourceError(f"cannot read report {path}: {exc}") from exc
    if extension == "jsonl":
        result, dropped = load_result_with_errors(text, source=source)
    else:
        findings, dropped = parse_report_with_errors(text)
        result = DetectorResult(source=source, path=path, findings=findings)
    if dropped:
        result.metadata["dropped"] = dropped
    return result


def load_reports(directory: str) -> list[DetectorResult]:
    """Read ``report-*.txt`` / ``report-*.jsonl`` files from ``directory``.

    When both forms exist for a source the JSON Lines file wins, since it
    also records whether the source could be assessed. Unrecognized file
    names are ignored; a directory with no usable reports raises
    ``NoSourcesError``.
    """

    chosen: dict[SourceType, tuple[str, str]] = {}
    for name in sorted(os.listdir(directory)):
        match = _REPORT_NAME.match(name)
        if not match:
            continue
        source = source_for_stem(match.group("stem"))
        if source is None:
            continue
        extension = match.group("ext")
        if source in chosen and chosen[source][1] == "jsonl":
            continue
        chosen[source] = (os.path.join(directory, name), extension)

    results = []
    for source in SourceType:
        if source not in chosen:
            continue
        path, extension = chosen[source]
        try:
            results.append(_read_report(path, source, extension))
        except MalformedSourceError as exc:
            results.append(DetectorResult(source=source, path=path, error=str(exc)))

    if not results:
        raise NoSourcesError(f"No assessment reports found in {directory}")
    return require_assessed(results)


def write_outputs(
    results: list[DetectorResult],
    metrics: Metrics,
    out_dir: str,
    organization_name: str,
    *,
    width: int | None = None,
) -> list[str]:
    """Write per-source reports, ``summary.json`` and the executive HTML report.

    Returns the written paths in write order.
    """

    out_dir = io_utils.ensure_directory(out_dir)
    written: list[str] = []

    for result in results:
        metadata = {"source": result.path, "generated": metrics.generated_at, **result.metadata}
        if result.error:
            metadata["error"] = f"could not be assessed: {result.error}"
        text_path = os.path.join(out_dir, result.source.report_name)
        with open(text_path, "w", encoding="utf-8") as handle:
            handle.write(
                format_report(
                    result.findings,
                    title=report_title(result.source),
                    metadata=metadata,
                    width=width,
                )
            )
        written.append(text_path)

        jsonl_path = os.path.join(out_dir, result.source.jsonl_name)
        with open(jsonl_path, "w", encoding="utf-8") as handle:
            write_result(result, handle, generated_at=metrics.generated_at)
        written.append(jsonl_path)

    summary_path = os.path.join(out_dir, SUMMARY_FILE)
    with open(summary_path, "w", encoding="utf-8") as handle:
        json.dump(
            {"organization": organization_name, **metrics.as_dict()},
            handle,
            ensure_ascii=False,
            indent=2,
        )
        handle.write("\n")
    written.append(summary_path)

    html_path = os.path.join(out_dir, EXECUTIVE_FILE)
    with open(html_path, "w", encoding="utf-8") as handle:
        handle.write(render_html(metrics, organization_name))
    written.append(html_path)

    return written
