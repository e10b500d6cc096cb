"""Shared utilities for timestamps, envelopes and severity summaries."""
from __future__ import annotations

import json
import re
from datetime import date, datetime, timedelta, timezone
from typing import IO, Iterable

from adposture import __version__
from adposture.exceptions import MalformedSourceError
from adposture.models import Finding, Severity

# Seconds between 1601-01-01 (Windows FILETIME epoch) and 1970-01-01.
_FILETIME_EPOCH_OFFSET = 11644473600
# Values above this are FILETIME ticks rather than Unix seconds.
_FILETIME_THRESHOLD = 10**11
# PowerShell 5 ConvertTo-Json renders DateTime values as /Date(<ms>)/.
_PS_DATE = re.compile(r"^/Date\((-?\d+)\)/$")
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp() -> str:
    """Return an ISO 8601 UTC timestamp suitable for envelopes and reports."""

    return utc_now().isoformat()


def build_envelope(*, tool: str, generated_at: str | None = None, **fields) -> dict:
    """Construct a standard adposture JSON envelope for tool outputs."""

    return {
        "adposture_version": __version__,
        "tool": tool,
        "generated_at": generated_at or utc_timestamp(),
        **fields,
    }


def dump_json_line(data: dict, output_handle: IO) -> None:
    """Serialize a dictionary as JSON followed by a newline to support streaming outputs."""

    json.dump(data, output_handle, ensure_ascii=False)
    output_handle.write("\n")


def filter_by_severity(findings: Iterable[Finding], minimum: Severity) -> list[Finding]:
    """Return findings at or above ``minimum`` severity, preserving order."""

    return [finding for finding in findings if finding.severity.at_least(minimum)]


def summarize_severities(findings: Iterable[Finding]) -> dict[Severity, int]:
    """Count findings by severity; every severity is present in the result."""

    totals = {severity: 0 for severity in Severity.ranked()}
    for finding in findings:
        totals[finding.severity] += 1
    return totals


def format_summary(totals: dict[Severity, int]) -> str:
    return " ".join(f"{severity.token.lower()}={count}" for severity, count in totals.items())


def parse_timestamp(value) -> datetime | None:
    """Return an aware UTC datetime for the common directory timestamp encodings.

    Accepts ISO 8601 strings (a trailing ``Z`` is allowed), ``date`` and
    ``datetime`` objects, Unix epoch seconds and Windows FILETIME ticks.
    ``None``, zero, negative and unparseable values mean "never" and return
    ``None``.
    """

    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        seconds = float(value)
        if seconds > _FILETIME_THRESHOLD:
            seconds = seconds / 10_000_000 - _FILETIME_EPOCH_OFFSET
            if seconds <= 0:
                return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        ps_date = _PS_DATE.match(text)
        if ps_date:
            return parse_timestamp(int(ps_date.group(1)) / 1000)
        if text.lstrip("-").isdigit():
            return parse_timestamp(int(text))
        text = _LONG_FRACTION.sub(r"\1", text)
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    return None


def days_since(value, now: datetime) -> int | None:
    """Return whole days elapsed between ``value`` and ``now``, or None if unknown."""

    moment = parse_timestamp(value)
    if moment is None:
        return None
    return (now - moment) // timedelta(days=1)


def preview_names(names: Iterable[str], limit: int = 5) -> str:
    """Join up to ``limit`` names, marking a truncated list with an ellipsis."""

    items = list(names)
    text = ", ".join(items[:limit])
    if len(items) > limit:
        text += "..."
    return text


def resolve_now(now: datetime | None) -> datetime:
    if now is None:
        return utc_now()
    return now if now.tzinfo else now.replace(tzinfo=timezone.utc)


def load_json_object(data: bytes | str, *, what: str) -> dict:
    """Decode ``data`` as a JSON object, raising ``MalformedSourceError`` otherwise."""

    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise MalformedSourceError(f"{what} is not UTF-8 text: {exc}") from exc
    try:
        document = json.loads(data)
    except json.JSONDecodeError as exc:
        raise MalformedSourceError(f"{what} is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise MalformedSourceError(f"{what} must be a JSON object")
    return document


def expect_type(document: dict, key: str, kind: type, *, what: str):
    """Return ``document[key]`` if it is absent/None or of type ``kind``."""

    value = document.get(key)
    if value is not None and not isinstance(value, kind):
        raise MalformedSourceError(
            f"{what}: '{key}' must be a {kind.__name__}, got {type(value).__name__}"
        )
    return value


def as_number(value) -> float | None:
    """Coerce numeric-looking values, returning None for anything else."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def expect_objects(document: dict, key: str, *, what: str) -> list[dict]:
    """Return the list at ``document[key]`` (empty when absent) whose elements must be objects."""

    items = expect_type(document, key, list, what=what)
    for index, item in enumerate(items or []):
        if not isinstance(item, dict):
            raise MalformedSourceError(f"{what}: {key}[{index}] must be an object")
    return list(items or [])
