"""Render and parse the human-readable technical report format.

Each finding is written as a header line followed by indented field lines::

    🔴 [CRITICAL] LDAP Signing Not Enforced
       Category: LDAP Security
       LDAP signing is not required, allowing man-in-the-middle attacks
       Remediation: Enable LDAP signing requirement on all domain controllers

Field values are whitespace-normalized on both sides, so a finding whose
text fields contain no line breaks or runs of spaces survives a
format/parse round trip unchanged (references are not read back).
"""
from __future__ import annotations

import re
import textwrap
from typing import Iterable

from adposture.models import SEVERITY_ICONS, Finding, Severity, sort_findings
from adposture.utils import summarize_severities

INDENT = "   "
RULE = "═" * 59
ENTITY_SEPARATOR = ", "

CATEGORY = "Category:"
ACCOUNT = "Account:"
ISSUE = "Issue:"
IMPACT = "Impact:"
REMEDIATION = "Remediation:"
REFERENCES = "References:"
FIELD_PREFIXES = (CATEGORY, ACCOUNT, ISSUE, IMPACT, REMEDIATION, REFERENCES)

_HEADER = re.compile(r"\[([A-Za-z]+)\]\s+(\S.*)$")


def _clean(text) -> str:
    return " ".join(str(text or "").split())


def _starts_with_field(text: str) -> bool:
    return text.startswith(FIELD_PREFIXES)


def _field_lines(prefix: str, text: str, width: int | None) -> list[str]:
    first = f"{INDENT}{prefix} " if prefix else INDENT
    if not width:
        return [f"{first}{text}"]
    lines = textwrap.wrap(
        text,
        width=width,
        initial_indent=first,
        subsequent_indent=INDENT,
        break_long_words=False,
        break_on_hyphens=False,
    )
    # A wrapped line that looks like a field prefix would be read back as that field.
    if any(_starts_with_field(line.strip()) for line in lines[1:]):
        return [f"{first}{text}"]
    return lines or [f"{first}{text}"]


def format_finding(finding: Finding, *, width: int | None = None) -> list[str]:
    """Return the report lines for one finding, excluding the trailing blank line."""

    severity = finding.severity
    lines = [f"{severity.icon} [{severity.token}] {_clean(finding.title)}"]
    lines.append(f"{INDENT}{CATEGORY} {_clean(finding.category)}".rstrip())

    entities = [_clean(entity) for entity in finding.affected_entities if _clean(entity)]
    if entities:
        lines.append(f"{INDENT}{ACCOUNT} {ENTITY_SEPARATOR.join(entities)}")

    description = _clean(finding.description)
    if description:
        prefix = ISSUE if _starts_with_field(description) else ""
        lines.extend(_field_lines(prefix, description, width))

    impact = _clean(finding.impact)
    if impact:
        lines.extend(_field_lines(IMPACT, impact, width))
    remediation = _clean(finding.remediation)
    if remediation:
        lines.extend(_field_lines(REMEDIATION, remediation, width))
    references = [_clean(reference) for reference in finding.references if _clean(reference)]
    if references:
        lines.append(f"{INDENT}{REFERENCES} {ENTITY_SEPARATOR.join(references)}")
    return lines


def _format_value(value) -> str:
    if isinstance(value, dict):
        return " ".join(f"{key}={item}" for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def format_report(
    findings: Iterable[Finding],
    *,
    title: str,
    metadata: dict | None = None,
    width: int | None = None,
) -> str:
    """Render a complete technical report.

    The banner and summary are informational; only the finding blocks are
    read back by ``parse_report``. Findings are ordered by severity, keeping
    emission order within a severity.
    """

    ordered = sort_findings(findings)
    totals = summarize_severities(ordered)

    lines = [RULE, f"{INDENT}{title.upper()}", RULE, ""]
    for key, value in (metadata or {}).items():
        if value not in (None, "", {}, []):
            lines.append(f"{key.replace('_', ' ').title()}: {_format_value(value)}")
    if metadata:
        lines.append("")

    lines.append("SUMMARY:")
    for severity, count in totals.items():
        label = f"{severity.token}:"
        lines.append(f"  {severity.icon} {label:<9} {count}")
    lines.append("")
    lines.append(f"  Total Findings: {len(ordered)}")
    lines.extend(["", RULE, ""])

    for finding in ordered:
        lines.extend(format_finding(finding, width=width))
        lines.append("")

    lines.extend([RULE, ""])
    return "\n".join(lines)


class _PendingFinding:
    """Field accumulator for the finding currently being parsed."""

    def __init__(self, severity: Severity, title: str) -> None:
        self.severity = severity
        self.title = title
        self.fields = {
            "category": "",
            "account": "",
            "description": "",
            "impact": "",
            "remediation": "",
        }
        self.last_field: str | None = None

    def extend(self, name: str, text: str) -> None:
        current = self.fields[name]
        self.fields[name] = f"{current} {text}" if current else text

    def build(self) -> Finding:
        entities = tuple(
            entity.strip()
            for entity in self.fields["account"].split(",")
            if entity.strip()
        )
        return Finding(
            severity=self.severity,
            title=self.title,
            category=self.fields["category"],
            description=self.fields["description"],
            impact=self.fields["impact"],
            remediation=self.fields["remediation"],
            affected_entities=entities,
        )


_PREFIX_FIELDS = {
    CATEGORY: "category",
    ACCOUNT: "account",
    ISSUE: "description",
    IMPACT: "impact",
    REMEDIATION: "remediation",
    REFERENCES: "references",
}
CONTINUED_FIELDS = ("impact", "remediation")


def _match_header(line: str):
    if line.startswith(INDENT) or not any(icon in line for icon in SEVERITY_ICONS):
        return None
    return _HEADER.search(line)


def _apply_body_line(pending: _PendingFinding, body: str) -> None:
    for prefix, name in _PREFIX_FIELDS.items():
        if body.startswith(prefix):
            value = _clean(body[len(prefix):])
            pending.last_field = name
            if name in pending.fields:
                pending.fields[name] = value
            return

    if pending.last_field in CONTINUED_FIELDS:
        pending.extend(pending.last_field, _clean(body))
    elif pending.last_field != "references":
        pending.extend("description", _clean(body))
        pending.last_field = "description"


def parse_report_with_errors(text: str) -> tuple[list[Finding], list[str]]:
    """Parse report text into findings plus the header lines that were dropped.

    A header whose severity token is unknown drops that finding together
    with its body lines; every other finding is still returned.
    """

    findings: list[Finding] = []
    dropped: list[str] = []
    pending: _PendingFinding | None = None
    skipping = False

    def flush() -> None:
        nonlocal pending
        if pending is not None:
            findings.append(pending.build())
        pending = None

    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        header = _match_header(line)
        if header:
            flush()
            token, title = header.group(1), _clean(header.group(2))
            try:
                pending = _PendingFinding(Severity.from_token(token), title)
                skipping = False
            except ValueError:
                dropped.append(line)
                skipping = True
            continue

        if not line.strip():
            continue
        if not line.startswith(INDENT):
            flush()
            skipping = False
            continue
        if pending is None or skipping:
            continue
        _apply_body_line(pending, line.strip())

    flush()
    return findings, dropped


def parse_report(text: str) -> list[Finding]:
    """Parse report text, silently dropping findings with unknown severities."""

    findings, _ = parse_report_with_errors(text)
    return findings
