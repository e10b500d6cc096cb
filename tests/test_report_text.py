"""Tests for the technical report text format."""
from __future__ import annotations

from adposture.models import Finding, Severity
from adposture.report_text import (
    format_finding,
    format_report,
    parse_report,
    parse_report_with_errors,
)

SAMPLE_FINDINGS = [
    Finding(
        severity=Severity.MEDIUM,
        category="Password Policy",
        title="Password Complexity Not Enforced",
        description="Password complexity requirements are not enabled",
        remediation="Enable password complexity requirements",
    ),
    Finding(
        severity=Severity.CRITICAL,
        category="LDAP Security",
        title="LDAP Signing Not Enforced",
        description="LDAP signing is not required, allowing man-in-the-middle attacks",
        impact="Credentials can be relayed",
        remediation="Enable LDAP signing requirement on all domain controllers",
        references=("MS CVE-2020-1041",),
    ),
    Finding(
        severity=Severity.HIGH,
        category="Dormant Privileged Account",
        title="Dormant Privileged Account: old_admin",
        description="Privileged account has not logged in for 120 days",
        affected_entities=("old_admin", "CORP\\backup"),
    ),
    Finding(severity=Severity.INFO, category="", title="Nothing else to report"),
]


def _comparable(finding: Finding) -> Finding:
    return Finding(
        severity=finding.severity,
        title=finding.title,
        category=finding.category,
        description=finding.description,
        impact=finding.impact,
        remediation=finding.remediation,
        affected_entities=finding.affected_entities,
    )


def test_format_finding_layout():
    lines = format_finding(SAMPLE_FINDINGS[1])

    assert lines == [
        "\U0001F534 [CRITICAL] LDAP Signing Not Enforced",
        "   Category: LDAP Security",
        "   LDAP signing is not required, allowing man-in-the-middle attacks",
        "   Impact: Credentials can be relayed",
        "   Remediation: Enable LDAP signing requirement on all domain controllers",
        "   References: MS CVE-2020-1041",
    ]


def test_format_report_sorts_by_severity_and_summarizes():
    text = format_report(SAMPLE_FINDINGS, title="AD Configuration Assessment", metadata={"domain": "corp"})

    assert "AD CONFIGURATION ASSESSMENT" in text
    assert "Domain: corp" in text
    assert "Total Findings: 4" in text
    positions = [text.index(f.title) for f in SAMPLE_FINDINGS]
    # CRITICAL, HIGH, MEDIUM, INFO
    assert positions[1] < positions[2] < positions[0] < positions[3]


def test_round_trip_preserves_findings():
    text = format_report(SAMPLE_FINDINGS, title="Round Trip")

    parsed = parse_report(text)

    expected = sorted((_comparable(f) for f in SAMPLE_FINDINGS), key=lambda f: f.severity.rank)
    assert parsed == expected


def test_round_trip_with_wrapping():
    finding = Finding(
        severity=Severity.HIGH,
        category="Kerberoasting",
        title="Long text",
        description="word " * 40 + "end",
        impact="impact " * 30 + "end",
        remediation="fix " * 30 + "end",
    )

    text = format_report([finding], title="Wrapped", width=50)

    assert max(len(line) for line in text.splitlines() if line.startswith("   ")) <= 50
    assert parse_report(text) == [_comparable(Finding(
        severity=finding.severity,
        category=finding.category,
        title=finding.title,
        description=" ".join(finding.description.split()),
        impact=" ".join(finding.impact.split()),
        remediation=" ".join(finding.remediation.split()),
    ))]


def test_description_that_looks_like_a_field_survives():
    finding = Finding(
        severity=Severity.LOW,
        category="Misc",
        title="Tricky",
        description="Impact: this is really the description",
    )

    parsed = parse_report(format_report([finding], title="x"))

    assert parsed[0].description == "Impact: this is really the description"
    assert parsed[0].impact == ""


def test_parse_continuation_lines():
    text = "\n".join(
        [
            "\U0001F7E0 [HIGH] Wrapped finding",
            "   Category: Demo",
            "   first part of the",
            "   description",
            "   Impact: first part of",
            "   the impact",
            "   Remediation: do the",
            "   thing",
            "   References: ignored",
            "   also ignored",
        ]
    )

    (finding,) = parse_report(text)

    assert finding.description == "first part of the description"
    assert finding.impact == "first part of the impact"
    assert finding.remediation == "do the thing"


def test_issue_prefix_is_description_alias():
    text = "\U0001F7E1 [MEDIUM] Legacy layout\n   Category: Old\n   Account: jdoe, asmith\n   Issue: Legacy wording\n"

    (finding,) = parse_report(text)

    assert finding.description == "Legacy wording"
    assert finding.affected_entities == ("jdoe", "asmith")


def test_unknown_severity_drops_only_that_finding():
    text = "\n".join(
        [
            "\U0001F534 [CRITICAL] Keep me",
            "   Category: A",
            "\U0001F534 [SEVERE] Drop me",
            "   Category: B",
            "   Body of the dropped finding",
            "\U0001F535 [LOW] Keep me too",
            "   Category: C",
        ]
    )

    findings, dropped = parse_report_with_errors(text)

    assert [(f.title, f.category) for f in findings] == [("Keep me", "A"), ("Keep me too", "C")]
    assert findings[0].description == ""
    assert dropped == ["\U0001F534 [SEVERE] Drop me"]


def test_header_requires_icon_and_no_indent():
    text = "\n".join(
        [
            "[HIGH] No icon here",
            "   \U0001F534 [CRITICAL] Indented header",
            "  \U0001F534 CRITICAL: 3",
        ]
    )

    assert parse_report(text) == []


def test_summary_and_banner_are_not_findings():
    assert parse_report(format_report([], title="Empty")) == []
