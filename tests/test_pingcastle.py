"""Unit tests for PingCastle report parsing."""
from __future__ import annotations

import io

import pytest

from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import Severity
from adposture.pingcastle import (
    collect_pingcastle,
    map_points_to_severity,
    parse_pingcastle,
    run_pingcastle,
)
from tests.source_factory import pingcastle_html, pingcastle_xml


@pytest.mark.parametrize(
    ("points", "expected"),
    [
        (52, Severity.CRITICAL),
        (50, Severity.CRITICAL),
        (49, Severity.HIGH),
        (30, Severity.HIGH),
        (29, Severity.MEDIUM),
        (15, Severity.MEDIUM),
        (14, Severity.LOW),
        (12, Severity.LOW),
        (5, Severity.LOW),
        (4, Severity.INFO),
        (0, Severity.INFO),
        (-3, Severity.INFO),
        (10_000, Severity.CRITICAL),
    ],
)
def test_map_points_to_severity(points, expected):
    assert map_points_to_severity(points) is expected


def test_point_bands_are_monotonic():
    ranks = [map_points_to_severity(points).rank for points in range(-10, 100)]
    assert ranks == sorted(ranks, reverse=True)


def test_parse_xml_report():
    content = pingcastle_xml(
        [
            ("A-Krbtgt", 52, "Anomalies", "Last change of the Kerberos password: 1200 days"),
            ("S-OldNtlm", 12, "StaleObjects", "NTLMv1 is allowed"),
        ]
    ).encode("utf-8")

    findings, metadata = parse_pingcastle(content)

    assert [(f.title, f.severity) for f in findings] == [
        ("A-Krbtgt: Last change of the Kerberos password: 1200 days", Severity.CRITICAL),
        ("S-OldNtlm: NTLMv1 is allowed", Severity.LOW),
    ]
    first = findings[0]
    assert first.category == "Anomalies"
    assert first.impact == "PingCastle Risk Score: 52 points. AnomaliesModel"
    assert first.description == "Last change of the Kerberos password: 1200 days"
    assert first.remediation.startswith("See PingCastle documentation")
    assert metadata == {
        "domain": "corp.example.com",
        "generated": "2026-01-15T10:00:00",
        "global_score": 65,
        "format": "xml",
    }


def test_parse_namespaced_xml_rule_elements():
    content = (
        b'<?xml version="1.0"?>'
        b'<HealthcheckData xmlns="urn:example"><RiskRules><HealthcheckRiskRule>'
        b"<Points>30</Points><RiskId>P-Delegated</RiskId><Rationale>Delegation</Rationale>"
        b"<Solution>Remove the delegation</Solution>"
        b"</HealthcheckRiskRule></RiskRules></HealthcheckData>"
    )

    findings = collect_pingcastle(content)

    assert len(findings) == 1
    assert findings[0].severity is Severity.HIGH
    assert findings[0].category == "General"
    assert findings[0].remediation == "Remove the delegation"


def test_parse_html_report():
    content = pingcastle_html(
        [
            ("A-LAPS-Not-Installed", 15, "Anomalies", "LAPS is not installed"),
            ("P-Kerberoasting", 40, "Privileged Accounts", "Admin accounts with SPN"),
        ]
    ).encode("utf-8")

    findings, metadata = parse_pingcastle(content)

    assert [(f.title, f.severity) for f in findings] == [
        ("A-LAPS-Not-Installed: LAPS is not installed", Severity.MEDIUM),
        ("P-Kerberoasting: Admin accounts with SPN", Severity.HIGH),
    ]
    assert findings[1].category == "Privileged Accounts"
    assert metadata == {"global_score": 40, "format": "html"}


def test_xml_without_rules_is_clean():
    findings = collect_pingcastle(pingcastle_xml([]).encode("utf-8"))
    assert findings == []


@pytest.mark.parametrize("content", [b"", b"Just some text", b"{\"json\": true}"])
def test_unrecognized_content_is_malformed(content):
    with pytest.raises(MalformedSourceError):
        parse_pingcastle(content)


def test_run_pingcastle_records_metadata():
    content = pingcastle_xml([("A-Krbtgt", 52, "Anomalies", "Old krbtgt")]).encode("utf-8")
    source = InputSource(path="ad_hc.xml", handle=io.BytesIO(content))

    result = run_pingcastle(source)

    assert result.assessed
    assert result.metadata["domain"] == "corp.example.com"
    assert [f.severity for f in result.findings] == [Severity.CRITICAL]


def test_run_pingcastle_malformed():
    result = run_pingcastle(InputSource(path="x.txt", handle=io.BytesIO(b"plain text")))

    assert not result.assessed
    assert "expected XML or HTML" in result.error
