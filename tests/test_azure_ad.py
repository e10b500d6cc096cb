"""Unit tests for the Azure AD tenant detector."""
from __future__ import annotations

import io
import json

import pytest

from adposture.azure_ad import collect_azure_ad, mfa_gap_severity, run_azure_ad
from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import Severity
from tests.source_factory import NOW, azure_user, hardened_azure_document


def _by_title(findings):
    return {f.title: f for f in findings}


def test_hardened_tenant_has_no_findings():
    assert collect_azure_ad(hardened_azure_document(), now=NOW) == []


def test_forty_percent_mfa_adoption_is_critical():
    users = [azure_user(f"mfa{i}") for i in range(4)]
    users += [azure_user(f"nomfa{i}", mfa="disabled") for i in range(6)]

    findings = collect_azure_ad(hardened_azure_document(users), now=NOW)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.severity is Severity.CRITICAL
    assert finding.title == "Low MFA Adoption Rate: 40.0%"
    assert "6 of 10" in finding.description


@pytest.mark.parametrize(
    ("coverage", "expected"),
    [
        (0.0, Severity.CRITICAL),
        (49.9, Severity.CRITICAL),
        (50.0, Severity.HIGH),
        (79.9, Severity.HIGH),
        (80.0, Severity.MEDIUM),
        (99.0, Severity.MEDIUM),
    ],
)
def test_mfa_gap_severity_bands(coverage, expected):
    assert mfa_gap_severity(coverage) is expected


def test_guests_and_disabled_users_excluded_from_mfa_ratio():
    users = [
        azure_user("alice"),
        azure_user("partner", mfa="disabled", user_type="Guest"),
        azure_user("leaver", mfa="disabled", enabled=False),
    ]

    findings = collect_azure_ad(hardened_azure_document(users), now=NOW)

    assert [f.title for f in findings] == ["1 Guest Users in Tenant"]
    assert findings[0].severity is Severity.INFO


def test_privileged_user_without_mfa_is_critical_regardless_of_ratio():
    users = [azure_user(f"user{i}") for i in range(19)]
    users.append(azure_user("admin", mfa="disabled", roles=["Global Administrator"]))

    findings = _by_title(collect_azure_ad(hardened_azure_document(users), now=NOW))

    assert findings["Low MFA Adoption Rate: 95.0%"].severity is Severity.MEDIUM
    privileged = findings["Privileged Accounts Without MFA Protection"]
    assert privileged.severity is Severity.CRITICAL
    assert privileged.affected_entities == ("admin@example.com",)


def test_stale_guests():
    users = [
        azure_user("alice"),
        azure_user("old_partner", user_type="Guest", last_sign_in_days=200),
        azure_user("never", user_type="Guest", last_sign_in_days=None),
        azure_user("recent", user_type="Guest", last_sign_in_days=5),
    ]

    findings = _by_title(collect_azure_ad(hardened_azure_document(users), now=NOW))

    stale = findings["2 Stale Guest Accounts"]
    assert stale.severity is Severity.MEDIUM
    assert stale.affected_entities == ("old_partner@example.com", "never@example.com")
    assert findings["3 Guest Users in Tenant"].severity is Severity.INFO


def test_no_conditional_access_and_no_security_defaults():
    document = hardened_azure_document()
    document["conditionalAccessPolicies"] = []
    document["securityDefaults"] = False

    findings = _by_title(collect_azure_ad(document, now=NOW))

    assert findings["No Conditional Access Policies Configured"].severity is Severity.CRITICAL
    assert (
        findings["Security Defaults Disabled Without Conditional Access"].severity
        is Severity.CRITICAL
    )
    assert "No MFA Enforcement via Conditional Access" not in findings


def test_conditional_access_gaps():
    document = hardened_azure_document()
    document["conditionalAccessPolicies"] = [
        {"name": "Block legacy", "state": "enabled", "grantControls": {"builtInControls": ["block"]}},
        {
            "name": "Pilot MFA",
            "state": "enabledForReportingButNotEnforced",
            "grantControls": {"builtInControls": ["mfa"]},
        },
    ]

    findings = _by_title(collect_azure_ad(document, now=NOW))

    assert findings["1 Conditional Access Policies in Report-Only Mode"].severity is Severity.MEDIUM
    assert findings["No MFA Enforcement via Conditional Access"].severity is Severity.CRITICAL
    assert findings["No Risk-Based Conditional Access Policies"].severity is Severity.MEDIUM


def test_pim_role_settings():
    document = hardened_azure_document()
    document["pimConfiguration"] = [
        {
            "roleName": "Global Administrator",
            "activeAssignments": 2,
            "requireMFA": False,
            "requireJustification": False,
            "maxActivationDuration": 24,
        }
    ]

    findings = collect_azure_ad(document, now=NOW)

    assert [(f.title, f.severity) for f in findings] == [
        ("Permanent Role Assignments: Global Administrator", Severity.HIGH),
        ("MFA Not Required for Role Activation: Global Administrator", Severity.HIGH),
        ("Justification Not Required: Global Administrator", Severity.MEDIUM),
        ("Long Activation Duration: Global Administrator", Severity.MEDIUM),
    ]


def test_missing_pim_and_baseline_controls():
    document = hardened_azure_document()
    document["pimConfiguration"] = []
    document["legacyAuthEnabled"] = True
    del document["passwordProtection"]

    findings = [(f.title, f.severity) for f in collect_azure_ad(document, now=NOW)]

    assert findings == [
        ("Legacy Authentication Protocols Enabled", Severity.HIGH),
        ("No Custom Banned Passwords", Severity.LOW),
        ("PIM Not Configured", Severity.HIGH),
    ]


def test_users_required():
    with pytest.raises(MalformedSourceError):
        collect_azure_ad({"users": []}, now=NOW)


def test_run_azure_ad_captures_error():
    source = InputSource(path="azure.json", handle=io.BytesIO(json.dumps([1, 2]).encode()))

    result = run_azure_ad(source, now=NOW)

    assert not result.assessed
    assert "must be a JSON object" in result.error


@pytest.mark.parametrize(
    "policy",
    [
        {"state": "enabled", "grantControls": ["mfa"]},
        {"state": "enabled", "grantControls": {"builtInControls": "mfa"}},
        {"state": "enabled", "conditions": "signInRisk"},
    ],
)
def test_malformed_policy_fields_are_reported(policy):
    document = hardened_azure_document()
    document["conditionalAccessPolicies"] = [policy]
    source = InputSource(path="azure.json", handle=io.BytesIO(json.dumps(document).encode()))

    result = run_azure_ad(source, now=NOW)

    assert not result.assessed
    assert "conditionalAccessPolicies[0]" in result.error


def test_only_missing_or_disabled_status_lacks_mfa():
    users = [
        azure_user("enforced"),
        azure_user("registered", mfa="Registered"),
        azure_user("unset", mfa=""),
        azure_user("off", mfa="Disabled"),
    ]

    findings = collect_azure_ad(hardened_azure_document(users), now=NOW)

    assert [f.title for f in findings] == ["Low MFA Adoption Rate: 50.0%"]
    assert "2 of 4" in findings[0].description
