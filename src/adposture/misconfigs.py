"""Detect weaknesses in on-prem Active Directory configuration exports.

Input shape::

    {
      "domain": "example.com",
      "passwordPolicy": {"minimumPasswordLength": 8, "passwordComplexity": true,
                         "lockoutThreshold": 5, "maximumPasswordAge": 90},
      "ldapSettings": {"ldapSigning": false, "channelBinding": false, "ssl": true},
      "domainControllers": [{"hostname": "DC01", "osVersion": "...",
                             "lastPatchDate": "2025-12-01"}],
      "serviceAccounts": [{"name": "svc_backup", "passwordLastSet": "2024-01-01",
                           "kerberosPreAuthRequired": true}]
    }

Absent sections are treated as unconfigured controls and reported, never
skipped.
"""
from __future__ import annotations

from datetime import datetime

from adposture.config import DetectorConfig
from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import DetectorResult, Finding, Severity, SourceType
from adposture.utils import (
    as_number,
    days_since,
    expect_type,
    load_json_object,
    resolve_now,
)

WHAT = "AD configuration document"


def _check_password_policy(policy: dict | None, config: DetectorConfig) -> list[Finding]:
    category = "Password Policy"

    if policy is None:
        return [
            Finding(
                severity=Severity.HIGH,
                category=category,
                title="No Password Policy Configured",
                description="Domain has no password policy configured",
                remediation="Implement a strong password policy with minimum length 14+, complexity enabled",
            )
        ]

    findings: list[Finding] = []
    min_length = as_number(policy.get("minimumPasswordLength"))
    if min_length is None or min_length < config.min_password_length:
        if min_length is None:
            description = "No minimum password length is configured (recommended: 14+)"
        else:
            description = (
                f"Minimum password length is {int(min_length)} characters (recommended: 14+)"
            )
        findings.append(
            Finding(
                severity=Severity.HIGH,
                category=category,
                title="Weak Minimum Password Length",
                description=description,
                remediation="Increase minimum password length to at least 14 characters",
                references=("NIST SP 800-63B", "CIS Benchmark for Active Directory"),
            )
        )

    if not policy.get("passwordComplexity"):
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category=category,
                title="Password Complexity Not Enforced",
                description="Password complexity requirements are not enabled",
                remediation="Enable password complexity requirements",
            )
        )

    lockout = as_number(policy.get("lockoutThreshold"))
    if not lockout:
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category=category,
                title="No Account Lockout Policy",
                description=(
                    "Account lockout is not configured, allowing unlimited password guessing attempts"
                ),
                remediation="Configure account lockout threshold (recommended: 5-10 invalid attempts)",
            )
        )

    max_age = as_number(policy.get("maximumPasswordAge"))
    if max_age is not None and max_age > config.max_password_age_days:
        findings.append(
            Finding(
                severity=Severity.LOW,
                category=category,
                title="Long Maximum Password Age",
                description=(
                    f"Passwords expire after {int(max_age)} days (recommended: 60-90 days)"
                ),
                remediation="Reduce maximum password age to 60-90 days",
            )
        )

    return findings


def _check_ldap(ldap: dict | None) -> list[Finding]:
    category = "LDAP Security"

    if ldap is None:
        return [
            Finding(
                severity=Severity.HIGH,
                category=category,
                title="LDAP Security Settings Unknown",
                description="Unable to determine LDAP security configuration",
                remediation="Review and harden LDAP settings",
            )
        ]

    findings: list[Finding] = []
    if not ldap.get("ldapSigning"):
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                category=category,
                title="LDAP Signing Not Enforced",
                description="LDAP signing is not required, allowing man-in-the-middle attacks",
                remediation="Enable LDAP signing requirement on all domain controllers",
                references=("MS CVE-2020-1041", "AD FS Exploit Chain"),
            )
        )
    if not ldap.get("channelBinding"):
        findings.append(
            Finding(
                severity=Severity.HIGH,
                category=category,
                title="LDAP Channel Binding Not Enforced",
                description="LDAP channel binding is not required, increasing relay attack risk",
                remediation="Enable LDAP channel binding to prevent relay attacks",
            )
        )
    if not ldap.get("ssl"):
        findings.append(
            Finding(
                severity=Severity.HIGH,
                category=category,
                title="LDAPS Not Enforced",
                description="LDAP over SSL/TLS is not enforced, allowing credential exposure",
                remediation="Require LDAPS for all LDAP communications",
            )
        )
    return findings


def _check_domain_controllers(
    controllers: list | None, now: datetime, config: DetectorConfig
) -> list[Finding]:
    category = "Domain Controllers"

    if not controllers:
        return [
            Finding(
                severity=Severity.INFO,
                category=category,
                title="No Domain Controller Data",
                description="No domain controller information provided",
                remediation="Provide domain controller details for assessment",
            )
        ]

    findings: list[Finding] = []
    for index, dc in enumerate(controllers):
        if not isinstance(dc, dict):
            raise MalformedSourceError(f"{WHAT}: domainControllers[{index}] must be an object")
        hostname = str(dc.get("hostname") or f"DC #{index + 1}")
        os_version = str(dc.get("osVersion") or "")

        if os_version and any(marker in os_version for marker in config.eol_os_markers):
            findings.append(
                Finding(
                    severity=Severity.CRITICAL,
                    category=category,
                    title=f"Unsupported Domain Controller OS: {hostname}",
                    description=f"{hostname} is running {os_version} which is end-of-life",
                    remediation="Upgrade domain controllers to a supported Windows Server version",
                    affected_entities=(hostname,),
                )
            )

        patch_age = days_since(dc.get("lastPatchDate"), now)
        if patch_age is not None and patch_age > config.dc_patch_max_age_days:
            findings.append(
                Finding(
                    severity=Severity.HIGH,
                    category=category,
                    title=f"Unpatched Domain Controller: {hostname}",
                    description=f"{hostname} has not been patched in {patch_age} days",
                    remediation="Apply latest security patches to domain controllers",
                    affected_entities=(hostname,),
                )
            )

    return findings


def _check_service_accounts(
    accounts: list | None, now: datetime, config: DetectorConfig
) -> list[Finding]:
    category = "Service Accounts"
    findings: list[Finding] = []

    for index, account in enumerate(accounts or []):
        if not isinstance(account, dict):
            raise MalformedSourceError(f"{WHAT}: serviceAccounts[{index}] must be an object")
        name = str(account.get("name") or f"service account #{index + 1}")

        if not account.get("kerberosPreAuthRequired"):
            findings.append(
                Finding(
                    severity=Severity.CRITICAL,
                    category=category,
                    title=f"Kerberos Pre-Auth Disabled: {name}",
                    description=(
                        f"Account {name} does not require Kerberos pre-authentication "
                        "(AS-REP Roasting vulnerability)"
                    ),
                    remediation="Enable Kerberos pre-authentication requirement",
                    affected_entities=(name,),
                    references=("AS-REP Roasting Attack",),
                )
            )

        password_age = days_since(account.get("passwordLastSet"), now)
        if password_age is not None and password_age > config.service_password_max_age_days:
            findings.append(
                Finding(
                    severity=Severity.HIGH,
                    category=category,
                    title=f"Stale Service Account Password: {name}",
                    description=(
                        f"Service account {name} password has not been changed in {password_age} days"
                    ),
                    remediation=(
                        "Rotate service account passwords regularly (recommended: every 90-180 days)"
                    ),
                    affected_entities=(name,),
                )
            )

    return findings


def collect_misconfigs(
    document: dict,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> list[Finding]:
    """Return configuration findings for an AD configuration document.

    Raises ``MalformedSourceError`` when the document or one of its sections
    has the wrong shape.
    """

    if not isinstance(document, dict):
        raise MalformedSourceError(f"{WHAT} must be a JSON object")
    config = config or DetectorConfig()
    now = resolve_now(now)

    policy = expect_type(document, "passwordPolicy", dict, what=WHAT)
    ldap = expect_type(document, "ldapSettings", dict, what=WHAT)
    controllers = expect_type(document, "domainControllers", list, what=WHAT)
    accounts = expect_type(document, "serviceAccounts", list, what=WHAT)

    findings: list[Finding] = []
    findings.extend(_check_password_policy(policy, config))
    findings.extend(_check_ldap(ldap))
    findings.extend(_check_domain_controllers(controllers, now, config))
    findings.extend(_check_service_accounts(accounts, now, config))
    return findings


def run_misconfigs(
    source: InputSource,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    """Assess one AD configuration document; malformed input is reported, not raised."""

    result = DetectorResult(source=SourceType.AD_MISCONFIGS, path=source.display_name)
    try:
        document = load_json_object(source.read_bytes(), what=WHAT)
        result.findings = collect_misconfigs(document, now=now, config=config)
        if document.get("domain"):
            result.metadata["domain"] = str(document["domain"])
    except MalformedSourceError as exc:
        result.error = str(exc)
    return result
