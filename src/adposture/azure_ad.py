"""Evaluate Azure AD (Entra ID) tenant security posture exports."""
from __future__ import annotations

from datetime import datetime

from adposture.config import DetectorConfig
from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import DetectorResult, Finding, Severity, SourceType
from adposture.utils import (
    as_number,
    days_since,
    expect_objects,
    expect_type,
    load_json_object,
    preview_names,
    resolve_now,
)

WHAT = "Azure AD document"

MFA_DISABLED = "disabled"
REPORT_ONLY_STATE = "enabledForReportingButNotEnforced"


def _is_member(user: dict) -> bool:
    return (user.get("userType") or "Member") == "Member"


def _has_mfa(user: dict) -> bool:
    # Only an absent or explicitly disabled status counts as no MFA.
    status = str(user.get("mfaStatus") or "").strip().lower()
    return bool(status) and status != MFA_DISABLED


def _upn(user: dict, index: int) -> str:
    return str(user.get("userPrincipalName") or user.get("displayName") or f"user #{index + 1}")


def mfa_gap_severity(coverage_percent: float, config: DetectorConfig | None = None) -> Severity:
    """Map MFA coverage below 100% to a severity band."""

    config = config or DetectorConfig()
    if coverage_percent < config.mfa_critical_below:
        return Severity.CRITICAL
    if coverage_percent < config.mfa_high_below:
        return Severity.HIGH
    return Severity.MEDIUM


def _assess_mfa(users: list[dict], config: DetectorConfig) -> list[Finding]:
    findings: list[Finding] = []

    members = [u for u in users if _is_member(u) and u.get("accountEnabled")]
    without_mfa = [u for u in members if not _has_mfa(u)]

    if members and without_mfa:
        coverage = (len(members) - len(without_mfa)) / len(members) * 100
        findings.append(
            Finding(
                severity=mfa_gap_severity(coverage, config),
                category="MFA Compliance",
                title=f"Low MFA Adoption Rate: {coverage:.1f}%",
                description=(
                    f"{len(without_mfa)} of {len(members)} enabled users do not have MFA enabled"
                ),
                impact=(
                    "Users without MFA are vulnerable to password-based attacks and account takeover"
                ),
                remediation=(
                    "Enforce MFA for all users through Conditional Access policies or "
                    "Security Defaults"
                ),
                references=("Microsoft Zero Trust", "Azure AD Security Best Practices"),
            )
        )

    # Privileged accounts are escalated on their own, whatever the tenant-wide ratio.
    privileged = [
        _upn(u, index)
        for index, u in enumerate(users)
        if u.get("accountEnabled") and u.get("assignedRoles") and not _has_mfa(u)
    ]
    if privileged:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                category="Privileged User Without MFA",
                title="Privileged Accounts Without MFA Protection",
                description=(
                    f"{len(privileged)} privileged accounts do not have MFA enabled: "
                    f"{preview_names(privileged)}"
                ),
                impact=(
                    "Privileged accounts without MFA are prime targets for attackers and can "
                    "lead to full tenant compromise"
                ),
                remediation=(
                    "Immediately enforce MFA for all privileged accounts through Conditional Access"
                ),
                affected_entities=tuple(privileged),
            )
        )

    return findings


def _assess_conditional_access(policies: list[dict]) -> list[Finding]:
    category = "Conditional Access"

    if not policies:
        return [
            Finding(
                severity=Severity.CRITICAL,
                category=category,
                title="No Conditional Access Policies Configured",
                description=(
                    "Tenant has no Conditional Access policies, missing critical security controls"
                ),
                impact=(
                    "No dynamic access controls based on risk, location, device compliance, "
                    "or other signals"
                ),
                remediation=(
                    "Implement Conditional Access policies for MFA enforcement, device "
                    "compliance, and risk-based access"
                ),
                references=("Azure AD Conditional Access Best Practices",),
            )
        ]

    findings: list[Finding] = []
    enabled = [p for p in policies if p.get("state") == "enabled"]
    report_only = [p for p in policies if p.get("state") == REPORT_ONLY_STATE]

    if report_only:
        names = [str(p.get("name", "")) for p in report_only]
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category=category,
                title=f"{len(report_only)} Conditional Access Policies in Report-Only Mode",
                description=f"Policies not enforced: {', '.join(names)}",
                impact="Security controls are not being enforced, only monitored",
                remediation="Review report-only policies and enable enforcement once validated",
            )
        )

    requires_mfa = [
        p
        for p in enabled
        if "mfa" in ((p.get("grantControls") or {}).get("builtInControls") or [])
    ]
    if not requires_mfa:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                category=category,
                title="No MFA Enforcement via Conditional Access",
                description=(
                    "No enabled Conditional Access policies require multi-factor authentication"
                ),
                impact="Users may not be required to use MFA, leaving accounts vulnerable",
                remediation="Create Conditional Access policy to require MFA for all users",
            )
        )

    risk_based = [
        p for p in enabled if (p.get("conditions") or {}).get("signInRiskLevels")
    ]
    if not risk_based:
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category=category,
                title="No Risk-Based Conditional Access Policies",
                description="No policies leverage Azure AD Identity Protection risk signals",
                impact="Missing automated risk-based access controls",
                remediation=(
                    "Implement risk-based Conditional Access policies using Identity Protection"
                ),
                references=("Azure AD Identity Protection",),
            )
        )

    return findings


def _assess_pim(roles: list[dict], config: DetectorConfig) -> list[Finding]:
    if not roles:
        return [
            Finding(
                severity=Severity.HIGH,
                category="Privileged Identity Management",
                title="PIM Not Configured",
                description=(
                    "Privileged Identity Management (PIM) is not configured for any roles"
                ),
                impact=(
                    "Standing privileged access increases risk of credential theft and "
                    "insider threats"
                ),
                remediation=(
                    "Configure PIM for all privileged roles (Global Admin, Security Admin, etc.)"
                ),
                references=("Azure AD PIM Best Practices",),
            )
        ]

    findings: list[Finding] = []
    for index, role in enumerate(roles):
        role_name = str(role.get("roleName") or f"role #{index + 1}")

        active = as_number(role.get("activeAssignments")) or 0
        if active > 0:
            findings.append(
                Finding(
                    severity=Severity.HIGH,
                    category="PIM",
                    title=f"Permanent Role Assignments: {role_name}",
                    description=(
                        f"{int(active)} permanent active assignments for {role_name}"
                    ),
                    impact=(
                        "Permanent privileged access increases attack surface and insider "
                        "threat risk"
                    ),
                    remediation=(
                        "Convert permanent assignments to eligible (time-bound) assignments"
                    ),
                )
            )

        if not role.get("requireMFA"):
            findings.append(
                Finding(
                    severity=Severity.HIGH,
                    category="PIM",
                    title=f"MFA Not Required for Role Activation: {role_name}",
                    description=f"Role {role_name} does not require MFA for activation",
                    impact=(
                        "Attackers with stolen credentials can activate privileged roles "
                        "without additional verification"
                    ),
                    remediation="Require MFA for all privileged role activations",
                )
            )

        if not role.get("requireJustification"):
            findings.append(
                Finding(
                    severity=Severity.MEDIUM,
                    category="PIM",
                    title=f"Justification Not Required: {role_name}",
                    description=f"Role {role_name} activation does not require justification",
                    impact="Lack of audit trail for why privileged access was activated",
                    remediation="Require justification for all role activations",
                )
            )

        duration = as_number(role.get("maxActivationDuration"))
        if duration is not None and duration > config.max_activation_hours:
            findings.append(
                Finding(
                    severity=Severity.MEDIUM,
                    category="PIM",
                    title=f"Long Activation Duration: {role_name}",
                    description=(
                        f"Maximum activation duration is {duration:g} hours "
                        f"(recommended: {config.max_activation_hours} hours or less)"
                    ),
                    impact=(
                        "Longer activation periods increase the window for potential compromise"
                    ),
                    remediation=(
                        f"Reduce maximum activation duration to {config.max_activation_hours} "
                        "hours or less"
                    ),
                )
            )

    return findings


def _assess_guests(users: list[dict], now: datetime, config: DetectorConfig) -> list[Finding]:
    findings: list[Finding] = []
    guests = [u for u in users if u.get("userType") == "Guest"]
    if not guests:
        return findings

    stale = []
    for index, guest in enumerate(guests):
        idle = days_since(guest.get("lastSignIn"), now)
        if idle is None or idle > config.stale_guest_days:
            stale.append(_upn(guest, index))

    findings.append(
        Finding(
            severity=Severity.INFO,
            category="Guest Users",
            title=f"{len(guests)} Guest Users in Tenant",
            description=f"Tenant has {len(guests)} guest user accounts",
            impact="Guest users increase attack surface and require monitoring",
            remediation=(
                "Regularly review guest access and remove accounts that are no longer needed"
            ),
        )
    )
    if stale:
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category="Guest Users",
                title=f"{len(stale)} Stale Guest Accounts",
                description=(
                    f"Guest accounts with no sign-in activity in {config.stale_guest_days}+ days"
                ),
                impact=(
                    "Dormant guest accounts may represent former partners/contractors with "
                    "lingering access"
                ),
                remediation=(
                    "Review and remove guest accounts with no recent activity. Implement "
                    "access reviews"
                ),
                affected_entities=tuple(stale),
            )
        )
    return findings


def _assess_baseline(document: dict, policies: list[dict]) -> list[Finding]:
    findings: list[Finding] = []

    if document.get("legacyAuthEnabled"):
        findings.append(
            Finding(
                severity=Severity.HIGH,
                category="Legacy Authentication",
                title="Legacy Authentication Protocols Enabled",
                description=(
                    "Tenant allows legacy authentication protocols (e.g., Basic Auth, POP3, IMAP)"
                ),
                impact=(
                    "Legacy auth bypasses MFA and modern security controls, enabling credential "
                    "spray attacks"
                ),
                remediation="Disable legacy authentication through Conditional Access policies",
                references=("Block legacy authentication in Azure AD",),
            )
        )

    if document.get("securityDefaults") is False and not policies:
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                category="Security Baseline",
                title="Security Defaults Disabled Without Conditional Access",
                description=(
                    "Security Defaults are disabled but no Conditional Access policies are configured"
                ),
                impact="Tenant lacks baseline security protections (MFA, block legacy auth, etc.)",
                remediation=(
                    "Enable Security Defaults or implement equivalent Conditional Access policies"
                ),
            )
        )

    protection = document.get("passwordProtection") or {}
    if not isinstance(protection, dict) or not protection.get("customBannedPasswords"):
        findings.append(
            Finding(
                severity=Severity.LOW,
                category="Password Protection",
                title="No Custom Banned Passwords",
                description="No custom banned password list configured",
                impact=(
                    "Users may choose passwords specific to your organization (company name, "
                    "products, etc.)"
                ),
                remediation="Configure custom banned passwords in Azure AD Password Protection",
            )
        )

    return findings


def collect_azure_ad(
    document: dict,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> list[Finding]:
    """Return tenant posture findings for an Azure AD export with a non-empty ``users`` list."""

    if not isinstance(document, dict):
        raise MalformedSourceError(f"{WHAT} must be a JSON object")
    config = config or DetectorConfig()
    now = resolve_now(now)

    users = expect_objects(document, "users", what=WHAT)
    if not users:
        raise MalformedSourceError(f"{WHAT}: no users found")
    policies = expect_objects(document, "conditionalAccessPolicies", what=WHAT)
    for index, policy in enumerate(policies):
        where = f"{WHAT}: conditionalAccessPolicies[{index}]"
        expect_type(policy, "conditions", dict, what=where)
        grant = expect_type(policy, "grantControls", dict, what=where)
        if grant is not None:
            expect_type(grant, "builtInControls", list, what=f"{where}.grantControls")
    roles = expect_objects(document, "pimConfiguration", what=WHAT)

    findings = _assess_mfa(users, config)
    findings.extend(_assess_guests(users, now, config))
    findings.extend(_assess_baseline(document, policies))
    findings.extend(_assess_conditional_access(policies))
    findings.extend(_assess_pim(roles, config))
    return findings


def run_azure_ad(
    source: InputSource,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    result = DetectorResult(source=SourceType.AZURE_AD, path=source.display_name)
    try:
        document = load_json_object(source.read_bytes(), what=WHAT)
        result.findings = collect_azure_ad(document, now=now, config=config)
    except MalformedSourceError as exc:
        result.error = str(exc)
    return result
