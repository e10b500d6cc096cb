"""Identify privilege escalation risks and overprivileged accounts in identity exports."""
from __future__ import annotations

from datetime import datetime

from adposture.config import DetectorConfig
from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import DetectorResult, Finding, Severity, SourceType
from adposture.utils import (
    days_since,
    expect_objects,
    expect_type,
    load_json_object,
    resolve_now,
)

WHAT = "Identity data document"

DCSYNC_RIGHT = "DS-Replication-Get-Changes"
ESCALATION_RIGHTS = ("GenericWrite", "WriteProperty")


def _account_name(account: dict, index: int) -> str:
    return str(
        account.get("samAccountName")
        or account.get("distinguishedName")
        or f"account #{index + 1}"
    )


def _privileged_memberships(account: dict, config: DetectorConfig) -> list[str]:
    return [
        str(group)
        for group in account.get("memberOf") or []
        if any(privileged in str(group) for privileged in config.privileged_groups)
    ]


def _analyze_accounts(
    accounts: list[dict], now: datetime, config: DetectorConfig
) -> list[Finding]:
    findings: list[Finding] = []

    for index, account in enumerate(accounts):
        name = _account_name(account, index)
        privileged = _privileged_memberships(account, config)

        if privileged:
            idle_days = days_since(account.get("lastLogon"), now)
            if idle_days is not None and idle_days > config.dormant_days:
                findings.append(
                    Finding(
                        severity=Severity.HIGH,
                        category="Dormant Privileged Account",
                        title=f"Dormant Privileged Account: {name}",
                        description=f"Privileged account has not logged in for {idle_days} days",
                        impact=(
                            "Dormant privileged accounts are attractive targets for attackers "
                            "and may indicate compromised or forgotten accounts"
                        ),
                        remediation=(
                            "Review account usage and disable if no longer needed. "
                            f"Member of: {', '.join(privileged)}"
                        ),
                        affected_entities=(name,),
                    )
                )

            password_age = days_since(account.get("pwdLastSet"), now)
            if password_age is not None and password_age > config.privileged_password_max_age_days:
                findings.append(
                    Finding(
                        severity=Severity.HIGH,
                        category="Stale Privileged Password",
                        title=f"Stale Privileged Password: {name}",
                        description=(
                            "Privileged account password has not been changed in "
                            f"{password_age} days"
                        ),
                        impact=(
                            "Long-lived passwords on privileged accounts increase the risk of "
                            "credential compromise"
                        ),
                        remediation=(
                            "Enforce regular password changes for privileged accounts "
                            "(recommended: 60-90 days)"
                        ),
                        affected_entities=(name,),
                    )
                )

        if account.get("servicePrincipalNames"):
            findings.append(
                Finding(
                    severity=Severity.MEDIUM,
                    category="Kerberoastable Account",
                    title=f"Kerberoastable Account: {name}",
                    description=(
                        "Account has Service Principal Names (SPNs) and may be vulnerable "
                        "to Kerberoasting"
                    ),
                    impact=(
                        "Attackers can request service tickets and perform offline password cracking"
                    ),
                    remediation=(
                        "Use strong passwords (25+ characters) for service accounts or migrate "
                        "to Group Managed Service Accounts (gMSAs)"
                    ),
                    affected_entities=(name,),
                )
            )

        if account.get("adminCount") == 1 and not privileged:
            findings.append(
                Finding(
                    severity=Severity.MEDIUM,
                    category="Residual Privilege Marker",
                    title=f"Residual Privilege Marker: {name}",
                    description="Account has adminCount=1 but is not currently in privileged groups",
                    impact=(
                        "May have non-inherited ACLs or represent former admin access that was "
                        "not properly cleaned up"
                    ),
                    remediation="Review account permissions and clean up residual privileges",
                    affected_entities=(name,),
                )
            )

    return findings


def _analyze_groups(groups: list[dict], config: DetectorConfig) -> list[Finding]:
    findings: list[Finding] = []

    for privileged_name in config.privileged_groups:
        group = next(
            (g for g in groups if privileged_name in str(g.get("name", ""))),
            None,
        )
        if group is None:
            continue

        group_name = str(group.get("name"))
        members = [str(member) for member in group.get("members") or []]

        if len(members) > config.max_privileged_group_members:
            findings.append(
                Finding(
                    severity=Severity.HIGH,
                    category="Excessive Privileged Group Membership",
                    title=f"Excessive Privileged Group Membership: {group_name}",
                    description=(
                        f"{group_name} has {len(members)} members "
                        f"(recommended: <{config.max_privileged_group_members} for highly "
                        "privileged groups)"
                    ),
                    impact=(
                        "Large privileged groups increase attack surface and make access "
                        "control harder to manage"
                    ),
                    remediation=(
                        "Review membership and implement least privilege. Use role-based "
                        "delegation instead of direct admin group membership"
                    ),
                    affected_entities=(group_name,),
                )
            )

        for member in members:
            lowered = member.lower()
            if "svc_" in lowered or "service" in lowered:
                findings.append(
                    Finding(
                        severity=Severity.CRITICAL,
                        category="Service Account in Privileged Group",
                        title=f"Service Account in {group_name}: {member}",
                        description=f"Service account detected in {group_name}",
                        impact=(
                            "Service accounts with privileged access are high-value targets and "
                            "often have weak security controls"
                        ),
                        remediation=(
                            "Remove service accounts from privileged groups. Use Group Managed "
                            "Service Accounts (gMSAs) with least privilege"
                        ),
                        affected_entities=(member,),
                    )
                )

    return findings


def _analyze_acls(acls: list[dict], config: DetectorConfig) -> list[Finding]:
    findings: list[Finding] = []

    for acl in acls:
        trustee = str(acl.get("trustee", ""))
        object_dn = str(acl.get("objectDN", ""))
        rights = [str(right) for right in acl.get("rights") or []]

        dangerous = [
            right for right in rights if any(d in right for d in config.dangerous_rights)
        ]
        if dangerous and not acl.get("isInherited"):
            critical = any("GenericAll" in right or "DCSync" in right for right in dangerous)
            findings.append(
                Finding(
                    severity=Severity.CRITICAL if critical else Severity.HIGH,
                    category="Dangerous ACL Permission",
                    title=f"Dangerous ACL Permission: {trustee} on {object_dn}",
                    description=(
                        f"{trustee} has dangerous permissions on {object_dn}: "
                        f"{', '.join(dangerous)}"
                    ),
                    impact=(
                        "These permissions can be exploited for privilege escalation or "
                        "lateral movement"
                    ),
                    remediation=(
                        "Review and remove unnecessary permissions. Implement least privilege "
                        "access controls"
                    ),
                    affected_entities=(trustee,),
                )
            )

        if any(DCSYNC_RIGHT in right for right in rights):
            findings.append(
                Finding(
                    severity=Severity.CRITICAL,
                    category="DCSync Rights Detected",
                    title=f"DCSync Rights Detected: {trustee}",
                    description=(
                        f"{trustee} has DCSync rights ({DCSYNC_RIGHT}) on {object_dn}"
                    ),
                    impact=(
                        "DCSync rights allow an attacker to dump all domain credentials, "
                        "including KRBTGT hash"
                    ),
                    remediation=(
                        "Remove DCSync rights from non-domain controller accounts immediately. "
                        "Audit for potential compromise"
                    ),
                    affected_entities=(trustee,),
                )
            )

    return findings


def _find_escalation_paths(
    accounts: list[dict], acls: list[dict], config: DetectorConfig
) -> list[Finding]:
    findings: list[Finding] = []

    for index, account in enumerate(accounts):
        name = _account_name(account, index)
        if not account.get("samAccountName"):
            continue
        has_write = any(
            name in str(acl.get("trustee", ""))
            and any(
                escalation in str(right)
                for right in acl.get("rights") or []
                for escalation in ESCALATION_RIGHTS
            )
            and any(group in str(acl.get("objectDN", "")) for group in config.privileged_groups)
            for acl in acls
        )
        if has_write:
            findings.append(
                Finding(
                    severity=Severity.CRITICAL,
                    category="Privilege Escalation Path",
                    title=f"Privilege Escalation Path: {name}",
                    description="Account has write permissions to privileged group objects",
                    impact="Can modify privileged group membership to escalate privileges",
                    remediation=(
                        "Remove write permissions to privileged groups. Implement proper "
                        "access controls"
                    ),
                    affected_entities=(name,),
                )
            )

    return findings


def collect_privileges(
    document: dict,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> list[Finding]:
    """Return privilege findings for an identity export.

    The export must contain a non-empty ``accounts`` list; ``groups`` and
    ``acls`` are optional.
    """

    if not isinstance(document, dict):
        raise MalformedSourceError(f"{WHAT} must be a JSON object")
    config = config or DetectorConfig()
    now = resolve_now(now)

    accounts = expect_objects(document, "accounts", what=WHAT)
    if not accounts:
        raise MalformedSourceError(f"{WHAT}: no accounts found")
    groups = expect_objects(document, "groups", what=WHAT)
    acls = expect_objects(document, "acls", what=WHAT)
    for key, items, field in (
        ("accounts", accounts, "memberOf"),
        ("groups", groups, "members"),
        ("acls", acls, "rights"),
    ):
        for index, item in enumerate(items):
            expect_type(item, field, list, what=f"{WHAT}: {key}[{index}]")

    findings = _analyze_accounts(accounts, now, config)
    findings.extend(_analyze_groups(groups, config))
    findings.extend(_analyze_acls(acls, config))
    findings.extend(_find_escalation_paths(accounts, acls, config))
    return findings


def run_privileges(
    source: InputSource,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    result = DetectorResult(source=SourceType.PRIVILEGES, path=source.display_name)
    try:
        document = load_json_object(source.read_bytes(), what=WHAT)
        result.findings = collect_privileges(document, now=now, config=config)
    except MalformedSourceError as exc:
        result.error = str(exc)
    return result
