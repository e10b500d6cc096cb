"""Extract attack-path findings from BloodHound/SharpHound exports.

An export is a directory (or zip archive) of JSON files for users,
computers and groups. Both the legacy SharpHound layout
(``{"users": [...]}``) and the BloodHound CE layout
(``{"data": [...], "meta": {"type": "users"}}``) are accepted; the object
type falls back to the file name (``20260101_users.json``).

Only the node ``Properties`` and the ``Aces``/``Members`` arrays are read.
No graph traversal is performed.
"""
from __future__ import annotations

import json
import os
import zipfile
from datetime import datetime
from typing import Iterator

from adposture.config import DetectorConfig
from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import DetectorResult, Finding, Severity, SourceType
from adposture.utils import days_since, preview_names, resolve_now

WHAT = "BloodHound export"

OBJECT_TYPES = ("users", "computers", "groups")

DANGEROUS_ACE_RIGHTS = (
    "GenericAll",
    "GenericWrite",
    "WriteOwner",
    "WriteDacl",
    "AllExtendedRights",
    "ForceChangePassword",
    "AddMember",
)

TIER_ZERO_TAG = "admin_tier_0"


def _detect_type(data, filename: str) -> str | None:
    if isinstance(data, dict):
        meta = data.get("meta")
        if isinstance(meta, dict):
            meta_type = str(meta.get("type", "")).lower()
            if meta_type in OBJECT_TYPES:
                return meta_type
        for object_type in OBJECT_TYPES:
            if object_type in data:
                return object_type

    lowered = os.path.basename(filename).lower()
    for object_type in OBJECT_TYPES:
        if object_type in lowered:
            return object_type
    return None


def _extract_items(data, object_type: str, filename: str) -> list[dict]:
    if isinstance(data, dict):
        if "data" in data and "meta" in data:
            items = data.get("data")
        else:
            items = data.get(object_type)
    else:
        items = data

    if not isinstance(items, list):
        raise MalformedSourceError(f"{WHAT}: {filename} does not contain a list of {object_type}")
    _check_nodes(items, f"{filename} {object_type}")
    return items


def _check_nodes(items: list, label: str) -> None:
    for index, item in enumerate(items):
        where = f"{WHAT}: {label}[{index}]"
        if not isinstance(item, dict) or not isinstance(item.get("Properties"), dict):
            raise MalformedSourceError(f"{where} has no Properties object")
        for key in ("Aces", "Members"):
            value = item.get(key)
            if value is not None and not isinstance(value, list):
                raise MalformedSourceError(f"{where}: '{key}' must be a list")
        if any(not isinstance(ace, dict) for ace in item.get("Aces") or []):
            raise MalformedSourceError(f"{where}: 'Aces' entries must be objects")


def _iter_json_members(path: str) -> Iterator[tuple[str, bytes]]:
    if os.path.isdir(path):
        for name in sorted(os.listdir(path)):
            full = os.path.join(path, name)
            if name.lower().endswith(".json") and os.path.isfile(full):
                with open(full, "rb") as handle:
                    yield name, handle.read()
        return

    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(path, "r") as archive:
            for name in sorted(archive.namelist()):
                if name.lower().endswith(".json"):
                    yield name, archive.read(name)
        return

    with open(path, "rb") as handle:
        yield os.path.basename(path), handle.read()


def load_export(path: str) -> dict[str, list[dict]]:
    """Read every users/computers/groups file under ``path``.

    Returns a mapping containing only the object types that were found.
    Raises ``MalformedSourceError`` when a file is not valid JSON or when no
    users, computers or groups data is present at all.
    """

    if not os.path.exists(path):
        raise MalformedSourceError(f"{WHAT}: {path} does not exist")

    export: dict[str, list[dict]] = {}
    try:
        members = list(_iter_json_members(path))
    except (OSError, zipfile.BadZipFile) as exc:
        raise MalformedSourceError(f"{WHAT}: cannot read {path}: {exc}") from exc

    for name, raw in members:
        try:
            data = json.loads(raw.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedSourceError(f"{WHAT}: {name} is not valid JSON: {exc}") from exc

        object_type = _detect_type(data, name)
        if object_type is None:
            continue
        export.setdefault(object_type, []).extend(_extract_items(data, object_type, name))

    if not export:
        raise MalformedSourceError(f"{WHAT}: no users, computers or groups data found")
    return export


def _props(node: dict) -> dict:
    return node.get("Properties") or {}


def _name(node: dict) -> str:
    props = _props(node)
    return str(props.get("name") or node.get("ObjectIdentifier") or "<unnamed>")


def _is_high_value(props: dict) -> bool:
    tags = str(props.get("system_tags") or "")
    return bool(props.get("highvalue") or props.get("isTierZero") or TIER_ZERO_TAG in tags)


def _is_domain_controller(props: dict) -> bool:
    if "isdc" in props:
        return bool(props["isdc"])
    host = str(props.get("name", "")).split(".", 1)[0].lower()
    return host.startswith("dc")


def _last_logon_days(props: dict, now: datetime) -> int | None:
    ages = [
        age
        for age in (
            days_since(props.get("lastlogon"), now),
            days_since(props.get("lastlogontimestamp"), now),
        )
        if age is not None
    ]
    return min(ages) if ages else None


def _analyze_kerberoastable(users: list[dict]) -> list[Finding]:
    findings: list[Finding] = []
    roastable = [u for u in users if _props(u).get("hasspn") and _props(u).get("enabled")]
    if not roastable:
        return findings

    privileged = [
        u for u in roastable if _is_high_value(_props(u)) or _props(u).get("admincount")
    ]
    if privileged:
        names = [_name(u) for u in privileged]
        findings.append(
            Finding(
                severity=Severity.CRITICAL,
                category="Kerberoasting",
                title=f"{len(privileged)} High-Value Kerberoastable Accounts",
                description=(
                    "Privileged accounts with SPNs can be targeted for offline password "
                    f"cracking: {preview_names(names)}"
                ),
                impact=(
                    "Attackers can request service tickets and crack passwords offline. "
                    "Compromise of these accounts leads to privileged access."
                ),
                remediation=(
                    "Use Group Managed Service Accounts (gMSAs) or set passwords to 25+ random "
                    "characters. Remove SPNs from high-privilege accounts."
                ),
                affected_entities=tuple(names),
            )
        )

    standard = [u for u in roastable if u not in privileged]
    if standard:
        names = [_name(u) for u in standard]
        findings.append(
            Finding(
                severity=Severity.MEDIUM,
                category="Kerberoasting",
                title=f"{len(standard)} Standard Kerberoastable Accounts",
                description=(
                    "User accounts with Service Principal Names (SPNs) are vulnerable to "
                    "Kerberoasting attacks"
                ),
                impact=(
                    "Attackers can perform offline password cracking. Risk increases with "
                    "weak passwords."
                ),
                remediation=(
                    "Migrate to Group Managed Service Accounts (gMSAs) or enforce strong "
                    "passwords (25+ characters)."
                ),
                affected_entities=tuple(names),
            )
        )
    return findings


def _analyze_asrep_roastable(users: list[dict]) -> list[Finding]:
    roastable = [
        _name(u) for u in users if _props(u).get("dontreqpreauth") and _props(u).get("enabled")
    ]
    if not roastable:
        return []
    return [
        Finding(
            severity=Severity.CRITICAL,
            category="AS-REP Roasting",
            title=f"{len(roastable)} AS-REP Roastable Accounts",
            description=(
                "Accounts do not require Kerberos pre-authentication: "
                f"{preview_names(roastable)}"
            ),
            impact=(
                "Attackers can request authentication tickets and crack passwords offline "
                "without needing current credentials."
            ),
            remediation=(
                'Enable "Kerberos pre-authentication required" for all accounts. This is '
                "rarely needed and usually indicates misconfiguration."
            ),
            affected_entities=tuple(roastable),
        )
    ]


def _analyze_dangerous_aces(users: list[dict]) -> list[Finding]:
    exposed = []
    for user in users:
        for ace in user.get("Aces") or []:
            right = str(ace.get("RightName", ""))
            if not ace.get("IsInherited") and any(d in right for d in DANGEROUS_ACE_RIGHTS):
                exposed.append(_name(user))
                break

    if not exposed:
        return []
    return [
        Finding(
            severity=Severity.HIGH,
            category="Dangerous Permissions",
            title=f"{len(exposed)} Users with Dangerous AD Permissions",
            description=(
                "Users have non-inherited dangerous permissions (GenericAll, WriteDacl, etc.) "
                "that can be exploited for privilege escalation. Examples: "
                f"{preview_names(exposed)}"
            ),
            impact=(
                "These permissions can be chained to escalate to Domain Admin or compromise "
                "high-value targets."
            ),
            remediation=(
                "Audit and remove unnecessary permissions. Implement least privilege access "
                "controls. Use BloodHound to map attack paths."
            ),
            affected_entities=tuple(exposed),
        )
    ]


def _analyze_dormant_admins(
    users: list[dict], now: datetime, config: DetectorConfig
) -> list[Finding]:
    dormant = []
    for user in users:
        props = _props(user)
        if not (props.get("enabled") and props.get("admincount")):
            continue
        idle = _last_logon_days(props, now)
        if idle is not None and idle > config.dormant_days:
            dormant.append(_name(user))

    if not dormant:
        return []
    return [
        Finding(
            severity=Severity.HIGH,
            category="Dormant Privileged Accounts",
            title=f"{len(dormant)} Dormant Administrative Accounts",
            description=(
                f"Privileged accounts have not logged in for {config.dormant_days}+ days: "
                f"{preview_names(dormant)}"
            ),
            impact=(
                "Dormant privileged accounts are attractive targets for attackers and may "
                "indicate compromised or forgotten accounts."
            ),
            remediation=(
                "Review dormant admin accounts. Disable accounts no longer in use. "
                "Investigate any suspicious activity."
            ),
            affected_entities=tuple(dormant),
        )
    ]


def _analyze_unconstrained_delegation(computers: list[dict]) -> list[Finding]:
    hosts = [
        _name(c)
        for c in computers
        if _props(c).get("unconstraineddelegation")
        and _props(c).get("enabled")
        and not _is_domain_controller(_props(c))
    ]
    if not hosts:
        return []
    return [
        Finding(
            severity=Severity.HIGH,
            category="Unconstrained Delegation",
            title=f"{len(hosts)} Computers with Unconstrained Delegation",
            description=(
                "Non-DC computers configured for unconstrained Kerberos delegation: "
                f"{preview_names(hosts)}"
            ),
            impact=(
                "Can be exploited to impersonate any user (including Domain Admins) who "
                "authenticates to these systems. High risk for privilege escalation."
            ),
            remediation=(
                "Migrate to constrained delegation or resource-based constrained delegation. "
                "Remove unconstrained delegation from non-DC systems."
            ),
            affected_entities=tuple(hosts),
        )
    ]


def laps_gap_severity(gap_percent: float, config: DetectorConfig | None = None) -> Severity | None:
    """Return the severity of a LAPS coverage gap, or None when there is no gap."""

    config = config or DetectorConfig()
    if gap_percent > config.laps_high_gap_percent:
        return Severity.HIGH
    if gap_percent > 0:
        return Severity.MEDIUM
    return None


def _analyze_laps(computers: list[dict], config: DetectorConfig) -> list[Finding]:
    enabled = [c for c in computers if _props(c).get("enabled")]
    missing = [c for c in enabled if not _props(c).get("haslaps")]
    if not enabled or not missing:
        return []

    gap = len(missing) / len(enabled) * 100
    severity = laps_gap_severity(gap, config)
    if severity is Severity.HIGH:
        title = f"Low LAPS Deployment: {gap:.0f}% of computers lack LAPS"
        description = (
            f"{len(missing)} of {len(enabled)} enabled computers do not have Local "
            "Administrator Password Solution (LAPS) configured"
        )
        impact = (
            "Without LAPS, local administrator passwords may be shared or weak, enabling "
            "lateral movement via password reuse."
        )
        remediation = (
            "Deploy LAPS to all workstations and servers. Configure automatic password rotation."
        )
    else:
        title = f"{len(missing)} Computers Without LAPS"
        description = f"{gap:.0f}% of computers do not have LAPS configured"
        impact = "Gaps in LAPS coverage create opportunities for lateral movement."
        remediation = "Complete LAPS deployment to remaining computers."

    return [
        Finding(
            severity=severity,
            category="LAPS Coverage",
            title=title,
            description=description,
            impact=impact,
            remediation=remediation,
        )
    ]


def _analyze_group_size(groups: list[dict], config: DetectorConfig) -> list[Finding]:
    findings: list[Finding] = []
    for group in groups:
        props = _props(group)
        name = _name(group)
        lowered = name.lower()
        if not ("admin" in lowered or "operator" in lowered or _is_high_value(props)):
            continue
        members = group.get("Members") or []
        if len(members) > config.max_bloodhound_group_members:
            findings.append(
                Finding(
                    severity=Severity.MEDIUM,
                    category="Group Membership",
                    title=f"Large Privileged Group: {name}",
                    description=(
                        f"{name} has {len(members)} members, increasing attack surface"
                    ),
                    impact=(
                        "Large privileged groups make access control harder to manage and "
                        "increase the number of potential compromise targets."
                    ),
                    remediation=(
                        "Review membership and remove unnecessary accounts. Use role-based "
                        "access with smaller, focused groups."
                    ),
                    affected_entities=(name,),
                )
            )
    return findings


def _analyze_high_value(export: dict[str, list[dict]]) -> list[Finding]:
    count = sum(
        1
        for node in export.get("users", []) + export.get("computers", [])
        if _is_high_value(_props(node)) and _props(node).get("enabled")
    )
    count += sum(1 for group in export.get("groups", []) if _is_high_value(_props(group)))
    if not count:
        return []
    return [
        Finding(
            severity=Severity.INFO,
            category="High-Value Assets",
            title=f"{count} High-Value Assets Identified",
            description=(
                f"BloodHound has identified {count} high-value assets (privileged accounts, "
                "critical servers, administrative groups)"
            ),
            impact=(
                "These assets are primary targets for attackers. Focus security efforts on "
                "protecting these."
            ),
            remediation=(
                "Use BloodHound to identify attack paths to these assets. Implement additional "
                "monitoring and controls for high-value targets."
            ),
        )
    ]


def collect_bloodhound(
    export: dict[str, list[dict]],
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> list[Finding]:
    """Return attack-path findings for a loaded export (see ``load_export``)."""

    if not isinstance(export, dict) or not any(key in export for key in OBJECT_TYPES):
        raise MalformedSourceError(f"{WHAT}: no users, computers or groups data found")
    config = config or DetectorConfig()
    now = resolve_now(now)

    findings: list[Finding] = []
    users = export.get("users")
    computers = export.get("computers")
    groups = export.get("groups")
    for object_type in OBJECT_TYPES:
        items = export.get(object_type)
        if items is not None:
            if not isinstance(items, list):
                raise MalformedSourceError(f"{WHAT}: {object_type} must be a list")
            _check_nodes(items, object_type)

    if users is not None:
        findings.extend(_analyze_kerberoastable(users))
        findings.extend(_analyze_asrep_roastable(users))
        findings.extend(_analyze_dangerous_aces(users))
        findings.extend(_analyze_dormant_admins(users, now, config))
    if computers is not None:
        findings.extend(_analyze_unconstrained_delegation(computers))
        findings.extend(_analyze_laps(computers, config))
    if groups is not None:
        findings.extend(_analyze_group_size(groups, config))
    findings.extend(_analyze_high_value(export))
    return findings


def summarize_export(export: dict[str, list[dict]]) -> dict[str, int]:
    return {object_type: len(export.get(object_type, [])) for object_type in OBJECT_TYPES}


def run_bloodhound(
    source: InputSource,
    *,
    now: datetime | None = None,
    config: DetectorConfig | None = None,
) -> DetectorResult:
    """Assess a BloodHound export directory, zip archive or single JSON file."""

    result = DetectorResult(source=SourceType.BLOODHOUND, path=source.display_name)
    try:
        export = load_export(source.path)
        result.metadata["objects"] = summarize_export(export)
        result.findings = collect_bloodhound(export, now=now, config=config)
    except MalformedSourceError as exc:
        result.error = str(exc)
    return result
