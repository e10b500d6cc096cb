"""Helpers for building assessment source documents on the fly."""
from __future__ import annotations

import json
import textwrap
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from xml.sax.saxutils import escape

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def days_ago(days: int) -> str:
    return (NOW - timedelta(days=days)).isoformat()


def unix_days_ago(days: int) -> int:
    return int((NOW - timedelta(days=days)).timestamp())


def write_json(directory: Path, name: str, data) -> Path:
    path = Path(directory) / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def hardened_ad_config() -> dict:
    """An AD configuration document that produces no findings."""

    return {
        "domain": "corp.example.com",
        "passwordPolicy": {
            "minimumPasswordLength": 14,
            "passwordComplexity": True,
            "lockoutThreshold": 5,
            "maximumPasswordAge": 60,
        },
        "ldapSettings": {"ldapSigning": True, "channelBinding": True, "ssl": True},
        "domainControllers": [
            {
                "hostname": "DC01",
                "osVersion": "Windows Server 2022",
                "lastPatchDate": days_ago(10),
            }
        ],
        "serviceAccounts": [
            {
                "name": "svc_backup",
                "passwordLastSet": days_ago(30),
                "kerberosPreAuthRequired": True,
            }
        ],
    }


def identity_document(accounts=None, groups=None, acls=None) -> dict:
    if accounts is None:
        accounts = [
            {
                "samAccountName": "jdoe",
                "memberOf": ["CN=Domain Users,CN=Users,DC=corp,DC=example,DC=com"],
                "lastLogon": days_ago(3),
                "pwdLastSet": days_ago(20),
            }
        ]
    document = {"accounts": accounts}
    if groups is not None:
        document["groups"] = groups
    if acls is not None:
        document["acls"] = acls
    return document


def domain_admin(name: str, *, last_logon_days: int = 1, pwd_days: int = 10) -> dict:
    return {
        "samAccountName": name,
        "memberOf": ["CN=Domain Admins,CN=Users,DC=corp,DC=example,DC=com"],
        "lastLogon": days_ago(last_logon_days),
        "pwdLastSet": days_ago(pwd_days),
        "adminCount": 1,
    }


def azure_user(name: str, *, mfa: str = "enforced", roles=None, user_type: str = "Member",
               enabled: bool = True, last_sign_in_days: int | None = 1) -> dict:
    user = {
        "userPrincipalName": f"{name}@example.com",
        "displayName": name,
        "userType": user_type,
        "accountEnabled": enabled,
        "mfaStatus": mfa,
        "assignedRoles": list(roles or []),
    }
    if last_sign_in_days is not None:
        user["lastSignIn"] = days_ago(last_sign_in_days)
    return user


def hardened_azure_document(users=None) -> dict:
    """An Azure AD export that produces no findings."""

    return {
        "users": users if users is not None else [azure_user("alice"), azure_user("bob")],
        "conditionalAccessPolicies": [
            {
                "name": "Require MFA",
                "state": "enabled",
                "grantControls": {"builtInControls": ["mfa"]},
                "conditions": {"signInRiskLevels": ["high", "medium"]},
            }
        ],
        "pimConfiguration": [
            {
                "roleName": "Global Administrator",
                "activeAssignments": 0,
                "requireMFA": True,
                "requireJustification": True,
                "maxActivationDuration": 4,
            }
        ],
        "legacyAuthEnabled": False,
        "securityDefaults": True,
        "passwordProtection": {"customBannedPasswords": ["example", "contoso"]},
    }


def bh_user(name: str, **properties) -> dict:
    props = {"name": f"{name.upper()}@CORP.EXAMPLE.COM", "enabled": True}
    props.update(properties)
    aces = props.pop("aces", [])
    return {"ObjectIdentifier": f"S-1-5-21-{name}", "Properties": props, "Aces": aces}


def bh_computer(name: str, **properties) -> dict:
    props = {"name": f"{name.upper()}.CORP.EXAMPLE.COM", "enabled": True, "haslaps": True}
    props.update(properties)
    return {"ObjectIdentifier": f"S-1-5-21-{name}", "Properties": props}


def bh_group(name: str, members: int = 0, **properties) -> dict:
    props = {"name": f"{name.upper()}@CORP.EXAMPLE.COM"}
    props.update(properties)
    return {
        "ObjectIdentifier": f"S-1-5-21-{name}",
        "Properties": props,
        "Members": [{"ObjectIdentifier": f"S-1-5-21-m{i}", "ObjectType": "User"} for i in range(members)],
    }


def write_bloodhound_export(directory: Path, *, users=None, computers=None, groups=None,
                            ce_format: bool = False, prefix: str = "20260115120000") -> Path:
    """Write SharpHound-style JSON files into ``directory`` and return it."""

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    for object_type, items in (("users", users), ("computers", computers), ("groups", groups)):
        if items is None:
            continue
        if ce_format:
            data = {"data": items, "meta": {"type": object_type, "count": len(items), "version": 5}}
        else:
            data = {object_type: items}
        write_json(directory, f"{prefix}_{object_type}.json", data)
    return directory


def zip_directory(directory: Path, zip_path: Path) -> Path:
    with zipfile.ZipFile(zip_path, "w") as archive:
        for item in sorted(Path(directory).iterdir()):
            archive.write(item, arcname=item.name)
    return zip_path


def pingcastle_xml(rules, *, domain: str = "corp.example.com", score: int = 65) -> str:
    """Build a healthcheck XML document from ``(risk_id, points, category, rationale)`` tuples."""

    rule_xml = "".join(
        textwrap.dedent(
            f"""
            <HealthcheckRiskRule>
              <Points>{points}</Points>
              <Category>{escape(category)}</Category>
              <Model>{escape(category)}Model</Model>
              <RiskId>{escape(risk_id)}</RiskId>
              <Rationale>{escape(rationale)}</Rationale>
            </HealthcheckRiskRule>"""
        )
        for risk_id, points, category, rationale in rules
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<HealthcheckData>"
        f"<GenerationDate>2026-01-15T10:00:00</GenerationDate>"
        f"<DomainFQDN>{escape(domain)}</DomainFQDN>"
        f"<GlobalScore>{score}</GlobalScore>"
        f"<RiskRules>{rule_xml}</RiskRules>"
        "</HealthcheckData>"
    )


def pingcastle_html(rows, *, score: int = 40) -> str:
    """Build a report HTML page from ``(rule_id, points, category, description)`` rows."""

    body = "".join(
        f"<tr><td>{escape(rule_id)}</td><td>{points}</td><td>{escape(category)}</td>"
        f"<td>{escape(description)}</td></tr>"
        for rule_id, points, category, description in rows
    )
    return (
        "<!DOCTYPE html><html><head><title>PingCastle</title></head><body>"
        f"<p>Global Score: {score}</p>"
        "<table><tr><th>Rule</th><th>Points</th><th>Category</th><th>Description</th></tr>"
        f"{body}</table></body></html>"
    )
