"""Detector thresholds.

Every detector takes an optional ``DetectorConfig``; the defaults are the
fixed assessment baseline. A JSON file can override individual keys for a
run (``adposture <tool> --config thresholds.json``). Severity weights and the
PingCastle point bands are not part of this configuration.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields


@dataclass
class DetectorConfig:
    """Thresholds used by the rule-based detectors.

    Attributes:
        min_password_length: Shortest acceptable domain minimum password length.
        max_password_age_days: Password expiry longer than this is flagged.
        dc_patch_max_age_days: Domain controllers unpatched for longer are flagged.
        eol_os_markers: Substrings of an OS version string that mark it end-of-life.
        service_password_max_age_days: Service account password rotation limit.
        dormant_days: Sign-in inactivity after which a privileged account is dormant.
        privileged_password_max_age_days: Rotation limit for privileged passwords.
        privileged_groups: Group names treated as privileged in identity exports.
        dangerous_rights: ACL rights that allow privilege escalation.
        max_privileged_group_members: Identity export group size limit.
        max_bloodhound_group_members: BloodHound privileged group size limit.
        mfa_critical_below: MFA coverage percentage below which the gap is CRITICAL.
        mfa_high_below: MFA coverage percentage below which the gap is HIGH.
        laps_high_gap_percent: LAPS gap percentage above which the gap is HIGH.
        max_activation_hours: Longest acceptable PIM role activation.
        stale_guest_days: Guest inactivity after which the account is stale.
        top_priority_limit: Number of CRITICAL/HIGH findings in the executive view.
    """

    min_password_length: int = 12
    max_password_age_days: int = 90
    dc_patch_max_age_days: int = 90
    eol_os_markers: list = field(default_factory=lambda: ["2000", "2003", "2008", "2012"])
    service_password_max_age_days: int = 365
    dormant_days: int = 90
    privileged_password_max_age_days: int = 180
    privileged_groups: list = field(default_factory=lambda: [
        "Domain Admins",
        "Enterprise Admins",
        "Schema Admins",
        "Administrators",
        "Account Operators",
        "Backup Operators",
        "Server Operators",
        "Print Operators",
    ])
    dangerous_rights: list = field(default_factory=lambda: [
        "GenericAll",
        "GenericWrite",
        "WriteOwner",
        "WriteDacl",
        "DCSync",
        "AddMember",
        "ForceChangePassword",
    ])
    max_privileged_group_members: int = 5
    max_bloodhound_group_members: int = 10
    mfa_critical_below: float = 50.0
    mfa_high_below: float = 80.0
    laps_high_gap_percent: float = 50.0
    max_activation_hours: int = 8
    stale_guest_days: int = 90
    top_priority_limit: int = 5

    @classmethod
    def from_dict(cls, config_dict: dict) -> "DetectorConfig":
        """Create a configuration from a dictionary of overrides.

        Unknown keys raise ``ValueError`` so a typo never silently falls back
        to a default.
        """

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config_dict) - known)
        if unknown:
            raise ValueError(f"Unknown configuration key(s): {', '.join(unknown)}")
        return cls(**config_dict)


def load_config(path: str | None) -> DetectorConfig:
    """Load overrides from a JSON file, or return the defaults when ``path`` is None."""

    if path is None:
        return DetectorConfig()
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a JSON object")
    return DetectorConfig.from_dict(data)
