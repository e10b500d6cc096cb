"""Shared data models used across adposture detectors and reports."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(Enum):
    """Ordered finding severity.

    Members carry an explicit ``rank`` (0 is the most severe) so sorting never
    depends on string comparison or declaration order.
    """

    CRITICAL = ("CRITICAL", 0, 10, "\U0001F534")
    HIGH = ("HIGH", 1, 5, "\U0001F7E0")
    MEDIUM = ("MEDIUM", 2, 2, "\U0001F7E1")
    LOW = ("LOW", 3, 1, "\U0001F535")
    INFO = ("INFO", 4, 0, "⚪")

    def __init__(self, token: str, rank: int, weight: int, icon: str) -> None:
        self.token = token
        self.rank = rank
        self.weight = weight
        self.icon = icon

    @classmethod
    def from_token(cls, token: str) -> "Severity":
        """Return the severity named by ``token`` (case-insensitive)."""

        normalized = token.strip().upper()
        for severity in cls:
            if severity.token == normalized:
                return severity
        raise ValueError(f"Unknown severity token: {token!r}")

    @classmethod
    def ranked(cls) -> list["Severity"]:
        return sorted(cls, key=lambda severity: severity.rank)

    def at_least(self, other: "Severity") -> bool:
        """Return True when this severity is as severe as ``other`` or more."""

        return self.rank <= other.rank

    def __str__(self) -> str:
        return self.token


SEVERITY_ICONS = frozenset(severity.icon for severity in Severity)


class SourceType(Enum):
    """Kinds of source documents, one per detector."""

    AD_MISCONFIGS = ("ad-misconfigs", "AD Configuration")
    PRIVILEGES = ("privileges", "Privilege Analysis")
    AZURE_AD = ("azure-ad", "Azure AD")
    BLOODHOUND = ("bloodhound", "BloodHound")
    PINGCASTLE = ("pingcastle", "PingCastle")

    def __init__(self, key: str, label: str) -> None:
        self.key = key
        self.label = label

    @property
    def report_name(self) -> str:
        return f"report-{self.key}.txt"

    @property
    def jsonl_name(self) -> str:
        return f"report-{self.key}.jsonl"

    @classmethod
    def from_key(cls, key: str) -> "SourceType":
        for source in cls:
            if source.key == key:
                return source
        raise ValueError(f"Unknown source type: {key!r}")


@dataclass(frozen=True)
class Finding:
    """A single normalized detected condition."""

    severity: Severity
    title: str
    category: str = ""
    description: str = ""
    impact: str = ""
    remediation: str = ""
    affected_entities: tuple[str, ...] = ()
    references: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.severity, Severity):
            raise TypeError(f"severity must be a Severity, got {self.severity!r}")
        if not self.title:
            raise ValueError("Finding title must not be empty")
        # Lists passed by callers are frozen so the value object stays hashable.
        object.__setattr__(self, "affected_entities", tuple(self.affected_entities))
        object.__setattr__(self, "references", tuple(self.references))

    @property
    def sort_key(self) -> int:
        return self.severity.rank

    def as_dict(self) -> dict:
        return {
            "severity": self.severity.token,
            "title": self.title,
            "category": self.category,
            "description": self.description,
            "impact": self.impact,
            "remediation": self.remediation,
            "affected_entities": list(self.affected_entities),
            "references": list(self.references),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Finding":
        """Build a finding from ``as_dict`` output.

        Raises ``ValueError`` for an unknown severity or a missing title.
        """

        return cls(
            severity=Severity.from_token(str(data.get("severity", ""))),
            title=str(data.get("title", "")),
            category=str(data.get("category", "")),
            description=str(data.get("description", "")),
            impact=str(data.get("impact", "")),
            remediation=str(data.get("remediation", "")),
            affected_entities=tuple(data.get("affected_entities") or ()),
            references=tuple(data.get("references") or ()),
        )


def sort_findings(findings) -> list[Finding]:
    """Return findings ordered by severity rank, keeping emission order within a rank."""

    return sorted(findings, key=lambda finding: finding.sort_key)


@dataclass
class DetectorResult:
    """Outcome of running one detector against one source document.

    ``error`` is set when the source could not be assessed; ``findings`` is
    then empty.
    """

    source: SourceType
    path: str
    findings: list[Finding] = field(default_factory=list)
    error: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def assessed(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict:
        return {
            "source": self.source.key,
            "path": self.path,
            "error": self.error,
            "metadata": self.metadata,
            "items": [finding.as_dict() for finding in self.findings],
        }
