"""Combine findings from all sources into executive metrics."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Iterable, Mapping

from adposture.models import DetectorResult, Finding, Severity, SourceType
from adposture.utils import summarize_severities, utc_timestamp

MAX_WEIGHT = Severity.CRITICAL.weight
DEFAULT_TOP_LIMIT = 5
PRIORITY_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


def risk_score(findings: Iterable[Finding]) -> int:
    """Return the 0-100 posture score, 100 meaning no weighted risk.

    ``round((1 - total_weight / (10 * count)) * 100)`` with halves rounded
    up, computed exactly. An empty collection scores 100.
    """

    weights = [finding.severity.weight for finding in findings]
    if not weights:
        return 100
    exact = (1 - Fraction(sum(weights), MAX_WEIGHT * len(weights))) * 100
    return math.floor(exact + Fraction(1, 2))


@dataclass
class Metrics:
    """Aggregated view over every assessed source."""

    findings: list[Finding] = field(default_factory=list)
    severity_counts: dict[Severity, int] = field(default_factory=dict)
    risk_score: int = 100
    categories: dict[str, int] = field(default_factory=dict)
    top_priority: list[Finding] = field(default_factory=list)
    source_counts: dict[SourceType, int] = field(default_factory=dict)
    unassessed: dict[SourceType, str] = field(default_factory=dict)
    generated_at: str = ""

    @property
    def total_findings(self) -> int:
        return len(self.findings)

    @property
    def has_critical(self) -> bool:
        return self.severity_counts.get(Severity.CRITICAL, 0) > 0

    @property
    def priority_count(self) -> int:
        return sum(self.severity_counts.get(severity, 0) for severity in PRIORITY_SEVERITIES)

    def count(self, severity: Severity) -> int:
        return self.severity_counts.get(severity, 0)

    def sorted_categories(self) -> list[tuple[str, int]]:
        """Categories by count descending; ties keep first-seen order."""

        return sorted(self.categories.items(), key=lambda item: -item[1])

    def as_dict(self) -> dict:
        return {
            "generated_at": self.generated_at,
            "risk_score": self.risk_score,
            "total_findings": self.total_findings,
            "severity_counts": {
                severity.token: count for severity, count in self.severity_counts.items()
            },
            "categories": dict(self.categories),
            "sources": {source.key: count for source, count in self.source_counts.items()},
            "unassessed": {source.key: error for source, error in self.unassessed.items()},
            "top_priority": [finding.as_dict() for finding in self.top_priority],
        }


def aggregate(
    findings_by_source: Mapping[SourceType, Iterable[Finding]],
    *,
    unassessed: Mapping[SourceType, str] | None = None,
    top_limit: int = DEFAULT_TOP_LIMIT,
    generated_at: str | None = None,
) -> Metrics:
    """Build ``Metrics`` from findings grouped by source.

    Findings are concatenated in mapping order without deduplication, so
    identical findings from different sources each count.
    """

    combined: list[Finding] = []
    source_counts: dict[SourceType, int] = {}
    categories: dict[str, int] = {}

    for source, findings in findings_by_source.items():
        batch = list(findings)
        source_counts[source] = len(batch)
        combined.extend(batch)

    for finding in combined:
        categories[finding.category] = categories.get(finding.category, 0) + 1

    priority = [finding for finding in combined if finding.severity in PRIORITY_SEVERITIES]

    return Metrics(
        findings=combined,
        severity_counts=summarize_severities(combined),
        risk_score=risk_score(combined),
        categories=categories,
        top_priority=priority[: max(top_limit, 0)],
        source_counts=source_counts,
        unassessed=dict(unassessed or {}),
        generated_at=generated_at or utc_timestamp(),
    )


def aggregate_results(
    results: Iterable[DetectorResult],
    *,
    top_limit: int = DEFAULT_TOP_LIMIT,
    generated_at: str | None = None,
) -> Metrics:
    """Aggregate detector results, recording sources that could not be assessed."""

    findings_by_source: dict[SourceType, list[Finding]] = {}
    unassessed: dict[SourceType, str] = {}
    for result in results:
        if result.assessed:
            findings_by_source.setdefault(result.source, []).extend(result.findings)
        else:
            unassessed[result.source] = result.error or "could not be assessed"
    return aggregate(
        findings_by_source,
        unassessed=unassessed,
        top_limit=top_limit,
        generated_at=generated_at,
    )
