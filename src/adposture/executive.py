"""Render the standalone executive HTML report."""
from __future__ import annotations

from lxml import html as lxml_html
from lxml.html import builder as E

from adposture import __version__
from adposture.aggregate import Metrics
from adposture.models import Finding, Severity

# (minimum score, label, colour), checked top-down.
SCORE_BANDS = (
    (80, "Strong", "#10b981"),
    (60, "Moderate", "#f59e0b"),
    (40, "Weak", "#f97316"),
    (0, "Critical", "#ef4444"),
)

SEVERITY_COLOURS = {
    Severity.CRITICAL: "#ef4444",
    Severity.HIGH: "#f97316",
    Severity.MEDIUM: "#f59e0b",
    Severity.LOW: "#3b82f6",
    Severity.INFO: "#6b7280",
}

CSS = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif;
    line-height: 1.6; color: #1f2937; background: #f3f4f6; padding: 20px;
}
.container { max-width: 1200px; margin: 0 auto; background: white; border-radius: 8px;
    box-shadow: 0 1px 3px rgba(0,0,0,0.1); }
.header { background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white;
    padding: 40px; border-radius: 8px 8px 0 0; }
.header h1 { font-size: 32px; margin-bottom: 10px; }
.header .subtitle { opacity: 0.9; font-size: 16px; }
.header .date { margin-top: 15px; font-size: 14px; opacity: 0.8; }
.content { padding: 40px; }
.metrics-grid, .severity-breakdown, .category-grid { display: grid; gap: 15px; margin-bottom: 40px; }
.metrics-grid { grid-template-columns: repeat(auto-fit, minmax(250px, 1fr)); }
.severity-breakdown { grid-template-columns: repeat(auto-fit, minmax(140px, 1fr)); }
.category-grid { grid-template-columns: repeat(auto-fill, minmax(200px, 1fr)); }
.metric-card, .category-item { background: #f9fafb; border: 1px solid #e5e7eb; border-radius: 8px;
    padding: 20px; text-align: center; }
.metric-value { font-size: 48px; font-weight: bold; }
.metric-label, .severity-label, .category-name { font-size: 13px; color: #6b7280;
    text-transform: uppercase; letter-spacing: 0.5px; }
.severity-item { border: 2px solid #e5e7eb; border-radius: 8px; padding: 20px; text-align: center; }
.severity-count { font-size: 36px; font-weight: bold; }
.category-count { font-size: 24px; font-weight: bold; }
.category-item.unassessed { border-style: dashed; }
.section { margin-bottom: 40px; }
.section-title { font-size: 24px; margin-bottom: 20px; padding-bottom: 10px;
    border-bottom: 2px solid #e5e7eb; }
.finding-card { background: #f9fafb; border-left: 4px solid #e5e7eb; border-radius: 4px;
    padding: 20px; margin-bottom: 15px; }
.severity-badge { display: inline-block; padding: 4px 12px; border-radius: 12px; font-size: 11px;
    font-weight: bold; color: white; margin-right: 12px; }
.finding-title { font-size: 18px; font-weight: 600; }
.finding-description { color: #4b5563; margin: 10px 0; }
.finding-detail { background: white; border-radius: 4px; padding: 12px; margin-top: 10px; font-size: 14px; }
.summary-box { background: #eff6ff; border: 1px solid #bfdbfe; border-radius: 8px; padding: 24px;
    margin-bottom: 30px; color: #1e40af; }
.summary-box h3 { margin-bottom: 15px; }
.summary-box ul { list-style: none; }
.summary-box li { padding: 6px 0; }
.footer { background: #f9fafb; padding: 24px 40px; border-radius: 0 0 8px 8px; text-align: center;
    color: #6b7280; font-size: 14px; }
@media print {
    body { background: white; padding: 0; }
    .container { box-shadow: none; }
    .finding-card { page-break-inside: avoid; }
}
"""


def score_band(score: int) -> tuple[str, str]:
    """Return the posture label and colour for a 0-100 score."""

    for minimum, label, colour in SCORE_BANDS:
        if score >= minimum:
            return label, colour
    return SCORE_BANDS[-1][1], SCORE_BANDS[-1][2]


def _metric_card(value, label: str, colour: str | None = None):
    style = {"style": f"color: {colour}"} if colour else {}
    return E.DIV(
        E.CLASS("metric-card"),
        E.DIV(E.CLASS("metric-value"), str(value), **style),
        E.DIV(E.CLASS("metric-label"), label),
    )


def _executive_summary(metrics: Metrics):
    items = [
        E.LI("Overall security posture score: ", E.STRONG(f"{metrics.risk_score}/100")),
        E.LI("Total findings identified: ", E.STRONG(str(metrics.total_findings))),
        E.LI(
            "Critical issues requiring immediate attention: ",
            E.STRONG(str(metrics.count(Severity.CRITICAL))),
        ),
        E.LI(
            "High-priority items for remediation: ",
            E.STRONG(str(metrics.count(Severity.HIGH))),
        ),
    ]
    if metrics.has_critical:
        items.append(E.LI(E.STRONG("Immediate action required on critical findings")))
    if metrics.unassessed:
        items.append(
            E.LI(f"{len(metrics.unassessed)} source(s) could not be assessed; see coverage below")
        )
    return E.DIV(E.CLASS("summary-box"), E.H3("Executive Summary"), E.UL(*items))


def _severity_distribution(metrics: Metrics):
    cells = []
    for severity in Severity.ranked():
        colour = SEVERITY_COLOURS[severity]
        cells.append(
            E.DIV(
                E.CLASS(f"severity-item {severity.token.lower()}"),
                E.DIV(E.CLASS("severity-count"), str(metrics.count(severity)), style=f"color: {colour}"),
                E.DIV(E.CLASS("severity-label"), f"{severity.icon} {severity.token.title()}"),
                style=f"border-color: {colour}",
            )
        )
    return E.DIV(
        E.CLASS("section"),
        E.H2(E.CLASS("section-title"), "Finding Severity Distribution"),
        E.DIV(E.CLASS("severity-breakdown"), *cells),
    )


def _category_breakdown(metrics: Metrics):
    items = [
        E.DIV(
            E.CLASS("category-item"),
            E.DIV(E.CLASS("category-name"), category or "Uncategorized"),
            E.DIV(E.CLASS("category-count"), str(count)),
        )
        for category, count in metrics.sorted_categories()
    ]
    body = E.DIV(E.CLASS("category-grid"), *items) if items else E.P("No findings recorded.")
    return E.DIV(E.CLASS("section"), E.H2(E.CLASS("section-title"), "Risk Categories"), body)


def _finding_card(index: int, finding: Finding):
    colour = SEVERITY_COLOURS[finding.severity]
    parts = [
        E.DIV(
            E.SPAN(E.CLASS("severity-badge"), finding.severity.token, style=f"background: {colour}"),
            E.SPAN(E.CLASS("finding-title"), f"{index}. {finding.title}"),
        ),
    ]
    if finding.description:
        parts.append(E.DIV(E.CLASS("finding-description"), finding.description))
    if finding.affected_entities:
        parts.append(
            E.DIV(E.CLASS("finding-detail"), E.STRONG("Affected: "), ", ".join(finding.affected_entities))
        )
    if finding.impact:
        parts.append(E.DIV(E.CLASS("finding-detail"), E.STRONG("Impact: "), finding.impact))
    if finding.remediation:
        parts.append(E.DIV(E.CLASS("finding-detail"), E.STRONG("Remediation: "), finding.remediation))
    return E.DIV(
        E.CLASS(f"finding-card {finding.severity.token.lower()}"),
        *parts,
        style=f"border-left-color: {colour}",
    )


def _top_priority(metrics: Metrics):
    if metrics.top_priority:
        cards = [_finding_card(index, finding) for index, finding in enumerate(metrics.top_priority, 1)]
    else:
        cards = [E.P("No critical or high-priority findings detected.")]
    return E.DIV(
        E.CLASS("section"),
        E.H2(E.CLASS("section-title"), "Top Priority Findings (Action Required)"),
        *cards,
    )


def _coverage(metrics: Metrics):
    items = [
        E.DIV(
            E.CLASS("category-item"),
            E.DIV(E.CLASS("category-name"), source.label),
            E.DIV(E.CLASS("category-count"), str(count)),
        )
        for source, count in metrics.source_counts.items()
    ]
    items.extend(
        E.DIV(
            E.CLASS("category-item unassessed"),
            E.DIV(E.CLASS("category-name"), source.label),
            E.DIV(E.CLASS("category-count"), "Not assessed"),
            E.DIV(E.CLASS("finding-description"), error),
        )
        for source, error in metrics.unassessed.items()
    )
    return E.DIV(
        E.CLASS("section"),
        E.H2(E.CLASS("section-title"), "Assessment Coverage"),
        E.DIV(E.CLASS("category-grid"), *items),
    )


def _next_steps(metrics: Metrics):
    steps = []
    if metrics.count(Severity.CRITICAL):
        steps.append("Address all CRITICAL findings within 24-48 hours")
    if metrics.count(Severity.HIGH):
        steps.append("Plan remediation for HIGH severity items within 1-2 weeks")
    if metrics.unassessed:
        steps.append("Re-collect the sources that could not be assessed and rerun the assessment")
    steps.extend(
        [
            "Review detailed technical findings in assessment reports",
            "Schedule follow-up assessment after remediation",
            "Consider implementing continuous monitoring for key security controls",
        ]
    )
    return E.DIV(
        E.CLASS("summary-box"),
        E.H3("Recommended Next Steps"),
        E.UL(*[E.LI(f"→ {step}") for step in steps]),
    )


def build_document(metrics: Metrics, organization_name: str):
    """Return the report as an lxml element tree."""

    label, colour = score_band(metrics.risk_score)
    report_date = metrics.generated_at[:10]

    return E.HTML(
        E.HEAD(
            E.META(charset="UTF-8"),
            E.META(name="viewport", content="width=device-width, initial-scale=1.0"),
            E.TITLE(f"Security Assessment Executive Report - {organization_name}"),
            E.STYLE(CSS),
        ),
        E.BODY(
            E.DIV(
                E.CLASS("container"),
                E.DIV(
                    E.CLASS("header"),
                    E.H1("Security Assessment Report"),
                    E.DIV(
                        E.CLASS("subtitle"),
                        f"{organization_name} - Identity Infrastructure Security Posture",
                    ),
                    E.DIV(E.CLASS("date"), f"Assessment Date: {report_date}"),
                ),
                E.DIV(
                    E.CLASS("content"),
                    _executive_summary(metrics),
                    E.DIV(
                        E.CLASS("metrics-grid"),
                        _metric_card(metrics.risk_score, f"Security Score ({label})", colour),
                        _metric_card(metrics.total_findings, "Total Findings"),
                        _metric_card(metrics.priority_count, "Priority Items"),
                    ),
                    _severity_distribution(metrics),
                    _category_breakdown(metrics),
                    _top_priority(metrics),
                    _coverage(metrics),
                    _next_steps(metrics),
                ),
                E.DIV(
                    E.CLASS("footer"),
                    f"Generated by adposture {__version__} | {report_date}",
                    E.BR(),
                    "This report is confidential and intended for authorized personnel only.",
                ),
            )
        ),
        lang="en",
    )


def render_html(metrics: Metrics, organization_name: str) -> str:
    """Render ``metrics`` as a standalone HTML page (inline CSS, no scripts)."""

    document = build_document(metrics, organization_name)
    return lxml_html.tostring(
        document,
        doctype="<!DOCTYPE html>",
        encoding="unicode",
        pretty_print=True,
    )
