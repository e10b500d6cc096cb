"""Convert PingCastle healthcheck reports (XML or HTML) into findings."""
from __future__ import annotations

import re

from lxml import etree
from lxml import html as lxml_html

from adposture.exceptions import MalformedSourceError
from adposture.io_utils import InputSource
from adposture.models import DetectorResult, Finding, Severity, SourceType

WHAT = "PingCastle report"

RULE_ID = re.compile(r"^[A-Z]-[A-Za-z0-9-]+$")
HTML_MARKERS = (b"<html", b"<!doctype html")
HTML_SCORE = re.compile(r"(?:Global Score|Total Risk)[:\s]+(\d+)", re.IGNORECASE)

# Lower bound of each band; anything below the last one is INFO.
POINT_BANDS = (
    (50, Severity.CRITICAL),
    (30, Severity.HIGH),
    (15, Severity.MEDIUM),
    (5, Severity.LOW),
)


def map_points_to_severity(points: int) -> Severity:
    """Map PingCastle rule points to a severity."""

    for threshold, severity in POINT_BANDS:
        if points >= threshold:
            return severity
    return Severity.INFO


def _localname(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        return ""
    return etree.QName(element).localname


def _child_text(element: etree._Element, *names: str) -> str:
    for child in element:
        if _localname(child) in names and child.text:
            return child.text.strip()
    return ""


def _parse_points(text: str) -> int | None:
    try:
        return int(text.strip())
    except ValueError:
        return None


def _xml_findings(root: etree._Element) -> list[Finding]:
    findings: list[Finding] = []
    for element in root.iter():
        if not _localname(element).endswith("RiskRule"):
            continue
        points = _parse_points(_child_text(element, "Points"))
        rule_id = _child_text(element, "RiskId", "RuleId")
        if points is None or not rule_id:
            continue

        rationale = _child_text(element, "Rationale")
        model = _child_text(element, "Model")
        explanation = _child_text(element, "TechnicalExplanation")
        findings.append(
            Finding(
                severity=map_points_to_severity(points),
                category=_child_text(element, "Category") or "General",
                title=f"{rule_id}: {rationale}" if rationale else rule_id,
                description=explanation or rationale,
                impact=f"PingCastle Risk Score: {points} points. {model}".strip(),
                remediation=(
                    _child_text(element, "Solution")
                    or "See PingCastle documentation for detailed remediation steps."
                ),
                affected_entities=(rule_id,),
            )
        )
    return findings


def _xml_metadata(root: etree._Element) -> dict:
    metadata: dict = {}
    wanted = {"DomainFQDN": "domain", "GenerationDate": "generated", "GlobalScore": "global_score"}
    for element in root.iter():
        key = wanted.get(_localname(element))
        if key and key not in metadata and element.text and element.text.strip():
            metadata[key] = element.text.strip()
    if "global_score" in metadata:
        metadata["global_score"] = _parse_points(metadata["global_score"])
    return metadata


def _cell_text(cell: etree._Element) -> str:
    return " ".join(cell.text_content().split())


def _html_findings(document: etree._Element) -> list[Finding]:
    findings: list[Finding] = []
    for row in document.iter("tr"):
        cells = [_cell_text(cell) for cell in row if _localname(cell) == "td"]
        if len(cells) < 2 or not RULE_ID.match(cells[0]):
            continue
        points = _parse_points(cells[1])
        if points is None:
            continue

        rule_id = cells[0]
        category = cells[2] if len(cells) > 2 and cells[2] else "General"
        description = cells[3] if len(cells) > 3 else ""
        findings.append(
            Finding(
                severity=map_points_to_severity(points),
                category=category,
                title=f"{rule_id}: {description}" if description else rule_id,
                description=description or "See PingCastle report for details",
                impact=f"PingCastle Risk Score: {points} points",
                remediation="Refer to PingCastle documentation for remediation guidance",
                affected_entities=(rule_id,),
            )
        )
    return findings


def _html_metadata(document: etree._Element) -> dict:
    match = HTML_SCORE.search(document.text_content())
    return {"global_score": int(match.group(1))} if match else {}


def _looks_like_html(content: bytes) -> bool:
    head = content[:2048].lower()
    return any(marker in head for marker in HTML_MARKERS)


def parse_pingcastle(content: bytes) -> tuple[list[Finding], dict]:
    """Return ``(findings, metadata)`` for a PingCastle report.

    XML is tried first; documents that are not well-formed XML but carry an
    HTML marker are parsed as HTML. Anything else raises
    ``MalformedSourceError``.
    """

    content = content.lstrip(b"\xef\xbb\xbf").strip()
    if not content:
        raise MalformedSourceError(f"{WHAT} is empty")

    if not _looks_like_html(content):
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            root = etree.fromstring(content, parser=parser)
        except etree.XMLSyntaxError as exc:
            raise MalformedSourceError(
                f"{WHAT}: unable to detect report format (expected XML or HTML): {exc}"
            ) from exc
        metadata = _xml_metadata(root)
        metadata["format"] = "xml"
        return _xml_findings(root), metadata

    try:
        document = lxml_html.document_fromstring(content)
    except (etree.ParserError, ValueError) as exc:
        raise MalformedSourceError(f"{WHAT}: unreadable HTML: {exc}") from exc
    metadata = _html_metadata(document)
    metadata["format"] = "html"
    return _html_findings(document), metadata


def collect_pingcastle(content: bytes) -> list[Finding]:
    findings, _ = parse_pingcastle(content)
    return findings


def run_pingcastle(source: InputSource) -> DetectorResult:
    result = DetectorResult(source=SourceType.PINGCASTLE, path=source.display_name)
    try:
        result.findings, result.metadata = parse_pingcastle(source.read_bytes())
    except MalformedSourceError as exc:
        result.error = str(exc)
    return result
