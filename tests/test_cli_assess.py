"""CLI tests for the assess and executive commands."""
from __future__ import annotations

import json

from click.testing import CliRunner

from adposture.cli import main
from tests.source_factory import hardened_ad_config, pingcastle_xml, write_json


def _undated_ad_config(*, signing: bool = True) -> dict:
    document = hardened_ad_config()
    document["ldapSettings"]["ldapSigning"] = signing
    document["domainControllers"] = []
    document["serviceAccounts"] = []
    return document


def test_assess_requires_a_source(tmp_path):
    result = CliRunner().invoke(main, ["assess", "--output-dir", str(tmp_path / "out")])

    assert result.exit_code == 2
    assert "No data sources supplied" in result.output


def test_assess_writes_full_report_set(tmp_path):
    ad_path = write_json(tmp_path, "ad.json", _undated_ad_config(signing=False))
    pc_path = tmp_path / "pc.xml"
    pc_path.write_text(pingcastle_xml([("S-Old", 12, "StaleObjects", "Old objects")]), encoding="utf-8")
    out_dir = tmp_path / "out"

    result = CliRunner().invoke(
        main,
        [
            "assess",
            "--org",
            "Acme Corp",
            "--output-dir",
            str(out_dir),
            "--ad-config",
            str(ad_path),
            "--pingcastle",
            str(pc_path),
            "--azure",
            str(tmp_path / "missing.json"),
            "-v",
        ],
    )

    assert result.exit_code == 1
    assert "Could not assess Azure AD" in result.output
    assert "Risk score:" in result.output
    assert (out_dir / "executive-report.html").exists()
    assert (out_dir / "report-ad-misconfigs.txt").exists()
    assert (out_dir / "report-pingcastle.jsonl").exists()

    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["organization"] == "Acme Corp"
    assert summary["sources"] == {"ad-misconfigs": 2, "pingcastle": 1}
    assert list(summary["unassessed"]) == ["azure-ad"]
    assert "Acme Corp" in (out_dir / "executive-report.html").read_text(encoding="utf-8")


def test_assess_clean_run_exits_zero(tmp_path):
    ad_path = write_json(tmp_path, "ad.json", _undated_ad_config())

    result = CliRunner().invoke(
        main, ["assess", "--output-dir", str(tmp_path / "out"), "--ad-config", str(ad_path)]
    )

    assert result.exit_code == 0


def test_executive_from_report_directory(tmp_path):
    reports = tmp_path / "reports"
    reports.mkdir()
    (reports / "report-misconfigs.txt").write_text(
        "\U0001F7E0 [HIGH] Weak Minimum Password Length\n"
        "   Category: Password Policy\n"
        "   Minimum password length is 8 characters (recommended: 14+)\n",
        encoding="utf-8",
    )
    output = tmp_path / "exec.html"

    result = CliRunner().invoke(
        main, ["executive", str(reports), "--org", "Acme", "--output", str(output), "-v"]
    )

    assert result.exit_code == 0
    page = output.read_text(encoding="utf-8")
    assert "Weak Minimum Password Length" in page
    assert "Risk score: 50/100" in result.output


def test_executive_default_output_and_critical_exit(tmp_path):
    (tmp_path / "report-azure.txt").write_text(
        "\U0001F534 [CRITICAL] No Conditional Access Policies Configured\n   Category: Conditional Access\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(main, ["executive", str(tmp_path)])

    assert result.exit_code == 1
    assert (tmp_path / "executive-report.html").exists()


def test_executive_without_reports(tmp_path):
    result = CliRunner().invoke(main, ["executive", str(tmp_path)])

    assert result.exit_code == 1
    assert "No assessment reports found" in result.output


def test_assess_with_no_usable_source_is_fatal(tmp_path):
    ad_path = tmp_path / "ad.json"
    ad_path.write_text("not json", encoding="utf-8")
    azure_path = write_json(tmp_path, "azure.json", [1, 2])
    out_dir = tmp_path / "out"

    result = CliRunner().invoke(
        main,
        ["assess", "--output-dir", str(out_dir), "--ad-config", str(ad_path), "--azure", str(azure_path)],
    )

    assert result.exit_code == 1
    assert "No assessments completed successfully" in result.output
    assert not (out_dir / "summary.json").exists()
    assert not (out_dir / "executive-report.html").exists()


def test_executive_with_only_failed_reports_is_fatal(tmp_path):
    (tmp_path / "report-azure-ad.jsonl").write_text(
        json.dumps({"adposture_version": "0.1.0", "source": "azure-ad", "error": "not valid JSON"}) + "\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(main, ["executive", str(tmp_path)])

    assert result.exit_code == 1
    assert "No assessments completed successfully" in result.output
    assert not (tmp_path / "executive-report.html").exists()
