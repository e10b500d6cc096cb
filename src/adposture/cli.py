"""Command-line interface for adposture."""

import os

import click

from adposture import __version__, io_utils
from adposture.aggregate import aggregate_results
from adposture.audit import (
    EXECUTIVE_FILE,
    load_reports,
    report_title,
    require_assessed,
    run_detector,
    run_sources,
    write_outputs,
)
from adposture.config import load_config
from adposture.exceptions import NoSourcesError
from adposture.executive import render_html
from adposture.models import Severity, SourceType
from adposture.report_jsonl import write_result
from adposture.report_text import format_report
from adposture.utils import filter_by_severity, format_summary, summarize_severities

SEVERITY_CHOICES = [severity.token.lower() for severity in Severity.ranked()]
MALFORMED_EXIT_CODE = 2


@click.group()
@click.version_option(version=__version__)
@click.pass_context
def main(ctx):
    """Identity infrastructure security assessment for AD, Azure AD, BloodHound and PingCastle."""
    ctx.ensure_object(dict)


def _config_option(func):
    return click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="JSON file overriding detector thresholds.",
    )(func)


def _fail_option(func):
    return click.option(
        "--fail-on-critical/--no-fail-on-critical",
        default=True,
        show_default=True,
        help="Exit with status 1 if any CRITICAL finding is present.",
    )(func)


def _common_options(func):
    func = click.argument("path")(func)
    func = click.option(
        "--output",
        "-o",
        type=click.Path(),
        default=None,
        show_default="stdout",
        help="Output file path or '-' for stdout.",
    )(func)
    func = click.option(
        "--format",
        "output_format",
        type=click.Choice(["text", "jsonl"], case_sensitive=False),
        default="text",
        show_default=True,
        help="Technical report layout.",
    )(func)
    func = click.option(
        "--severity",
        type=click.Choice(SEVERITY_CHOICES, case_sensitive=False),
        default="info",
        show_default=True,
        help="Minimum severity to include in the output.",
    )(func)
    func = click.option(
        "--width",
        type=click.IntRange(min=40),
        default=None,
        help="Wrap finding text at this column (text format only).",
    )(func)
    func = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        help="Show progress and a summary of findings.",
    )(func)
    func = _config_option(func)
    func = _fail_option(func)
    return func


def _load_config(config_path):
    try:
        return load_config(config_path)
    except (OSError, ValueError, TypeError) as exc:
        raise click.ClickException(f"Invalid configuration file {config_path}: {exc}") from exc


def _execute_detector(
    source_type: SourceType,
    path,
    output,
    output_format: str,
    severity: str,
    width,
    verbose: bool,
    config_path,
    fail_on_critical: bool,
):
    config = _load_config(config_path)
    source = io_utils.resolve_input(
        path, mode="rb", allow_directory=source_type is SourceType.BLOODHOUND
    )

    try:
        if verbose:
            click.echo(f"Assessing {source_type.label}: {source.display_name}", err=True)
        result = run_detector(source_type, source, config=config)
    finally:
        io_utils.close_inputs([source])

    if not result.assessed:
        click.echo(f"Error: could not assess {source_type.label}: {result.error}", err=True)
        raise SystemExit(MALFORMED_EXIT_CODE)

    shown = filter_by_severity(result.findings, Severity.from_token(severity))
    output_handle, should_close = io_utils.resolve_output_handle(output, mode="w")
    try:
        if output_format.lower() == "jsonl":
            write_result(result, output_handle, findings=shown)
        else:
            output_handle.write(
                format_report(
                    shown,
                    title=report_title(source_type),
                    metadata={"source": result.path, **result.metadata},
                    width=width,
                )
            )
    finally:
        if should_close:
            output_handle.close()

    totals = summarize_severities(result.findings)
    if verbose:
        click.echo(f"Summary: {format_summary(totals)}", err=True)

    if fail_on_critical and totals[Severity.CRITICAL]:
        raise SystemExit(1)


@main.command()
@_common_options
def misconfigs(path, output, output_format, severity, width, verbose, config_path, fail_on_critical):
    """Detect weaknesses in an on-prem AD configuration export (JSON)."""

    _execute_detector(
        SourceType.AD_MISCONFIGS,
        path,
        output,
        output_format,
        severity,
        width,
        verbose,
        config_path,
        fail_on_critical,
    )


@main.command()
@_common_options
def privileges(path, output, output_format, severity, width, verbose, config_path, fail_on_critical):
    """Analyze accounts, privileged groups and ACLs in an identity export (JSON)."""

    _execute_detector(
        SourceType.PRIVILEGES,
        path,
        output,
        output_format,
        severity,
        width,
        verbose,
        config_path,
        fail_on_critical,
    )


@main.command()
@_common_options
def azure(path, output, output_format, severity, width, verbose, config_path, fail_on_critical):
    """Audit an Azure AD / Entra ID tenant export (JSON)."""

    _execute_detector(
        SourceType.AZURE_AD,
        path,
        output,
        output_format,
        severity,
        width,
        verbose,
        config_path,
        fail_on_critical,
    )


@main.command()
@_common_options
def bloodhound(path, output, output_format, severity, width, verbose, config_path, fail_on_critical):
    """Extract attack-path findings from a BloodHound export directory or zip."""

    _execute_detector(
        SourceType.BLOODHOUND,
        path,
        output,
        output_format,
        severity,
        width,
        verbose,
        config_path,
        fail_on_critical,
    )


@main.command()
@_common_options
def pingcastle(path, output, output_format, severity, width, verbose, config_path, fail_on_critical):
    """Convert a PingCastle healthcheck report (XML or HTML) into findings."""

    _execute_detector(
        SourceType.PINGCASTLE,
        path,
        output,
        output_format,
        severity,
        width,
        verbose,
        config_path,
        fail_on_critical,
    )


def _echo_unassessed(results):
    for result in results:
        if not result.assessed:
            click.echo(f"Could not assess {result.source.label}: {result.error}", err=True)
        for line in result.metadata.get("dropped", []):
            click.echo(f"Dropped finding with unknown severity: {line}", err=True)


@main.command()
@click.argument("reports_dir", type=click.Path(exists=True, file_okay=False))
@click.option("--org", "organization", default="Your Organization", show_default=True)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=None,
    show_default=f"REPORTS_DIR/{EXECUTIVE_FILE}",
    help="Output file path or '-' for stdout.",
)
@click.option("--verbose", "-v", is_flag=True, help="Show progress and a summary of findings.")
@_config_option
@_fail_option
def executive(reports_dir, organization, output, verbose, config_path, fail_on_critical):
    """Build the executive HTML report from a directory of technical reports."""

    config = _load_config(config_path)
    try:
        results = load_reports(reports_dir)
    except NoSourcesError as exc:
        raise click.ClickException(str(exc)) from exc

    if verbose:
        click.echo(f"Loaded {len(results)} report(s) from {reports_dir}", err=True)
        for result in results:
            click.echo(f"  - {result.source.label}: {len(result.findings)} finding(s)", err=True)
    _echo_unassessed(results)

    metrics = aggregate_results(results, top_limit=config.top_priority_limit)
    destination = output or os.path.join(reports_dir, EXECUTIVE_FILE)
    output_handle, should_close = io_utils.resolve_output_handle(destination, mode="w")
    try:
        output_handle.write(render_html(metrics, organization))
    finally:
        if should_close:
            output_handle.close()

    if verbose:
        click.echo(
            f"Risk score: {metrics.risk_score}/100 "
            f"Summary: {format_summary(metrics.severity_counts)}",
            err=True,
        )

    if fail_on_critical and metrics.has_critical:
        raise SystemExit(1)


@main.command()
@click.option("--org", "organization", default="Your Organization", show_default=True)
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    required=True,
    help="Directory receiving reports, summary.json and the executive report.",
)
@click.option("--ad-config", type=click.Path(), help="AD configuration export (JSON).")
@click.option("--identity", type=click.Path(), help="Identity/privilege export (JSON).")
@click.option("--azure", "azure_path", type=click.Path(), help="Azure AD export (JSON).")
@click.option(
    "--bloodhound", "bloodhound_path", type=click.Path(), help="BloodHound export directory or zip."
)
@click.option(
    "--pingcastle", "pingcastle_path", type=click.Path(), help="PingCastle XML or HTML report."
)
@click.option("--width", type=click.IntRange(min=40), default=None, help="Wrap technical reports.")
@click.option("--verbose", "-v", is_flag=True, help="Show progress and a summary of findings.")
@_config_option
@_fail_option
def assess(
    organization,
    output_dir,
    ad_config,
    identity,
    azure_path,
    bloodhound_path,
    pingcastle_path,
    width,
    verbose,
    config_path,
    fail_on_critical,
):
    """Run every supplied detector and write the full report set."""

    config = _load_config(config_path)
    supplied = {
        SourceType.AD_MISCONFIGS: ad_config,
        SourceType.PRIVILEGES: identity,
        SourceType.AZURE_AD: azure_path,
        SourceType.BLOODHOUND: bloodhound_path,
        SourceType.PINGCASTLE: pingcastle_path,
    }
    paths = {source: path for source, path in supplied.items() if path}
    try:
        results = run_sources(paths, config=config)
    except NoSourcesError as exc:
        raise click.UsageError(
            f"{exc}. Use at least one of --ad-config, --identity, --azure, "
            "--bloodhound or --pingcastle."
        ) from exc

    if verbose:
        click.echo(f"Ran {len(results)} detector(s)...", err=True)
        for result in results:
            status = f"{len(result.findings)} finding(s)" if result.assessed else "not assessed"
            click.echo(f"  - {result.source.label}: {status}", err=True)
    _echo_unassessed(results)
    try:
        require_assessed(results)
    except NoSourcesError as exc:
        raise click.ClickException(str(exc)) from exc

    metrics = aggregate_results(results, top_limit=config.top_priority_limit)
    written = write_outputs(results, metrics, output_dir, organization, width=width)

    if verbose:
        for path in written:
            click.echo(f"Wrote {path}", err=True)
        click.echo(
            f"Risk score: {metrics.risk_score}/100 "
            f"Summary: {format_summary(metrics.severity_counts)}",
            err=True,
        )

    if fail_on_critical and metrics.has_critical:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
