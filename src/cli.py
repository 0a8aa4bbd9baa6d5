"""Command Line Interface for the Lab-Verdict validation engine.

This module provides a CLI using Typer for evaluating results against rule
sets, validating result batches, linting rule files, running Westgard QC
checks and managing critical-value notifications.

Security Impact:
    - All commands validate inputs before processing
    - Batch validation persists every verdict and writes the audit trail
    - Critical notifications can only be acknowledged once
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from src.adapters.ingesters import JSONRuleLoader
from src.adapters.storage import DuckDBAdapter
from src.domain.enums import QCRunStatus, ResultStatus, ResultType, WestgardRule
from src.domain.guardrails import RuleSetGuardrail, has_errors
from src.domain.ports import RuleRepositoryError
from src.domain.services import CriticalNotificationTrigger, assemble_outcome, evaluate_rules
from src.domain.services.verdict_assembler import no_rules_outcome
from src.domain.services.westgard import (
    DEFAULT_WESTGARD_RULES,
    calculate_statistics,
    evaluate_westgard,
    qc_run_status,
    z_score,
)
from src.domain.utils import parse_reference_range
from src.infrastructure.settings import APP_VERSION, settings

# Initialize Typer app and Rich console
app = typer.Typer(
    name="labverdict",
    help="Lab-Verdict: LIS Result Validation and QC Rule Engine",
    add_completion=False
)
console = Console()


def create_storage_adapter_cli() -> DuckDBAdapter:
    """Create storage adapter based on configuration (CLI wrapper)."""
    try:
        from src.main import create_storage_adapter
        return create_storage_adapter()
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create storage adapter: {str(e)}")
        raise typer.Exit(code=1)


def _status_markup(status: ResultStatus) -> str:
    colors = {
        ResultStatus.VALIDATED: "green",
        ResultStatus.REQUIRES_REVIEW: "yellow",
        ResultStatus.REJECTED: "red",
    }
    color = colors.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


@app.command()
def validate(
    test_code: str = typer.Argument(..., help="Test code used to select rules"),
    value: str = typer.Argument(..., help="Result value (number or text)"),
    rules_file: Optional[Path] = typer.Option(None, "--rules", "-r", help="JSON rule file (defaults to stored rules)", exists=True),
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Tenant id"),
    previous: Optional[float] = typer.Option(None, "--previous", "-p", help="Previous final value for delta rules"),
    result_type: Optional[str] = typer.Option(None, "--type", help="Value type hint: numeric or text"),
    reference_range: Optional[str] = typer.Option(None, "--reference-range", help="Reference range fallback, e.g. 70-100"),
    json_output: bool = typer.Option(False, "--json", help="Print the outcome as JSON"),
) -> None:
    """Evaluate a single value against a rule set without storing anything.

    Examples:
        labverdict validate GLU 95 --rules rules/glucose.json
        labverdict validate GLU 250 --previous 100 --tenant lab-1
    """
    tenant_id = tenant or settings.engine.default_tenant_id

    type_hint = None
    if result_type is not None:
        try:
            type_hint = ResultType(result_type.lower())
        except ValueError:
            console.print(f"[red]✗[/red] Unknown result type: {result_type} (expected numeric or text)")
            raise typer.Exit(code=1)

    fallback = None
    if reference_range is not None:
        fallback = parse_reference_range(reference_range)
        if fallback is None:
            console.print(f"[red]✗[/red] Cannot parse reference range: {reference_range}")
            raise typer.Exit(code=1)

    try:
        if rules_file is not None:
            rules = JSONRuleLoader(str(rules_file)).fetch_rules(tenant_id, test_code)
        else:
            storage = create_storage_adapter_cli()
            try:
                rules = storage.fetch_rules(tenant_id, test_code)
            finally:
                storage.close()
    except RuleRepositoryError as e:
        console.print(f"[red]✗[/red] Failed to load rules: {str(e)}")
        raise typer.Exit(code=1)

    if rules:
        state = evaluate_rules(value, rules, previous_value=previous, reference_range=fallback, result_type=type_hint)
        outcome = assemble_outcome(state.to_verdict())
    else:
        outcome = no_rules_outcome()

    if json_output:
        console.print_json(outcome.model_dump_json())
    else:
        console.print(f"\n[bold blue]{test_code}[/bold blue] = {value} ({len(rules)} rule(s))\n")
        result_table = Table(show_header=False, box=None, padding=(0, 2))
        result_table.add_row("Status:", _status_markup(outcome.status))
        result_table.add_row("Flag:", outcome.flag)
        result_table.add_row("Critical:", "[red]yes[/red]" if outcome.is_critical else "no")
        if outcome.verdict is not None:
            for message in outcome.verdict.errors:
                result_table.add_row("Error:", f"[red]{message}[/red]")
            for message in outcome.verdict.warnings:
                result_table.add_row("Warning:", f"[yellow]{message}[/yellow]")
            if outcome.verdict.skipped_rule_ids:
                result_table.add_row("Skipped rules:", ", ".join(outcome.verdict.skipped_rule_ids))
        console.print(result_table)

    if outcome.status == ResultStatus.REJECTED:
        raise typer.Exit(code=1)


@app.command("validate-batch")
def validate_batch(
    input_file: Path = typer.Argument(..., help="Result file (CSV or TSV)", exists=True),
    rules_file: Optional[Path] = typer.Option(None, "--rules", "-r", help="JSON rule file imported before validation", exists=True),
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Tenant id for rows without one"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Store and validate every result in a CSV/TSV file.

    Each row is saved as a pending result, validated against the tenant's
    rules, and its verdict, notification and audit entry are persisted.

    Examples:
        labverdict validate-batch results.csv --rules rules.json
        labverdict validate-batch results.tsv --tenant lab-1 --verbose
    """
    from src.main import build_validation_service, import_rules, process_batch

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        console.print("[dim]Verbose logging enabled[/dim]")

    tenant_id = tenant or settings.engine.default_tenant_id
    console.print(f"\n[bold blue]Lab-Verdict Batch Validation[/bold blue]")
    console.print(f"[dim]Input file:[/dim] {input_file}")
    console.print(f"[dim]Database path:[/dim] {settings.get_db_path()}")
    console.print(f"[dim]Tenant:[/dim] {tenant_id}")
    console.print()

    storage = create_storage_adapter_cli()
    try:
        if rules_file is not None:
            saved, rejected = import_rules(str(rules_file), storage, tenant_id)
            console.print(f"[green]✓[/green] Imported {saved} rule(s)" + (f", {rejected} rejected" if rejected else ""))

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            task = progress.add_task("Validating results...", total=None)
            summary = process_batch(str(input_file), storage, build_validation_service(storage), tenant_id=tenant_id)
            progress.update(task, completed=True)
    except Exception as e:
        console.print(f"\n[red]✗[/red] Batch validation failed: {str(e)}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)
    finally:
        storage.close()

    console.print("\n[bold]Validation Summary:[/bold]")
    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_row("Rows read:", f"[bold]{summary.total_rows:,}[/bold]")
    summary_table.add_row("Rejected rows:", f"[red]{summary.rejected_rows:,}[/red]" if summary.rejected_rows else "0")
    for status in (ResultStatus.VALIDATED, ResultStatus.REQUIRES_REVIEW, ResultStatus.REJECTED):
        summary_table.add_row(f"{status.value}:", f"{summary.statuses.get(status.value, 0):,}")
    summary_table.add_row("Critical:", f"[red]{summary.critical:,}[/red]" if summary.critical else "0")
    console.print(summary_table)

    if summary.aborted:
        console.print(f"\n[red]✗[/red] Batch aborted: {summary.errors[-1]}")
        raise typer.Exit(code=1)
    if summary.errors:
        for error in summary.errors[:10]:
            console.print(f"[yellow]⚠[/yellow] {error}")
        console.print(f"\n[yellow]⚠[/yellow] Validation completed with {len(summary.errors)} error(s)")
        raise typer.Exit(code=1)
    console.print(f"\n[green]✓[/green] Validation completed successfully")


@app.command("lint-rules")
def lint_rules(
    rules_file: Path = typer.Argument(..., help="JSON rule file", exists=True),
    test_code: Optional[str] = typer.Option(None, "--test-code", "-c", help="Expected test code of every rule"),
) -> None:
    """Check a rule file for malformed documents and ordering hazards.

    Examples:
        labverdict lint-rules rules/glucose.json --test-code GLU
    """
    loader = JSONRuleLoader()
    rules = []
    rejected = 0
    try:
        for parsed in loader.ingest(str(rules_file)):
            if parsed.is_success():
                rules.append(parsed.value)
            else:
                rejected += 1
                console.print(f"[red]✗[/red] {parsed.error}")
    except Exception as e:
        console.print(f"[red]✗[/red] Cannot read rule file: {str(e)}")
        raise typer.Exit(code=1)

    issues = RuleSetGuardrail().check(rules, test_code=test_code)
    if issues:
        issue_table = Table(title="Rule Set Issues")
        issue_table.add_column("Severity")
        issue_table.add_column("Check")
        issue_table.add_column("Rules")
        issue_table.add_column("Message")
        for issue in issues:
            color = "red" if issue.severity == "error" else "yellow"
            issue_table.add_row(f"[{color}]{issue.severity}[/{color}]", issue.code, ", ".join(issue.rule_ids), issue.message)
        console.print(issue_table)

    if rejected or has_errors(issues):
        console.print(f"\n[red]✗[/red] {len(rules)} valid rule(s), {rejected} rejected document(s)")
        raise typer.Exit(code=1)
    console.print(f"\n[green]✓[/green] {len(rules)} rule(s) OK" + (f" with {len(issues)} warning(s)" if issues else ""))


@app.command()
def qc(
    value: float = typer.Argument(..., help="Control measurement"),
    mean: float = typer.Option(..., "--mean", "-m", help="Target mean"),
    sd: float = typer.Option(..., "--sd", "-s", help="Target standard deviation"),
    history: Optional[List[float]] = typer.Option(None, "--previous", "-p", help="Earlier control value, oldest first (repeatable)"),
    rules: Optional[List[str]] = typer.Option(None, "--rule", help="Westgard rule to apply (repeatable, default 13s 22s R4s 41s 10x)"),
) -> None:
    """Evaluate a QC control value with Westgard multi-rules.

    Examples:
        labverdict qc 112 --mean 100 --sd 4
        labverdict qc 109 --mean 100 --sd 4 -p 110 --rule 12s --rule 22s
    """
    try:
        selected = [WestgardRule(rule) for rule in rules] if rules else list(DEFAULT_WESTGARD_RULES)
    except ValueError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)

    previous_values = list(history or [])
    try:
        violations = evaluate_westgard(value, mean, sd, previous_values, selected)
        z = z_score(value, mean, sd)
    except ValueError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)

    status = qc_run_status(violations)

    qc_table = Table(show_header=False, box=None, padding=(0, 2))
    qc_table.add_row("Value:", f"{value:g}")
    qc_table.add_row("z-score:", f"{z:.2f}")
    if previous_values:
        stats = calculate_statistics(previous_values + [value])
        qc_table.add_row("Series mean:", f"{stats.mean:.2f}")
        qc_table.add_row("Series SD:", f"{stats.sd:.2f}")
        qc_table.add_row("Series CV:", f"{stats.cv:.1f}%")
    for violation in violations:
        color = "red" if status == QCRunStatus.REJECTED else "yellow"
        qc_table.add_row(f"{violation.rule.value}:", f"[{color}]{violation.description}[/{color}]")
    console.print(qc_table)

    if status == QCRunStatus.REJECTED:
        console.print(f"\n[red]✗[/red] QC run {status.value}")
        raise typer.Exit(code=1)
    if status == QCRunStatus.WARNING:
        console.print(f"\n[yellow]⚠[/yellow] QC run {status.value}")
    else:
        console.print(f"\n[green]✓[/green] QC run {status.value}")


@app.command()
def escalations(
    minutes: Optional[int] = typer.Option(None, "--minutes", help="Escalation window in minutes"),
    tenant: Optional[str] = typer.Option(None, "--tenant", "-t", help="Limit to one tenant"),
) -> None:
    """List critical notifications still pending past the escalation window."""
    window = minutes if minutes is not None else settings.engine.escalation_minutes
    storage = create_storage_adapter_cli()
    try:
        overdue = CriticalNotificationTrigger(storage).find_overdue(window, tenant_id=tenant)
    finally:
        storage.close()

    if not overdue:
        console.print(f"[green]✓[/green] No critical notifications pending longer than {window} minutes")
        return

    table = Table(title=f"Overdue Critical Notifications (> {window} min)")
    table.add_column("Result")
    table.add_column("Patient")
    table.add_column("Test")
    table.add_column("Value")
    table.add_column("Created")
    table.add_column("Message")
    for notification in overdue:
        table.add_row(
            notification.result_id,
            notification.patient_id or "",
            notification.test_code or "",
            str(notification.value),
            notification.created_at.strftime("%Y-%m-%d %H:%M"),
            notification.message or "",
        )
    console.print(table)
    console.print(f"\n[yellow]⚠[/yellow] {len(overdue)} notification(s) need escalation")


@app.command()
def acknowledge(
    result_id: str = typer.Argument(..., help="Result id of the critical notification"),
    acknowledged_by: str = typer.Option(..., "--by", help="Clinician or staff member acknowledging"),
    notified_to: Optional[str] = typer.Option(None, "--to", help="Person who was notified"),
    method: Optional[str] = typer.Option(None, "--method", help="Notification method (phone, in person...)"),
) -> None:
    """Acknowledge a pending critical-value notification."""
    storage = create_storage_adapter_cli()
    try:
        result = CriticalNotificationTrigger(storage).acknowledge(result_id, acknowledged_by, notified_to, method)
    finally:
        storage.close()

    if result.is_failure():
        console.print(f"[red]✗[/red] {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Notification for result {result_id} acknowledged by {acknowledged_by}")


@app.command()
def info() -> None:
    """Display system information and configuration."""
    console.print("[bold blue]System Information[/bold blue]\n")

    engine = settings.engine
    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Version:", APP_VERSION)
    info_table.add_row("Database Type:", settings.db_config.db_type)
    info_table.add_row("Database Path:", settings.get_db_path())
    info_table.add_row("Default Tenant:", engine.default_tenant_id)
    info_table.add_row("Reference Range Fallback:", "Enabled" if engine.reference_range_fallback else "Disabled")
    info_table.add_row("Escalation Window:", f"{engine.escalation_minutes} min")
    info_table.add_row("Chunk Size:", str(engine.batch_chunk_size))
    info_table.add_row("Batch Failure Threshold:", f"{engine.batch_failure_threshold:.0f}%")

    console.print(info_table)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version information")
) -> None:
    """Lab-Verdict: LIS Result Validation and QC Rule Engine."""
    if version:
        console.print(f"Lab-Verdict v{APP_VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
