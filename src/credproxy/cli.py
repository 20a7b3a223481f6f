"""
CLI entry point for credproxy.

This module provides the Typer-based command-line interface for credproxy.

Commands:
    evaluate         Decide a proxy request against a policy file
    validate         Check every policy config in a policy file
    templates        List the built-in policy templates
    add-credential   Register credential metadata in the SQLite store
    apply-template   Create a policy for a stored credential from a template
    policies         List the policies stored for a credential

Architecture Note:
    The CLI only parses arguments, wires the SQLite store and prints results.
    Decisions are made by credproxy.policy and credproxy.templates, which
    can be used programmatically without the CLI.
"""

import asyncio
import json
import traceback
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from credproxy import __version__
from credproxy.observability import configure_logging
from credproxy.policy import RequestEvaluator, validate_policy
from credproxy.schema import (
    Credential,
    Policy,
    PolicyEvaluationResult,
    PolicyStatus,
    load_policies,
    load_request,
)
from credproxy.settings import get_settings
from credproxy.store import PolicyDB
from credproxy.templates import PolicyTemplateService, default_catalog

# Exit codes for `evaluate`
EXIT_APPROVED = 0
EXIT_DENIED = 1
EXIT_PENDING = 2
EXIT_ERROR = 3

STATUS_EXIT_CODES = {
    PolicyStatus.APPROVED: EXIT_APPROVED,
    PolicyStatus.DENIED: EXIT_DENIED,
    PolicyStatus.PENDING: EXIT_PENDING,
}

STATUS_STYLES = {
    PolicyStatus.APPROVED: "green",
    PolicyStatus.DENIED: "red",
    PolicyStatus.PENDING: "yellow",
}

# Initialize Typer app with metadata
app = typer.Typer(
    name="credproxy",
    help="Evaluate credential proxy requests against access policies.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]credproxy[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        Optional[str],
        typer.Option(
            "--log-level",
            help="Minimum log level. Defaults to CREDPROXY_LOG_LEVEL or INFO.",
        ),
    ] = None,
) -> None:
    """
    credproxy - Policy evaluation for a credential proxy.

    Decide whether a third-party application may perform an operation with a
    stored credential, and manage the policies attached to credentials.
    """
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_output=settings.log_json,
    )


# =============================================================================
# Evaluation Commands
# =============================================================================


@app.command()
def evaluate(
    request_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the request YAML/JSON file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    policies_path: Annotated[
        Path,
        typer.Option(
            "--policies",
            "-p",
            help="Path to the policy YAML/JSON file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Enable debug mode with full error tracebacks.",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Decide a request against a policy set.

    No usage metrics provider is wired in, so USAGE_THRESHOLD policies deny
    and RATE_LIMITING policies approve.

    Exit codes: 0 approved, 1 denied, 2 pending approval, 3 input error.

    Example:
        $ credproxy evaluate request.yaml --policies policies.yaml
    """
    try:
        request = load_request(request_path)
    except Exception as e:
        _report_error("request_load_error", "Error loading request", e, json_output, debug)
        raise typer.Exit(code=EXIT_ERROR)

    try:
        policies = load_policies(policies_path)
    except Exception as e:
        _report_error("policy_load_error", "Error loading policies", e, json_output, debug)
        raise typer.Exit(code=EXIT_ERROR)

    result = asyncio.run(RequestEvaluator().evaluate_request(request, policies))

    if json_output:
        _output_json_result(result.model_dump(mode="json"))
    else:
        _display_decision(result)

    raise typer.Exit(code=STATUS_EXIT_CODES[result.status])


@app.command()
def validate(
    policies_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the policy YAML/JSON file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Validate every policy config in a policy file.

    Example:
        $ credproxy validate policies.yaml
    """
    try:
        policies = load_policies(policies_path)
    except Exception as e:
        _report_error("policy_load_error", "Error loading policies", e, json_output, False)
        raise typer.Exit(code=1)

    results = [(policy, validate_policy(policy)) for policy in policies]
    all_valid = all(result.valid for _, result in results)

    if json_output:
        _output_json_result({
            "valid": all_valid,
            "policies": [
                {
                    "policy_id": policy.id,
                    "valid": result.valid,
                    "errors": [
                        {"path": issue.path, "message": issue.message}
                        for issue in result.errors
                    ],
                }
                for policy, result in results
            ],
        })
    else:
        for policy, result in results:
            if result.valid:
                console.print(f"[green]✓[/green] {policy.id} ({_type_label(policy)})")
                continue
            console.print(f"[red]✗[/red] {policy.id} ({_type_label(policy)})")
            for issue in result.errors:
                console.print(f"    [red]{issue.path}: {issue.message}[/red]")

        console.print()
        if all_valid:
            console.print(f"[green]{len(results)} policies valid[/green]")
        else:
            console.print("[yellow]Some policies are invalid. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_valid else 1)


# =============================================================================
# Template Commands
# =============================================================================


@app.command()
def templates(
    credential_type: Annotated[
        Optional[str],
        typer.Option(
            "--type",
            "-t",
            help="Only show templates for this credential type.",
        ),
    ] = None,
    recommended: Annotated[
        bool,
        typer.Option(
            "--recommended",
            help="Only show recommended templates.",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    List the built-in policy templates.

    Example:
        $ credproxy templates --type ethereum --recommended
    """
    catalog = default_catalog()
    if credential_type:
        selected = catalog.get_templates_for_credential_type(credential_type.lower())
    else:
        selected = list(catalog.all_templates())
    if recommended:
        selected = [t for t in selected if t.is_recommended]

    if json_output:
        _output_json_result([
            template.model_dump(mode="json", by_alias=True) for template in selected
        ])
        return

    if not selected:
        console.print("[dim]No templates found.[/dim]")
        return

    table = Table(title="Policy Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Priority", justify="right")
    table.add_column("Recommended", justify="center")

    for template in selected:
        table.add_row(
            template.id,
            template.type.value,
            template.category.value,
            str(template.priority),
            "[green]yes[/green]" if template.is_recommended else "[dim]no[/dim]",
        )

    console.print(table)


# =============================================================================
# Store Commands
# =============================================================================


@app.command("add-credential")
def add_credential(
    credential_id: Annotated[
        str,
        typer.Argument(help="Credential ID."),
    ],
    credential_type: Annotated[
        str,
        typer.Argument(help="Credential type (e.g., api-key, ethereum)."),
    ],
    name: Annotated[
        Optional[str],
        typer.Option(
            "--name",
            help="Display name for the credential.",
        ),
    ] = None,
    apply_defaults: Annotated[
        bool,
        typer.Option(
            "--apply-defaults",
            help="Apply recommended templates if the credential has no policies.",
        ),
    ] = False,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="Path to the SQLite database. Defaults to CREDPROXY_DB_PATH.",
            resolve_path=True,
        ),
    ] = None,
) -> None:
    """
    Register credential metadata (no secret material) in the store.

    Example:
        $ credproxy add-credential cred-1 ethereum --apply-defaults
    """
    db_path = db or get_settings().db_path

    try:
        with PolicyDB(db_path) as store:
            store.save_credential(
                Credential(id=credential_id, type=credential_type, name=name)
            )
            console.print(f"[green]Saved credential {credential_id}[/green]")

            if apply_defaults:
                service = PolicyTemplateService(store, store)
                created = asyncio.run(service.apply_default_policies(credential_id))
                console.print(f"Applied {len(created)} default policies")
                for policy in created:
                    console.print(f"  [cyan]• {policy.name}[/cyan] [dim]{policy.id}[/dim]")
    except Exception as e:
        _report_error("store_error", "Store error", e, False, False)
        raise typer.Exit(code=1)


@app.command("apply-template")
def apply_template(
    template_id: Annotated[
        str,
        typer.Argument(help="Template ID (see `credproxy templates`)."),
    ],
    credential_id: Annotated[
        str,
        typer.Argument(help="Credential to attach the policy to."),
    ],
    application: Annotated[
        Optional[str],
        typer.Option(
            "--application",
            "-a",
            help="Restrict the policy to this application.",
        ),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="Path to the SQLite database. Defaults to CREDPROXY_DB_PATH.",
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    Create a policy for a stored credential from a template.

    Plugin metadata is not available from the CLI, so operations-based
    templates keep the operations listed in the template.

    Example:
        $ credproxy apply-template read-only cred-1 --application app-1
    """
    db_path = db or get_settings().db_path

    try:
        with PolicyDB(db_path) as store:
            service = PolicyTemplateService(store, store)
            policy = asyncio.run(
                service.apply_template(template_id, credential_id, application_id=application)
            )
    except Exception as e:
        _report_error("store_error", "Store error", e, json_output, False)
        raise typer.Exit(code=1)

    if policy is None:
        message = (
            f"Template {template_id} could not be applied to credential {credential_id}"
        )
        if json_output:
            _output_json_error("template_not_applicable", message)
        else:
            console.print(f"[red]{message}[/red]")
            console.print(
                "[dim]Check the template ID, that the credential exists, "
                "and that the template supports its type.[/dim]"
            )
        raise typer.Exit(code=1)

    if json_output:
        _output_json_result(policy.model_dump(mode="json", by_alias=True))
    else:
        console.print(f"[green]Created policy {policy.id}[/green]")
        console.print(f"  Name: {policy.name}")
        console.print(f"  Type: {_type_label(policy)}")
        console.print(f"  Priority: {policy.priority}")


@app.command()
def policies(
    credential_id: Annotated[
        str,
        typer.Argument(help="Credential ID."),
    ],
    application: Annotated[
        Optional[str],
        typer.Option(
            "--application",
            "-a",
            help="Include policies restricted to this application.",
        ),
    ] = None,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="Path to the SQLite database. Defaults to CREDPROXY_DB_PATH.",
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
) -> None:
    """
    List the policies that apply to a credential.

    Example:
        $ credproxy policies cred-1 --application app-1
    """
    db_path = db or get_settings().db_path

    if not db_path.exists():
        if json_output:
            _output_json_error("database_not_found", f"Database not found: {db_path}")
        else:
            console.print(f"[red]Database not found: {db_path}[/red]")
        raise typer.Exit(code=1)

    try:
        with PolicyDB(db_path) as store:
            found = asyncio.run(store.list_policies(credential_id, application))
    except Exception as e:
        _report_error("store_error", "Store error", e, json_output, False)
        raise typer.Exit(code=1)

    ordered = sorted(found, key=lambda p: -p.priority)

    if json_output:
        _output_json_result([p.model_dump(mode="json", by_alias=True) for p in ordered])
        return

    if not ordered:
        console.print("[dim]No policies found.[/dim]")
        return

    table = Table(title=f"Policies for {credential_id}")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Scope")
    table.add_column("Priority", justify="right")
    table.add_column("Active", justify="center")

    for policy in ordered:
        table.add_row(
            policy.id[:8] + "...",
            policy.name,
            _type_label(policy),
            policy.scope.value,
            str(policy.priority),
            "[green]yes[/green]" if policy.is_active else "[dim]no[/dim]",
        )

    console.print(table)


# =============================================================================
# Output Helpers
# =============================================================================


def _type_label(policy: Policy) -> str:
    return policy.type.value if hasattr(policy.type, "value") else str(policy.type)


def _display_decision(result: PolicyEvaluationResult) -> None:
    """Display a request decision."""
    style = STATUS_STYLES[result.status]
    console.print(f"[bold {style}]{result.status.value}[/bold {style}]")
    if result.reason:
        console.print(f"  Reason: {result.reason}")
    if result.policy_id:
        console.print(f"  Policy: {result.policy_id}")
    if result.requires_approval:
        console.print("  [yellow]Requires approval before execution[/yellow]")


def _output_json_result(payload: Any) -> None:
    """Output a result as JSON."""
    print(json.dumps(payload, indent=2, default=str))


def _report_error(
    error_type: str,
    label: str,
    error: Exception,
    json_output: bool,
    debug: bool,
) -> None:
    if json_output:
        _output_json_error(error_type, str(error), debug)
    else:
        console.print(f"[red]{label}: {error}[/red]")
        if debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")


def _output_json_error(error_type: str, message: str, include_traceback: bool = False) -> None:
    """Output an error as JSON."""
    output: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
    }
    if include_traceback:
        output["traceback"] = traceback.format_exc()
    print(json.dumps(output, indent=2))


if __name__ == "__main__":
    app()
