"""Output formatters for human-readable and JSON output."""

import json
import sys
from typing import Any

import click

from .oauth.errors import OAuthFlowError
from .oauth.state import STEP_ORDER, FlowState, OAuthStep

STATUS_COLORS = {"success": "green", "error": "red", "info": "blue"}

STEP_TITLES = {
    OAuthStep.METADATA_DISCOVERY: "Metadata Discovery",
    OAuthStep.CLIENT_REGISTRATION: "Client Registration",
    OAuthStep.AUTHORIZATION_REDIRECT: "Preparing Authorization",
    OAuthStep.AUTHORIZATION_CODE: "Request Authorization and acquire authorization code",
    OAuthStep.TOKEN_REQUEST: "Token Request",
    OAuthStep.COMPLETE: "Authentication Complete",
}


def format_json(data: Any, success: bool = True) -> str:
    """Format data as a JSON envelope."""
    if success:
        output = {"success": True, "data": data}
    else:
        output = data
    return json.dumps(output, indent=2, default=str)


def error_payload(error: Exception, help_text: str | None = None) -> dict[str, Any]:
    """Build the JSON error body; flow errors keep their server error code."""
    if isinstance(error, OAuthFlowError):
        details: dict[str, Any] = error.to_dict()
    else:
        details = {"type": type(error).__name__, "message": str(error)}
    details["help"] = help_text or ""
    return {"success": False, "error": details}


def mask_secret(value: str, visible: int = 25) -> str:
    """Show only the start of a token."""
    if len(value) <= visible:
        return value
    return value[:visible] + "..."


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output a success response."""
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def error(self, error: Exception, help_text: str | None = None) -> None:
        """Output an error response and exit with status 1."""
        if self.json_mode:
            click.echo(format_json(error_payload(error, help_text), success=False))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def status(self, message: str) -> None:
        """Progress line (human mode only, on stderr)."""
        if not self.json_mode:
            click.secho(message, dim=True, err=True)

    def flow_state(self, state: FlowState) -> None:
        """Render the progress of a flow with the artifact of each finished step."""
        if self.json_mode:
            click.echo(format_json(state.to_dict()))
            return

        current = state.step.index
        for step in STEP_ORDER:
            if step.index < current or state.is_complete:
                marker = click.style("✓", fg="green")
            elif step is state.step:
                marker = click.style("→", fg="yellow", bold=True)
            else:
                marker = " "
            click.echo(f" {marker} {STEP_TITLES[step]}")

        if state.metadata is not None:
            source = "default" if state.metadata.is_default else "discovered"
            click.echo(f"\n  Authorization server ({source}): {state.metadata.issuer}")
            click.echo(f"    authorization_endpoint: {state.metadata.authorization_endpoint}")
            click.echo(f"    token_endpoint:         {state.metadata.token_endpoint}")
            if state.metadata.registration_endpoint:
                click.echo(f"    registration_endpoint:  {state.metadata.registration_endpoint}")

        if state.client_id:
            click.echo(f"  Client ID: {state.client_id}")

        if state.authorization_url and state.step is OAuthStep.AUTHORIZATION_CODE:
            click.echo("\n  Authorization URL:")
            click.secho(f"  {state.authorization_url}", fg="cyan")

        if state.tokens is not None:
            click.echo(f"\n  Access Token: {mask_secret(state.tokens.access_token)}")

        if state.status_message is not None:
            click.echo("")
            click.secho(
                f"  {state.status_message.message}",
                fg=STATUS_COLORS.get(state.status_message.kind, "blue"),
            )

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (human mode only, JSON mode outputs raw data)."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))

        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))
