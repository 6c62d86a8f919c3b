"""CLI entry point for MCP Auth Debugger."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .config import load_settings
from .oauth.errors import (
    FatalConfigurationError,
    NetworkError,
    OAuthFlowError,
    StateMismatchError,
    TokenError,
    ValidationError,
)
from .oauth.manager import AuthDebugger
from .oauth.state import FlowState, OAuthStep
from .oauth.store import CredentialStoreError
from .oauth.tokens import TokenSet
from .output import STEP_TITLES, OutputHandler, mask_secret

logger = logging.getLogger("mcpad")


def _help_for(error: Exception) -> str | None:
    """Suggest what the operator can do about a failure."""
    if isinstance(error, StateMismatchError):
        return (
            "The state returned with the code does not match the one sent. "
            "Start a new flow and use the freshly generated authorization URL."
        )
    if isinstance(error, FatalConfigurationError):
        return (
            "The server offers no dynamic client registration and no client is stored. "
            "Register a client manually with the authorization server."
        )
    if isinstance(error, TokenError) and error.code == "invalid_grant":
        return "The authorization code or refresh token was rejected. Authorization codes are single-use and short-lived."
    if isinstance(error, NetworkError):
        return "Check that the server URL is correct and reachable, then retry the step."
    if isinstance(error, CredentialStoreError):
        return "Run 'mcpad clear SERVER_URL' to reset stored credentials for this server."
    return None


def _fail(output: OutputHandler, error: Exception) -> NoReturn:
    output.error(error, help_text=_help_for(error))
    raise SystemExit(1)  # Never reached due to sys.exit in output.error


def _token_summary(server_url: str, tokens: TokenSet) -> dict[str, Any]:
    return {
        "server_url": server_url,
        "token_type": tokens.token_type,
        "access_token": mask_secret(tokens.access_token),
        "has_refresh_token": tokens.has_refresh_token(),
        "expires_at": tokens.expires_at.isoformat() if tokens.expires_at else None,
        "scope": tokens.scope,
    }


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--store-dir", "store_dir", type=click.Path(file_okay=False), help="Directory for stored credentials")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: str | None, store_dir: str | None, verbose: bool) -> None:
    """MCP Auth Debugger - step through OAuth 2.0 + PKCE against a server."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["store_dir"] = Path(store_dir) if store_dir else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_debugger(ctx: click.Context) -> AuthDebugger:
    """Build the debugger from settings, handling configuration errors."""
    output: OutputHandler = ctx.obj["output"]
    if "debugger" in ctx.obj:
        return ctx.obj["debugger"]

    try:
        settings = load_settings(ctx.obj["env_path"], ctx.obj["store_dir"])
    except ValueError as e:
        output.error(e, help_text="Fix the MCPAD_* environment variables or .env file.")
        raise SystemExit(1)

    debugger = AuthDebugger(settings=settings, on_status=output.status)
    ctx.obj["debugger"] = debugger
    return debugger


def _open_browser(output: OutputHandler, url: str) -> None:
    output.status("Opening browser for authorization...")
    if not webbrowser.open(url):
        output.status(f"Could not open browser. Please open this URL manually:\n{url}")


@main.command()
@click.argument("server_url")
@click.option("--browser/--no-browser", default=False, help="Open the authorization URL in a browser")
@click.pass_context
def guided(ctx: click.Context, server_url: str, browser: bool) -> None:
    """Run the OAuth flow one step at a time, pausing after each step."""
    output: OutputHandler = ctx.obj["output"]
    debugger = get_debugger(ctx)

    try:
        state: FlowState = debugger.start_flow(server_url)
    except (ValidationError, CredentialStoreError) as e:
        _fail(output, e)

    while True:
        output.flow_state(state)
        if state.is_complete:
            return

        if state.step is OAuthStep.AUTHORIZATION_CODE:
            if browser and state.authorization_url and state.latest_error is None:
                _open_browser(output, state.authorization_url)
            value = click.prompt(
                "Paste the authorization code or the full redirect URL", default="", err=True
            )
            state = state.with_authorization_code(value)
        elif state.step is OAuthStep.TOKEN_REQUEST and state.latest_error is not None:
            value = click.prompt(
                "Paste a new authorization code (leave blank to retry)", default="", err=True
            )
            if value:
                state = state.with_authorization_code(value)
        elif not click.confirm(f"Continue to {STEP_TITLES[state.step]}?", default=True, err=True):
            output.status("Flow paused. Stored artifacts are kept for this server.")
            return

        try:
            state = asyncio.run(debugger.proceed(state))
        except CredentialStoreError as e:
            _fail(output, e)

        if state.latest_error is not None and not click.confirm(
            "Step failed. Try again?", default=True, err=True
        ):
            _fail(output, state.latest_error)


@main.command()
@click.argument("server_url")
@click.option("--browser/--no-browser", default=True, help="Open the authorization URL in a browser")
@click.pass_context
def quick(ctx: click.Context, server_url: str, browser: bool) -> None:
    """Run the whole OAuth flow without pausing between steps."""
    output: OutputHandler = ctx.obj["output"]
    debugger = get_debugger(ctx)

    def provide_code(authorization_url: str) -> str:
        if browser:
            _open_browser(output, authorization_url)
        else:
            output.status(f"Open this URL to authorize:\n{authorization_url}")
        return click.prompt("Paste the authorization code or the full redirect URL", err=True)

    try:
        tokens = asyncio.run(debugger.quick_run(server_url, code_provider=provide_code))
    except (OAuthFlowError, CredentialStoreError) as e:
        _fail(output, e)

    output.success(
        _token_summary(server_url, tokens),
        human_message=f"Successfully authenticated with {server_url}",
    )


@main.command()
@click.argument("server_url")
@click.pass_context
def refresh(ctx: click.Context, server_url: str) -> None:
    """Refresh stored tokens using the stored refresh token."""
    output: OutputHandler = ctx.obj["output"]
    debugger = get_debugger(ctx)

    try:
        state = asyncio.run(debugger.refresh(server_url))
    except (OAuthFlowError, CredentialStoreError) as e:
        _fail(output, e)

    if state.latest_error is not None:
        help_text = _help_for(state.latest_error)
        if isinstance(state.latest_error, TokenError):
            help_text = (help_text or "") + f"\nRun 'mcpad guided {state.server_url}' to authenticate again."
        output.error(state.latest_error, help_text=help_text.strip() if help_text else None)
        return

    assert state.tokens is not None
    output.success(
        _token_summary(state.server_url, state.tokens),
        human_message=f"Token refreshed for {state.server_url}",
    )


@main.command()
@click.argument("server_url")
@click.pass_context
def clear(ctx: click.Context, server_url: str) -> None:
    """Remove all stored OAuth state for a server."""
    output: OutputHandler = ctx.obj["output"]
    debugger = get_debugger(ctx)

    try:
        state = debugger.clear_state(server_url)
    except ValidationError as e:
        _fail(output, e)

    assert state.status_message is not None
    output.success(
        {"server_url": state.server_url, "cleared": True},
        human_message=state.status_message.message,
    )


@main.command()
@click.argument("server_url", required=False)
@click.pass_context
def status(ctx: click.Context, server_url: str | None) -> None:
    """Show stored authentication state for a server, or list all servers."""
    output: OutputHandler = ctx.obj["output"]
    debugger = get_debugger(ctx)

    try:
        if server_url is None:
            servers = debugger.credential_store.list_servers()
            statuses = [debugger.get_status(s) for s in servers]
        else:
            statuses = [debugger.get_status(server_url)]
    except (ValidationError, CredentialStoreError) as e:
        _fail(output, e)

    if not statuses:
        output.success([], human_message="No servers have stored OAuth state.")
        return

    if output.json_mode:
        output.success([s.to_dict() for s in statuses])
        return

    rows = []
    for s in statuses:
        if not s.authenticated:
            token_state = "not authenticated"
        elif s.expired:
            token_state = "expired"
        else:
            token_state = f"valid ({s.expires_in_human})" if s.expires_in_human else "valid"
        rows.append([
            s.server_url,
            token_state,
            "yes" if s.has_refresh_token else "no",
            s.client_id or "-",
            s.metadata_source or "-",
        ])
    output.table(["SERVER", "TOKEN", "REFRESH", "CLIENT ID", "METADATA"], rows)


if __name__ == "__main__":
    main()
