"""MCP Auth Debugger - step through OAuth 2.0 + PKCE authorization against MCP servers."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mcp-auth-debugger")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "AuthDebugger",
    "FlowState",
    "OAuthStep",
    "OutputHandler",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Settings", "load_settings"):
        from .config import Settings, load_settings
        return {"Settings": Settings, "load_settings": load_settings}[name]
    elif name == "AuthDebugger":
        from .oauth.manager import AuthDebugger
        return AuthDebugger
    elif name in ("FlowState", "OAuthStep"):
        from .oauth.state import FlowState, OAuthStep
        return {"FlowState": FlowState, "OAuthStep": OAuthStep}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
