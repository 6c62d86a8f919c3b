"""Settings loading for mcp-auth-debugger.

Settings come from environment variables, optionally seeded from a .env file:

    MCPAD_STORE_DIR     Directory for encrypted credential files
    MCPAD_REDIRECT_URI  Redirect URI registered with the authorization server
    MCPAD_SCOPE         Space-separated scope to request
    MCPAD_CLIENT_NAME   Client name sent during dynamic registration
    MCPAD_TIMEOUT       HTTP timeout in seconds
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from .oauth.discovery import DEFAULT_TIMEOUT
from .oauth.machine import DEFAULT_REDIRECT_URI
from .oauth.registration import DEFAULT_CLIENT_NAME
from .oauth.store import DEFAULT_STORE_DIR

ENV_PREFIX = "MCPAD_"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "mcp-auth-debugger" / ".env",
]


@dataclass
class Settings:
    """Runtime settings for the OAuth debugger."""

    store_dir: Path = field(default_factory=lambda: DEFAULT_STORE_DIR)
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scope: str | None = None
    client_name: str = DEFAULT_CLIENT_NAME
    timeout: float = DEFAULT_TIMEOUT
    env_path: Path | None = None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking the explicit path, then project, then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _env(name: str) -> str | None:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_timeout(value: str) -> float:
    try:
        timeout = float(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}TIMEOUT must be a number of seconds, got: {value!r}") from None
    if timeout <= 0:
        raise ValueError(f"{ENV_PREFIX}TIMEOUT must be positive, got: {value!r}")
    return timeout


def load_settings(env_path: Path | None = None, store_dir: Path | None = None) -> Settings:
    """Load settings from the environment.

    Args:
        env_path: Explicit .env file (optional). Variables already set in the
            environment take precedence over the file.
        store_dir: Explicit storage directory, overriding MCPAD_STORE_DIR

    Returns:
        Populated Settings

    Raises:
        ValueError: If a variable holds an invalid value
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    settings = Settings(env_path=env_file)

    if store_dir is not None:
        settings.store_dir = store_dir
    elif _env("STORE_DIR"):
        settings.store_dir = Path(_env("STORE_DIR")).expanduser()  # type: ignore[arg-type]

    if _env("REDIRECT_URI"):
        settings.redirect_uri = _env("REDIRECT_URI")  # type: ignore[assignment]

    settings.scope = _env("SCOPE")

    if _env("CLIENT_NAME"):
        settings.client_name = _env("CLIENT_NAME")  # type: ignore[assignment]

    timeout = _env("TIMEOUT")
    if timeout is not None:
        settings.timeout = _parse_timeout(timeout)

    return settings
